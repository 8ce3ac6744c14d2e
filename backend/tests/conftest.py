from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

# Add backend folder to sys.path so `import expense_desk...` works in tests when running from the repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Settings are read at import time; configure before the package is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["STORAGE_BACKEND"] = "filesystem"
os.environ["STORAGE_DIRECTORY"] = tempfile.mkdtemp(prefix="expense-desk-tests-")
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ.pop("SENTRY_DSN", None)

import datetime as dt  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from expense_desk.core.database import Base, get_db  # noqa: E402
from expense_desk.core.security import create_access_token, hash_password  # noqa: E402
from expense_desk.models.enums import AppRole, UserStatus  # noqa: E402
from expense_desk.models.schemas import ReceiptAnalysis  # noqa: E402
from expense_desk.models.tables import Profile  # noqa: E402
from expense_desk.scripts.init_db import seed_reference_data  # noqa: E402
from expense_desk.services.extraction_service import get_extraction_service, reconcile_analysis  # noqa: E402
from expense_desk.services.rate_limiter import MemoryRateLimitStore, RateLimiter, get_rate_limiter  # noqa: E402
from expense_desk.services.storage_service import StorageService, get_storage_service  # noqa: E402

PASSWORD = "secret123"

# One hash for every fixture profile; bcrypt is slow on purpose
_PASSWORD_HASH = hash_password(PASSWORD)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExtraction:
    """Stands in for ExtractionService; returns reconciled ``result`` or raises ``error``."""

    def __init__(self) -> None:
        self.result = ReceiptAnalysis(
            vendor="Cafetería Sol",
            expense_date="2024-03-15",
            amount_gross=100.0,
            tax_vat=None,
            amount_net=None,
            currency="EUR",
            category_suggestion="Dietas",
            payment_method_guess="CARD",
        )
        self.error: Exception | None = None
        self.calls: list[tuple[str, str, int]] = []

    async def analyze(self, file_data: bytes, filename: str, content_type: str, today=None) -> ReceiptAnalysis:
        self.calls.append((filename, content_type, len(file_data)))
        if self.error is not None:
            raise self.error
        return reconcile_analysis(self.result, today=today)


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(db_session):
    await seed_reference_data(db_session)
    return db_session


async def make_profile(
    session,
    email: str,
    role: AppRole = AppRole.EMPLOYEE,
    name: str | None = None,
    status: UserStatus = UserStatus.ACTIVE,
) -> Profile:
    profile = Profile(
        email=email,
        name=name or email.split("@")[0].title(),
        password_hash=_PASSWORD_HASH,
        role=role,
        status=status,
    )
    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return profile


def auth_headers(profile: Profile) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(profile.id)}"}


@pytest.fixture
async def employee(seeded):
    return await make_profile(seeded, "ana@example.com", name="Ana")


@pytest.fixture
async def other_employee(seeded):
    return await make_profile(seeded, "luis@example.com", name="Luis")


@pytest.fixture
async def admin(seeded):
    return await make_profile(seeded, "boss@example.com", AppRole.ADMIN, name="Boss")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryRateLimitStore(clock=clock))


@pytest.fixture
def storage(tmp_path):
    return StorageService(base_dir=str(tmp_path / "storage"), backend="filesystem")


@pytest.fixture
def extraction():
    return FakeExtraction()


@pytest.fixture
def app(session_factory, storage, extraction, limiter):
    from expense_desk.api.main import app as fastapi_app

    async def _get_db():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_storage_service] = lambda: storage
    fastapi_app.dependency_overrides[get_extraction_service] = lambda: extraction
    fastapi_app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def expense_payload(category_id: int, **overrides) -> dict:
    payload = {
        "vendor": "Renfe",
        "expense_date": dt.date.today().isoformat(),
        "amount_gross": 121.0,
        "tax_vat": 21.0,
        "amount_net": 100.0,
        "currency": "EUR",
        "category_id": category_id,
        "payment_method": "CARD",
    }
    payload.update(overrides)
    return payload
