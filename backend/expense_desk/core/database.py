"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the application from ``DATABASE_URL``.  Postgres URLs are
normalised to the async ``psycopg`` driver and plain SQLite URLs to
``aiosqlite``.  When no URL is provided a local SQLite database may be
used in development if ``DB_DEV_FALLBACK_SQLITE`` is enabled; otherwise
the application fails fast at import time.
"""

from __future__ import annotations

import logging
import os
from typing import AsyncGenerator, Dict, Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

from expense_desk.core.config import settings

logger = logging.getLogger(__name__)

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./expense_desk.db"

LAST_DB_INIT_ERROR: Optional[str] = None


def normalise_database_url(url: str) -> str:
    """Return ``url`` rewritten to an async driver SQLAlchemy understands.

    - ``sqlite://`` becomes ``sqlite+aiosqlite://``
    - ``postgres://``/``postgresql://``/``+psycopg2``/``+asyncpg`` become
      ``postgresql+psycopg://`` with ``sslmode=require`` unless set.
    """
    url_obj = make_url(url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        return url_obj.set(drivername="sqlite+aiosqlite").render_as_string(hide_password=False)
    if driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        q = dict(url_obj.query or {})
        if not q.get("sslmode") and url_obj.host not in {"localhost", "127.0.0.1", None}:
            q["sslmode"] = "require"
        return url_obj.set(drivername="postgresql+psycopg", query=q).render_as_string(hide_password=False)
    return url


db_url = settings.DATABASE_URL or os.getenv("DATABASE_URL")

if not db_url:
    if not settings.DB_DEV_FALLBACK_SQLITE:
        raise RuntimeError(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false, a Postgres URL is required."
        )
    db_url = SQLITE_FALLBACK_URL

db_url = normalise_database_url(db_url)

engine_kwargs: dict[str, Any] = dict(echo=False)
if not db_url.startswith("sqlite"):
    engine_kwargs["pool_pre_ping"] = True

engine = create_async_engine(db_url, **engine_kwargs)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Declarative base
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    This function is intended for FastAPI dependency injection.  Each
    session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables declared on ``Base``.

    Typically called during application startup and by the ``init_db``
    script.  Errors are recorded for the health endpoint and re-raised.
    """
    global LAST_DB_INIT_ERROR
    try:
        async with engine.begin() as conn:
            # Import all models to ensure metadata is populated
            from expense_desk.models import tables  # noqa: F401
            await conn.run_sync(Base.metadata.create_all)
        LAST_DB_INIT_ERROR = None
    except Exception as e:
        LAST_DB_INIT_ERROR = str(e)
        logger.error("DB init failed: %s", e)
        raise


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine for debugging.

    This avoids leaking passwords or secrets. Intended for a diagnostic endpoint.
    """
    info: Dict[str, Any] = {
        "environment": (settings.ENVIRONMENT or "development"),
    }
    if LAST_DB_INIT_ERROR:
        info["last_db_init_error"] = LAST_DB_INIT_ERROR
    url_obj = engine.url
    info.update(
        {
            "drivername": url_obj.drivername,
            "host": url_obj.host,
            "port": url_obj.port,
            "database": url_obj.database,
            "url": url_obj.render_as_string(hide_password=True),
        }
    )
    return info
