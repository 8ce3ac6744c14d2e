"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and sets
up the lifespan hooks. When run with uvicorn
(``uvicorn expense_desk.api.main:app``) it initialises Sentry and the
database and loads configuration from ``expense_desk.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from expense_desk.api.error_handlers import register_exception_handlers
from expense_desk.api.routes.analysis import router as analysis_router
from expense_desk.api.routes.audit_logs import router as audit_logs_router
from expense_desk.api.routes.auth import router as auth_router
from expense_desk.api.routes.categories import router as categories_router
from expense_desk.api.routes.dashboard import router as dashboard_router
from expense_desk.api.routes.expenses import router as expenses_router
from expense_desk.api.routes.files import router as files_router
from expense_desk.api.routes.profiles import router as profiles_router
from expense_desk.api.routes.project_codes import router as project_codes_router
from expense_desk.api.routes.rate_limiter import router as rate_limiter_router
from expense_desk.core.config import is_development, settings
from expense_desk.core.database import AsyncSessionLocal, get_db_debug_info, init_db
from expense_desk.core.observability import init_sentry, sentry_enabled

# Configure logging
logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "camera=(self), microphone=(), geolocation=()")
    if not is_development():
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# Enrich Sentry scope with lightweight request info
@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):
    if sentry_enabled():
        scope = sentry_sdk.get_current_scope()
        scope.set_tag("path", request.url.path)
        scope.set_tag("method", request.method)
    return await call_next(request)


"""CORS configuration.

Logic:
1. In development => allow all ( * ) for simplest DX.
2. Otherwise start from BACKEND_CORS_ORIGINS.
3. Ensure the FRONTEND_BASE_URL origin is present (parsed) when not wildcard.
4. Deduplicate while preserving order.
"""
allow_origins = ["*"] if is_development() else list(settings.BACKEND_CORS_ORIGINS or [])

if "*" not in allow_origins:
    parsed = urlparse(settings.FRONTEND_BASE_URL or "")
    if parsed.scheme and parsed.netloc:
        front_origin = f"{parsed.scheme}://{parsed.netloc}"
        if front_origin not in allow_origins:
            allow_origins.append(front_origin)

seen = set()
allow_origins = [o for o in allow_origins if not (o in seen or seen.add(o))]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials="*" not in allow_origins,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["authorization", "content-type", "x-client-info", "apikey"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "X-Total-Count"],
)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(analysis_router)
app.include_router(rate_limiter_router)
app.include_router(expenses_router)
app.include_router(files_router)
app.include_router(categories_router)
app.include_router(project_codes_router)
app.include_router(profiles_router)
app.include_router(audit_logs_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD).

    Reports ``degraded`` when the database does not answer or the analysis
    model is not configured.
    """
    checks = {"database": "ok", "analysis": "ok" if settings.OPENAI_API_KEY else "not_configured"}
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health check database failure: %s", exc)
        checks["database"] = "error"
    healthy = all(v == "ok" for v in checks.values())
    return {"status": "healthy" if healthy else "degraded", "checks": checks}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (for development)."""
    if not is_development():
        return {"ok": False, "message": "disabled in non-development env"}
    return get_db_debug_info()
