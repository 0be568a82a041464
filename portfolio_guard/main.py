"""
Main FastAPI application entry point.
"""
import logging
import math
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from portfolio_guard import __version__
from portfolio_guard.api.v1.endpoints.auth import LOGIN_PAGE, pages_router
from portfolio_guard.api.v1.router import api_router
from portfolio_guard.core.config import settings
from portfolio_guard.core.crypto import get_codec
from portfolio_guard.core.database import Base, SessionLocal, engine
from portfolio_guard.core.errors import (
    AuthenticationError,
    PortfolioGuardError,
    RateLimitExceeded,
    ValidationError,
)
from portfolio_guard.core.logging_config import setup_logging
from portfolio_guard.core.session import clear_session_cookie
from portfolio_guard.middleware.rate_limit import RateLimitMiddleware
from portfolio_guard.middleware.request_logging import RequestLoggingMiddleware
from portfolio_guard.middleware.security_headers import SecurityHeadersMiddleware

# Import all models so they register with Base.metadata
from portfolio_guard.models import (  # noqa: F401
    ApiKey,
    ApiKeyLog,
    TurnstileAnalytics,
    TurnstileLog,
    TurnstileSiteKey,
    User,
)
from portfolio_guard.services.auth_service import ensure_admin_user
from portfolio_guard.services.turnstile_service import ensure_test_site_key
from portfolio_guard.services.verification import get_verification_provider

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting up Portfolio Guard API...")

    # Fail fast on a bad key or an unsafe verification mode
    get_codec()
    get_verification_provider()

    if os.getenv("DATABASE_URL"):
        try:
            from alembic import command
            from alembic.config import Config

            logger.info("[MIGRATION] DATABASE_URL detected, running Alembic migrations...")
            command.upgrade(Config("alembic.ini"), "head")
            logger.info("[MIGRATION] Alembic migrations completed (or already up-to-date)")
        except Exception as e:
            trace_id = str(uuid.uuid4())
            logger.warning(f"[MIGRATION] [{trace_id}] Alembic migration failed: {e}. Falling back to create_all.")
            logger.debug(f"[MIGRATION] [{trace_id}] Migration error details:", exc_info=True)
    else:
        logger.info("[MIGRATION] DATABASE_URL not set, skipping migrations (local dev mode)")

    # Ensure database tables exist (fallback for local dev without Alembic)
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}", exc_info=True)

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        logger.info("Database connectivity verified")
        ensure_admin_user(db)
        ensure_test_site_key(db)
    except (SQLAlchemyError, PortfolioGuardError) as e:
        trace_id = str(uuid.uuid4())
        logger.error(f"[{trace_id}] Startup database tasks failed: {e}", exc_info=True)
    finally:
        db.close()

    yield
    logger.info("Shutting down Portfolio Guard API...")


app = FastAPI(
    title="Portfolio Guard API",
    description="Back-office security service: sessions, API keys, Turnstile verification and gated downloads",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# Order: the last middleware added runs first
app.add_middleware(RateLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix="/api")
app.include_router(pages_router, tags=["pages"])


def _error_body(message: str, **extra) -> dict:
    body = {"success": False, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


@app.exception_handler(PortfolioGuardError)
async def portfolio_guard_exception_handler(request: Request, exc: PortfolioGuardError):
    """Convert application errors into the uniform {success: false, message} response."""
    if isinstance(exc, AuthenticationError):
        response = RedirectResponse(url=LOGIN_PAGE, status_code=303)
        clear_session_cookie(response)
        return response

    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, errors=exc.errors or None))

    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(math.ceil(settings.RATE_LIMIT_WINDOW_SECONDS))}

    if exc.status_code >= 500:
        trace_id = getattr(request.state, "trace_id", None)
        logger.error(f"[{trace_id}] {type(exc).__name__}: {exc.message}", exc_info=True)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.default_message, trace_id=trace_id))

    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Field-level messages keyed by the field name the client sent."""
    errors = {}
    for error in exc.errors():
        fields = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "form", "path")]
        field = fields[-1] if fields else "request"
        errors.setdefault(field, error.get("msg", "Invalid value"))
    return JSONResponse(status_code=422, content=_error_body("Validation failed", errors=errors))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors with trace_id."""
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    logger.error(f"[{trace_id}] Unhandled exception: {type(exc).__name__}: {exc}", exc_info=True)

    if isinstance(exc, SQLAlchemyError):
        message = "Database error"
    else:
        message = str(exc) if settings.DEBUG else "An unexpected error occurred"

    return JSONResponse(status_code=500, content=_error_body(message, trace_id=trace_id))


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Portfolio Guard API",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Liveness check. Returns 200 without touching the database; use /health/db for readiness."""
    return {"status": "ok"}


@app.get("/health/db")
async def health_check_db():
    """Database readiness check: 200 if SELECT 1 succeeds, 503 otherwise."""
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
        finally:
            db.close()
    except SQLAlchemyError as e:
        trace_id = str(uuid.uuid4())
        logger.warning(f"[{trace_id}] Database health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "trace_id": trace_id},
        )
