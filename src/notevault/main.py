"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, mail, database).
Middleware, exception handlers, and routers all registered here.

Shared state the handlers need (rate limiter, mail dispatcher) lives on
app.state and is created in create_app(), so tests driving the app
without running the lifespan still get working instances.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import DBAPIError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from notevault import __version__
from notevault.api import api_router
from notevault.config import settings
from notevault.errors import AppError, ErrorCode, RateLimitedError
from notevault.log import configure_logging
from notevault.ratelimit import InMemoryRateLimiter, RedisRateLimiter
from notevault.schemas.envelope import error_response
from notevault.services.mail import MailDispatcher, build_transport

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "notevault.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    # Shared rate-limit counters (multi-process deployments)
    from notevault.redis_client import close_redis, init_redis
    if settings.rate_limit_backend == "redis":
        try:
            redis = await init_redis()
            app.state.rate_limiter = RedisRateLimiter(redis)
            logger.info("notevault.redis_connected", url=settings.redis_url)
        except Exception as e:
            logger.warning("notevault.redis_unavailable", error=str(e))
            # Falls back to the per-process in-memory limiter

    yield

    # Shutdown
    logger.info("notevault.shutdown")

    # Let queued verification mails finish
    await app.state.mail_dispatcher.aclose()

    # Close Redis
    await close_redis()

    # Close database engine
    from notevault.db.engine import engine
    await engine.dispose()


# ─── Exception handlers ─────────────────────────────────


async def app_error_handler(request: Request, exc: AppError):
    logger.info(
        "request.rejected",
        code=exc.code,
        reason=exc.reason,
        path=request.url.path,
    )
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(settings.rate_limit_window_seconds)}
    return error_response(
        request,
        status_code=exc.status_code,
        message=exc.message,
        errors=exc.error_entries(),
        headers=headers,
        alert_type="warning" if exc.status_code < 500 else "error",
    )


def _field_of(loc) -> str:
    # ("body", "email") → "email"; ("query", "limit") → "limit"
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        message = err.get("msg", "Invalid value.")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({
            "code": ErrorCode.VALIDATION,
            "message": message,
            "field": _field_of(err.get("loc", ())),
        })
    logger.info("request.validation_failed", path=request.url.path, count=len(errors))
    return error_response(
        request,
        status_code=422,
        message="Request validation failed.",
        errors=errors,
        alert_type="warning",
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = {
        401: ErrorCode.AUTH_TOKEN_INVALID,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        429: ErrorCode.RATE_LIMITED,
    }.get(exc.status_code, ErrorCode.VALIDATION if exc.status_code < 500 else ErrorCode.INTERNAL)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return error_response(
        request,
        status_code=exc.status_code,
        message=message,
        errors=[{"code": code, "message": message}],
        headers=getattr(exc, "headers", None),
    )


async def database_error_handler(request: Request, exc: DBAPIError):
    logger.error("db.unavailable", error=type(exc).__name__, path=request.url.path)
    message = "A required service is temporarily unavailable."
    return error_response(
        request,
        status_code=503,
        message=message,
        errors=[{"code": ErrorCode.DEPENDENCY_UNAVAILABLE, "message": message}],
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request.unhandled_error", path=request.url.path)
    message = "An unexpected error occurred."
    return error_response(
        request,
        status_code=500,
        message=message,
        errors=[{"code": ErrorCode.INTERNAL, "message": message}],
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(settings.log_level, json_logs=settings.log_json)

    app = FastAPI(
        title="NoteVault",
        description="Notes service with email-verified accounts, rotating sessions and audited admin access",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.rate_limiter = InMemoryRateLimiter(max_keys=settings.rate_limit_max_keys)
    app.state.mail_dispatcher = MailDispatcher(
        build_transport(settings),
        max_attempts=settings.mail_max_attempts,
        backoff_seconds=settings.mail_backoff_seconds,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → InternalKey → RateLimit → CORS → handler

    from notevault.middleware.internal_key import InternalKeyMiddleware
    from notevault.middleware.rate_limit import RateLimitMiddleware
    from notevault.middleware.request_id import RequestIdMiddleware
    from notevault.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(
        InternalKeyMiddleware,
        secret=settings.internal_api_key,
        header_name=settings.internal_key_header,
        exempt_paths=tuple(settings.internal_key_exempt_paths),
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(OperationalError, database_error_handler)
    app.add_exception_handler(DBAPIError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Mount API routes
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: notevault.main:app)
app = create_app()
