"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

Every external call has a bounded timeout: asyncpg gets a command_timeout,
SQLite a busy timeout, and pool checkout a pool_timeout.
"""

import asyncio
import functools

import structlog
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from notevault.config import settings

logger = structlog.get_logger()


def build_engine(url: str, echo: bool = False):
    """Create an async engine with driver-appropriate timeouts."""
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": settings.db_command_timeout_seconds},
        )
    # Connection pool: min 5, max 20 connections.
    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=15,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_pre_ping=True,
        connect_args={"command_timeout": settings.db_command_timeout_seconds},
    )


engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory: each request gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency — factory for work that needs its own transaction."""
    return async_session_factory


def retry_read(attempts: int = 2, delay: float = 0.1):
    """Retry an idempotent read once on a transient connection error.

    Learn: Only decorate pure reads. The wrapped coroutine must be a
    method whose instance has a `db` session; the session is rolled back
    before retrying so it is usable again. Mutations are never retried.
    """

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    return await fn(self, *args, **kwargs)
                except (OperationalError, DBAPIError) as e:
                    if attempt == attempts or not _is_transient(e):
                        raise
                    logger.warning(
                        "db.read_retry",
                        operation=fn.__qualname__,
                        attempt=attempt,
                        error=type(e).__name__,
                    )
                    await self.db.rollback()
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def _is_transient(error: DBAPIError) -> bool:
    return isinstance(error, OperationalError) or error.connection_invalidated
