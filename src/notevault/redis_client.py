"""Redis connection pool.

Learn: Redis is optional. It only backs the shared rate-limit counters
when NOTEVAULT_RATE_LIMIT_BACKEND=redis, so several API processes see
the same windows. With the default in-memory backend nothing here runs.
"""

from typing import Optional

import redis.asyncio as aioredis

from notevault.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def redis_enabled() -> bool:
    return _redis is not None
