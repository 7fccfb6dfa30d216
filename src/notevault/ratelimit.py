"""Rate limiter stores.

Learn: One contract — allow(key, limit, window_seconds) -> bool — with
two backends:
- InMemoryRateLimiter: true sliding window (deque of hit timestamps per
  key). Per-process; state is lost on restart, which only means limits
  start fresh. Bounded: the key count is capped and the least recently
  used keys are evicted first.
- RedisRateLimiter: fixed window counter (INCR + EXPIRE), shared by every
  API process.

The limiter lives on app.state and is injected where needed — never
touched as a module global from handlers.
"""

import threading
import time
from collections import OrderedDict, deque
from typing import Callable

import structlog

logger = structlog.get_logger()


class RateLimiter:
    """Interface for rate limiter stores."""

    async def allow(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        raise NotImplementedError

    async def reset(self) -> None:
        """Forget all windows (tests, operator tooling)."""


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window limiter kept in process memory."""

    def __init__(self, max_keys: int = 100_000, clock: Callable[[], float] = time.monotonic):
        self.max_keys = max_keys
        self._clock = clock
        self._hits: "OrderedDict[str, deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    async def allow(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        now = self._clock()
        cutoff = now - window_seconds
        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                hits = deque()
                self._hits[key] = hits
                self._evict_if_full()
            else:
                self._hits.move_to_end(key)

            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    async def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def tracked_keys(self) -> int:
        return len(self._hits)

    def _evict_if_full(self) -> None:
        """Drop least-recently-used keys once the cap is exceeded."""
        while len(self._hits) > self.max_keys:
            evicted, _ = self._hits.popitem(last=False)
            logger.debug("ratelimit.key_evicted", key=evicted)


class RedisRateLimiter(RateLimiter):
    """Fixed-window counter in Redis: notevault:rl:{key}:{window}."""

    def __init__(self, redis, prefix: str = "notevault:rl"):
        self.redis = redis
        self.prefix = prefix

    async def allow(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        window = int(time.time() // window_seconds)
        redis_key = f"{self.prefix}:{key}:{window}"
        count = await self.redis.incr(redis_key)
        if count == 1:
            await self.redis.expire(redis_key, window_seconds * 2)  # TTL for safety
        return count <= limit

    async def reset(self) -> None:
        async for redis_key in self.redis.scan_iter(match=f"{self.prefix}:*"):
            await self.redis.delete(redis_key)
