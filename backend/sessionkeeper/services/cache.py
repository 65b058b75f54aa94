"""Cache backends for profile projections and rate limit counters.

``RedisCache`` is the production backend; ``MemoryCache`` keeps the same
interface in process for tests and single-instance development runs.
"""

import json
import time
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as aioredis
from core.circuit_breaker import CircuitBreaker
from core.errors import DependencyUnavailableError
from core.logging import logger
from redis.exceptions import RedisError

CACHE = "cache"


class Cache(Protocol):
    async def get_json(self, key: str) -> Optional[Any]: ...

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr_window(self, key: str, window_seconds: int) -> int: ...

    async def get_count(self, key: str) -> int: ...

    async def ttl(self, key: str) -> int: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class RedisCache:
    """Thin Redis wrapper for cached documents and fixed-window counters."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get_json(self, key: str) -> Optional[Any]:
        cached = await self.client.get(key)
        if not cached:
            return None
        try:
            return json.loads(cached)
        except (json.JSONDecodeError, TypeError):
            # Corrupted cache entry - treat as cache miss
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.set(key, json.dumps(value), ex=max(1, ttl_seconds))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def incr_window(self, key: str, window_seconds: int) -> int:
        """Increment a fixed-window counter, starting the window on first hit."""
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        count, _ = await pipe.execute()
        return int(count)

    async def get_count(self, key: str) -> int:
        value = await self.client.get(key)
        return int(value) if value else 0

    async def ttl(self, key: str) -> int:
        return max(0, int(await self.client.ttl(key)))

    async def ping(self) -> None:
        await self.client.ping()

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCache:
    """Process-local cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def _get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get_json(self, key: str) -> Optional[Any]:
        value = self._get(key)
        return json.loads(value) if value is not None else None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (json.dumps(value), self._clock() + max(1, ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def incr_window(self, key: str, window_seconds: int) -> int:
        count = self._get(key)
        if count is None:
            self._entries[key] = (1, self._clock() + window_seconds)
            return 1
        _, expires_at = self._entries[key]
        self._entries[key] = (count + 1, expires_at)
        return count + 1

    async def get_count(self, key: str) -> int:
        return int(self._get(key) or 0)

    async def ttl(self, key: str) -> int:
        if self._get(key) is None:
            return 0
        return max(0, int(self._entries[key][1] - self._clock()))

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        self._entries.clear()


class FailOpenCache:
    """Run cache calls through a breaker and degrade instead of raising.

    Profile reads fall back to the store and rate limit counters read as
    zero while the backend is down, so an outage only costs caching and
    throttling. ``ping`` and ``close`` pass straight through so readiness
    still sees the real state.

    Args:
        cache: Backend doing the actual work.
        breaker: Guard shared by every cache consumer.
    """

    def __init__(self, cache: Cache, breaker: CircuitBreaker):
        self._cache = cache
        self._breaker = breaker

    async def _guarded(self, default: Any, method: str, *args: Any) -> Any:
        try:
            return await self._breaker.call(getattr(self._cache, method), *args)
        except (RedisError, OSError, DependencyUnavailableError) as exc:
            logger.warning("Cache {} failed, continuing without cache: {!r}", method, exc)
            return default

    async def get_json(self, key: str) -> Optional[Any]:
        return await self._guarded(None, "get_json", key)

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._guarded(None, "set_json", key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._guarded(None, "delete", key)

    async def incr_window(self, key: str, window_seconds: int) -> int:
        return await self._guarded(0, "incr_window", key, window_seconds)

    async def get_count(self, key: str) -> int:
        return await self._guarded(0, "get_count", key)

    async def ttl(self, key: str) -> int:
        return await self._guarded(0, "ttl", key)

    async def ping(self) -> None:
        await self._cache.ping()

    async def close(self) -> None:
        await self._cache.close()
