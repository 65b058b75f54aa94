"""Fixed-window rate limiting on top of the cache backend.

Two usage patterns:

- ``hit(key)``: count every attempt (registration per client IP).
- ``check(key)`` before the attempt and ``record_failure(key)`` after a
  failed one (login per identifier), so successful attempts are free.
"""

import hashlib

from core.errors import ErrorCode, RateLimitedError
from core.logging import logger
from services.cache import Cache


class RateLimiter:
    """Allow ``limit`` counted attempts per key in each ``window_seconds``.

    Args:
        cache: Counter storage.
        name: Namespace for the counters (e.g. ``login``).
        limit: Attempts allowed per window.
        window_seconds: Window length.
        code: Error code raised once the budget is spent.
        message: Error message raised once the budget is spent.
    """

    def __init__(
        self,
        cache: Cache,
        name: str,
        *,
        limit: int,
        window_seconds: int,
        code: ErrorCode = ErrorCode.RATE_LIMIT_EXCEEDED,
        message: str = "Too many requests, please try again later",
    ):
        self._cache = cache
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.code = code
        self.message = message

    def _key(self, subject: str) -> str:
        # NOTE: hash the subject so user input cannot shape the cache key
        digest = hashlib.sha256(subject.strip().lower().encode("utf-8")).hexdigest()
        return f"rl:{self.name}:{digest}"

    async def _reject(self, key: str, subject_kind: str) -> None:
        retry_after = await self._cache.ttl(key) or self.window_seconds
        logger.warning("Rate limit {} exceeded ({})", self.name, subject_kind)
        raise RateLimitedError(self.message, code=self.code, retry_after=retry_after)

    async def check(self, subject: str) -> None:
        """Raise if ``subject`` already used up its budget.

        Raises:
            RateLimitedError: When the counter is at or above the limit.
        """
        key = self._key(subject)
        if await self._cache.get_count(key) >= self.limit:
            await self._reject(key, "check")

    async def record_failure(self, subject: str) -> int:
        """Count one failed attempt and return the new count."""
        return await self._cache.incr_window(self._key(subject), self.window_seconds)

    async def hit(self, subject: str) -> None:
        """Count an attempt and raise if it exceeds the limit.

        Raises:
            RateLimitedError: When this attempt is over the limit.
        """
        key = self._key(subject)
        count = await self._cache.incr_window(key, self.window_seconds)
        if count > self.limit:
            await self._reject(key, "hit")
