"""Tests for fixed-window rate limiting on the memory cache."""

import pytest
from conftest import FailingCache
from core.circuit_breaker import BreakerState, CircuitBreaker
from core.errors import ErrorCode, RateLimitedError
from redis.exceptions import TimeoutError as RedisTimeoutError
from services.cache import FailOpenCache, MemoryCache
from services.rate_limiter import RateLimiter


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


async def test_hit_allows_limit_then_rejects(cache):
    limiter = RateLimiter(
        cache,
        "register",
        limit=3,
        window_seconds=60,
        code=ErrorCode.RATE_LIMIT_REGISTRATION,
    )
    for _ in range(3):
        await limiter.hit("10.0.0.1")

    with pytest.raises(RateLimitedError) as excinfo:
        await limiter.hit("10.0.0.1")
    assert excinfo.value.code is ErrorCode.RATE_LIMIT_REGISTRATION
    assert excinfo.value.status_code == 429
    assert 0 < excinfo.value.retry_after <= 60

    # Other subjects have their own budget
    await limiter.hit("10.0.0.2")


async def test_window_expiry_resets_budget(cache, clock):
    limiter = RateLimiter(cache, "register", limit=1, window_seconds=60)
    await limiter.hit("ip")
    with pytest.raises(RateLimitedError):
        await limiter.hit("ip")

    clock.advance(61)
    await limiter.hit("ip")


async def test_only_failures_count_against_check(cache):
    limiter = RateLimiter(
        cache, "login", limit=2, window_seconds=900, code=ErrorCode.RATE_LIMIT_LOGIN
    )
    for _ in range(5):
        await limiter.check("alice")

    await limiter.record_failure("Alice")
    await limiter.check("alice")
    assert await limiter.record_failure("alice ") == 2

    with pytest.raises(RateLimitedError) as excinfo:
        await limiter.check("ALICE")
    assert excinfo.value.code is ErrorCode.RATE_LIMIT_LOGIN


async def test_cache_json_roundtrip_and_expiry(cache, clock):
    await cache.set_json("k", {"a": 1}, ttl_seconds=10)
    assert await cache.get_json("k") == {"a": 1}

    clock.advance(10)
    assert await cache.get_json("k") is None


async def test_unreachable_cache_fails_open(clock):
    backend = FailingCache()
    breaker = CircuitBreaker("cache", clock=clock)
    limiter = RateLimiter(
        FailOpenCache(backend, breaker), "register", limit=1, window_seconds=60
    )

    for _ in range(10):
        await limiter.hit("10.0.0.1")
        await limiter.check("10.0.0.1")
    assert await limiter.record_failure("10.0.0.1") == 0

    # Once the breaker opens the backend is no longer called
    assert breaker.state is BreakerState.OPEN
    calls = backend.calls
    await limiter.hit("10.0.0.1")
    assert backend.calls == calls


class TtlFailingCache(MemoryCache):
    async def ttl(self, key):
        raise RedisTimeoutError("Timeout reading from socket")


async def test_retry_after_falls_back_to_window(clock):
    cache = FailOpenCache(TtlFailingCache(clock=clock), CircuitBreaker("cache", clock=clock))
    limiter = RateLimiter(cache, "login", limit=1, window_seconds=900)
    await limiter.record_failure("alice")

    with pytest.raises(RateLimitedError) as excinfo:
        await limiter.check("alice")
    assert excinfo.value.retry_after == 900
