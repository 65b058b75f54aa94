"""Tests for the circuit breaker state machine."""

import asyncio

import pytest
from core.circuit_breaker import BreakerFactory, BreakerState, CircuitBreaker
from core.errors import DependencyUnavailableError
from services.stores.base import DuplicateKeyError


class Boom(Exception):
    pass


async def ok():
    return "ok"


async def fail():
    raise Boom("down")


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "store",
        timeout=0.5,
        error_threshold_percent=50,
        reset_timeout=30,
        rolling_window=10,
        rolling_buckets=10,
        volume_threshold=4,
        ignored_exceptions=(DuplicateKeyError,),
        clock=clock,
    )


async def trip(breaker):
    for _ in range(breaker.volume_threshold):
        with pytest.raises(Boom):
            await breaker.call(fail)


async def test_passes_results_and_errors_through(breaker):
    assert await breaker.call(ok) == "ok"
    with pytest.raises(Boom):
        await breaker.call(fail)
    assert breaker.state is BreakerState.CLOSED


async def test_opens_at_threshold_and_rejects_without_calling(breaker):
    await trip(breaker)
    assert breaker.state is BreakerState.OPEN

    calls = []

    async def tracked():
        calls.append(1)

    with pytest.raises(DependencyUnavailableError):
        await breaker.call(tracked)
    assert calls == []


async def test_below_volume_threshold_stays_closed(breaker):
    for _ in range(breaker.volume_threshold - 1):
        with pytest.raises(Boom):
            await breaker.call(fail)
    assert breaker.state is BreakerState.CLOSED


async def test_failure_rate_below_threshold_stays_closed(breaker):
    for _ in range(3):
        await breaker.call(ok)
    with pytest.raises(Boom):
        await breaker.call(fail)
    assert breaker.state is BreakerState.CLOSED


async def test_half_open_success_closes(breaker, clock):
    await trip(breaker)
    clock.advance(31)

    assert await breaker.call(ok) == "ok"
    assert breaker.state is BreakerState.CLOSED
    assert breaker.snapshot()["failures"] == 0


async def test_half_open_failure_reopens(breaker, clock):
    await trip(breaker)
    clock.advance(31)

    with pytest.raises(Boom):
        await breaker.call(fail)
    assert breaker.state is BreakerState.OPEN
    with pytest.raises(DependencyUnavailableError):
        await breaker.call(ok)


async def test_half_open_admits_a_single_trial(breaker, clock):
    await trip(breaker)
    clock.advance(31)
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "trial"

    trial = asyncio.create_task(breaker.call(slow))
    await asyncio.sleep(0)
    assert breaker.state is BreakerState.HALF_OPEN
    with pytest.raises(DependencyUnavailableError):
        await breaker.call(ok)

    release.set()
    assert await trial == "trial"
    assert breaker.state is BreakerState.CLOSED


async def test_timeout_counts_as_failure(breaker):
    async def hang():
        await asyncio.sleep(5)

    with pytest.raises(DependencyUnavailableError, match="timed out"):
        await breaker.call(hang)
    assert breaker.snapshot()["failures"] == 1


async def test_ignored_exceptions_are_raised_but_not_counted(breaker):
    async def duplicate():
        raise DuplicateKeyError("email")

    for _ in range(breaker.volume_threshold):
        with pytest.raises(DuplicateKeyError):
            await breaker.call(duplicate)
    assert breaker.state is BreakerState.CLOSED
    assert breaker.snapshot()["successes"] == breaker.volume_threshold


async def test_old_failures_leave_the_window(breaker, clock):
    for _ in range(3):
        with pytest.raises(Boom):
            await breaker.call(fail)
    clock.advance(11)
    with pytest.raises(Boom):
        await breaker.call(fail)

    assert breaker.state is BreakerState.CLOSED
    assert breaker.snapshot()["failures"] == 1


async def test_listeners_observe_transitions(breaker, clock):
    seen = []
    breaker.add_listener(lambda b, old, new: seen.append((old, new)))

    await trip(breaker)
    clock.advance(31)
    await breaker.call(ok)

    assert seen == [
        (BreakerState.CLOSED, BreakerState.OPEN),
        (BreakerState.OPEN, BreakerState.HALF_OPEN),
        (BreakerState.HALF_OPEN, BreakerState.CLOSED),
    ]


def test_factory_memoizes_and_snapshots(clock):
    factory = BreakerFactory(clock=clock)

    first = factory.get("credential-store")
    assert factory.get("credential-store") is first
    factory.get("token-store")

    names = [entry["name"] for entry in factory.snapshot()]
    assert names == ["credential-store", "token-store"]
    assert all(entry["state"] == "closed" for entry in factory.snapshot())
