"""Circuit breaker used to guard calls into the stores.

STATE MACHINE:

    CLOSED --(error rate >= threshold over the rolling window)--> OPEN
    OPEN --(reset timeout elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(trial call succeeds)--> CLOSED
    HALF_OPEN --(trial call fails)--> OPEN

- Every guarded call is bounded by a timeout; a timeout counts as a failure
  and is reported as ``DependencyUnavailableError``.
- While OPEN every call is rejected immediately with
  ``DependencyUnavailableError``, nothing is retried.
- In HALF_OPEN exactly one trial call is let through; concurrent callers are
  rejected until the trial settles.
- Listeners are plain callables ``(breaker, old_state, new_state)`` notified
  on each transition. They observe, they never influence the decision.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from core.errors import DependencyUnavailableError
from core.logging import logger

T = TypeVar("T")

StateListener = Callable[["CircuitBreaker", "BreakerState", "BreakerState"], None]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _Bucket:
    start: float
    successes: int = 0
    failures: int = 0


class CircuitBreaker:
    """Failure isolation for one named dependency.

    Args:
        name: Dependency name used in errors and logs.
        timeout: Seconds a single call may take before it is failed.
        error_threshold_percent: Failure percentage that trips the breaker.
        reset_timeout: Seconds to stay OPEN before allowing a trial call.
        rolling_window: Length of the statistics window in seconds.
        rolling_buckets: Number of buckets the window is divided into.
        volume_threshold: Minimum calls in the window before the failure
            rate is evaluated.
        ignored_exceptions: Exception types raised by the call that mean the
            dependency answered (e.g. a unique index rejection); they are
            re-raised but counted as successes.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        *,
        timeout: float = 5.0,
        error_threshold_percent: int = 50,
        reset_timeout: float = 30.0,
        rolling_window: float = 10.0,
        rolling_buckets: int = 10,
        volume_threshold: int = 5,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
        listeners: Optional[list[StateListener]] = None,
    ) -> None:
        if rolling_buckets < 1:
            raise ValueError("rolling_buckets must be at least 1")
        self.name = name
        self.timeout = timeout
        self.error_threshold_percent = error_threshold_percent
        self.reset_timeout = reset_timeout
        self.rolling_window = rolling_window
        self.volume_threshold = max(1, volume_threshold)
        self.ignored_exceptions = ignored_exceptions
        self._bucket_width = rolling_window / rolling_buckets
        self._clock = clock
        self._listeners: list[StateListener] = list(listeners or [])
        self._buckets: deque[_Bucket] = deque()
        self._state = BreakerState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._state

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def call(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run ``func(*args, **kwargs)`` under the breaker policy.

        Raises:
            DependencyUnavailableError: If the breaker is open, a half-open
                trial is already running, or the call timed out.
            Exception: Whatever the call itself raised.
        """
        is_trial = self._admit()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Circuit breaker TIMEOUT: {} after {}s", self.name, self.timeout
            )
            self._record_failure(is_trial)
            raise DependencyUnavailableError(
                self.name, f"{self.name} timed out after {self.timeout}s"
            ) from None
        except self.ignored_exceptions:
            self._record_success(is_trial)
            raise
        except asyncio.CancelledError:
            # Caller went away; the trial slot must not stay occupied.
            if is_trial:
                self._trial_in_flight = False
            raise
        except Exception as exc:
            logger.error("Circuit breaker FAILURE: {} error={!r}", self.name, exc)
            self._record_failure(is_trial)
            raise
        self._record_success(is_trial)
        return result

    def snapshot(self) -> dict[str, Any]:
        """Return the current state and rolling window statistics."""
        self._prune(self._clock())
        successes = sum(b.successes for b in self._buckets)
        failures = sum(b.failures for b in self._buckets)
        return {
            "name": self.name,
            "state": self._state.value,
            "successes": successes,
            "failures": failures,
        }

    def reset(self) -> None:
        """Force the breaker back to CLOSED with an empty window."""
        self._buckets.clear()
        self._trial_in_flight = False
        self._transition(BreakerState.CLOSED)

    def _admit(self) -> bool:
        """Decide whether a call may proceed; returns True for a trial call."""
        if self._state is BreakerState.OPEN:
            if self._clock() - self._opened_at < self.reset_timeout:
                raise DependencyUnavailableError(self.name)
            self._transition(BreakerState.HALF_OPEN)
        if self._state is BreakerState.HALF_OPEN:
            if self._trial_in_flight:
                raise DependencyUnavailableError(self.name)
            self._trial_in_flight = True
            return True
        return False

    def _record_success(self, is_trial: bool) -> None:
        if is_trial:
            self._trial_in_flight = False
            self._buckets.clear()
            self._transition(BreakerState.CLOSED)
            return
        self._current_bucket().successes += 1

    def _record_failure(self, is_trial: bool) -> None:
        if is_trial:
            self._trial_in_flight = False
            self._trip()
            return
        self._current_bucket().failures += 1
        if self._state is BreakerState.CLOSED and self._should_trip():
            self._trip()

    def _should_trip(self) -> bool:
        successes = sum(b.successes for b in self._buckets)
        failures = sum(b.failures for b in self._buckets)
        total = successes + failures
        if total < self.volume_threshold:
            return False
        return failures * 100 >= self.error_threshold_percent * total

    def _trip(self) -> None:
        self._opened_at = self._clock()
        self._transition(BreakerState.OPEN)

    def _current_bucket(self) -> _Bucket:
        now = self._clock()
        self._prune(now)
        if not self._buckets or now - self._buckets[-1].start >= self._bucket_width:
            self._buckets.append(_Bucket(start=now))
        return self._buckets[-1]

    def _prune(self, now: float) -> None:
        while self._buckets and now - self._buckets[0].start >= self.rolling_window:
            self._buckets.popleft()

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        for listener in self._listeners:
            listener(self, old_state, new_state)


def log_state_change(
    breaker: CircuitBreaker, old_state: BreakerState, new_state: BreakerState
) -> None:
    """Default listener: log every breaker transition."""
    stats = breaker.snapshot()
    if new_state is BreakerState.OPEN:
        logger.warning("Circuit breaker OPEN: {} stats={}", breaker.name, stats)
    else:
        logger.info(
            "Circuit breaker {}: {} (was {})",
            new_state.value.upper(),
            breaker.name,
            old_state.value,
        )


class BreakerFactory:
    """Builds and remembers one :class:`CircuitBreaker` per dependency name."""

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        error_threshold_percent: int = 50,
        reset_timeout: float = 30.0,
        rolling_window: float = 10.0,
        rolling_buckets: int = 10,
        volume_threshold: int = 5,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._options = dict(
            timeout=timeout,
            error_threshold_percent=error_threshold_percent,
            reset_timeout=reset_timeout,
            rolling_window=rolling_window,
            rolling_buckets=rolling_buckets,
            volume_threshold=volume_threshold,
            ignored_exceptions=ignored_exceptions,
            clock=clock,
        )
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "BreakerFactory":
        options = dict(
            timeout=settings.BREAKER_TIMEOUT_SECONDS,
            error_threshold_percent=settings.BREAKER_ERROR_THRESHOLD_PERCENT,
            reset_timeout=settings.BREAKER_RESET_TIMEOUT_SECONDS,
            rolling_window=settings.BREAKER_ROLLING_WINDOW_SECONDS,
            rolling_buckets=settings.BREAKER_ROLLING_BUCKETS,
            volume_threshold=settings.BREAKER_VOLUME_THRESHOLD,
        )
        options.update(overrides)
        return cls(**options)

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name, listeners=[log_state_change], **self._options
            )
            self._breakers[name] = breaker
        return breaker

    def snapshot(self) -> list[dict[str, Any]]:
        return [breaker.snapshot() for breaker in self._breakers.values()]
