from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, NoReturn, TypeVar, cast

from .logging_metrics import (
    circuit_rejections_total,
    circuit_state_gauge,
    circuit_transitions_total,
)


T = TypeVar("T")

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreakerError(Exception):
    """Base class for errors raised by the breaker itself (never by the guarded call)."""


class CircuitOpenError(CircuitBreakerError):
    """Call rejected locally because the circuit is open."""

    circuit_open = True

    def __init__(self, name: str, retry_after: float, state: CircuitState) -> None:
        super().__init__(f"Circuit breaker '{name}' is {state.value} - service unavailable")
        self.name = name
        self.retry_after = retry_after
        self.state = state


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Breaker tuning. Durations are seconds."""

    failure_threshold: int = 3
    failure_window: float = 30.0
    base_reset_timeout: float = 10.0
    max_reset_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.failure_window <= 0:
            raise ValueError("failure_window must be > 0")
        if self.base_reset_timeout <= 0:
            raise ValueError("base_reset_timeout must be > 0")
        if self.max_reset_timeout < self.base_reset_timeout:
            raise ValueError("max_reset_timeout must be >= base_reset_timeout")


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState
    failure_count: int
    opened_at: float | None
    next_retry_in: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failureCount": self.failure_count,
            "openedAt": self.opened_at,
            "nextRetryIn": self.next_retry_in,
        }


def purge_stale_failures(timestamps: Iterable[float], now: float, window: float) -> deque[float]:
    """Return only the failures newer than ``now - window``, in arrival order."""
    window_start = now - window
    return deque(ts for ts in timestamps if ts > window_start)


def next_reset_timeout(current: float, maximum: float) -> float:
    # Plain doubling, no jitter
    return min(current * 2, maximum)


class CircuitBreaker:
    """Async circuit breaker with a sliding failure window and exponential probe backoff.

    States: CLOSED -> OPEN (threshold reached inside the window) -> HALF_OPEN (after the
    reset timeout) -> CLOSED (probe succeeded) or back to OPEN with a doubled timeout
    (probe failed, capped at max_reset_timeout).

    Only one probe runs while HALF_OPEN; concurrent callers get CircuitOpenError until
    the probe settles. Check-and-transition sections never await, so they are atomic
    on a single event loop.
    """

    def __init__(
        self,
        name: str = "default",
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._current_reset_timeout = self.config.base_reset_timeout
        self._probe_in_flight = False
        # Bumped by reset(); outcomes of probes from an older generation count as plain calls
        self._generation = 0
        circuit_state_gauge.labels(name=self.name).set(_STATE_GAUGE_VALUE[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    @property
    def current_reset_timeout(self) -> float:
        return self._current_reset_timeout

    @property
    def failure_count(self) -> int:
        return len(self._failures)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        probe_generation = self._before_call()
        try:
            result = await operation()
        except Exception:
            self._on_failure(self._is_current_probe(probe_generation))
            raise
        except BaseException:
            # Cancelled probe: leave HALF_OPEN so the next caller probes again
            if self._is_current_probe(probe_generation):
                self._probe_in_flight = False
            raise
        self._on_success(self._is_current_probe(probe_generation))
        return result

    def get_state(self) -> CircuitSnapshot:
        next_retry_in = 0.0
        if self._opened_at is not None:
            elapsed = self._clock() - self._opened_at
            next_retry_in = max(0.0, self._current_reset_timeout - elapsed)
        return CircuitSnapshot(
            state=self._state,
            failure_count=len(self._failures),
            opened_at=self._opened_at,
            next_retry_in=next_retry_in,
        )

    def reset(self) -> None:
        self._failures = deque()
        self._opened_at = None
        self._current_reset_timeout = self.config.base_reset_timeout
        self._probe_in_flight = False
        self._generation += 1
        self._transition(CircuitState.CLOSED)

    def _before_call(self) -> int | None:
        """Gate a call. Returns the generation when this call is the recovery probe, else None."""
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - cast(float, self._opened_at)
            if elapsed < self._current_reset_timeout:
                self._reject(self._current_reset_timeout - elapsed)
            self._transition(CircuitState.HALF_OPEN)
            logger.info(f"[{self.name}] HALF_OPEN - testing service recovery")
            self._probe_in_flight = True
            return self._generation
        if self._state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                self._reject(0.0)
            # Previous probe was cancelled; this call takes over
            self._probe_in_flight = True
            return self._generation
        return None

    def _is_current_probe(self, probe_generation: int | None) -> bool:
        return probe_generation is not None and probe_generation == self._generation

    def _reject(self, retry_after: float) -> NoReturn:
        circuit_rejections_total.labels(name=self.name).inc()
        raise CircuitOpenError(self.name, retry_after, self._state)

    def _on_success(self, is_probe: bool) -> None:
        if is_probe:
            logger.info(f"[{self.name}] service recovered - CLOSED")
            self.reset()
        else:
            self._failures = purge_stale_failures(self._failures, self._clock(), self.config.failure_window)

    def _on_failure(self, is_probe: bool) -> None:
        now = self._clock()
        self._failures.append(now)
        self._failures = purge_stale_failures(self._failures, now, self.config.failure_window)
        recent = len(self._failures)
        logger.debug(f"[{self.name}] failure recorded, {recent} in window")

        if is_probe:
            self._probe_in_flight = False
            self._current_reset_timeout = next_reset_timeout(
                self._current_reset_timeout, self.config.max_reset_timeout
            )
            self._open(now)
            logger.warning(
                f"[{self.name}] recovery failed - OPEN with backoff timeout {self._current_reset_timeout:.1f}s"
            )
        elif self._state == CircuitState.CLOSED and recent >= self.config.failure_threshold:
            self._open(now)
            logger.warning(
                f"[{self.name}] failure threshold reached ({self.config.failure_threshold}) "
                f"- OPEN for {self._current_reset_timeout:.1f}s"
            )

    def _open(self, now: float) -> None:
        self._opened_at = now
        self._transition(CircuitState.OPEN)

    def _transition(self, to_state: CircuitState) -> None:
        if to_state != self._state:
            circuit_transitions_total.labels(name=self.name, to_state=to_state.value).inc()
        self._state = to_state
        circuit_state_gauge.labels(name=self.name).set(_STATE_GAUGE_VALUE[to_state])


class CircuitBreakerRegistry:
    """One breaker per guarded dependency, keyed by name."""

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self.default_config, clock=self._clock)
            self._breakers[name] = breaker
        return breaker

    def names(self) -> list[str]:
        return list(self._breakers)

    def snapshots(self) -> dict[str, CircuitSnapshot]:
        return {name: b.get_state() for name, b in self._breakers.items()}

    def reset(self, name: str) -> None:
        self._breakers[name].reset()
