"""
Circuit breaker for calls to a single external system.

CLOSED counts outcomes over a rolling window and opens when the failure
percentage exceeds the threshold. OPEN rejects calls until the reset timeout
elapses, then HALF_OPEN admits a single trial call.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

import anyio

from interop_gateway.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold_percent: float = 50.0
    rolling_window: int = 20
    minimum_requests: int = 5
    reset_timeout: float = 60.0  # seconds


@dataclass
class CircuitBreakerState:
    """Point-in-time view of a breaker, for monitoring."""

    name: str
    state: CircuitState
    consecutive_failures: int
    failure_rate: float
    window_size: int
    opened_at: Optional[float]

    def to_dict(self):
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "failure_rate": round(self.failure_rate, 2),
            "window_size": self.window_size,
            "opened_at": self.opened_at,
        }


class CircuitBreaker:
    """
    Percentage-based circuit breaker.

    State transitions happen under an ``anyio.Lock``; the guarded call itself
    runs outside the lock so concurrent callers are not serialized.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        is_failure: Callable[[BaseException], bool] = lambda exc: True,
    ):
        """
        Args:
            name: Name used in logs and errors
            config: Thresholds and timeouts
            clock: Monotonic time source
            is_failure: Decides whether an exception counts against the
                system; exceptions it rejects are recorded as successes
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._is_failure = is_failure
        self._state = CircuitState.CLOSED
        self._outcomes: Deque[bool] = deque(maxlen=self.config.rolling_window)
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = anyio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state. An expired OPEN reports HALF_OPEN."""
        if self._state == CircuitState.OPEN and self._reset_timeout_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        failures = sum(1 for ok in self._outcomes if not ok)
        return failures * 100.0 / len(self._outcomes)

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            state=self.state,
            consecutive_failures=self._consecutive_failures,
            failure_rate=self.failure_rate,
            window_size=len(self._outcomes),
            opened_at=self._opened_at,
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run ``func`` if the breaker admits it and record the outcome.

        Raises:
            CircuitOpenError: If the breaker is open or a half-open trial is
                already running; ``func`` is not invoked
        """
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except anyio.get_cancelled_exc_class():
            with anyio.CancelScope(shield=True):
                await self._abandon()
            raise
        except Exception as exc:
            if self._is_failure(exc):
                await self._record_failure()
            else:
                await self._record_success()
            raise
        await self._record_success()
        return result

    def _reset_timeout_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.config.reset_timeout

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._reset_timeout_elapsed():
                    retry_after = self.config.reset_timeout - (self._clock() - self._opened_at)
                    raise CircuitOpenError(self.name, retry_after)
                self._transition_to(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    logger.warning("Circuit breaker %s is HALF_OPEN - trial already running", self.name)
                    raise CircuitOpenError(self.name)
                self._trial_in_flight = True

    async def _record_success(self) -> None:
        async with self._lock:
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            else:
                self._outcomes.append(True)

    async def _record_failure(self) -> None:
        async with self._lock:
            self._consecutive_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                return

            self._outcomes.append(False)
            if len(self._outcomes) >= self.config.minimum_requests and (
                self.failure_rate > self.config.failure_threshold_percent
            ):
                logger.warning(
                    "Failure rate for %s is %.1f%% over %d calls",
                    self.name,
                    self.failure_rate,
                    len(self._outcomes),
                )
                self._transition_to(CircuitState.OPEN)

    async def _abandon(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._trial_in_flight = False

        if new_state == CircuitState.CLOSED:
            self._outcomes.clear()
            self._opened_at = None
            logger.info("Circuit breaker %s CLOSED - normal operation resumed", self.name)
        elif new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.error(
                "Circuit breaker %s OPEN (was %s) - will retry after %ds",
                self.name,
                old_state.value,
                self.config.reset_timeout,
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker %s HALF_OPEN - testing recovery", self.name)

    async def reset(self) -> None:
        """Manually close the breaker."""
        async with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._consecutive_failures = 0
