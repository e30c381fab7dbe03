"""
Circuit breaker for failure isolation.

Stops calling an operation that keeps failing: after ``failure_threshold``
consecutive failed calls the circuit opens and calls fail fast with
``BreakerOpenError``. Once ``reset_timeout`` has elapsed a single trial call
is admitted; its outcome closes or re-opens the circuit.

States:
    CLOSED: Normal operation
        - Failed calls increment the consecutive failure counter
        - A successful call resets the counter
        - When failures >= threshold, transition to OPEN
    OPEN: Rejecting all calls
        - Calls raise BreakerOpenError without invoking the operation
        - After reset_timeout, transition to HALF_OPEN
    HALF_OPEN: Testing recovery
        - Exactly one trial call is admitted, others are rejected
        - Trial success -> CLOSED, trial failure -> OPEN (timer restarts)
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ..config import BreakerConfig
from ..exceptions import BreakerOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerState:
    """Mutable state owned by one CircuitBreaker."""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    half_open_successes: int = 0
    opened_at: float | None = None
    trial_in_flight: bool = False


class CircuitBreaker:
    """
    Circuit breaker guarding one protected operation (or key-group).

    The breaker never runs the operation itself; the executor asks
    ``acquire()`` before the first attempt and reports the terminal outcome
    of the call with ``record_success`` / ``record_failure``.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize circuit breaker.

        Args:
            name: Name for logging and diagnostics
            config: Thresholds (uses defaults if None)
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._state = BreakerState()
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        with self._lock:
            self._check_state_transition()
            return self._state.state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._state.failure_count

    def _check_state_transition(self) -> None:
        """Move OPEN -> HALF_OPEN once the reset timeout elapsed (lock held)."""
        state = self._state
        if state.state != CircuitState.OPEN or state.opened_at is None:
            return
        elapsed = self._clock() - state.opened_at
        if elapsed >= self.config.reset_timeout:
            logger.info(
                "[%s] Circuit transitioning OPEN -> HALF_OPEN after %.3fs",
                self.name,
                elapsed,
            )
            state.state = CircuitState.HALF_OPEN
            state.half_open_successes = 0
            state.trial_in_flight = False

    def _retry_after(self) -> float:
        if self._state.opened_at is None:
            return 0.0
        elapsed = self._clock() - self._state.opened_at
        return max(0.0, self.config.reset_timeout - elapsed)

    def _open(self) -> None:
        self._state.state = CircuitState.OPEN
        self._state.opened_at = self._clock()
        self._state.trial_in_flight = False

    def acquire(self) -> bool:
        """
        Ask permission to start a call.

        Returns:
            True if the call is the HALF_OPEN trial, False for a normal call

        Raises:
            BreakerOpenError: If the circuit rejects the call
        """
        with self._lock:
            self._check_state_transition()
            state = self._state

            if state.state == CircuitState.CLOSED:
                return False

            if state.state == CircuitState.HALF_OPEN and not state.trial_in_flight:
                state.trial_in_flight = True
                logger.info("[%s] Admitting HALF_OPEN trial call", self.name)
                return True

            if state.state == CircuitState.HALF_OPEN:
                retry_after = 0.0
                message = f"Circuit breaker '{self.name}' is half-open; trial call in flight"
            else:
                retry_after = self._retry_after()
                message = f"Circuit breaker '{self.name}' is open"
            failures = state.failure_count

        raise BreakerOpenError(
            message,
            breaker_name=self.name,
            retry_after=retry_after,
            context={"failure_count": failures},
        )

    def record_success(self, trial: bool = False) -> None:
        """Record a call that completed successfully."""
        with self._lock:
            state = self._state
            if state.state == CircuitState.HALF_OPEN and trial:
                state.half_open_successes += 1
                logger.info(
                    "[%s] Circuit transitioning HALF_OPEN -> CLOSED after trial success",
                    self.name,
                )
                state.state = CircuitState.CLOSED
                state.failure_count = 0
                state.opened_at = None
                state.trial_in_flight = False
            elif state.state == CircuitState.CLOSED:
                state.failure_count = 0

    def record_failure(self, error: BaseException, trial: bool = False) -> None:
        """Record a call whose terminal outcome was a failure."""
        with self._lock:
            state = self._state
            if state.state == CircuitState.HALF_OPEN and trial:
                logger.warning(
                    "[%s] Circuit transitioning HALF_OPEN -> OPEN due to failure: %s",
                    self.name,
                    error,
                )
                state.failure_count += 1
                self._open()
            elif state.state == CircuitState.CLOSED:
                state.failure_count += 1
                if state.failure_count >= self.config.failure_threshold:
                    logger.warning(
                        "[%s] Circuit transitioning CLOSED -> OPEN after %d failures",
                        self.name,
                        state.failure_count,
                    )
                    self._open()

    def release(self) -> None:
        """Give back a HALF_OPEN trial slot without an outcome (cancelled call)."""
        with self._lock:
            if self._state.state == CircuitState.HALF_OPEN:
                self._state.trial_in_flight = False

    def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED state."""
        with self._lock:
            self._state = BreakerState()
            logger.info("[%s] Circuit breaker manually reset", self.name)

    def get_state(self) -> dict[str, Any]:
        """Get current breaker state for monitoring."""
        with self._lock:
            self._check_state_transition()
            snapshot = asdict(self._state)
            snapshot["state"] = self._state.state.value
            snapshot["name"] = self.name
            snapshot["retry_after"] = (
                self._retry_after() if self._state.state == CircuitState.OPEN else 0.0
            )
            snapshot["failure_threshold"] = self.config.failure_threshold
            snapshot["reset_timeout"] = self.config.reset_timeout
            return snapshot


class BreakerRegistry:
    """
    Breakers by name, created lazily.

    A breaker keeps the configuration it was created with; later lookups with
    a different config return the existing breaker unchanged.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config, clock=self._clock)
                self._breakers[name] = breaker
                logger.debug(
                    "[%s] Circuit breaker created (threshold=%d, reset_timeout=%.3fs)",
                    name,
                    breaker.config.failure_threshold,
                    breaker.config.reset_timeout,
                )
            return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._breakers)

    def get_states(self) -> dict[str, dict[str, Any]]:
        """State of every breaker, keyed by name."""
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.get_state() for b in breakers}

    def clear(self) -> None:
        with self._lock:
            self._breakers.clear()


__all__ = ["BreakerRegistry", "BreakerState", "CircuitBreaker", "CircuitState"]
