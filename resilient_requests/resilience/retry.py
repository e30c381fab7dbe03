"""Retry decisions.

``RetryPolicy`` answers one question per failed attempt: try again, and if
so after how long. A failure is retryable when ``is_retryable_error`` or any
predicate of the ``RetryConfig`` accepts it. The default classification is:

- ``TransportError`` with a 5xx, 408 or 429 status is transient
- ``TransportError`` with any other 4xx status is permanent
- ``TransportError`` without a status (network layer) is permanent
- attempt timeouts are transient
- everything else is permanent
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Callable

from ..config import RetryConfig
from ..constants import (CLIENT_ERROR_RANGE, RETRYABLE_CLIENT_STATUSES,
                         SERVER_ERROR_RANGE)
from ..exceptions import (AttemptTimeoutError, BreakerOpenError,
                          CallCancelledError, TransportError, ValidationError)
from .backoff import compute_delay

logger = logging.getLogger(__name__)

# Never retried, whatever the configured predicates say
_NEVER_RETRIED = (BreakerOpenError, ValidationError, CallCancelledError)


def is_retryable_status(status_code: int) -> bool:
    """True for HTTP statuses worth retrying."""
    if status_code in SERVER_ERROR_RANGE:
        return True
    if status_code in CLIENT_ERROR_RANGE:
        return status_code in RETRYABLE_CLIENT_STATUSES
    return False


def is_retryable_error(error: BaseException) -> bool:
    """Default failure classification."""
    if isinstance(error, TransportError):
        if error.is_network_error:
            return False
        return is_retryable_status(error.status_code)  # type: ignore[arg-type]
    return isinstance(error, (AttemptTimeoutError, asyncio.TimeoutError, TimeoutError))


@dataclass(frozen=True)
class RetryDecision:
    """Result of ``RetryPolicy.decide``."""

    should_retry: bool
    delay: float = 0.0
    retryable: bool = False


class RetryPolicy:
    """Decides whether and when a failed attempt is retried.

    Args:
        config: Attempt limits, backoff shape and retryable predicates
        uniform: Random source for jitter
    """

    def __init__(
        self,
        config: RetryConfig,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.config = config
        self._uniform = uniform
        self._predicates = (is_retryable_error, *config.retryable)

    def is_retryable(self, error: BaseException) -> bool:
        # Cancellation and other BaseExceptions are never attempt failures
        if isinstance(error, _NEVER_RETRIED) or not isinstance(error, Exception):
            return False
        return any(predicate(error) for predicate in self._predicates)

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed attempt ``attempt``, jitter included."""
        return compute_delay(attempt, self.config, self._uniform)

    def decide(
        self, error: BaseException, attempt: int, max_attempts: int | None = None
    ) -> RetryDecision:
        """Decide what to do after attempt ``attempt`` failed with ``error``.

        ``max_attempts`` lowers the configured limit for this decision only.

        Raises:
            ValidationError: If ``attempt`` is smaller than 1
        """
        if attempt < 1:
            raise ValidationError(
                f"Attempt number must be >= 1, got {attempt}",
                error_paths=["attempt"],
            )

        retryable = self.is_retryable(error)
        if not retryable:
            logger.debug(
                "[retry] %s is not retryable (attempt %d)", type(error).__name__, attempt
            )
            return RetryDecision(should_retry=False, retryable=False)

        limit = self.config.max_attempts
        if max_attempts is not None:
            limit = min(limit, max_attempts)
        if attempt >= limit:
            return RetryDecision(should_retry=False, retryable=True)

        return RetryDecision(should_retry=True, delay=self.delay_for(attempt), retryable=True)


__all__ = [
    "RetryDecision",
    "RetryPolicy",
    "is_retryable_error",
    "is_retryable_status",
]
