"""
Resilience primitives.

Retry classification and backoff, circuit breaking, in-flight deduplication
and per-attempt timeouts. ``ResilientExecutor`` composes them; each can also
be used on its own.
"""

from .backoff import base_delay_for, compute_delay
from .circuit_breaker import (BreakerRegistry, BreakerState, CircuitBreaker,
                              CircuitState)
from .deduplication import Deduplicator, Membership
from .retry import (RetryDecision, RetryPolicy, is_retryable_error,
                    is_retryable_status)
from .timeout import TimeoutController, TimerHandle, schedule_after

__all__ = [
    # Backoff
    "base_delay_for",
    "compute_delay",
    # Retry
    "RetryDecision",
    "RetryPolicy",
    "is_retryable_error",
    "is_retryable_status",
    # Circuit breaker
    "BreakerRegistry",
    "BreakerState",
    "CircuitBreaker",
    "CircuitState",
    # Deduplication
    "Deduplicator",
    "Membership",
    # Timeout
    "TimeoutController",
    "TimerHandle",
    "schedule_after",
]
