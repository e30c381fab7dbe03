"""
RESILIENT_REQUESTS - Resilient Request Execution Layer

Wraps async operations (typically network calls) with retry and backoff,
circuit breaking, in-flight deduplication, LRU result caching and
per-attempt timeouts.
"""

# Core executor
from .core import Attempt, CallRecord, Outcome, ResilientExecutor  # isort: skip
# Result cache
from .cache import MISSING, ResultCache
# Configuration
from .config import (BackoffStrategy, BreakerConfig, CacheConfig,
                     ExecutorSettings, RetryConfig, RunConfig, parse_config)
# Errors
from .exceptions import (AttemptTimeoutError, BreakerOpenError,
                         CallCancelledError, ResilienceError,
                         RetriesExhaustedError, TransportError,
                         ValidationError)
# Resilience primitives
from .resilience import (CircuitBreaker, CircuitState, Deduplicator,
                         RetryDecision, RetryPolicy, TimeoutController,
                         is_retryable_error)

__version__ = "0.1.0"

__all__ = [
    # Core
    "ResilientExecutor",
    "Attempt",
    "CallRecord",
    "Outcome",
    # Config
    "BackoffStrategy",
    "BreakerConfig",
    "CacheConfig",
    "ExecutorSettings",
    "RetryConfig",
    "RunConfig",
    "parse_config",
    # Errors
    "ResilienceError",
    "TransportError",
    "AttemptTimeoutError",
    "BreakerOpenError",
    "RetriesExhaustedError",
    "ValidationError",
    "CallCancelledError",
    # Components
    "MISSING",
    "ResultCache",
    "CircuitBreaker",
    "CircuitState",
    "Deduplicator",
    "RetryDecision",
    "RetryPolicy",
    "TimeoutController",
    "is_retryable_error",
]
