"""
Constants for RESILIENT_REQUESTS.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability. Durations are in seconds.
"""

from typing import Final, FrozenSet

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

DEFAULT_MAX_ATTEMPTS: Final[int] = 3
"""Default number of attempts per call, including the first one."""

DEFAULT_BASE_DELAY: Final[float] = 0.1
"""Default delay before the first retry (seconds)."""

DEFAULT_MAX_DELAY: Final[float] = 10.0
"""Upper bound on any single backoff delay (seconds)."""

DEFAULT_MULTIPLIER: Final[float] = 2.0
"""Default growth factor for exponential backoff."""

MAX_ATTEMPTS_LIMIT: Final[int] = 100
"""Hard ceiling on configured attempts."""

# ============================================================================
# HTTP STATUS CLASSIFICATION
# ============================================================================

RETRYABLE_CLIENT_STATUSES: Final[FrozenSet[int]] = frozenset({408, 429})
"""4xx statuses that are transient (request timeout, too many requests)."""

CLIENT_ERROR_RANGE: Final[range] = range(400, 500)
SERVER_ERROR_RANGE: Final[range] = range(500, 600)

# ============================================================================
# CIRCUIT BREAKER CONSTANTS
# ============================================================================

DEFAULT_FAILURE_THRESHOLD: Final[int] = 5
"""Consecutive failures that open the circuit."""

DEFAULT_RESET_TIMEOUT: Final[float] = 30.0
"""Seconds a circuit stays OPEN before admitting a trial call."""

# ============================================================================
# CACHE CONSTANTS
# ============================================================================

DEFAULT_CACHE_CAPACITY: Final[int] = 1000
"""Maximum number of cached results before LRU eviction."""

DEFAULT_HISTORY_SIZE: Final[int] = 1000
"""Number of resolved call records kept for inspection."""

# ============================================================================
# TIMEOUT CONSTANTS
# ============================================================================

DEFAULT_ATTEMPT_TIMEOUT: Final[float] = 30.0
"""Default deadline for a single attempt (seconds)."""

# ============================================================================
# METRIC NAMES
# ============================================================================

METRIC_ATTEMPT: Final[str] = "resilience.attempt"
METRIC_CALL: Final[str] = "resilience.call"
METRIC_CACHE_HIT: Final[str] = "resilience.cache_hit"
METRIC_BREAKER_REJECTED: Final[str] = "resilience.breaker_rejected"
