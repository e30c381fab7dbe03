"""Backoff delay computation.

Delays grow with the attempt number according to a ``BackoffStrategy`` and
are always capped at ``max_delay``. Full jitter replaces the computed delay
with a uniform draw from ``[0, delay]`` so that callers failing together do
not retry together.
"""

from __future__ import annotations

import random
from typing import Callable

from ..config import BackoffStrategy, RetryConfig
from ..exceptions import ValidationError


def base_delay_for(attempt: int, config: RetryConfig) -> float:
    """Deterministic delay after failed attempt ``attempt`` (1-based).

    Raises:
        ValidationError: If ``attempt`` is smaller than 1
    """
    if attempt < 1:
        raise ValidationError(
            f"Attempt number must be >= 1, got {attempt}",
            error_paths=["attempt"],
        )

    if config.strategy == BackoffStrategy.FIXED:
        delay = config.base_delay
    elif config.strategy == BackoffStrategy.LINEAR:
        delay = config.base_delay * attempt
    else:
        try:
            delay = config.base_delay * (config.multiplier ** (attempt - 1))
        except OverflowError:
            # Growth past float range is past any max_delay
            delay = config.max_delay if config.base_delay > 0 else 0.0

    return min(config.max_delay, delay)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay to wait after failed attempt ``attempt``, jitter included.

    Args:
        attempt: Sequence number of the attempt that just failed (1-based)
        config: Retry configuration
        uniform: Random source, replaceable for deterministic tests
    """
    delay = base_delay_for(attempt, config)
    if config.jitter or config.strategy == BackoffStrategy.EXPONENTIAL_JITTER:
        return uniform(0.0, delay)
    return delay


__all__ = ["base_delay_for", "compute_delay"]
