"""
Configuration management for RESILIENT_REQUESTS.

Call-level configuration is expressed as frozen Pydantic models so that a
config object can be shared between concurrent calls without copying.
``ExecutorSettings`` reads process-wide defaults from environment variables;
it is optional - ``ResilientExecutor`` can still be built from explicit
models.
"""

import os
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .constants import (DEFAULT_ATTEMPT_TIMEOUT, DEFAULT_BASE_DELAY,
                        DEFAULT_CACHE_CAPACITY, DEFAULT_FAILURE_THRESHOLD,
                        DEFAULT_HISTORY_SIZE, DEFAULT_MAX_ATTEMPTS,
                        DEFAULT_MAX_DELAY, DEFAULT_MULTIPLIER,
                        DEFAULT_RESET_TIMEOUT, MAX_ATTEMPTS_LIMIT)
from .exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

RetryPredicate = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException, float], None]
Fallback = Callable[[BaseException], Any]


class BackoffStrategy(str, Enum):
    """How the delay between attempts grows."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


class RetryConfig(BaseModel):
    """
    Retry and backoff configuration.

    ``retryable`` holds extra predicates for failures worth retrying. An
    error is retryable when the default classification (see
    ``is_retryable_error``) or any of these predicates accepts it.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_attempts: int = Field(
        DEFAULT_MAX_ATTEMPTS,
        ge=1,
        le=MAX_ATTEMPTS_LIMIT,
        description="Maximum number of attempts, including the first one",
    )
    base_delay: float = Field(
        DEFAULT_BASE_DELAY, ge=0, description="Delay before the first retry (seconds)"
    )
    max_delay: float = Field(
        DEFAULT_MAX_DELAY, ge=0, description="Upper bound on any single delay (seconds)"
    )
    multiplier: float = Field(
        DEFAULT_MULTIPLIER, ge=1.0, description="Growth factor for exponential backoff"
    )
    jitter: bool = Field(False, description="Apply full jitter to computed delays")
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retryable: Tuple[RetryPredicate, ...] = ()

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) cannot be smaller than "
                f"base_delay ({self.base_delay})"
            )
        return self


class BreakerConfig(BaseModel):
    """Circuit breaker thresholds."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(
        DEFAULT_FAILURE_THRESHOLD,
        ge=1,
        description="Consecutive failures that open the circuit",
    )
    reset_timeout: float = Field(
        DEFAULT_RESET_TIMEOUT,
        ge=0,
        description="Seconds the circuit stays OPEN before a trial call",
    )


class CacheConfig(BaseModel):
    """Result cache sizing."""

    model_config = ConfigDict(frozen=True)

    capacity: int = Field(DEFAULT_CACHE_CAPACITY, ge=1)
    ttl: Optional[float] = Field(None, gt=0, description="Entry lifetime (seconds)")
    copy_values: bool = Field(True, description="Deep-copy values on set and get")


class RunConfig(BaseModel):
    """
    Per-call configuration accepted by ``ResilientExecutor.run``.

    ``breaker_group`` partitions breakers: calls sharing a group share one
    breaker. When unset, each key has its own breaker. The breaker settings
    of the first call that creates a breaker are the ones it keeps.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    timeout: Optional[float] = Field(
        DEFAULT_ATTEMPT_TIMEOUT, gt=0, description="Per-attempt deadline (seconds)"
    )
    cache_enabled: bool = True
    breaker_group: Optional[str] = Field(None, min_length=1)
    fallback: Optional[Fallback] = None
    on_retry: Optional[RetryHook] = None


def parse_config(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """
    Build a configuration model from a plain dictionary.

    Args:
        model: Model class to build (RetryConfig, RunConfig, ...)
        data: Raw field values

    Returns:
        Validated, frozen model instance

    Raises:
        ValidationError: If any field is invalid
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        error_paths = [".".join(str(part) for part in err["loc"]) or "__root__"
                       for err in e.errors()]
        raise ValidationError(
            f"Invalid {model.__name__}: {e.error_count()} error(s)",
            error_paths=error_paths,
        ) from e


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(
            f"Environment variable {name} must be a number, got {raw!r}",
            error_paths=[name],
        ) from e


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(
            f"Environment variable {name} must be an integer, got {raw!r}",
            error_paths=[name],
        ) from e


class ExecutorSettings:
    """
    Process-wide executor defaults.

    This class provides configuration management with environment variable
    support. It's optional - ResilientExecutor can still be initialized with
    explicit configuration models.

    Example:
        # Using environment variables
        settings = ExecutorSettings()
        executor = ResilientExecutor.from_settings(settings)

        # Or overriding some values
        settings = ExecutorSettings(max_attempts=5, cache_capacity=64)
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
        jitter: Optional[bool] = None,
        attempt_timeout: Optional[float] = None,
        failure_threshold: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        cache_capacity: Optional[int] = None,
        cache_ttl: Optional[float] = None,
        history_size: Optional[int] = None,
    ):
        """
        Initialize settings.

        Args:
            max_attempts: Attempts per call (defaults to RESILIENCE_MAX_ATTEMPTS or 3)
            base_delay: First retry delay in seconds (RESILIENCE_BASE_DELAY or 0.1)
            max_delay: Delay cap in seconds (RESILIENCE_MAX_DELAY or 10)
            multiplier: Exponential growth factor (RESILIENCE_MULTIPLIER or 2)
            jitter: Full jitter on/off (RESILIENCE_JITTER, "true"/"false")
            attempt_timeout: Per-attempt deadline (RESILIENCE_ATTEMPT_TIMEOUT or 30)
            failure_threshold: Breaker threshold (RESILIENCE_FAILURE_THRESHOLD or 5)
            reset_timeout: Breaker reset timeout (RESILIENCE_RESET_TIMEOUT or 30)
            cache_capacity: Cache entries (RESILIENCE_CACHE_CAPACITY or 1000)
            cache_ttl: Cache TTL in seconds (RESILIENCE_CACHE_TTL, unset = no TTL)
            history_size: Call records kept (RESILIENCE_HISTORY_SIZE or 1000)
        """
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else _env_int("RESILIENCE_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))
        )
        self.base_delay = (
            base_delay
            if base_delay is not None
            else _env_float("RESILIENCE_BASE_DELAY", str(DEFAULT_BASE_DELAY))
        )
        self.max_delay = (
            max_delay
            if max_delay is not None
            else _env_float("RESILIENCE_MAX_DELAY", str(DEFAULT_MAX_DELAY))
        )
        self.multiplier = (
            multiplier
            if multiplier is not None
            else _env_float("RESILIENCE_MULTIPLIER", str(DEFAULT_MULTIPLIER))
        )
        self.jitter = (
            jitter
            if jitter is not None
            else os.getenv("RESILIENCE_JITTER", "false").lower() == "true"
        )
        self.attempt_timeout = (
            attempt_timeout
            if attempt_timeout is not None
            else _env_float("RESILIENCE_ATTEMPT_TIMEOUT", str(DEFAULT_ATTEMPT_TIMEOUT))
        )
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else _env_int("RESILIENCE_FAILURE_THRESHOLD", str(DEFAULT_FAILURE_THRESHOLD))
        )
        self.reset_timeout = (
            reset_timeout
            if reset_timeout is not None
            else _env_float("RESILIENCE_RESET_TIMEOUT", str(DEFAULT_RESET_TIMEOUT))
        )
        self.cache_capacity = (
            cache_capacity
            if cache_capacity is not None
            else _env_int("RESILIENCE_CACHE_CAPACITY", str(DEFAULT_CACHE_CAPACITY))
        )
        if cache_ttl is not None:
            self.cache_ttl: Optional[float] = cache_ttl
        else:
            raw_ttl = os.getenv("RESILIENCE_CACHE_TTL", "")
            self.cache_ttl = _env_float("RESILIENCE_CACHE_TTL", raw_ttl) if raw_ttl else None
        self.history_size = (
            history_size
            if history_size is not None
            else _env_int("RESILIENCE_HISTORY_SIZE", str(DEFAULT_HISTORY_SIZE))
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValidationError: If any value is out of range
        """
        if not 1 <= self.max_attempts <= MAX_ATTEMPTS_LIMIT:
            raise ValidationError(
                f"max_attempts must be between 1 and {MAX_ATTEMPTS_LIMIT}, "
                f"got {self.max_attempts}",
                error_paths=["max_attempts"],
            )

        if self.base_delay < 0:
            raise ValidationError(
                f"base_delay must be >= 0, got {self.base_delay}",
                error_paths=["base_delay"],
            )

        if self.max_delay < self.base_delay:
            raise ValidationError(
                f"max_delay ({self.max_delay}) cannot be smaller than "
                f"base_delay ({self.base_delay})",
                error_paths=["max_delay"],
            )

        if self.multiplier < 1:
            raise ValidationError(
                f"multiplier must be >= 1, got {self.multiplier}",
                error_paths=["multiplier"],
            )

        if self.attempt_timeout <= 0:
            raise ValidationError(
                f"attempt_timeout must be > 0, got {self.attempt_timeout}",
                error_paths=["attempt_timeout"],
            )

        if self.failure_threshold < 1:
            raise ValidationError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}",
                error_paths=["failure_threshold"],
            )

        if self.reset_timeout < 0:
            raise ValidationError(
                f"reset_timeout must be >= 0, got {self.reset_timeout}",
                error_paths=["reset_timeout"],
            )

        if self.cache_capacity < 1:
            raise ValidationError(
                f"cache_capacity must be >= 1, got {self.cache_capacity}",
                error_paths=["cache_capacity"],
            )

        if self.cache_ttl is not None and self.cache_ttl <= 0:
            raise ValidationError(
                f"cache_ttl must be > 0 when set, got {self.cache_ttl}",
                error_paths=["cache_ttl"],
            )

        if self.history_size < 0:
            raise ValidationError(
                f"history_size must be >= 0, got {self.history_size}",
                error_paths=["history_size"],
            )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )

    def breaker_config(self) -> BreakerConfig:
        return BreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(capacity=self.cache_capacity, ttl=self.cache_ttl)

    def run_config(self) -> RunConfig:
        """Default RunConfig derived from these settings."""
        return RunConfig(
            retry=self.retry_config(),
            breaker=self.breaker_config(),
            timeout=self.attempt_timeout,
        )
