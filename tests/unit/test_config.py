"""
Unit tests for configuration models and environment-driven settings.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from resilient_requests.config import (BackoffStrategy, BreakerConfig,
                                       CacheConfig, ExecutorSettings,
                                       RetryConfig, RunConfig, parse_config)
from resilient_requests.exceptions import ValidationError


@pytest.mark.unit
class TestRetryConfig:
    """Test RetryConfig defaults and constraints."""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 0.1
        assert config.max_delay == 10.0
        assert config.multiplier == 2.0
        assert config.jitter is False
        assert config.strategy == BackoffStrategy.EXPONENTIAL
        assert config.retryable == ()

    def test_is_frozen(self):
        config = RetryConfig()
        with pytest.raises(PydanticValidationError):
            config.max_attempts = 10

    def test_max_delay_below_base_delay_rejected(self):
        with pytest.raises(PydanticValidationError):
            RetryConfig(base_delay=1.0, max_delay=0.5)

    def test_strategy_accepts_string_value(self):
        assert RetryConfig(strategy="linear").strategy == BackoffStrategy.LINEAR

    def test_retryable_predicates_kept(self):
        def predicate(error):
            return isinstance(error, KeyError)

        config = RetryConfig(retryable=(predicate,))
        assert config.retryable == (predicate,)


@pytest.mark.unit
class TestRunConfig:
    """Test RunConfig composition."""

    def test_defaults(self):
        config = RunConfig()
        assert config.retry == RetryConfig()
        assert config.breaker == BreakerConfig()
        assert config.timeout == 30.0
        assert config.cache_enabled is True
        assert config.breaker_group is None
        assert config.fallback is None
        assert config.on_retry is None

    def test_timeout_may_be_disabled(self):
        assert RunConfig(timeout=None).timeout is None

    def test_timeout_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            RunConfig(timeout=0)

    def test_empty_breaker_group_rejected(self):
        with pytest.raises(PydanticValidationError):
            RunConfig(breaker_group="")


@pytest.mark.unit
class TestParseConfig:
    """Test conversion of pydantic errors into library errors."""

    def test_valid_data(self):
        config = parse_config(RetryConfig, {"max_attempts": 5, "base_delay": 0.2})
        assert config.max_attempts == 5
        assert config.base_delay == 0.2

    def test_invalid_field_reports_path(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_config(RetryConfig, {"max_attempts": 0})
        assert exc_info.value.error_paths == ["max_attempts"]
        assert isinstance(exc_info.value.__cause__, PydanticValidationError)

    def test_nested_field_reports_dotted_path(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_config(RunConfig, {"retry": {"max_attempts": 0}})
        assert exc_info.value.error_paths == ["retry.max_attempts"]

    def test_multiple_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_config(BreakerConfig, {"failure_threshold": 0, "reset_timeout": -1})
        assert sorted(exc_info.value.error_paths) == ["failure_threshold", "reset_timeout"]

    def test_model_level_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_config(RetryConfig, {"base_delay": 2.0, "max_delay": 1.0})
        assert exc_info.value.error_paths == ["__root__"]

    def test_cache_config_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            parse_config(CacheConfig, {"ttl": 0})


@pytest.mark.unit
class TestExecutorSettings:
    """Test environment-driven settings."""

    def test_defaults(self, clean_env):
        settings = ExecutorSettings()
        assert settings.max_attempts == 3
        assert settings.base_delay == 0.1
        assert settings.max_delay == 10.0
        assert settings.jitter is False
        assert settings.attempt_timeout == 30.0
        assert settings.failure_threshold == 5
        assert settings.reset_timeout == 30.0
        assert settings.cache_capacity == 1000
        assert settings.cache_ttl is None
        assert settings.history_size == 1000
        settings.validate()

    def test_reads_environment(self, clean_env):
        clean_env.setenv("RESILIENCE_MAX_ATTEMPTS", "5")
        clean_env.setenv("RESILIENCE_BASE_DELAY", "0.5")
        clean_env.setenv("RESILIENCE_JITTER", "TRUE")
        clean_env.setenv("RESILIENCE_CACHE_TTL", "60")

        settings = ExecutorSettings()
        assert settings.max_attempts == 5
        assert settings.base_delay == 0.5
        assert settings.jitter is True
        assert settings.cache_ttl == 60.0

    def test_explicit_values_override_environment(self, clean_env):
        clean_env.setenv("RESILIENCE_MAX_ATTEMPTS", "5")
        assert ExecutorSettings(max_attempts=2).max_attempts == 2

    def test_non_numeric_environment_value(self, clean_env):
        clean_env.setenv("RESILIENCE_CACHE_CAPACITY", "lots")
        with pytest.raises(ValidationError) as exc_info:
            ExecutorSettings()
        assert exc_info.value.error_paths == ["RESILIENCE_CACHE_CAPACITY"]

    @pytest.mark.parametrize(
        "overrides, path",
        [
            ({"max_attempts": 0}, "max_attempts"),
            ({"base_delay": -1.0}, "base_delay"),
            ({"base_delay": 5.0, "max_delay": 1.0}, "max_delay"),
            ({"multiplier": 0.5}, "multiplier"),
            ({"attempt_timeout": 0}, "attempt_timeout"),
            ({"failure_threshold": 0}, "failure_threshold"),
            ({"reset_timeout": -1.0}, "reset_timeout"),
            ({"cache_capacity": 0}, "cache_capacity"),
            ({"cache_ttl": -5.0}, "cache_ttl"),
            ({"history_size": -1}, "history_size"),
        ],
    )
    def test_validate_rejects_out_of_range(self, clean_env, overrides, path):
        settings = ExecutorSettings(**overrides)
        with pytest.raises(ValidationError) as exc_info:
            settings.validate()
        assert exc_info.value.error_paths == [path]

    def test_builds_models(self, clean_env):
        settings = ExecutorSettings(
            max_attempts=4, failure_threshold=2, cache_capacity=8, attempt_timeout=1.5
        )
        run_config = settings.run_config()
        assert run_config.retry.max_attempts == 4
        assert run_config.breaker.failure_threshold == 2
        assert run_config.timeout == 1.5
        assert settings.cache_config().capacity == 8
