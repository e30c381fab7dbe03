"""
Executor

The orchestration layer of RESILIENT_REQUESTS. ``ResilientExecutor.run``
wraps a caller-supplied async operation with:
- In-flight deduplication (one execution per key at a time)
- LRU result caching
- Circuit breaking (per key or per breaker group)
- Retry with backoff and per-attempt timeouts
- Optional fallback values

This module is part of RESILIENT_REQUESTS - Resilient Request Execution Layer.
"""

import asyncio
import copy
import functools
import inspect
import logging
import random
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Dict, List, Optional, TypeVar

from tenacity import (AsyncRetrying, RetryCallState, retry_if_exception,
                      stop_after_attempt)

from ..cache import MISSING, ResultCache
from ..config import (CacheConfig, ExecutorSettings, RunConfig,
                      parse_config)
from ..constants import (DEFAULT_HISTORY_SIZE, METRIC_ATTEMPT,
                         METRIC_BREAKER_REJECTED, METRIC_CACHE_HIT,
                         METRIC_CALL)
from ..exceptions import (BreakerOpenError, CallCancelledError,
                          RetriesExhaustedError, ValidationError)
from ..observability import (HealthChecker, MetricsCollector,
                             bind_call_context, call_context,
                             check_breaker_health, check_cache_health,
                             clear_call_context, get_metrics_collector,
                             log_operation)
from ..observability import get_logger as get_contextual_logger
from ..resilience import (BreakerRegistry, CircuitBreaker, Deduplicator,
                          RetryPolicy, TimeoutController)
from ..utils import make_key, validate_key
from .types import CallRecord, Outcome

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]


class ResilientExecutor:
    """
    Runs keyed async operations with stacked resilience behaviours.

    For every ``run(key, operation, config)``:

    1. A call already in flight for ``key`` is joined; the caller receives
       the leader's outcome and the operation is not invoked again.
    2. A cached result for ``key`` is returned as a copy.
    3. Otherwise the caller leads: the circuit breaker is consulted, the
       operation runs under the retry policy with a deadline per attempt,
       and the terminal outcome updates the breaker, fills the cache and
       resolves every follower.

    All state is in memory and bound to the event loop the calls run on.
    """

    def __init__(
        self,
        cache_config: Optional[CacheConfig] = None,
        default_config: Optional[RunConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
        metrics: Optional[MetricsCollector] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """
        Initialize the executor.

        Args:
            cache_config: Result cache capacity and TTL (defaults if None)
            default_config: RunConfig used when ``run`` gets none
            clock: Monotonic time source in seconds, shared by the cache,
                breakers and attempt timing
            sleep: Coroutine function used for backoff waits
            uniform: Random source for jitter
            metrics: Metrics collector (the global collector if None)
            history_size: Resolved call records kept for ``get_call_record``
        """
        if history_size < 0:
            raise ValidationError(
                f"history_size must be >= 0, got {history_size}",
                error_paths=["history_size"],
            )

        self.default_config = default_config or RunConfig()
        self._clock = clock
        self._sleep = sleep
        self._uniform = uniform
        self._metrics = metrics if metrics is not None else get_metrics_collector()

        self._cache = ResultCache(cache_config, clock=clock)
        self._breakers = BreakerRegistry(clock=clock)
        self._dedup = Deduplicator()
        self._timeouts = TimeoutController()

        self._history: OrderedDict[str, CallRecord] = OrderedDict()
        self._history_size = history_size
        # Breaker name last used by each key, for get_breaker_state(key)
        self._breaker_names: Dict[str, str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: Optional[ExecutorSettings] = None, **kwargs: Any
    ) -> "ResilientExecutor":
        """
        Build an executor from environment-driven settings.

        Args:
            settings: Settings to use (read from the environment if None)
            **kwargs: Extra constructor arguments (clock, sleep, metrics, ...)

        Returns:
            Configured ResilientExecutor

        Raises:
            ValidationError: If the settings are out of range
        """
        settings = settings or ExecutorSettings()
        settings.validate()
        return cls(
            cache_config=settings.cache_config(),
            default_config=settings.run_config(),
            history_size=settings.history_size,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Primary entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        key: str,
        operation: Operation,
        config: Optional[RunConfig | Dict[str, Any]] = None,
    ) -> Any:
        """
        Execute ``operation`` for ``key`` with retry, breaking, dedup and caching.

        Args:
            key: Identity of the logical request
            operation: Zero-argument callable returning an awaitable
            config: RunConfig, a plain dict of RunConfig fields, or None for
                the executor default

        Returns:
            The operation's value (or a copy of the cached value, or the
            fallback's value)

        Raises:
            ValidationError: If the key, operation or config is invalid
            BreakerOpenError: If the circuit rejected the call
            RetriesExhaustedError: If every attempt failed with a retryable error
            CallCancelledError: If this caller followed a leader that was cancelled
            Exception: A non-retryable failure of the operation, as raised
        """
        validate_key(key)
        if not callable(operation):
            raise ValidationError(
                f"Operation must be callable, got {type(operation).__name__}",
                error_paths=["operation"],
            )
        config = self._resolve_config(config)

        # No await between the in-flight check, the cache lookup and the join
        if config.cache_enabled and not self._dedup.is_in_flight(key):
            cached = self._cache.get(key)
            if cached is not MISSING:
                self._metrics.record_operation(METRIC_CACHE_HIT, 0.0, True)
                contextual_logger.debug("Cache hit for %s", key)
                return cached

        membership = self._dedup.acquire_or_join(key)
        if not membership.is_leader:
            return await self._dedup.wait(membership)

        record = membership.record
        with call_context(key):
            try:
                outcome = await self._lead(record, operation, config)
            except asyncio.CancelledError:
                contextual_logger.info("Leader for %s cancelled; releasing followers", key)
                self._dedup.resolve(
                    record,
                    Outcome.failure(
                        CallCancelledError(f"Call '{key}' was cancelled by its leader", key=key)
                    ),
                )
                self._remember(record)
                raise
            except Exception as e:
                # Failure outside the operation (on_retry hook, sleep): followers
                # must still be released
                self._dedup.resolve(record, Outcome.failure(e))
                self._remember(record)
                raise

        self._dedup.resolve(record, outcome)
        self._remember(record)
        return outcome.unwrap()

    def _resolve_config(self, config: Optional[RunConfig | Dict[str, Any]]) -> RunConfig:
        if config is None:
            return self.default_config
        if isinstance(config, RunConfig):
            return config
        if isinstance(config, Mapping):
            return parse_config(RunConfig, dict(config))
        raise ValidationError(
            f"config must be a RunConfig or a dict, got {type(config).__name__}",
            error_paths=["config"],
        )

    async def _lead(self, record: CallRecord, operation: Operation, config: RunConfig) -> Outcome:
        """Run the call as its leader and return the terminal outcome."""
        breaker_name = config.breaker_group or record.key
        breaker = self._breakers.get_or_create(breaker_name, config.breaker)
        record.breaker_name = breaker_name
        with self._lock:
            self._breaker_names[record.key] = breaker_name

        started = self._clock()
        try:
            trial = breaker.acquire()
        except BreakerOpenError as e:
            self._metrics.record_operation(
                METRIC_BREAKER_REJECTED, 0.0, False, breaker=breaker_name
            )
            contextual_logger.warning(
                "Call %s rejected by circuit breaker %s", record.key, breaker_name
            )
            return await self._finish(record, Outcome.failure(e), config, started)

        policy = RetryPolicy(config.retry, uniform=self._uniform)
        try:
            # A HALF_OPEN trial is exactly one invocation
            outcome = await self._attempt_loop(
                record, operation, config, policy, max_attempts=1 if trial else None
            )
        except (asyncio.CancelledError, Exception):
            if trial:
                breaker.release()
            raise

        if outcome.ok:
            breaker.record_success(trial=trial)
        elif isinstance(outcome.error, CallCancelledError):
            if trial:
                breaker.release()
        else:
            breaker.record_failure(outcome.error, trial=trial)

        return await self._finish(record, outcome, config, started)

    async def _attempt_loop(
        self,
        record: CallRecord,
        operation: Operation,
        config: RunConfig,
        policy: RetryPolicy,
        max_attempts: Optional[int],
    ) -> Outcome:
        """
        Drive the attempts with tenacity and fold the result into an Outcome.

        Operation failures become failed outcomes: exhausted retryable errors
        are wrapped in RetriesExhaustedError, anything else is kept as raised.
        Failures of the on_retry hook or of the backoff sleep propagate.
        """
        limit = config.retry.max_attempts
        if max_attempts is not None:
            limit = min(limit, max_attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(limit),
            wait=lambda state: policy.delay_for(state.attempt_number),
            retry=retry_if_exception(policy.is_retryable),
            sleep=self._sleep,
            before_sleep=functools.partial(self._before_retry, record, config),
            reraise=True,
        )

        state: Optional[RetryCallState] = None
        try:
            async for attempt_manager in retrying:
                state = attempt_manager.retry_state
                with attempt_manager:
                    value = await self._run_attempt(record, operation, config)
        except Exception as e:
            if state is None or state.outcome is None or state.outcome.exception() is not e:
                raise
            if not policy.is_retryable(e):
                return Outcome.failure(e)
            return Outcome.failure(
                RetriesExhaustedError(
                    f"All {state.attempt_number} attempt(s) failed for '{record.key}'",
                    attempts=state.attempt_number,
                    last_error=e,
                )
            )

        return Outcome.success(value)

    async def _run_attempt(self, record: CallRecord, operation: Operation, config: RunConfig) -> Any:
        attempt = record.start_attempt(self._clock())
        token = bind_call_context(attempt=attempt.sequence, breaker=record.breaker_name)
        try:
            value = await self._timeouts.run(operation, config.timeout)
        except asyncio.CancelledError:
            attempt.finish(
                self._clock(),
                error=CallCancelledError("Attempt cancelled", key=record.key),
            )
            raise
        except Exception as e:
            attempt.finish(self._clock(), error=e)
            self._record_attempt(attempt.duration, False)
            raise
        finally:
            clear_call_context(token)

        attempt.finish(self._clock(), value=value)
        self._record_attempt(attempt.duration, True)
        return value

    def _before_retry(self, record: CallRecord, config: RunConfig, state: RetryCallState) -> None:
        error = state.outcome.exception()
        delay = state.next_action.sleep
        if config.on_retry is not None:
            config.on_retry(state.attempt_number, error, delay)
        contextual_logger.info(
            "Attempt %d for %s failed (%s); retrying in %.3fs",
            state.attempt_number,
            record.key,
            type(error).__name__,
            delay,
            extra={"attempt": state.attempt_number},
        )

    async def _finish(
        self, record: CallRecord, outcome: Outcome, config: RunConfig, started: float
    ) -> Outcome:
        """Cache a success or apply the fallback, then log and record metrics."""
        if outcome.ok:
            if config.cache_enabled and not record.detached:
                self._store(record.key, outcome.value)
        elif config.fallback is not None and not isinstance(outcome.error, ValidationError):
            outcome = await self._apply_fallback(record, outcome, config)

        duration_ms = (self._clock() - started) * 1000
        self._metrics.record_operation(METRIC_CALL, duration_ms, outcome.ok)
        log_operation(
            contextual_logger,
            "resilience.run",
            level=logging.INFO if outcome.ok else logging.WARNING,
            success=outcome.ok,
            duration_ms=duration_ms,
            attempts=len(record.attempts),
            followers=record.followers,
            breaker=record.breaker_name,
            fallback=record.served_from_fallback,
            error=type(outcome.error).__name__ if outcome.error else None,
        )
        return outcome

    def _store(self, key: str, value: Any) -> None:
        try:
            self._cache.set(key, value)
        except (TypeError, copy.Error) as e:
            logger.warning("Result for %s is not copyable and was not cached: %s", key, e)

    async def _apply_fallback(
        self, record: CallRecord, outcome: Outcome, config: RunConfig
    ) -> Outcome:
        try:
            value = config.fallback(outcome.error)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            logger.warning(
                "Fallback for %s failed (%s); surfacing the original error",
                record.key,
                e,
                exc_info=True,
            )
            return outcome
        record.served_from_fallback = True
        contextual_logger.info(
            "Serving fallback value for %s after %s", record.key, type(outcome.error).__name__
        )
        return Outcome.success(value)

    def _record_attempt(self, duration: Optional[float], success: bool) -> None:
        self._metrics.record_operation(METRIC_ATTEMPT, (duration or 0.0) * 1000, success)

    def _remember(self, record: CallRecord) -> None:
        if self._history_size == 0:
            return
        snapshot = record.snapshot()
        with self._lock:
            self._history[record.key] = snapshot
            self._history.move_to_end(record.key)
            while len(self._history) > self._history_size:
                self._history.popitem(last=False)

    # ------------------------------------------------------------------
    # Management operations
    # ------------------------------------------------------------------

    def invalidate(self, key: str) -> bool:
        """
        Forget ``key``: drop its cached result and detach any in-flight call.

        A detached call keeps running and its followers still get its
        outcome, but the result is not cached and the next ``run`` for
        ``key`` invokes the operation again.

        Args:
            key: Key to invalidate

        Returns:
            True if a cache entry or an in-flight call was affected
        """
        validate_key(key)
        removed = self._cache.invalidate(key)
        detached = self._dedup.detach(key)
        if removed or detached:
            logger.debug("Invalidated %s (cached=%s, in_flight=%s)", key, removed, detached)
        return removed or detached

    def get_breaker_state(self, key: str) -> Dict[str, Any]:
        """
        State of the breaker guarding ``key``.

        A key that has never run reports a fresh CLOSED breaker.

        Args:
            key: Call key (resolved to its breaker group if it used one)

        Returns:
            Dictionary with ``state``, ``failure_count``, ``retry_after``, ...
        """
        with self._lock:
            name = self._breaker_names.get(key, key)
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, self.default_config.breaker, clock=self._clock)
        return breaker.get_state()

    def get_breaker_states(self) -> Dict[str, Dict[str, Any]]:
        """State of every breaker created so far, keyed by breaker name."""
        return self._breakers.get_states()

    def get_cache_stats(self) -> Dict[str, Any]:
        """Cache size, capacity and hit/miss/eviction counters."""
        return self._cache.stats()

    def get_call_record(self, key: str) -> Optional[CallRecord]:
        """Most recently resolved call record for ``key``, if still retained."""
        with self._lock:
            return self._history.get(key)

    def in_flight(self) -> List[str]:
        """Keys with a call currently in flight."""
        return self._dedup.keys()

    @property
    def pending_timers(self) -> int:
        """Per-attempt deadline timers currently armed."""
        return self._timeouts.pending_timers

    def reset(self) -> None:
        """Clear the cache, the breakers and the call history."""
        self._cache.clear()
        self._breakers.clear()
        with self._lock:
            self._history.clear()
            self._breaker_names.clear()
        logger.info("Executor state reset")

    def get_metrics(self) -> Dict[str, Any]:
        """Summary of the attempt, call, cache-hit and rejection metrics."""
        return self._metrics.get_summary()

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Get health status of the executor.

        Returns:
            Dictionary with overall status and component checks
        """
        health_checker = HealthChecker()
        health_checker.register_check(lambda: check_breaker_health(self))
        health_checker.register_check(lambda: check_cache_health(self))
        return await health_checker.check_all()

    # ------------------------------------------------------------------
    # Batch and decorator helpers
    # ------------------------------------------------------------------

    async def run_many(
        self,
        calls: Mapping[str, Operation],
        config: Optional[RunConfig | Dict[str, Any]] = None,
    ) -> Dict[str, Outcome]:
        """
        Run several keyed operations concurrently.

        Failures do not abort the batch: every key gets its own Outcome.

        Args:
            calls: Mapping of key to operation
            config: RunConfig applied to every call

        Returns:
            Mapping of key to Outcome, in the order of ``calls``
        """
        keys = list(calls)

        async def settle(key: str) -> Outcome:
            try:
                return Outcome.success(await self.run(key, calls[key], config))
            except Exception as e:
                return Outcome.failure(e)

        outcomes = await asyncio.gather(*(settle(key) for key in keys))
        succeeded = sum(1 for o in outcomes if o.ok)
        logger.debug("Batch finished: %d/%d succeeded", succeeded, len(keys))
        return dict(zip(keys, outcomes))

    def cached(
        self,
        key_func: Optional[Callable[..., str]] = None,
        config: Optional[RunConfig | Dict[str, Any]] = None,
    ) -> Callable:
        """
        Decorator memoizing an async function through ``run``.

        Usage:
            @executor.cached()
            async def fetch_user(user_id):
                ...

        Args:
            key_func: Builds the call key from the function's arguments
                (a hash of the arguments by default)
            config: RunConfig for every call

        Returns:
            Decorator; the wrapped function gains an ``invalidate(*args,
            **kwargs)`` attribute
        """

        def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            if not inspect.iscoroutinefunction(func):
                raise ValidationError(
                    f"cached() requires an async function, got {func!r}",
                    error_paths=["func"],
                )
            prefix = f"{func.__module__}.{func.__qualname__}"

            def build_key(*args: Any, **kwargs: Any) -> str:
                if key_func is not None:
                    return key_func(*args, **kwargs)
                return make_key(prefix, *args, **kwargs)

            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                return await self.run(
                    build_key(*args, **kwargs), functools.partial(func, *args, **kwargs), config
                )

            wrapper.invalidate = lambda *args, **kwargs: self.invalidate(  # type: ignore[attr-defined]
                build_key(*args, **kwargs)
            )
            return wrapper

        return decorator
