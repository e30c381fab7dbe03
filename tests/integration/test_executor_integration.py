"""
Integration tests for ResilientExecutor.

These tests run on the real monotonic clock and real asyncio sleeps, so the
timing assertions use generous upper bounds.
"""

import asyncio
import time

import pytest

from resilient_requests import (BreakerConfig, BreakerOpenError, CacheConfig,
                                ResilientExecutor, RetryConfig, RunConfig,
                                TransportError)
from resilient_requests.observability import MetricsCollector


def new_executor(**kwargs) -> ResilientExecutor:
    return ResilientExecutor(metrics=MetricsCollector(), **kwargs)


@pytest.mark.integration
class TestResilienceScenarios:
    """End-to-end scenarios with real timers."""

    @pytest.mark.asyncio
    async def test_fail_twice_then_succeed_with_growing_delays(self):
        executor = new_executor()
        started_at = []

        async def operation():
            started_at.append(time.monotonic())
            if len(started_at) < 3:
                raise TransportError("Service unavailable", status_code=503)
            return "success"

        config = RunConfig(retry=RetryConfig(max_attempts=3, base_delay=0.1, multiplier=2.0))
        result = await executor.run("scenario", operation, config)

        assert result == "success"
        assert len(executor.get_call_record("scenario").attempts) == 3
        first_gap = started_at[1] - started_at[0]
        second_gap = started_at[2] - started_at[1]
        assert 0.09 <= first_gap < 0.5
        assert 0.19 <= second_gap < 0.6

    @pytest.mark.asyncio
    async def test_breaker_fast_fails_then_admits_one_trial(self):
        executor = new_executor()
        config = RunConfig(
            retry=RetryConfig(max_attempts=1),
            breaker=BreakerConfig(failure_threshold=2, reset_timeout=0.2),
            cache_enabled=False,
        )
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            raise TransportError("Service unavailable", status_code=503)

        for _ in range(2):
            with pytest.raises(Exception):
                await executor.run("svc", failing, config)
        assert calls == 2

        started = time.monotonic()
        with pytest.raises(BreakerOpenError):
            await executor.run("svc", failing, config)
        assert time.monotonic() - started < 0.05
        assert calls == 2

        await asyncio.sleep(0.25)

        gate = asyncio.Event()
        trial_calls = 0

        async def recovering():
            nonlocal trial_calls
            trial_calls += 1
            await gate.wait()
            return "recovered"

        grouped = config.model_copy(update={"breaker_group": "svc"})
        trial = asyncio.ensure_future(executor.run("trial-1", recovering, grouped))
        await asyncio.sleep(0.01)

        # Second caller during the trial is rejected (different key, same breaker)
        with pytest.raises(BreakerOpenError):
            await executor.run("trial-2", recovering, grouped)

        gate.set()
        assert await trial == "recovered"
        assert trial_calls == 1
        assert executor.get_breaker_state("svc")["state"] == "closed"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_invocation(self):
        executor = new_executor()
        calls = 0

        async def slow_fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return {"user": 1}

        results = await asyncio.gather(*(executor.run("user:1", slow_fetch) for _ in range(20)))

        assert calls == 1
        assert all(r == {"user": 1} for r in results)

    @pytest.mark.asyncio
    async def test_lru_evicts_least_recently_accessed(self):
        executor = new_executor(cache_config=CacheConfig(capacity=3))

        def value_of(key):
            async def operation():
                return key

            return operation

        for key in ("a", "b", "c"):
            await executor.run(key, value_of(key))
        await executor.run("a", value_of("a"))  # touch a
        await executor.run("d", value_of("d"))

        calls = []

        def tracked(key):
            async def operation():
                calls.append(key)
                return key

            return operation

        for key in ("a", "c", "d", "b"):
            await executor.run(key, tracked(key))
        assert calls == ["b"]

    @pytest.mark.asyncio
    async def test_invalidate_then_run_reinvokes(self):
        executor = new_executor()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            return calls

        assert await executor.run("k", operation) == 1
        assert await executor.run("k", operation) == 1
        executor.invalidate("k")
        assert await executor.run("k", operation) == 2

    @pytest.mark.asyncio
    async def test_slow_attempt_times_out_and_retry_succeeds(self):
        executor = new_executor()
        calls = 0

        async def sometimes_slow():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(5)
            return "fast enough"

        config = RunConfig(timeout=0.05, retry=RetryConfig(max_attempts=2, base_delay=0.01))
        started = time.monotonic()
        assert await executor.run("k", sometimes_slow, config) == "fast enough"

        assert time.monotonic() - started < 1.0
        assert calls == 2
        assert executor.pending_timers == 0
