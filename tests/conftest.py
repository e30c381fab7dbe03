"""
Pytest configuration and shared fixtures for RESILIENT_REQUESTS tests.

This module provides:
- A controllable monotonic clock
- A recording replacement for asyncio.sleep used by backoff waits
- Executor fixtures wired to both
- Operation factories (flaky, slow, counting)
"""

import asyncio
from typing import Any, Callable, List

import pytest

from resilient_requests import ResilientExecutor
from resilient_requests.observability import MetricsCollector

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no real waiting")
    config.addinivalue_line("markers", "integration: scenario tests using real timers")


# ============================================================================
# TIME FIXTURES
# ============================================================================


class FakeClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Records backoff delays instead of waiting; advances the fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.clock.advance(delay)
        # Still yield so other tasks make progress during "waits"
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep(fake_clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(fake_clock)


# ============================================================================
# EXECUTOR FIXTURES
# ============================================================================


@pytest.fixture
def metrics() -> MetricsCollector:
    """Isolated metrics collector (the global one is shared across tests)."""
    return MetricsCollector()


@pytest.fixture
def executor(
    fake_clock: FakeClock, recording_sleep: RecordingSleep, metrics: MetricsCollector
) -> ResilientExecutor:
    """Executor on the fake clock; backoff waits are recorded, not slept."""
    return ResilientExecutor(clock=fake_clock, sleep=recording_sleep, metrics=metrics)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every RESILIENCE_* variable so settings fall back to defaults."""
    for name in (
        "RESILIENCE_MAX_ATTEMPTS",
        "RESILIENCE_BASE_DELAY",
        "RESILIENCE_MAX_DELAY",
        "RESILIENCE_MULTIPLIER",
        "RESILIENCE_JITTER",
        "RESILIENCE_ATTEMPT_TIMEOUT",
        "RESILIENCE_FAILURE_THRESHOLD",
        "RESILIENCE_RESET_TIMEOUT",
        "RESILIENCE_CACHE_CAPACITY",
        "RESILIENCE_CACHE_TTL",
        "RESILIENCE_HISTORY_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ============================================================================
# OPERATION FACTORIES
# ============================================================================


class CountingOperation:
    """
    Async operation that fails with queued errors, then returns ``value``.

    Each call pops the next item of ``failures``; once the queue is empty the
    operation succeeds.
    """

    def __init__(self, value: Any = "ok", failures: List[BaseException] = None,
                 delay: float = 0.0):
        self.value = value
        self.failures = list(failures or [])
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return self.value


@pytest.fixture
def make_operation() -> Callable[..., CountingOperation]:
    return CountingOperation
