"""
Health check utilities for RESILIENT_REQUESTS.

Health is derived from executor state: open circuits make the executor
unhealthy for the affected keys, and a full cache that keeps evicting is a
sign of an undersized capacity.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class HealthChecker:
    """
    Runs registered health checks and combines their status.
    """

    def __init__(self):
        self._checks: list[Callable[[], Awaitable[HealthCheckResult]]] = []

    def register_check(self, check_func: Callable[[], Awaitable[HealthCheckResult]]) -> None:
        """
        Register a health check function.

        Args:
            check_func: Zero-argument async function returning HealthCheckResult
        """
        self._checks.append(check_func)

    async def check_all(self) -> dict[str, Any]:
        """
        Run all registered health checks.

        Returns:
            Dictionary with overall status and individual check results
        """
        results: list[HealthCheckResult] = []

        for check_func in self._checks:
            name = getattr(check_func, "__name__", repr(check_func))
            try:
                results.append(await check_func())
            except (RuntimeError, ValueError, TypeError, AttributeError, KeyError) as e:
                logger.error("Health check %s failed: %s", name, e, exc_info=True)
                results.append(
                    HealthCheckResult(
                        name=name,
                        status=HealthStatus.UNKNOWN,
                        message=f"Check failed: {e}",
                    )
                )

        statuses = [r.status for r in results]
        if HealthStatus.UNHEALTHY in statuses:
            overall_status = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall_status = HealthStatus.DEGRADED
        elif all(s == HealthStatus.HEALTHY for s in statuses):
            overall_status = HealthStatus.HEALTHY
        else:
            overall_status = HealthStatus.UNKNOWN

        return {
            "status": overall_status.value,
            "timestamp": datetime.now().isoformat(),
            "checks": [r.to_dict() for r in results],
        }


async def check_breaker_health(executor: Any | None) -> HealthCheckResult:
    """
    Check circuit breaker states.

    Args:
        executor: ResilientExecutor instance

    Returns:
        UNHEALTHY if any circuit is open, DEGRADED if any is half-open,
        HEALTHY otherwise
    """
    if executor is None:
        return HealthCheckResult(
            name="circuit_breakers",
            status=HealthStatus.UNKNOWN,
            message="Executor not available",
        )

    states = executor.get_breaker_states()
    open_names = sorted(n for n, s in states.items() if s["state"] == "open")
    half_open_names = sorted(n for n, s in states.items() if s["state"] == "half_open")
    details = {
        "breakers": len(states),
        "open": open_names,
        "half_open": half_open_names,
    }

    if open_names:
        return HealthCheckResult(
            name="circuit_breakers",
            status=HealthStatus.UNHEALTHY,
            message=f"{len(open_names)} circuit(s) open: {', '.join(open_names)}",
            details=details,
        )
    if half_open_names:
        return HealthCheckResult(
            name="circuit_breakers",
            status=HealthStatus.DEGRADED,
            message=f"{len(half_open_names)} circuit(s) testing recovery",
            details=details,
        )
    return HealthCheckResult(
        name="circuit_breakers",
        status=HealthStatus.HEALTHY,
        message="All circuits closed",
        details=details,
    )


async def check_cache_health(executor: Any | None) -> HealthCheckResult:
    """
    Check result cache pressure.

    Args:
        executor: ResilientExecutor instance

    Returns:
        DEGRADED when the cache is full and has evicted entries, HEALTHY otherwise
    """
    if executor is None:
        return HealthCheckResult(
            name="result_cache",
            status=HealthStatus.UNKNOWN,
            message="Executor not available",
        )

    stats = executor.get_cache_stats()
    usage_percent = stats["size"] / stats["capacity"] * 100

    if stats["size"] >= stats["capacity"] and stats["evictions"] > 0:
        return HealthCheckResult(
            name="result_cache",
            status=HealthStatus.DEGRADED,
            message=f"Result cache is full and evicting ({stats['evictions']} evictions)",
            details=stats,
        )
    return HealthCheckResult(
        name="result_cache",
        status=HealthStatus.HEALTHY,
        message=f"Result cache is healthy: {usage_percent:.1f}% used",
        details=stats,
    )
