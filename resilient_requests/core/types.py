"""
Data model for RESILIENT_REQUESTS calls.

An ``Attempt`` is one execution try, a ``CallRecord`` is the logical request
that owns its attempts, and an ``Outcome`` is what every caller attached to
the record eventually observes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Terminal result of a call: a value or an error, never both."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class Attempt:
    """One execution try of the underlying operation."""

    sequence: int
    started_at: float
    ended_at: Optional[float] = None
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def duration(self) -> Optional[float]:
        """Seconds the attempt took, or None while it is running."""
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def succeeded(self) -> bool:
        return self.ended_at is not None and self.error is None

    def finish(self, ended_at: float, value: Any = None,
               error: Optional[BaseException] = None) -> None:
        self.ended_at = ended_at
        self.value = value
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "duration": self.duration,
            "succeeded": self.succeeded,
            "error": type(self.error).__name__ if self.error else None,
        }


@dataclass
class CallRecord:
    """
    A logical request identified by ``key``.

    Owned by the Deduplicator while in flight. ``future`` is the single
    completion point shared by every follower; ``detached`` is set by
    ``invalidate`` and stops the outcome from being cached.
    """

    key: str
    future: asyncio.Future
    attempts: List[Attempt] = field(default_factory=list)
    outcome: Optional[Outcome] = None
    followers: int = 0
    detached: bool = False
    breaker_name: Optional[str] = None
    served_from_fallback: bool = False

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    def start_attempt(self, started_at: float) -> Attempt:
        attempt = Attempt(sequence=len(self.attempts) + 1, started_at=started_at)
        self.attempts.append(attempt)
        return attempt

    def snapshot(self) -> "CallRecord":
        """Copy safe to keep after the record left the in-flight map."""
        return replace(self, attempts=list(self.attempts))

    def summary(self) -> Dict[str, Any]:
        """Attempt statistics for logging and inspection."""
        failures = sum(1 for a in self.attempts if a.error is not None)
        total = sum(a.duration or 0.0 for a in self.attempts)
        return {
            "key": self.key,
            "total_attempts": len(self.attempts),
            "successes": len(self.attempts) - failures,
            "failures": failures,
            "followers": self.followers,
            "total_duration": round(total, 6),
            "ok": self.outcome.ok if self.outcome else None,
            "attempts": [a.to_dict() for a in self.attempts],
        }
