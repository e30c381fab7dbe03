"""
Core executor components.

This module contains the ResilientExecutor class and the data model of
calls, attempts and outcomes.
"""

# types first: resilience.deduplication imports it while executor loads
from .types import Attempt, CallRecord, Outcome  # isort: skip
from .executor import ResilientExecutor

__all__ = [
    # Executor
    "ResilientExecutor",
    # Data model
    "Attempt",
    "CallRecord",
    "Outcome",
]
