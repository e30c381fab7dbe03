"""
In-flight request deduplication.

The first caller for a key becomes the leader and runs the work; callers
arriving while the leader is still running become followers and receive the
leader's outcome through one shared future. A record leaves the in-flight
map before its outcome is fanned out, so no caller can join a record whose
resolution has started, and the next caller for the same key starts fresh.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any

from ..core.types import CallRecord, Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Membership:
    """Result of ``Deduplicator.acquire_or_join``."""

    is_leader: bool
    record: CallRecord

    @property
    def future(self) -> asyncio.Future:
        return self.record.future


class Deduplicator:
    """
    Collapses concurrent calls for the same key into one execution.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, CallRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def acquire_or_join(self, key: str) -> Membership:
        """
        Become the leader for ``key`` or join the running leader.

        Must be called from a running event loop.

        Args:
            key: Call identity

        Returns:
            Membership telling whether the caller leads, and the shared record
        """
        with self._lock:
            record = self._in_flight.get(key)
            if record is not None:
                record.followers += 1
                logger.debug("[dedup] Joined in-flight call %s (followers=%d)",
                             key, record.followers)
                return Membership(is_leader=False, record=record)

            record = CallRecord(key=key, future=asyncio.get_running_loop().create_future())
            self._in_flight[key] = record
            return Membership(is_leader=True, record=record)

    def resolve(self, record: CallRecord, outcome: Outcome) -> None:
        """
        Publish the outcome of ``record`` to every follower.

        The record is removed from the in-flight map first. A record that was
        detached (or already replaced by a newer leader) is not removed twice.
        """
        with self._lock:
            if self._in_flight.get(record.key) is record:
                del self._in_flight[record.key]
            record.outcome = outcome

        future = record.future
        if future.done():
            return
        if outcome.error is not None:
            future.set_exception(outcome.error)
            # The leader reports the error itself; followers may not exist
            future.exception()
        else:
            future.set_result(outcome.value)

    def detach(self, key: str) -> bool:
        """
        Drop the in-flight association for ``key``.

        The leader keeps running and its followers still receive the outcome,
        but new callers start a new record and the detached result is not
        cached.

        Returns:
            True if a record was detached
        """
        with self._lock:
            record = self._in_flight.pop(key, None)
            if record is None:
                return False
            record.detached = True
        logger.debug("[dedup] Detached in-flight call %s", key)
        return True

    async def wait(self, membership: Membership) -> Any:
        """
        Wait for the leader's outcome as a follower.

        Cancelling the waiting caller only stops this wait; the leader and
        the other followers are unaffected.
        """
        return await asyncio.shield(membership.future)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)


__all__ = ["Deduplicator", "Membership"]
