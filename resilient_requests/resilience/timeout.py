"""
Per-attempt deadlines.

``schedule_after`` is the timer primitive: it arms a callback on the event
loop and returns a handle whose cancellation is explicit. ``TimeoutController``
runs one attempt as a task, arms a deadline timer that cancels the task, and
disarms the timer on every exit path.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..exceptions import AttemptTimeoutError, CallCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimerHandle:
    """Cancellable handle returned by ``schedule_after``."""

    def __init__(self, loop: asyncio.AbstractEventLoop, delay: float,
                 callback: Callable[[], Any]) -> None:
        self.delay = delay
        self._callback = callback
        self._fired = False
        self._handle = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._fired = True
        self._callback()

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()

    @property
    def active(self) -> bool:
        return not self._fired and not self._handle.cancelled()

    def cancel(self) -> None:
        self._handle.cancel()


def schedule_after(delay: float, callback: Callable[[], Any]) -> TimerHandle:
    """
    Run ``callback`` on the running loop after ``delay`` seconds.

    Args:
        delay: Seconds to wait
        callback: Zero-argument callable

    Returns:
        Handle; ``cancel()`` disarms the timer if it has not fired
    """
    return TimerHandle(asyncio.get_running_loop(), delay, callback)


def _discard_result(task: asyncio.Task) -> None:
    # Late results of timed-out attempts are dropped; mark exceptions retrieved
    if not task.cancelled():
        task.exception()


class TimeoutController:
    """
    Bounds the duration of single attempts.

    If the operation settles first, its result (or exception) is returned
    unchanged. If the deadline fires first, the operation's task is
    cancelled, its eventual result is discarded, and ``AttemptTimeoutError``
    is raised without waiting for the task to acknowledge the cancellation.
    """

    def __init__(self) -> None:
        self._pending_timers = 0

    @property
    def pending_timers(self) -> int:
        """Deadline timers currently armed."""
        return self._pending_timers

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float | None,
    ) -> T:
        """
        Run one attempt under a deadline.

        Args:
            operation: Zero-argument callable returning an awaitable
            timeout: Deadline in seconds, or None for no deadline

        Returns:
            The operation's result

        Raises:
            AttemptTimeoutError: If the deadline expired first
            CallCancelledError: If the operation cancelled itself
            asyncio.CancelledError: If the waiting caller was cancelled
        """
        task = asyncio.ensure_future(operation())
        waiters = {task}
        timer = None
        deadline_reached = None

        if timeout is not None:
            deadline_reached = asyncio.get_running_loop().create_future()

            def on_deadline() -> None:
                if not deadline_reached.done():
                    deadline_reached.set_result(None)

            timer = schedule_after(timeout, on_deadline)
            self._pending_timers += 1
            waiters.add(deadline_reached)

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_discard_result)
            raise
        finally:
            if timer is not None:
                timer.cancel()
                self._pending_timers -= 1
                if not deadline_reached.done():
                    deadline_reached.cancel()

        if task.done():
            if task.cancelled():
                raise CallCancelledError("Operation cancelled itself before completing")
            return task.result()

        logger.debug("[timeout] Attempt exceeded %.3fs deadline, cancelling", timeout)
        task.cancel()
        task.add_done_callback(_discard_result)
        raise AttemptTimeoutError(
            f"Attempt did not complete within {timeout:.3f}s", timeout=timeout
        )


__all__ = ["TimeoutController", "TimerHandle", "schedule_after"]
