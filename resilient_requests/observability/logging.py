"""
Structured logging for RESILIENT_REQUESTS.

Two context variables describe what is running: a correlation id for the
surrounding request and a call context holding the key of the call being
executed, its breaker and the number of the attempt in progress. Attempts run
as tasks that copy the context when they start, so records emitted by the
operation itself carry the same call identity as the executor's own records.
"""

import contextlib
import contextvars
import logging
import uuid
from collections.abc import Iterator
from typing import Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "resilience_correlation_id", default=None
)

_call_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "resilience_call_context", default=None
)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        The correlation ID that was set
    """
    correlation_id = correlation_id or uuid.uuid4().hex
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    _correlation_id.set(None)


def set_call_context(key: str | None = None, **fields: Any) -> contextvars.Token:
    """
    Start a fresh call context.

    Args:
        key: Key of the call being executed
        **fields: Extra fields (breaker, attempt, ...)

    Returns:
        Token restoring the previous context via ``clear_call_context``
    """
    return _call_context.set({"call_key": key, **fields})


def bind_call_context(**fields: Any) -> contextvars.Token:
    """Layer ``fields`` over the current call context, keeping its key."""
    current = _call_context.get() or {}
    return _call_context.set({**current, **fields})


def clear_call_context(token: contextvars.Token | None = None) -> None:
    """Restore the context a token was issued against, or drop it entirely."""
    if token is None:
        _call_context.set(None)
        return
    _call_context.reset(token)


@contextlib.contextmanager
def call_context(key: str, **fields: Any) -> Iterator[None]:
    """Scope a call context to a ``with`` block."""
    token = set_call_context(key, **fields)
    try:
        yield
    finally:
        clear_call_context(token)


def get_logging_context() -> dict[str, Any]:
    """
    Fields describing the current call, for use as a record's ``extra``.

    Returns:
        Correlation id (when set) and every call context field
    """
    context = dict(_call_context.get() or {})
    correlation_id = _correlation_id.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter stamping every record with the current call context.

    Fields passed explicitly through ``extra`` win over context fields.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**get_logging_context(), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger that adds the correlation ID and call fields.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLoggerAdapter instance
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    """
    Emit one structured record for a completed call.

    Args:
        logger: Logger instance
        operation: Operation name
        level: Log level
        success: Whether the call succeeded
        duration_ms: Call duration in milliseconds
        **fields: Call details (attempts, followers, breaker, error, ...)
    """
    extra = {**get_logging_context(), **fields, "operation": operation, "success": success}
    message = ("Operation: %s" if success else "Operation failed: %s") % operation

    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)
        message = f"{message} (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=extra)
