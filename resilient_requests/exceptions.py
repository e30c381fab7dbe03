"""
Custom exceptions for RESILIENT_REQUESTS.

Every error a caller can observe from ``ResilientExecutor.run`` derives from
``ResilienceError``, which keeps backward compatibility with RuntimeError
while carrying a structured context dictionary.
"""

from typing import Any, Dict, List, Optional


class ResilienceError(RuntimeError):
    """
    Base exception for resilience layer errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (key,
                 breaker_name, attempts, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class TransportError(ResilienceError):
    """
    Raised by an operation when the underlying transport fails.

    A ``status_code`` of None means the request never produced an HTTP
    response (DNS failure, refused connection, TLS error...).

    Attributes:
        message: Error message
        status_code: HTTP status code (if a response was received)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the transport error.

        Args:
            message: Error message
            status_code: HTTP status code (if a response was received)
            context: Additional context information
        """
        context = context or {}
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context)
        self.status_code = status_code

    @property
    def is_network_error(self) -> bool:
        """True when no HTTP response was received."""
        return self.status_code is None


class AttemptTimeoutError(ResilienceError):
    """
    Raised when a single attempt does not settle before its deadline.

    Attributes:
        message: Error message
        timeout: Deadline that was exceeded, in seconds
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if timeout is not None:
            context["timeout"] = timeout
        super().__init__(message, context=context)
        self.timeout = timeout


class BreakerOpenError(ResilienceError):
    """
    Raised when a circuit breaker rejects a call without invoking it.

    Attributes:
        message: Error message
        breaker_name: Name of the breaker that rejected the call
        retry_after: Seconds until the breaker admits a trial call
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        breaker_name: Optional[str] = None,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the breaker open error.

        Args:
            message: Error message
            breaker_name: Name of the breaker that rejected the call
            retry_after: Seconds until the breaker admits a trial call
            context: Additional context information
        """
        context = context or {}
        if breaker_name:
            context["breaker_name"] = breaker_name
        if retry_after is not None:
            context["retry_after"] = round(retry_after, 3)
        super().__init__(message, context=context)
        self.breaker_name = breaker_name
        self.retry_after = retry_after


class RetriesExhaustedError(ResilienceError):
    """
    Raised when every permitted attempt failed with a retryable error.

    The last underlying failure is available as ``last_error`` and is also
    chained as ``__cause__``.

    Attributes:
        message: Error message
        attempts: Number of attempts that were made
        last_error: Failure of the final attempt
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        context["attempts"] = attempts
        if last_error is not None:
            context["last_error"] = type(last_error).__name__
        super().__init__(message, context=context)
        self.attempts = attempts
        self.last_error = last_error
        if last_error is not None:
            self.__cause__ = last_error


class ValidationError(ResilienceError, ValueError):
    """
    Raised when configuration or call arguments are invalid.

    Validation errors are local and fatal: they are raised to the caller
    directly and never enter the retry loop.

    Attributes:
        message: Error message
        error_paths: Dotted paths of the offending fields
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        error_paths: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the validation error.

        Args:
            message: Error message
            error_paths: Dotted paths of the offending fields
            context: Additional context information
        """
        context = context or {}
        if error_paths:
            context["error_paths"] = error_paths
        super().__init__(message, context=context)
        self.error_paths = error_paths or []


class CallCancelledError(ResilienceError):
    """
    Delivered to followers when the leader of their call was cancelled.

    Attributes:
        message: Error message
        key: Key of the cancelled call
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if key:
            context["key"] = key
        super().__init__(message, context=context)
        self.key = key
