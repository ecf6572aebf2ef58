"""
Pipeline Exceptions
===================
Error taxonomy for the request-delivery pipeline.

Transport failures (network, HTTP, timeout) are retryable and are converted
into retry/terminal decisions inside the lifecycle handler. The remaining
errors signal caller or configuration bugs.
"""

from typing import Any, Optional


class SemantixError(Exception):
    """Base exception for the semantix-core library."""

    def __init__(self, message: str, details: Any = None):
        self.message = message
        self.details = details
        super().__init__(message)


class TransportError(SemantixError):
    """Base exception for failures surfaced by a Transport."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        self.status_code = status_code
        super().__init__(message, details=details)


class TransientNetworkError(TransportError):
    """Raised when the backend could not be reached."""
    pass


class RequestTimeoutError(TransportError):
    """Raised when a request exceeds its time budget."""

    def __init__(self, message: str, timeout: Optional[float] = None, details: Any = None):
        self.timeout = timeout
        super().__init__(message, details=details)


class HTTPError(TransportError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status: int, body: Any = None, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(
            message or f"HTTP {status} Error",
            status_code=status,
            details=body,
        )


class CircuitOpenError(SemantixError):
    """Raised when the circuit is open and the call is rejected."""

    retryable = False

    def __init__(self, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is open. Retry after {retry_after:.1f}s",
            details={"retry_after": retry_after},
        )


class ConfigurationError(SemantixError, ValueError):
    """Raised at construction time when configuration is invalid."""
    pass


class InvalidStateTransition(SemantixError):
    """Raised when the circuit state machine is asked for an illegal edge."""

    def __init__(self, from_state: Any, to_state: Any):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition from {getattr(from_state, 'value', from_state)} "
            f"to {getattr(to_state, 'value', to_state)}"
        )


class InvalidRequestError(SemantixError, ValueError):
    """Raised when an enqueued request description is malformed."""
    pass
