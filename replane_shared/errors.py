"""
Shared error handling for the Replane SDK.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error payload handed to error callbacks and logs."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ReplaneException(Exception):
    """Base exception for the Replane SDK."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def fatal(self) -> bool:
        """Whether the sync channel must stop retrying after this error."""
        return False

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(ReplaneException):
    """SDK key rejected by the server (401)."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)

    @property
    def fatal(self) -> bool:
        return True


class AuthorizationError(ReplaneException):
    """SDK key lacks access to the project (403)."""

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)

    @property
    def fatal(self) -> bool:
        return True


class NetworkError(ReplaneException):
    """Connect or read failure below the HTTP layer."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class ServerError(ReplaneException):
    """Unexpected HTTP status or response shape."""

    def __init__(self, message: str = "Server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVER_ERROR", message, details)


class RequestTimeoutError(ReplaneException):
    """Connection attempt exceeded the request timeout."""

    def __init__(self, message: str = "Request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_TIMEOUT", message, details)


class InitializationTimeoutError(ReplaneException):
    """No snapshot arrived within the initialization timeout."""

    def __init__(self, message: str = "Client initialization timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("INITIALIZATION_TIMEOUT", message, details)


class ConfigNotFoundError(ReplaneException):
    """Config name unknown to the store and without a default."""

    def __init__(self, name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_NOT_FOUND", f"Config not found: {name}", details)
        self.name = name


class ClientClosedError(ReplaneException):
    """Operation attempted on a closed client."""

    def __init__(self, message: str = "Client is closed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CLIENT_CLOSED", message, details)


class FrameError(ReplaneException):
    """Stream frame could not be parsed."""

    def __init__(self, message: str = "Malformed frame", details: Optional[Dict[str, Any]] = None):
        super().__init__("FRAME_ERROR", message, details)


class ReferenceResolutionError(ReplaneException):
    """Reference operand could not be resolved (missing, cyclic, bad path)."""

    def __init__(self, message: str = "Reference could not be resolved", details: Optional[Dict[str, Any]] = None):
        super().__init__("REFERENCE_UNRESOLVED", message, details)
