"""
Shared error handling for svckit clients.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class SvcKitError(Exception):
    """Base exception for all svckit clients."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

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


class ConfigurationError(SvcKitError):
    """Invalid or unsupported client configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


# Cache

class CacheError(SvcKitError):
    """Base class for cache client errors."""

    def __init__(self, message: str = "Cache error", details: Optional[Dict[str, Any]] = None,
                 code: str = "CACHE_ERROR"):
        super().__init__(code, message, details)


class CacheConnectionError(CacheError):
    """Dial or health check against the cache endpoint failed."""

    def __init__(self, endpoint: str, cause: Any):
        super().__init__(
            f"Failed to connect to redis {endpoint}. Error: {cause}",
            {"endpoint": endpoint, "cause": str(cause)},
            code="CACHE_CONNECTION_ERROR",
        )
        self.endpoint = endpoint
        self.cause = cause


class CommandError(CacheError):
    """Transport or protocol failure while running a command."""

    def __init__(self, command: str, message: str, code: str = "CACHE_COMMAND_ERROR"):
        super().__init__(message, {"command": command}, code=code)
        self.command = command


class CommandTimeoutError(CommandError):
    """Command did not complete within the client timeout."""

    def __init__(self, command: str, timeout: float):
        super().__init__(
            command,
            f"{command} timed out after {timeout:g}s",
            code="CACHE_COMMAND_TIMEOUT",
        )
        self.timeout = timeout


class EncodeError(CacheError):
    """Value could not be encoded for the wire."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CACHE_ENCODE_ERROR")


class DecodeError(CacheError):
    """Reply present but not convertible to the requested shape."""

    def __init__(self, target: str, value: Any, reason: Optional[str] = None):
        message = f"cannot decode {type(value).__name__} reply as {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"target": target, "reply_type": type(value).__name__},
                         code="CACHE_DECODE_ERROR")
        self.target = target


class NotFoundError(CacheError):
    """Nil reply: the key (or field) does not exist."""

    def __init__(self, message: str = "nil returned"):
        super().__init__(message, code="CACHE_NIL")


# Database

class DatabaseError(SvcKitError):
    """Database client errors."""

    def __init__(self, message: str = "Database error", details: Optional[Dict[str, Any]] = None,
                 code: str = "DATABASE_ERROR"):
        super().__init__(code, message, details)


class NoRowsError(DatabaseError):
    """Query expected a row but the result set was empty."""

    def __init__(self, message: str = "no rows in result set"):
        super().__init__(message, code="DATABASE_NO_ROWS")


class BindError(DatabaseError):
    """Named parameters could not be bound to the query."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="DATABASE_BIND_ERROR")


# HTTP

class HttpClientError(SvcKitError):
    """Outgoing HTTP request failed before a response was read."""

    def __init__(self, message: str = "HTTP request failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "HTTP_CLIENT_ERROR"):
        super().__init__(code, message, details)


class InvalidMethodError(HttpClientError):
    """HTTP method outside the supported set."""

    def __init__(self, method: str):
        super().__init__(f"Invalid HTTP method {method!r}", {"method": method},
                         code="HTTP_INVALID_METHOD")
        self.method = method
