"""Models for classified errors and validation results."""

from enum import Enum

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Closed set of failure categories surfaced to callers."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"


class ErrorResult(BaseModel):
    """Classified, user-facing error."""

    kind: ErrorKind = Field(..., description="Error category")
    message: str = Field(..., description="User-facing message")
    retryable: bool = Field(..., description="Whether retrying the same query may help")
    status_code: int | None = Field(None, description="Upstream HTTP status, if any")
    auto_dismiss_seconds: float | None = Field(
        None, description="Seconds after which the message may be dismissed automatically"
    )


class ValidationResult(BaseModel):
    """Outcome of validating a raw location query."""

    valid: bool
    message: str


class ErrorLogRecord(BaseModel):
    """Persisted record of a classified error."""

    timestamp: str = Field(..., description="ISO 8601 UTC timestamp")
    context: str = Field(..., description="Where the error occurred")
    kind: ErrorKind
    message: str = Field(..., description="Raw error message")
    error_type: str = Field(..., description="Exception class name")
    stack: str | None = Field(None, description="Formatted traceback, if available")
    status_code: int | None = None
    debug_mode: bool = False


class ErrorResponse(BaseModel):
    """Error response model for request validation failures."""

    error: str = Field(..., description="Error message")
    detail: str | None = Field(None, description="Additional error details")
