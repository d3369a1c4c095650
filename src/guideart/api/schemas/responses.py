"""Response schemas: RFC 7807 problem details and small JSON envelopes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in problem responses.

    4xx Client Errors:
        BAD_REQUEST: Blank or malformed program id (400)
        NOT_FOUND: No acceptable poster for the program (404)
        VALIDATION_ERROR: Request validation failed (422)
        RATE_LIMITED: Upstream paused, image not cached (429)

    5xx Server Errors:
        INTERNAL_ERROR: Unexpected server error (500)
        EXTERNAL_SERVICE_ERROR: Schedules Direct failure (502)
    """

    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


ERROR_TYPE_BASE: str = "https://guideart.invalid/errors"
"""Base URI for constructing RFC 7807 type URIs."""


def get_error_type_uri(code: ErrorCode) -> str:
    """Build the RFC 7807 ``type`` URI for an error code.

    Examples
    --------
    >>> get_error_type_uri(ErrorCode.RATE_LIMITED)
    'https://guideart.invalid/errors/RATE_LIMITED'
    """
    return f"{ERROR_TYPE_BASE}/{code.value}"


ERROR_TITLES: dict[ErrorCode, str] = {
    ErrorCode.BAD_REQUEST: "Bad Request",
    ErrorCode.NOT_FOUND: "Resource Not Found",
    ErrorCode.VALIDATION_ERROR: "Validation Error",
    ErrorCode.RATE_LIMITED: "Rate Limit Exceeded",
    ErrorCode.INTERNAL_ERROR: "Internal Server Error",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "External Service Error",
}
"""Mapping from ErrorCode to human-readable RFC 7807 title."""

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard JSON response wrapper."""

    model_config = ConfigDict(strict=True)

    data: T


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details body.

    Attributes
    ----------
    type : str
        URI identifying the problem type.
    title : str
        Short human-readable summary of the problem type.
    status : int
        HTTP status code (4xx or 5xx).
    detail : str
        Explanation of this specific occurrence.
    instance : str
        Request path that produced the problem.
    code : str
        Value from :class:`ErrorCode`.
    request_id : str
        Correlation id from the ``X-Request-ID`` header.
    """

    type: str = Field(
        ...,
        description="URI identifying the problem type",
        examples=["https://guideart.invalid/errors/NOT_FOUND"],
    )
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., ge=400, le=599, description="HTTP status code")
    detail: str = Field(
        ...,
        description="Human-readable explanation of the problem",
        examples=["Poster 'EP012345670000' not found"],
    )
    instance: str = Field(
        ...,
        description="URI reference of the specific occurrence",
        examples=["/proxy/sd/EP012345670000"],
    )
    code: str = Field(..., description="Application-specific error code")
    request_id: str = Field(..., description="Request identifier for correlation")


class FieldError(BaseModel):
    """A single field failure inside a validation problem."""

    loc: list[str | int] = Field(..., description="Location of the error")
    msg: str = Field(..., description="Error message")
    type: str = Field(..., description="Error type identifier")


class ValidationProblemDetail(ProblemDetail):
    """Problem details for 422 responses, with per-field errors."""

    errors: list[FieldError] = Field(
        ...,
        description="List of field-level validation errors",
    )


class ProblemJSONResponse(JSONResponse):
    """JSON response served as ``application/problem+json``."""

    media_type = "application/problem+json"


# =============================================================================
# Admin / health payloads
# =============================================================================


class PauseStatus(BaseModel):
    """State of the global upstream backoff gate."""

    model_config = ConfigDict(strict=True)

    active: bool
    paused_until: Optional[datetime] = None
    remaining_seconds: int = 0
    reason: Optional[str] = None


class PauseResponse(ApiResponse[PauseStatus]):
    """Response for the pause admin endpoints."""


class HealthStatus(BaseModel):
    """Liveness plus a summary of cache and pause state."""

    model_config = ConfigDict(strict=True)

    status: str  # "healthy", "degraded"
    version: str
    timestamp: datetime
    credentials_configured: bool
    indexed_programs: int
    downloads_in_flight: int
    pause: PauseStatus


class HealthResponse(ApiResponse[HealthStatus]):
    """Response for the health endpoint."""
