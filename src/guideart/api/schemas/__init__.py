"""API schemas for guideart."""

from guideart.api.schemas.responses import (
    ApiResponse,
    ErrorCode,
    HealthResponse,
    HealthStatus,
    PauseResponse,
    PauseStatus,
    ProblemDetail,
    ProblemJSONResponse,
)

__all__ = [
    "ApiResponse",
    "ErrorCode",
    "HealthResponse",
    "HealthStatus",
    "PauseResponse",
    "PauseStatus",
    "ProblemDetail",
    "ProblemJSONResponse",
]
