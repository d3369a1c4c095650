"""Exception handlers rendering errors as RFC 7807 problem details.

Every error leaving the API is ``application/problem+json`` with the error
code, the request path and the request id. Rate-limit problems carry a
``Retry-After`` header; upstream failures hide their internals from clients
and are logged instead.

RFC 7807 Reference: https://tools.ietf.org/html/rfc7807
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from guideart.api.middleware.request_id import get_request_id
from guideart.api.schemas.responses import (
    ERROR_TITLES,
    ErrorCode,
    FieldError,
    ProblemDetail,
    ProblemJSONResponse,
    ValidationProblemDetail,
    get_error_type_uri,
)
from guideart.exceptions import (
    APIError,
    ExternalServiceError,
    RateLimitError,
    UpstreamError,
    UpstreamThrottledError,
)

logger = logging.getLogger(__name__)

MAX_DETAIL_LENGTH = 4096
"""Maximum allowed length for detail messages before truncation."""

TRUNCATION_SUFFIX = "... (truncated)"


# =============================================================================
# Helper Functions
# =============================================================================


def _truncate_detail(detail: str) -> str:
    if len(detail) <= MAX_DETAIL_LENGTH:
        return detail
    return detail[: MAX_DETAIL_LENGTH - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


def _request_id(request: Request) -> str:
    """Request id from the context variable, then ``request.state``, else ``-``."""
    request_id = get_request_id()
    if request_id:
        return request_id
    return str(getattr(request.state, "request_id", "") or "-")


def _problem_response(
    code: ErrorCode,
    status: int,
    detail: str,
    request: Request,
    headers: dict[str, str] | None = None,
) -> ProblemJSONResponse:
    """Build a problem response for ``request``.

    Parameters
    ----------
    code : ErrorCode
        Machine-readable error code.
    status : int
        HTTP status code.
    detail : str
        Explanation of this occurrence.
    request : Request
        Request being answered.
    headers : dict[str, str] | None, optional
        Extra response headers.

    Returns
    -------
    ProblemJSONResponse
        RFC 7807 response.
    """
    problem = ProblemDetail(
        type=get_error_type_uri(code),
        title=ERROR_TITLES.get(code, "Error"),
        status=status,
        detail=_truncate_detail(detail),
        instance=str(request.url.path),
        code=code.value,
        request_id=_request_id(request),
    )
    return ProblemJSONResponse(
        content=problem.model_dump(),
        status_code=status,
        headers=headers,
    )


# =============================================================================
# Exception Handlers
# =============================================================================


async def api_error_handler(request: Request, exc: APIError) -> ProblemJSONResponse:
    """Render any :class:`APIError` subclass.

    ``RateLimitError`` adds ``Retry-After``; ``ExternalServiceError`` gets a
    generic detail and its message is logged.
    """
    headers: dict[str, str] | None = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}

    if isinstance(exc, ExternalServiceError):
        logger.error("External service error: %s (details=%s)", exc.message, exc.details)
        return _problem_response(
            exc.error_code,
            exc.status_code,
            "External service unavailable",
            request,
        )

    return _problem_response(exc.error_code, exc.status_code, exc.message, request, headers)


async def upstream_error_handler(request: Request, exc: UpstreamError) -> ProblemJSONResponse:
    """Render upstream failures that escaped the service layer.

    Throttling becomes 429 with ``Retry-After``; everything else is 502.
    """
    if isinstance(exc, UpstreamThrottledError):
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _problem_response(
            ErrorCode.RATE_LIMITED, 429, "Upstream temporarily unavailable", request, headers
        )

    logger.error("Upstream error: %s", exc.message)
    return _problem_response(
        ErrorCode.EXTERNAL_SERVICE_ERROR, 502, "External service unavailable", request
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> ProblemJSONResponse:
    """Render request validation failures as 422 with per-field errors."""
    errors = [
        FieldError(
            loc=list(error.get("loc", [])),
            msg=error.get("msg", ""),
            type=error.get("type", ""),
        )
        for error in exc.errors()
    ]
    problem = ValidationProblemDetail(
        type=get_error_type_uri(ErrorCode.VALIDATION_ERROR),
        title=ERROR_TITLES[ErrorCode.VALIDATION_ERROR],
        status=422,
        detail="Request validation failed",
        instance=str(request.url.path),
        code=ErrorCode.VALIDATION_ERROR.value,
        request_id=_request_id(request),
        errors=errors,
    )
    return ProblemJSONResponse(content=problem.model_dump(), status_code=422)


async def generic_error_handler(request: Request, exc: Exception) -> ProblemJSONResponse:
    """Catch-all: log the traceback and answer 500 without internals."""
    logger.exception("Unhandled exception: %s", exc)
    return _problem_response(
        ErrorCode.INTERNAL_ERROR, 500, "An unexpected error occurred", request
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app.

    Parameters
    ----------
    app : FastAPI
        The FastAPI application instance.
    """
    app.add_exception_handler(APIError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(UpstreamError, upstream_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_error_handler)
