"""
Custom exceptions for the guideart application.

This module defines domain-specific exceptions raised while talking to the
Schedules Direct API and the API-layer exceptions that the exception
handlers turn into RFC 7807 problem responses.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from guideart.api.schemas.responses import ErrorCode


class GuideartError(Exception):
    """Base exception for all guideart errors."""

    def __init__(self, message: str) -> None:
        """
        Initialize GuideartError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        """
        self.message = message
        super().__init__(message)


# =============================================================================
# Upstream (Schedules Direct) Exceptions
# =============================================================================


class UpstreamError(GuideartError):
    """Base exception for failures talking to Schedules Direct."""


class UpstreamLoginError(UpstreamError):
    """
    Exception raised when the token exchange is rejected.

    Attributes
    ----------
    message : str
        Message reported by the upstream API.
    code : int
        Schedules Direct response code (e.g. 4009 for TOO_MANY_LOGINS).
    server_time : datetime | None
        Server clock reported in the response, used to compute reset times.

    Examples
    --------
    >>> try:
    ...     await client.login()
    ... except UpstreamLoginError as e:
    ...     if e.code == 4009:
    ...         print("Too many logins today")
    """

    def __init__(
        self,
        message: str = "Schedules Direct login failed",
        code: int = 0,
        server_time: datetime | None = None,
    ) -> None:
        """
        Initialize UpstreamLoginError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message (default: "Schedules Direct login failed").
        code : int, optional
            Upstream response code (default: 0).
        server_time : datetime | None, optional
            Upstream server time from the response (default: None).
        """
        self.code = code
        self.server_time = server_time
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """
    Exception raised when upstream rejects the session token.

    Signalled by HTTP 401/403 or by a JSON body carrying code 4006
    (TOKEN_EXPIRED). Callers get exactly one forced refresh and retry.
    """

    def __init__(self, message: str = "Upstream rejected the token", code: int = 0) -> None:
        """
        Initialize UpstreamAuthError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message.
        code : int, optional
            Upstream response code, if any (default: 0).
        """
        self.code = code
        super().__init__(message)


class UpstreamThrottledError(UpstreamError):
    """
    Exception raised when upstream signals rate limiting or quota exhaustion.

    The client raises it with only ``retry_after`` or ``code`` filled in;
    the poster proxy then engages the global backoff gate and re-raises it
    with ``paused_until`` set. Callers should retry after ``retry_after``
    seconds.

    Attributes
    ----------
    retry_after : int
        Seconds until upstream fetches are allowed again.
    paused_until : datetime | None
        UTC instant when the global pause ends.
    code : int
        Upstream response code; 5002/5003 mean the daily download quota
        is exhausted, 0 means a plain rate limit.
    """

    def __init__(
        self,
        message: str = "Schedules Direct is throttling requests",
        retry_after: int = 0,
        paused_until: datetime | None = None,
        code: int = 0,
    ) -> None:
        """
        Initialize UpstreamThrottledError.

        Parameters
        ----------
        message : str, optional
            Human-readable error message.
        retry_after : int, optional
            Seconds until retry is allowed (default: 0).
        paused_until : datetime | None, optional
            End of the global pause (default: None).
        code : int, optional
            Upstream response code (default: 0).
        """
        self.retry_after = retry_after
        self.paused_until = paused_until
        self.code = code
        super().__init__(message)


class ImageFetchError(UpstreamError):
    """
    Exception raised when an image download fails.

    Attributes
    ----------
    image_id : str
        Image being downloaded.
    status_code : int
        Upstream HTTP status, or 0 for transport failures.
    """

    def __init__(self, message: str, image_id: str = "", status_code: int = 0) -> None:
        """
        Initialize ImageFetchError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        image_id : str, optional
            Image being downloaded (default: "").
        status_code : int, optional
            Upstream HTTP status (default: 0).
        """
        self.image_id = image_id
        self.status_code = status_code
        super().__init__(message)


class NonImagePayloadError(ImageFetchError):
    """
    Exception raised when upstream answers 200 with something that is not an image.

    Schedules Direct reports some errors as JSON bodies with HTTP 200; such
    bodies must never be written to the image cache.
    """

    def __init__(
        self,
        message: str,
        image_id: str = "",
        status_code: int = 200,
        content_type: str = "",
    ) -> None:
        """
        Initialize NonImagePayloadError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        image_id : str, optional
            Image being downloaded (default: "").
        status_code : int, optional
            Upstream HTTP status (default: 200).
        content_type : str, optional
            Content-Type header reported by upstream (default: "").
        """
        self.content_type = content_type
        super().__init__(message, image_id=image_id, status_code=status_code)


# =============================================================================
# Local Cache Exceptions
# =============================================================================


class CachedImageMissingError(GuideartError):
    """
    Exception raised when a cached poster disappears while it is being served.

    The stale-file evictor runs concurrently with requests and may unlink a
    file between the existence check and the read.

    Attributes
    ----------
    path : Path
        Cached file that could not be read.
    """

    def __init__(self, path: Path) -> None:
        """
        Initialize CachedImageMissingError.

        Parameters
        ----------
        path : Path
            Cached file that could not be read.
        """
        self.path = path
        super().__init__(f"Cached image {path.name} could not be read")


# =============================================================================
# API Layer Exceptions
# =============================================================================


class APIError(GuideartError):
    """Base exception for API layer errors.

    Attributes
    ----------
    status_code : int
        HTTP status code for the error response (default: 500).
    error_code : ErrorCode
        Machine-readable error code for API consumers.
    message : str
        Human-readable error message.
    details : dict[str, Any] | None
        Additional error context.
    """

    status_code: int = 500
    _error_code_value: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize APIError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        details : dict[str, Any] | None, optional
            Additional error context (default: None).
        """
        self.details = details
        super().__init__(message)

    @property
    def error_code(self) -> ErrorCode:
        """Get the error code as an ErrorCode enum."""
        return ErrorCode(self._error_code_value)


class NotFoundError(APIError):
    """Resource not found (404).

    Raised when no acceptable poster exists for a program. Callers treat it
    as the signal to consult an external fallback provider.

    Examples
    --------
    >>> raise NotFoundError(
    ...     resource_type="Poster",
    ...     identifier="EP012345670000",
    ...     hint="No candidate image passed selection.",
    ... )
    """

    status_code: int = 404
    _error_code_value: str = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        identifier: str,
        hint: str | None = None,
    ) -> None:
        """
        Initialize NotFoundError.

        Parameters
        ----------
        resource_type : str
            The type of resource that was not found.
        identifier : str
            The identifier used to look up the resource.
        hint : str | None, optional
            Additional hint for the user (default: None).
        """
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} '{identifier}' not found"
        if hint:
            message += f". {hint}"
        super().__init__(
            message=message,
            details={"resource_type": resource_type, "identifier": identifier},
        )


class BadRequestError(APIError):
    """Invalid request parameters (400)."""

    status_code: int = 400
    _error_code_value: str = "BAD_REQUEST"


class RateLimitError(APIError):
    """Rate limit exceeded (429).

    Raised while the global backoff gate is active and the requested image
    is not cached. The optional retry_after attribute becomes the
    ``Retry-After`` response header.

    Attributes
    ----------
    retry_after : int | None
        Number of seconds to wait before retrying, if available.
    """

    status_code: int = 429
    _error_code_value: str = "RATE_LIMITED"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        """
        Initialize RateLimitError.

        Parameters
        ----------
        message : str
            Human-readable error message.
        details : dict[str, Any] | None, optional
            Additional error context (default: None).
        retry_after : int | None, optional
            Number of seconds to wait before retrying (default: None).
        """
        self.retry_after = retry_after
        super().__init__(message=message, details=details)


class ExternalServiceError(APIError):
    """External service unavailable (502).

    Raised when Schedules Direct fails in a way a retry of the same request
    will not fix (auth rejected twice, non-image payload, transport error).
    """

    status_code: int = 502
    _error_code_value: str = "EXTERNAL_SERVICE_ERROR"


# Exit codes for CLI integration
EXIT_CODE_SUCCESS = 0
EXIT_CODE_GENERAL_ERROR = 1
EXIT_CODE_INVALID_ARGS = 2
EXIT_CODE_INTERRUPTED = 130  # Standard Unix signal interrupt exit code
