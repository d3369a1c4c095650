"""
Tests for the guideart exception hierarchy.
"""

from __future__ import annotations

from guideart.api.schemas.responses import ErrorCode
from guideart.exceptions import (
    APIError,
    BadRequestError,
    ExternalServiceError,
    GuideartError,
    ImageFetchError,
    NonImagePayloadError,
    NotFoundError,
    RateLimitError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamLoginError,
    UpstreamThrottledError,
)


class TestUpstreamErrors:
    """Tests for upstream exception types."""

    def test_hierarchy(self) -> None:
        """Every upstream error is a GuideartError."""
        for exc_type in (
            UpstreamLoginError,
            UpstreamAuthError,
            UpstreamThrottledError,
            ImageFetchError,
            NonImagePayloadError,
        ):
            assert issubclass(exc_type, UpstreamError)
            assert issubclass(exc_type, GuideartError)
        assert issubclass(NonImagePayloadError, ImageFetchError)

    def test_login_error_attributes(self) -> None:
        """Login errors default to code 0 and no server time."""
        error = UpstreamLoginError()

        assert error.code == 0
        assert error.server_time is None
        assert "login" in error.message.lower()

    def test_throttled_error_attributes(self) -> None:
        """Throttling carries the retry delay."""
        error = UpstreamThrottledError("quota", retry_after=60)

        assert error.retry_after == 60
        assert error.paused_until is None
        assert str(error) == "quota"

    def test_non_image_payload_defaults(self) -> None:
        """Non-image payloads default to HTTP 200."""
        error = NonImagePayloadError("html", image_id="abc", content_type="text/html")

        assert error.status_code == 200
        assert error.image_id == "abc"
        assert error.content_type == "text/html"


class TestApiErrors:
    """Tests for API-layer exception types."""

    def test_status_and_codes(self) -> None:
        """Each API error maps to its HTTP status and error code."""
        cases = [
            (NotFoundError("Poster", "EP1"), 404, ErrorCode.NOT_FOUND),
            (BadRequestError("bad"), 400, ErrorCode.BAD_REQUEST),
            (RateLimitError("slow"), 429, ErrorCode.RATE_LIMITED),
            (ExternalServiceError("down"), 502, ErrorCode.EXTERNAL_SERVICE_ERROR),
            (APIError("boom"), 500, ErrorCode.INTERNAL_ERROR),
        ]
        for error, status, code in cases:
            assert error.status_code == status
            assert error.error_code is code

    def test_not_found_message_and_details(self) -> None:
        """The hint is appended to the message."""
        error = NotFoundError("Poster", "EP1", hint="No candidate image passed selection.")

        assert error.message == "Poster 'EP1' not found. No candidate image passed selection."
        assert error.details == {"resource_type": "Poster", "identifier": "EP1"}

    def test_rate_limit_retry_after(self) -> None:
        """retry_after is optional."""
        assert RateLimitError("slow").retry_after is None
        assert RateLimitError("slow", retry_after=5).retry_after == 5
