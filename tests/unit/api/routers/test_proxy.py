"""
Unit tests for the poster proxy API endpoints.

The proxy service is replaced through ``app.dependency_overrides`` so the
tests cover routing, headers and error rendering only.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.responses import Response

from guideart.api.deps import get_poster_proxy
from guideart.api.main import app
from guideart.exceptions import (
    BadRequestError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
)
from guideart.services.poster_proxy import PosterProxyService
from tests.fakes import JPEG_BYTES, PROGRAM_ID

# CRITICAL: This line ensures async tests work with coverage
pytestmark = pytest.mark.asyncio


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def mock_service() -> MagicMock:
    """Proxy service double returning a cached JPEG."""
    service = MagicMock(spec=PosterProxyService)
    service.get_program_image = AsyncMock(
        return_value=Response(
            content=JPEG_BYTES,
            media_type="image/jpeg",
            headers={
                "Cache-Control": "public, max-age=31536000, immutable",
                "X-Cache": "HIT",
            },
        )
    )
    return service


@pytest.fixture
async def async_client(mock_service: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with the proxy service overridden."""
    app.dependency_overrides[get_poster_proxy] = lambda: mock_service
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Program Poster Endpoint Tests
# ═══════════════════════════════════════════════════════════════════════════


class TestProgramPosterEndpoint:
    """Tests for GET /proxy/sd/{program_id}."""

    async def test_returns_image_bytes_and_cache_headers(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """Image bytes are passed through with the service's headers."""
        response = await async_client.get(f"/proxy/sd/{PROGRAM_ID}")

        assert response.status_code == 200
        assert response.content == JPEG_BYTES
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["x-cache"] == "HIT"
        assert response.headers["cache-control"] == "public, max-age=31536000, immutable"
        mock_service.get_program_image.assert_awaited_once_with(PROGRAM_ID, title=None)

    async def test_jpg_suffix_and_title_are_forwarded(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """The raw path segment and title query reach the service."""
        await async_client.get(f"/proxy/sd/{PROGRAM_ID}.jpg", params={"title": "The Show"})

        mock_service.get_program_image.assert_awaited_once_with(
            f"{PROGRAM_ID}.jpg", title="The Show"
        )

    async def test_request_id_is_echoed(self, async_client: AsyncClient) -> None:
        """A client supplied X-Request-ID comes back on the response."""
        response = await async_client.get(
            f"/proxy/sd/{PROGRAM_ID}", headers={"X-Request-ID": "req-123"}
        )

        assert response.headers["x-request-id"] == "req-123"

    async def test_not_found_is_problem_json(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """No acceptable poster renders as an RFC 7807 404."""
        mock_service.get_program_image.side_effect = NotFoundError(
            "Poster", PROGRAM_ID, hint="No candidate image passed selection."
        )

        response = await async_client.get(f"/proxy/sd/{PROGRAM_ID}")

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/problem+json"
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["status"] == 404
        assert body["instance"] == f"/proxy/sd/{PROGRAM_ID}"
        assert body["request_id"]

    async def test_bad_request(self, async_client: AsyncClient, mock_service: MagicMock) -> None:
        """Blank program ids are a 400."""
        mock_service.get_program_image.side_effect = BadRequestError("Missing program id")

        response = await async_client.get("/proxy/sd/%20")

        assert response.status_code == 400
        assert response.json()["code"] == "BAD_REQUEST"

    async def test_rate_limited_sets_retry_after(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """A paused upstream renders 429 with Retry-After."""
        mock_service.get_program_image.side_effect = RateLimitError(
            "Schedules Direct image fetches are paused", retry_after=321
        )

        response = await async_client.get(f"/proxy/sd/{PROGRAM_ID}")

        assert response.status_code == 429
        assert response.headers["retry-after"] == "321"
        assert response.json()["code"] == "RATE_LIMITED"

    async def test_upstream_failure_hides_details(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """502 responses carry a generic detail only."""
        mock_service.get_program_image.side_effect = ExternalServiceError(
            "Schedules Direct request failed: token=abc",
            details={"program_id": PROGRAM_ID},
        )

        response = await async_client.get(f"/proxy/sd/{PROGRAM_ID}")

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "EXTERNAL_SERVICE_ERROR"
        assert "token" not in body["detail"]


class TestPinnedPosterEndpoint:
    """Tests for GET /proxy/sd/{program_id}/{image_id}."""

    async def test_image_id_is_forwarded(
        self, async_client: AsyncClient, mock_service: MagicMock
    ) -> None:
        """The explicit image id reaches the service."""
        response = await async_client.get(f"/proxy/sd/{PROGRAM_ID}/abc123.jpg")

        assert response.status_code == 200
        mock_service.get_program_image.assert_awaited_once_with(
            PROGRAM_ID, image_id="abc123.jpg"
        )
