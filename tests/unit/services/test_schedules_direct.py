"""
Tests for the Schedules Direct API client.

Upstream is an ``httpx.MockTransport``; no network access is needed.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from guideart import __version__
from guideart.exceptions import (
    ImageFetchError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamLoginError,
    UpstreamThrottledError,
)
from guideart.services.schedules_direct import (
    SchedulesDirectClient,
    hash_password,
    parse_server_time,
)
from tests.fakes import FIXED_NOW, PROGRAM_ID, SD_BASE_URL, FakeSchedulesDirect, candidate, login_body

pytestmark = pytest.mark.asyncio


def client_for(handler: Callable[[httpx.Request], httpx.Response]) -> SchedulesDirectClient:
    return SchedulesDirectClient(
        base_url=SD_BASE_URL,
        username="user",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


class TestHelpers:
    """Tests for module helpers."""

    async def test_hash_password_is_sha1_hex(self) -> None:
        """Passwords are sent as SHA-1 hex digests."""
        assert hash_password("secret") == hashlib.sha1(b"secret").hexdigest()

    async def test_parse_server_time(self) -> None:
        """ISO timestamps with a Z suffix parse as aware UTC."""
        assert parse_server_time("2024-03-01T18:30:00Z") == datetime(
            2024, 3, 1, 18, 30, tzinfo=timezone.utc
        )
        assert parse_server_time("not a date") is None
        assert parse_server_time(None) is None


class TestLogin:
    """Tests for SchedulesDirectClient.login()."""

    async def test_login_success(self) -> None:
        """A code 0 response yields the token and its expiry."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=login_body("tok-abc", FIXED_NOW + timedelta(days=1)))

        client = client_for(handler)
        token = await client.login()
        await client.aclose()

        assert token.value == "tok-abc"
        assert token.expiry == FIXED_NOW + timedelta(days=1)
        body = json.loads(seen[0].content)
        assert body == {"username": "user", "password": hash_password("secret")}
        assert seen[0].headers["user-agent"].startswith(f"guideart/{__version__}")

    async def test_login_without_expiry_defaults_to_a_day(self) -> None:
        """Missing tokenExpires means 24 hours after the server time."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"code": 0, "token": "t", "datetime": "2024-03-01T12:00:00Z"}
            )

        token = await client_for(handler).login()

        assert token.expiry == FIXED_NOW + timedelta(hours=24)

    async def test_too_many_logins_carries_code_and_server_time(self) -> None:
        """Rejections expose the upstream code and clock."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={
                    "code": 4009,
                    "message": "TOO_MANY_LOGINS",
                    "datetime": "2024-03-01T18:30:00Z",
                },
            )

        with pytest.raises(UpstreamLoginError) as exc_info:
            await client_for(handler).login()

        assert exc_info.value.code == 4009
        assert exc_info.value.server_time == datetime(2024, 3, 1, 18, 30, tzinfo=timezone.utc)

    async def test_non_json_response(self) -> None:
        """HTML error pages become login errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(UpstreamLoginError):
            await client_for(handler).login()

    async def test_transport_error(self) -> None:
        """Connection failures become login errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamLoginError):
            await client_for(handler).login()

    async def test_non_numeric_code(self) -> None:
        """A code that is not a number is a login error, not a crash."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": "oops", "token": "t"})

        with pytest.raises(UpstreamLoginError) as exc_info:
            await client_for(handler).login()

        assert "oops" in exc_info.value.message

    @pytest.mark.parametrize("expires", ["soon", [1]])
    async def test_invalid_token_expiry(self, expires: object) -> None:
        """An unparsable tokenExpires is a login error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 0, "token": "t", "tokenExpires": expires})

        with pytest.raises(UpstreamLoginError):
            await client_for(handler).login()


class TestFetchMetadata:
    """Tests for SchedulesDirectClient.fetch_metadata()."""

    async def test_returns_matching_program(self) -> None:
        """The program's artwork list is parsed into candidates."""
        upstream = FakeSchedulesDirect()
        upstream.metadata[PROGRAM_ID] = [candidate("abc", width="480")]
        client = client_for(upstream.handler)

        metadata = await client.fetch_metadata(PROGRAM_ID, "tok")

        assert metadata is not None
        assert metadata.program_id == PROGRAM_ID
        assert metadata.candidates[0].width == 480
        request = upstream.requests[0]
        assert request.headers["token"] == "tok"
        assert json.loads(request.content) == [PROGRAM_ID]

    async def test_error_entry_returns_none(self) -> None:
        """Per-program error objects mean "no artwork"."""
        upstream = FakeSchedulesDirect()

        assert await client_for(upstream.handler).fetch_metadata(PROGRAM_ID, "tok") is None

    @pytest.mark.parametrize("status", [401, 403])
    async def test_http_auth_rejection(self, status: int) -> None:
        """401 and 403 signal a rejected token."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"code": 4001})

        with pytest.raises(UpstreamAuthError):
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

    async def test_token_expired_code(self) -> None:
        """Code 4006 in a JSON body signals a rejected token."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 4006, "message": "TOKEN_EXPIRED"})

        with pytest.raises(UpstreamAuthError) as exc_info:
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

        assert exc_info.value.code == 4006

    async def test_other_error_object(self) -> None:
        """Any other error object is a generic upstream failure."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 3000, "message": "SERVICE_OFFLINE"})

        with pytest.raises(UpstreamError) as exc_info:
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

        assert not isinstance(exc_info.value, UpstreamAuthError)
        assert not isinstance(exc_info.value, UpstreamThrottledError)

    async def test_rate_limited_carries_retry_after(self) -> None:
        """HTTP 429 is a throttling error with the Retry-After delay."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                json={"code": 5002, "message": "MAX_IMAGE_DOWNLOADS"},
                headers={"Retry-After": "600"},
            )

        with pytest.raises(UpstreamThrottledError) as exc_info:
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

        assert exc_info.value.retry_after == 600
        assert exc_info.value.code == 0
        assert exc_info.value.paused_until is None

    @pytest.mark.parametrize("code", [5002, 5003])
    async def test_quota_error_object(self, code: int) -> None:
        """Download quota codes are throttling errors carrying the code."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": code, "message": "MAX_IMAGE_DOWNLOADS"})

        with pytest.raises(UpstreamThrottledError) as exc_info:
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

        assert exc_info.value.code == code

    async def test_quota_text_body(self) -> None:
        """A plain-text quota message is a throttling error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="Maximum number of image downloads reached")

        with pytest.raises(UpstreamThrottledError) as exc_info:
            await client_for(handler).fetch_metadata(PROGRAM_ID, "tok")

        assert exc_info.value.code == 5002


class TestFetchImage:
    """Tests for SchedulesDirectClient.fetch_image()."""

    async def test_returns_raw_response(self) -> None:
        """Non-200 responses are returned for the caller to judge."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "30"})

        response = await client_for(handler).fetch_image(f"{SD_BASE_URL}image/abc.jpg?token=t")

        assert response.status_code == 429

    async def test_timeout_does_not_leak_token(self) -> None:
        """Transport errors become ImageFetchError without the URL."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ImageFetchError) as exc_info:
            await client_for(handler).fetch_image(f"{SD_BASE_URL}image/abc.jpg?token=secret-tok")

        assert "secret-tok" not in str(exc_info.value)
