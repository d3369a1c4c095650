"""Request ID middleware for correlating log lines and problem responses.

The ``X-Request-ID`` header of an incoming request is reused when it is
printable ASCII, otherwise a UUID4 is generated. The id is stored in a
context variable so exception handlers can report it, and echoed back on
the response.
"""

from __future__ import annotations

import contextvars
import logging
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.middleware.base import RequestResponseEndpoint

logger = logging.getLogger(__name__)

MAX_REQUEST_ID_LENGTH = 128

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def get_request_id() -> str:
    """Current request id, or an empty string outside a request."""
    return request_id_var.get()


def _sanitize_request_id(header_value: str | None) -> str:
    """Accept a client supplied id if it is printable ASCII, else make one up.

    Parameters
    ----------
    header_value : str | None
        Raw ``X-Request-ID`` header value.

    Returns
    -------
    str
        Request id, truncated to ``MAX_REQUEST_ID_LENGTH`` characters.
    """
    if not header_value or not all(33 <= ord(c) <= 126 for c in header_value):
        return str(uuid.uuid4())
    return header_value[:MAX_REQUEST_ID_LENGTH]


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagates a request id through contextvars and response headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _sanitize_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(request_id)
        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)
