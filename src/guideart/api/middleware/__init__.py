"""Middleware components for the guideart API."""

from guideart.api.middleware.request_id import (
    RequestIdMiddleware,
    get_request_id,
    request_id_var,
)

__all__ = [
    "RequestIdMiddleware",
    "get_request_id",
    "request_id_var",
]
