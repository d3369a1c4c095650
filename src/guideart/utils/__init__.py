"""Utility modules for guideart."""

from guideart.utils.clock import Clock, utc_now
from guideart.utils.files import atomic_write_bytes
from guideart.utils.image_urls import build_fetch_url, image_id_from_uri, user_agent

__all__ = [
    "Clock",
    "atomic_write_bytes",
    "build_fetch_url",
    "image_id_from_uri",
    "user_agent",
    "utc_now",
]
