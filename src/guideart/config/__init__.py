"""
Configuration management module for guideart.

Handles application settings, environment variables, and the locations of
the cache sidecar files.
"""

from __future__ import annotations

__all__: list[str] = []
