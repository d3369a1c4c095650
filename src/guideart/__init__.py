"""
guideart - Self-hosted EPG poster resolver and image proxy.

Resolves the best poster artwork for Schedules Direct programs, keeps a
durable program-to-image index, and serves cached posters over HTTP.
"""

from __future__ import annotations

__version__ = "0.4.0"
__author__ = "guideart"
__email__ = "noreply@guideart.dev"
__license__ = "AGPL-3.0-or-later"

__all__ = ["__version__", "__author__", "__email__", "__license__"]
