"""FastAPI dependencies for API endpoints."""

from __future__ import annotations

from guideart.container import Container, container
from guideart.services.backoff_gate import BackoffGate
from guideart.services.poster_proxy import PosterProxyService


def get_poster_proxy() -> PosterProxyService:
    """
    Dependency for the poster proxy service.

    Returns
    -------
    PosterProxyService
        Singleton service from the application container. Tests replace it
        through ``app.dependency_overrides``.
    """
    return container.poster_proxy


def get_backoff_gate() -> BackoffGate:
    """Dependency for the global upstream pause."""
    return container.gate


def get_container() -> Container:
    """Dependency for the application container (health and admin views)."""
    return container
