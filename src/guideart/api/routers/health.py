"""Health check endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from guideart import __version__
from guideart.api.deps import get_container
from guideart.api.routers.admin import pause_status
from guideart.api.schemas.responses import HealthResponse, HealthStatus
from guideart.container import Container

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(app_container: Container = Depends(get_container)) -> HealthResponse:
    """
    Liveness plus a cache summary.

    Reports "degraded" while upstream fetches are paused or when no
    Schedules Direct credentials are configured; cached posters are still
    served in both cases.
    """
    pause = pause_status(app_container.gate)
    has_credentials = app_container.settings.has_credentials
    status = "degraded" if pause.active or not has_credentials else "healthy"

    health_data = HealthStatus(
        status=status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        credentials_configured=has_credentials,
        indexed_programs=len(app_container.index),
        downloads_in_flight=len(app_container.coordinator.in_flight()),
        pause=pause,
    )
    return HealthResponse(data=health_data)
