"""Admin endpoints for the global upstream pause."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from guideart.api.deps import get_backoff_gate
from guideart.api.schemas.responses import PauseResponse, PauseStatus
from guideart.services.backoff_gate import BackoffGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def pause_status(gate: BackoffGate) -> PauseStatus:
    """Snapshot of the gate for API responses."""
    active, remaining = gate.should_block()
    return PauseStatus(
        active=active,
        paused_until=gate.paused_until if active else None,
        remaining_seconds=int(remaining.total_seconds()) if active else 0,
        reason=gate.reason if active else None,
    )


@router.get("/pause", response_model=PauseResponse)
async def get_pause(gate: BackoffGate = Depends(get_backoff_gate)) -> PauseResponse:
    """Report whether upstream image fetches are paused."""
    return PauseResponse(data=pause_status(gate))


@router.delete("/pause", response_model=PauseResponse)
async def clear_pause(gate: BackoffGate = Depends(get_backoff_gate)) -> PauseResponse:
    """Lift the global pause immediately."""
    logger.info("Global pause cleared through admin endpoint")
    gate.clear()
    return PauseResponse(data=pause_status(gate))
