"""Poster proxy endpoints.

- GET /proxy/sd/{program_id}: best poster for a program
- GET /proxy/sd/{program_id}/{image_id}: a specific (pinned) image

Both return image bytes on success and RFC 7807 problems on 400, 404, 429
(with ``Retry-After``) and 502.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from starlette.responses import Response

from guideart.api.deps import get_poster_proxy
from guideart.services.poster_proxy import PosterProxyService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Router (public, consumed by media players and guide clients)
# ---------------------------------------------------------------------------
router = APIRouter(prefix="/proxy/sd", tags=["proxy"])

_IMAGE_RESPONSES: dict[int | str, dict] = {
    200: {
        "content": {
            "image/jpeg": {},
            "image/png": {},
            "image/webp": {},
            "image/gif": {},
        },
        "description": "Poster image",
    },
    400: {"description": "Missing program id"},
    404: {"description": "No acceptable poster for this program"},
    429: {"description": "Upstream paused; retry after the given delay"},
    502: {"description": "Schedules Direct request failed"},
}


@router.get(
    "/{program_id}",
    responses=_IMAGE_RESPONSES,
    response_class=Response,
)
async def get_program_poster(
    program_id: str = Path(..., description="Program id, optionally ending in .jpg"),
    title: Optional[str] = Query(
        default=None,
        description="Program title, used for override matching",
    ),
    service: PosterProxyService = Depends(get_poster_proxy),
) -> Response:
    """Serve the best poster for a program.

    Parameters
    ----------
    program_id : str
        Schedules Direct program id (e.g. ``EP012345670000``).
    title : str | None
        Optional title for override matching when the program is unknown.
    service : PosterProxyService
        Injected proxy service.

    Returns
    -------
    Response
        Image bytes with Cache-Control, Last-Modified and X-Cache headers.
    """
    return await service.get_program_image(program_id, title=title)


@router.get(
    "/{program_id}/{image_id}",
    responses=_IMAGE_RESPONSES,
    response_class=Response,
)
async def get_pinned_poster(
    program_id: str = Path(..., description="Program id"),
    image_id: str = Path(..., description="Schedules Direct image id"),
    service: PosterProxyService = Depends(get_poster_proxy),
) -> Response:
    """Serve a specific image for a program, bypassing selection."""
    return await service.get_program_image(program_id, image_id=image_id)
