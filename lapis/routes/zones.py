"""POST /api/zones/constrain -- zone constraint for one element.

Thin wrapper over ``lapis.zones.constrain`` for editing surfaces that
delegate the check to the backend.  Pure arithmetic; no I/O.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from lapis.errors import InvalidDimension
from lapis.models import ConstrainRequest, ConstrainResponse
from lapis.units import format_measurement
from lapis.zones import constrain, zone_to_pixels

logger = logging.getLogger("lapis.zones")

router = APIRouter(prefix="/api/zones", tags=["zones"])


@router.post("/constrain", response_model=ConstrainResponse, response_model_by_alias=True)
async def constrain_bounds(request: ConstrainRequest) -> ConstrainResponse:
    """Return the element bounds clamped to the zone, and the zone in pixels."""
    try:
        zone_px = zone_to_pixels(request.zone, request.frame)
    except InvalidDimension as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    bounds = constrain(request.bounds, zone_px)
    adjusted = bounds != request.bounds
    if adjusted:
        scale = request.frame.scale
        logger.debug(
            "Constrained to zone %s: left %s, top %s",
            request.zone.id,
            format_measurement(bounds.left, scale),
            format_measurement(bounds.top, scale),
        )
    return ConstrainResponse(bounds=bounds, zone_px=zone_px, adjusted=adjusted)
