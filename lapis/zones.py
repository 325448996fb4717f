"""Zone constraint engine -- keeps elements inside their edit zone while editing.

Runs synchronously inside every move/resize handler, so everything here is
plain arithmetic: no I/O, no awaits.

Per axis, independently:
  1. if the scaled box is larger than the zone, that axis's scale becomes
     ``zone_size / natural_size`` (sign kept; aspect ratio is NOT preserved);
  2. if the box then crosses a zone edge, the anchor position is shifted so
     the box edge sits exactly on that zone edge.

Boxes are axis-aligned and ignore rotation, matching the editor's own
bounding-box test.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from lapis.models import (
    ORIGIN_X_FRACTION,
    ORIGIN_Y_FRACTION,
    CanvasFrame,
    EditZone,
    ElementBase,
    ElementBounds,
    PixelRect,
)
from lapis.units import to_pixels

logger = logging.getLogger("lapis.zones")


def zone_to_pixels(zone: EditZone, frame: CanvasFrame) -> PixelRect:
    """Convert a zone rectangle (inches) to canvas pixel bounds.

    ``zone.x == "center"`` centers the zone on the frame width.
    """
    scale = frame.scale
    width_px = to_pixels(zone.width, scale)
    height_px = to_pixels(zone.height, scale)
    if zone.x == "center":
        left = (frame.pixel_width - width_px) / 2
    else:
        left = to_pixels(zone.x, scale)
    top = to_pixels(zone.y, scale)
    return PixelRect(left=left, top=top, right=left + width_px, bottom=top + height_px)


def _fit_scale(natural: float, scale: float, limit: float) -> float:
    """Reduce |scale| so ``natural * |scale| <= limit``; keep the sign."""
    if natural <= 0 or abs(natural * scale) <= limit:
        return scale
    return math.copysign(limit / natural, scale)


def _clamp_axis(anchor: float, size: float, fraction: float, lo: float, hi: float) -> float:
    """Return the anchor position that keeps [start, start + size] within [lo, hi]."""
    start = anchor - fraction * size
    if start < lo:
        return lo + fraction * size
    if start + size > hi:
        return hi - size + fraction * size
    return anchor


def constrain(bounds: ElementBounds, zone_px: PixelRect) -> ElementBounds:
    """Clamp an element's position and scale to ``zone_px``.

    Returns a new :class:`ElementBounds`; the input is not modified.
    """
    scale_x = _fit_scale(bounds.width, bounds.scale_x, zone_px.width)
    scale_y = _fit_scale(bounds.height, bounds.scale_y, zone_px.height)

    w = abs(bounds.width * scale_x)
    h = abs(bounds.height * scale_y)
    left = _clamp_axis(
        bounds.left, w, ORIGIN_X_FRACTION[bounds.origin_x], zone_px.left, zone_px.right
    )
    top = _clamp_axis(
        bounds.top, h, ORIGIN_Y_FRACTION[bounds.origin_y], zone_px.top, zone_px.bottom
    )

    return bounds.model_copy(
        update={"left": left, "top": top, "scale_x": scale_x, "scale_y": scale_y}
    )


def bounds_of(element: ElementBase) -> ElementBounds:
    """Extract the zone-relevant fields of a design element."""
    return ElementBounds(
        left=element.left,
        top=element.top,
        width=element.width,
        height=element.height,
        scale_x=element.scale_x,
        scale_y=element.scale_y,
        origin_x=element.origin_x,
        origin_y=element.origin_y,
    )


def constrain_element(
    element: ElementBase,
    zones: Sequence[EditZone],
    frame: CanvasFrame,
) -> ElementBounds:
    """Apply the zone named by ``element.zone_id``.

    Elements without a zone id -- or naming a zone that does not exist -- are
    returned unconstrained.
    """
    bounds = bounds_of(element)
    if not element.zone_id:
        return bounds
    zone = next((z for z in zones if z.id == element.zone_id), None)
    if zone is None:
        logger.debug("Element %s references unknown zone %s", element.id, element.zone_id)
        return bounds
    return constrain(bounds, zone_to_pixels(zone, frame))
