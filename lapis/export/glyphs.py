"""Glyph-to-path conversion -- text outlines as closed polylines, in inches.

The outline's origin is the start of the first line's baseline and Y points
up, the font's own convention.  ``size`` is the em size in inches, so a glyph
spanning the full em is exactly ``size`` tall.

Quadratic and cubic segments are flattened with a chordal tolerance: a
segment is split into ``n`` chords where ``n`` bounds the distance between
the curve and its chords by ``tolerance`` (from the curve's second
derivative).
"""

from __future__ import annotations

import math
from typing import Literal

from fontTools.pens.basePen import BasePen
from fontTools.pens.transformPen import TransformPen

from lapis.config import DEFAULT_FLATTEN_TOLERANCE
from lapis.errors import FontNotLoaded
from lapis.export.fonts import FontResource, FontResourceCache
from lapis.geometry import Polyline, VectorModel

Point = tuple[float, float]

# Upper bound on chords per curve segment.
MAX_CURVE_STEPS = 64


def _steps(deviation: float, tolerance: float) -> int:
    if deviation <= 0:
        return 1
    return max(1, min(MAX_CURVE_STEPS, math.ceil(math.sqrt(deviation / tolerance))))


class OutlinePen(BasePen):
    """Collects contours as polylines, flattening curves on the way in."""

    def __init__(self, glyph_set, tolerance: float = DEFAULT_FLATTEN_TOLERANCE) -> None:
        super().__init__(glyph_set)
        self.tolerance = tolerance
        self.contours: list[Polyline] = []
        self._points: list[Point] = []

    def _moveTo(self, pt):
        self._flush(closed=True)
        self._points = [pt]

    def _lineTo(self, pt):
        self._points.append(pt)

    def _qCurveToOne(self, pt1, pt2):
        x0, y0 = self._getCurrentPoint()
        (x1, y1), (x2, y2) = pt1, pt2
        # max chord error of a quadratic = |p0 - 2p1 + p2| h^2 / 4
        d = math.hypot(x0 - 2 * x1 + x2, y0 - 2 * y1 + y2)
        n = _steps(d / 4, self.tolerance)
        for i in range(1, n + 1):
            t = i / n
            u = 1 - t
            self._points.append((
                u * u * x0 + 2 * u * t * x1 + t * t * x2,
                u * u * y0 + 2 * u * t * y1 + t * t * y2,
            ))

    def _curveToOne(self, pt1, pt2, pt3):
        x0, y0 = self._getCurrentPoint()
        (x1, y1), (x2, y2), (x3, y3) = pt1, pt2, pt3
        d = max(
            math.hypot(x0 - 2 * x1 + x2, y0 - 2 * y1 + y2),
            math.hypot(x1 - 2 * x2 + x3, y1 - 2 * y2 + y3),
        )
        # max chord error of a cubic <= 6 d h^2 / 8
        n = _steps(0.75 * d, self.tolerance)
        for i in range(1, n + 1):
            t = i / n
            u = 1 - t
            a, b, c, e = u * u * u, 3 * u * u * t, 3 * u * t * t, t * t * t
            self._points.append((
                a * x0 + b * x1 + c * x2 + e * x3,
                a * y0 + b * y1 + c * y2 + e * y3,
            ))

    def _closePath(self):
        self._flush(closed=True)

    def _endPath(self):
        self._flush(closed=False)

    def _flush(self, closed: bool) -> None:
        points = self._points
        self._points = []
        if closed and len(points) > 1 and points[-1] == points[0]:
            points = points[:-1]
        if len(points) < 2:
            return
        pts = tuple((float(x), float(y)) for x, y in points)
        self.contours.append(Polyline(pts, closed=closed and len(pts) > 2))


def _layout_line(font: FontResource, line: str, em: float, spacing: float) -> tuple[list[tuple[str, float]], float]:
    """Return (glyph name, x offset) pairs and the advance width of ``line``."""
    placed: list[tuple[str, float]] = []
    x = 0.0
    for ch in line:
        name = font.glyph_name(ch)
        if name is None:
            continue
        placed.append((name, x))
        x += font.advance(name) * em + spacing
    if placed:
        x -= spacing
    return placed, x


def text_to_path(
    content: str,
    font: FontResource,
    size: float,
    *,
    char_spacing: float = 0.0,
    line_height: float = 1.16,
    text_align: Literal["left", "center", "right"] = "left",
    tolerance: float = DEFAULT_FLATTEN_TOLERANCE,
) -> VectorModel:
    """Convert ``content`` to outline geometry.

    Args:
        content: Text; ``\\n`` separates lines.
        font: Loaded font resource.
        size: Em size in inches.
        char_spacing: Extra advance between characters, in 1/1000 em.
        line_height: Baseline-to-baseline distance as a multiple of ``size``.
        text_align: Horizontal alignment of lines against the widest line.
        tolerance: Maximum curve flattening error, in inches.

    Returns:
        VectorModel with one sub-model per line (``line0``, ``line1``, ...).
    """
    em = size / font.units_per_em
    spacing = char_spacing / 1000.0 * size
    lines = [_layout_line(font, line, em, spacing) for line in content.splitlines() or [""]]
    widest = max(width for _, width in lines)

    model = VectorModel()
    for index, (placed, width) in enumerate(lines):
        if text_align == "center":
            x0 = (widest - width) / 2
        elif text_align == "right":
            x0 = widest - width
        else:
            x0 = 0.0
        baseline = -index * line_height * size

        pen = OutlinePen(font.glyph_set, tolerance)
        for name, x in placed:
            font.draw(name, TransformPen(pen, (em, 0, 0, em, x0 + x, baseline)))

        line_model = VectorModel()
        for contour in pen.contours:
            line_model.add_path(contour)
        if not line_model.is_empty():
            model.add_model(f"line{index}", line_model)
    return model


def convert_text(
    content: str,
    family: str,
    size: float,
    fonts: FontResourceCache,
    **layout,
) -> VectorModel:
    """Resolve ``family`` from the cache and convert; raises FontNotLoaded."""
    font = fonts.get(family)
    if font is None:
        raise FontNotLoaded(family)
    return text_to_path(content, font, size, **layout)
