"""Planar geometric primitives -- lines, arcs, circles and polylines.

Primitives are immutable.  ``transformed(m)`` takes a 3x3 affine matrix and
returns a new primitive.  Circles and arcs stay exact under similarity
transforms (uniform scale, rotation, translation, mirroring); anything else
(non-uniform scale, shear) turns them into polylines.

Angles are degrees, counter-clockwise from +X, as in DXF.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

import numpy as np
from numpy.typing import NDArray

Point = tuple[float, float]

# Polyline resolution used when an arc or circle cannot stay exact.
ARC_SEGMENTS_PER_TURN: int = 72

_SIMILARITY_TOL = 1e-9


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def apply_matrix(m: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Apply a 3x3 affine matrix to an (N, 2) array of points."""
    return points @ m[:2, :2].T + m[:2, 2]


def _to_points(points: NDArray[np.float64]) -> tuple[Point, ...]:
    return tuple((float(x), float(y)) for x, y in points)


def similarity_parts(m: NDArray[np.float64]) -> tuple[float, float, bool] | None:
    """Split a similarity matrix into (scale, rotation_deg, mirrored).

    Returns None when the linear part is not a similarity.
    """
    a, c = m[0, 0], m[0, 1]
    b, d = m[1, 0], m[1, 1]
    sx = math.hypot(a, b)
    sy = math.hypot(c, d)
    if sx == 0 or sy == 0:
        return None
    if abs(sx - sy) > _SIMILARITY_TOL * max(sx, sy):
        return None
    if abs(a * c + b * d) > _SIMILARITY_TOL * sx * sy:
        return None
    mirrored = (a * d - b * c) < 0
    return sx, math.degrees(math.atan2(b, a)), mirrored


# ---------------------------------------------------------------------------
# Extents
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Extents:
    """Axis-aligned bounding box."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    def union(self, other: Extents | None) -> Extents:
        if other is None:
            return self
        return Extents(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @classmethod
    def of_points(cls, points: NDArray[np.float64]) -> Extents:
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return cls(float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1]))


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Line:
    start: Point
    end: Point

    def transformed(self, m: NDArray[np.float64]) -> Line:
        pts = apply_matrix(m, np.array([self.start, self.end], dtype=float))
        return Line(*_to_points(pts))

    def extents(self) -> Extents:
        return Extents.of_points(np.array([self.start, self.end], dtype=float))


@dataclass(frozen=True, slots=True)
class Polyline:
    """Chain of straight segments.  ``closed`` joins the last point to the first."""

    points: tuple[Point, ...]
    closed: bool = True

    def transformed(self, m: NDArray[np.float64]) -> Polyline:
        pts = apply_matrix(m, np.asarray(self.points, dtype=float))
        return Polyline(_to_points(pts), self.closed)

    def extents(self) -> Extents:
        return Extents.of_points(np.asarray(self.points, dtype=float))

    def segments(self) -> list[Line]:
        """Individual line segments, including the closing one."""
        pts = list(self.points)
        if self.closed and len(pts) > 2:
            pts.append(pts[0])
        return [Line(pts[i], pts[i + 1]) for i in range(len(pts) - 1)]


@dataclass(frozen=True, slots=True)
class Circle:
    center: Point
    radius: float

    def tessellate(self) -> Polyline:
        t = np.linspace(0.0, 2 * math.pi, ARC_SEGMENTS_PER_TURN, endpoint=False)
        cx, cy = self.center
        pts = np.column_stack([cx + self.radius * np.cos(t), cy + self.radius * np.sin(t)])
        return Polyline(_to_points(pts), closed=True)

    def transformed(self, m: NDArray[np.float64]) -> Circle | Polyline:
        parts = similarity_parts(m)
        if parts is None:
            return self.tessellate().transformed(m)
        scale, _, _ = parts
        center = apply_matrix(m, np.array([self.center], dtype=float))[0]
        return Circle((float(center[0]), float(center[1])), self.radius * scale)

    def extents(self) -> Extents:
        cx, cy = self.center
        r = self.radius
        return Extents(cx - r, cy - r, cx + r, cy + r)


@dataclass(frozen=True, slots=True)
class Arc:
    """Counter-clockwise arc from ``start_angle`` to ``end_angle``."""

    center: Point
    radius: float
    start_angle: float
    end_angle: float

    @property
    def sweep(self) -> float:
        """Swept angle in (0, 360]; equal start/end is a full turn."""
        sweep = (self.end_angle - self.start_angle) % 360.0
        return sweep if sweep > 0 else 360.0

    def point_at(self, angle: float) -> Point:
        rad = math.radians(angle)
        cx, cy = self.center
        return (cx + self.radius * math.cos(rad), cy + self.radius * math.sin(rad))

    def tessellate(self) -> Polyline:
        n = max(2, math.ceil(self.sweep / 360.0 * ARC_SEGMENTS_PER_TURN))
        angles = self.start_angle + np.linspace(0.0, self.sweep, n + 1)
        return Polyline(tuple(self.point_at(float(a)) for a in angles), closed=False)

    def transformed(self, m: NDArray[np.float64]) -> Arc | Polyline:
        parts = similarity_parts(m)
        if parts is None:
            return self.tessellate().transformed(m)
        scale, rotation, mirrored = parts
        center = apply_matrix(m, np.array([self.center], dtype=float))[0]
        if mirrored:
            # A reflected direction theta lands at (rotation - theta): the arc
            # keeps its CCW orientation by swapping the ends.
            start, end = rotation - self.end_angle, rotation - self.start_angle
        else:
            start, end = rotation + self.start_angle, rotation + self.end_angle
        return Arc(
            (float(center[0]), float(center[1])),
            self.radius * scale,
            start % 360.0,
            end % 360.0,
        )

    def extents(self) -> Extents:
        pts = [self.point_at(self.start_angle), self.point_at(self.start_angle + self.sweep)]
        first = math.ceil(self.start_angle / 90.0) * 90.0
        quadrant = first
        while quadrant <= self.start_angle + self.sweep:
            pts.append(self.point_at(quadrant))
            quadrant += 90.0
        return Extents.of_points(np.asarray(pts, dtype=float))


Primitive = Union[Line, Polyline, Circle, Arc]
