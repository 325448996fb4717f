"""Vector source normalizer -- artwork and template files as sized VectorModels.

A source is an SVG or DXF file referenced by URL or path.  Normalizing it:

  1. fetch the bytes (cached process-wide by ``SourceCache``);
  2. extract the drawable geometry, flattening curves to polylines;
  3. map it into ``target_width x target_height`` (inches).

The mapping uses the file's declared frame when it has one (SVG ``viewBox``
or ``width``/``height``), so margins drawn into the artwork survive; without
one, the union bounding box of the geometry is stretched to the target.

The result uses the top-left origin, Y-down convention of the editing
surface; the transformer mirrors it into the manufacturing frame.

``normalize`` never raises: the strategies in ``VectorSourceNormalizer.
strategies`` are tried in order and the last one (a rectangle of exactly the
target size) always succeeds.  Every degradation is logged.
"""

from __future__ import annotations

import io
import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator

import anyio
import numpy as np
import svgelements
from ezdxf import path as dxfpath
from ezdxf import recover

from lapis.config import DEFAULT_FLATTEN_TOLERANCE
from lapis.errors import VectorParseFailed, VectorSourceFetchFailed
from lapis.export.fetch import FETCH_ERRORS, ResourceFetcher
from lapis.geometry import Extents, Polyline, VectorModel
from lapis.geometry import transform as tf

logger = logging.getLogger("lapis.sources")

# DXF entity types that carry drawable geometry.
DXF_GEOMETRY_TYPES: frozenset[str] = frozenset(
    {"LINE", "ARC", "CIRCLE", "LWPOLYLINE", "POLYLINE", "ELLIPSE", "SPLINE"}
)

# Upper bound on chords per curve segment.
MAX_CURVE_STEPS = 64


# ---------------------------------------------------------------------------
# Source cache
# ---------------------------------------------------------------------------


class SourceCache:
    """Process-wide source -> bytes map with negative caching.

    A failed fetch is remembered and re-raised as the same
    :class:`VectorSourceFetchFailed` on every later request.
    """

    def __init__(self, fetcher: ResourceFetcher) -> None:
        self._fetcher = fetcher
        self._entries: dict[str, bytes | VectorSourceFetchFailed] = {}
        self._pending: dict[str, anyio.Event] = {}

    def __contains__(self, source: object) -> bool:
        return source in self._entries

    def clear(self) -> None:
        """Forget every cached entry.

        Loads already in flight (``_pending``) are left alone: they still
        store their result when they complete.
        """
        self._entries.clear()

    async def get(self, source: str) -> bytes:
        if source not in self._entries:
            pending = self._pending.get(source)
            if pending is not None:
                await pending.wait()
            else:
                await self._load(source)
        entry = self._entries.get(source)
        if entry is None:
            raise VectorSourceFetchFailed(source, "load was interrupted")
        if isinstance(entry, VectorSourceFetchFailed):
            raise entry
        return entry

    async def _load(self, source: str) -> None:
        event = anyio.Event()
        self._pending[source] = event
        try:
            try:
                self._entries[source] = await self._fetcher.fetch(source)
            except FETCH_ERRORS as exc:
                self._entries[source] = VectorSourceFetchFailed(source, str(exc) or type(exc).__name__)
        finally:
            del self._pending[source]
            event.set()


# ---------------------------------------------------------------------------
# Parsed geometry
# ---------------------------------------------------------------------------


@dataclass
class SourceGeometry:
    """Contours in source units plus the frame they are measured against."""

    contours: list[tuple[np.ndarray, bool]]    # (N, 2) points, closed
    frame: Extents
    y_up: bool = False


def _steps(deviation: float, tolerance: float) -> int:
    if deviation <= 0 or tolerance <= 0:
        return 1
    return max(1, min(MAX_CURVE_STEPS, math.ceil(math.sqrt(deviation / tolerance))))


def _looks_like_svg(data: bytes) -> bool:
    head = data[:2048].lstrip(b"\xef\xbb\xbf \t\r\n")
    return head.startswith(b"<")


# ── SVG ───────────────────────────────────────────────────────────────────


def _svg_root_frame(data: bytes) -> tuple[bool, dict[str, float]]:
    """Whether the root declares a frame, plus the viewport to parse with.

    A root with a ``viewBox`` but no explicit size is parsed at the viewBox
    size so user units map 1:1 onto the viewport.
    """
    root = ET.fromstring(data)
    viewbox = root.get("viewBox")
    width, height = root.get("width"), root.get("height")
    viewport: dict[str, float] = {}
    if viewbox and not (width and height):
        parts = viewbox.replace(",", " ").split()
        if len(parts) == 4:
            viewport = {"width": float(parts[2]), "height": float(parts[3])}
    return bool(viewbox or width or height), viewport


def _svg_segment_steps(seg, tolerance: float) -> int:
    if isinstance(seg, svgelements.QuadraticBezier):
        p0, p1, p2 = seg.start, seg.control, seg.end
        d = math.hypot(p0.x - 2 * p1.x + p2.x, p0.y - 2 * p1.y + p2.y)
        return _steps(d / 4, tolerance)
    if isinstance(seg, svgelements.CubicBezier):
        p0, p1, p2, p3 = seg.start, seg.control1, seg.control2, seg.end
        d = max(
            math.hypot(p0.x - 2 * p1.x + p2.x, p0.y - 2 * p1.y + p2.y),
            math.hypot(p1.x - 2 * p2.x + p3.x, p1.y - 2 * p2.y + p3.y),
        )
        return _steps(0.75 * d, tolerance)
    if isinstance(seg, svgelements.Arc):
        radius = max(abs(seg.rx), abs(seg.ry))
        if radius <= tolerance:
            return 1
        step = 2 * math.acos(1 - tolerance / radius)
        return max(1, min(MAX_CURVE_STEPS, math.ceil(abs(seg.sweep) / step)))
    return 1


def _contour(points: list[tuple[float, float]], closed: bool) -> tuple[np.ndarray, bool] | None:
    if len(points) > 1 and points[-1] == points[0]:
        points = points[:-1]
        closed = True
    if len(points) < 2:
        return None
    return np.asarray(points, dtype=float), closed and len(points) > 2


def _svg_contours(path: svgelements.Path, tolerance: float) -> Iterator[tuple[np.ndarray, bool]]:
    points: list[tuple[float, float]] = []
    closed = False
    for seg in path:
        if isinstance(seg, svgelements.Move):
            contour = _contour(points, closed)
            if contour is not None:
                yield contour
            points = [(seg.end.x, seg.end.y)] if seg.end is not None else []
            closed = False
            continue
        if isinstance(seg, svgelements.Close):
            closed = True
            continue
        if not points and seg.start is not None:
            points.append((seg.start.x, seg.start.y))
        n = _svg_segment_steps(seg, tolerance)
        for i in range(1, n + 1):
            p = seg.point(i / n)
            points.append((p.x, p.y))
    contour = _contour(points, closed)
    if contour is not None:
        yield contour


def parse_svg(data: bytes, target_width: float, target_height: float, tolerance: float) -> SourceGeometry:
    """Extract SVG shapes; ``<defs>``, text, images, style and script are ignored."""
    declared, viewport = _svg_root_frame(data)
    svg = svgelements.SVG.parse(io.BytesIO(data), reify=True, **viewport)
    paths = [
        abs(svgelements.Path(element))
        for element in svg.elements()
        if isinstance(element, svgelements.Shape)
    ]
    paths = [p for p in paths if len(p) > 0]

    if declared and svg.width and svg.height:
        frame = Extents(0.0, 0.0, float(svg.width), float(svg.height))
    else:
        boxes = [b for b in (p.bbox() for p in paths) if b is not None]
        if not boxes:
            raise ValueError("no drawable shapes")
        frame = Extents(
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )

    source_tol = _source_tolerance(frame, target_width, target_height, tolerance)
    contours = [c for p in paths for c in _svg_contours(p, source_tol)]
    return SourceGeometry(contours, frame)


# ── DXF ───────────────────────────────────────────────────────────────────


def _dxf_entities(entities) -> Iterator:
    for entity in entities:
        kind = entity.dxftype()
        if kind == "INSERT":
            yield from _dxf_entities(entity.virtual_entities())
        elif kind in DXF_GEOMETRY_TYPES:
            yield entity


def parse_dxf(data: bytes, target_width: float, target_height: float, tolerance: float) -> SourceGeometry:
    """Extract modelspace geometry (block references are exploded)."""
    doc, auditor = recover.read(io.BytesIO(data))
    if auditor.has_errors:
        logger.debug("DXF recovered with %d errors", len(auditor.errors))
    paths = [dxfpath.make_path(e) for e in _dxf_entities(doc.modelspace())]
    paths = [p for p in paths if len(p) > 0]
    if not paths:
        raise ValueError("no drawable entities")

    box = dxfpath.bbox(paths, fast=False)
    if not box.has_data:
        raise ValueError("no drawable entities")
    frame = Extents(box.extmin.x, box.extmin.y, box.extmax.x, box.extmax.y)

    source_tol = _source_tolerance(frame, target_width, target_height, tolerance)
    contours: list[tuple[np.ndarray, bool]] = []
    for p in paths:
        for sub in p.sub_paths():
            pts = [(v.x, v.y) for v in sub.flattening(source_tol)]
            contour = _contour(pts, sub.is_closed)
            if contour is not None:
                contours.append(contour)
    return SourceGeometry(contours, frame, y_up=True)


# ── Fitting ───────────────────────────────────────────────────────────────


def _axis_scale(target: float, size: float) -> float:
    return target / size if size > 0 else 1.0


def _source_tolerance(frame: Extents, target_width: float, target_height: float, tolerance: float) -> float:
    scale = max(_axis_scale(target_width, frame.width), _axis_scale(target_height, frame.height))
    return tolerance / scale


def fit_geometry(geometry: SourceGeometry, target_width: float, target_height: float) -> VectorModel:
    """Map source contours onto [0, target_width] x [0, target_height], Y-down."""
    frame = geometry.frame
    if frame.width <= 0 and frame.height <= 0:
        raise ValueError("geometry has zero extent")
    sx = _axis_scale(target_width, frame.width)
    sy = _axis_scale(target_height, frame.height)
    if geometry.y_up:
        m = tf.compose(tf.scaling(sx, -sy), tf.translation(-frame.min_x, -frame.max_y))
    else:
        m = tf.compose(tf.scaling(sx, sy), tf.translation(-frame.min_x, -frame.min_y))

    model = VectorModel()
    for points, closed in geometry.contours:
        pts = tuple((float(x), float(y)) for x, y in points)
        model.add_path(Polyline(pts, closed).transformed(m))
    return model


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

Strategy = Callable[[str, float, float], Awaitable[VectorModel]]


class VectorSourceNormalizer:
    """Turns artwork sources into sized VectorModels, degrading to a rectangle."""

    def __init__(self, cache: SourceCache, tolerance: float = DEFAULT_FLATTEN_TOLERANCE) -> None:
        self.cache = cache
        self.tolerance = tolerance
        self.strategies: list[Strategy] = [self.exact_geometry, self.placeholder_rectangle]

    async def normalize(self, source: str, target_width: float, target_height: float) -> VectorModel:
        """Return ``source`` fitted to the target size (inches, Y-down)."""
        for strategy in self.strategies[:-1]:
            try:
                return await strategy(source, target_width, target_height)
            except (VectorSourceFetchFailed, VectorParseFailed) as exc:
                logger.warning("%s -- using placeholder geometry", exc)
        return await self.strategies[-1](source, target_width, target_height)

    async def exact_geometry(self, source: str, target_width: float, target_height: float) -> VectorModel:
        data = await self.cache.get(source)
        parse = parse_svg if _looks_like_svg(data) else parse_dxf
        try:
            geometry = await anyio.to_thread.run_sync(
                parse, data, target_width, target_height, self.tolerance
            )
            model = fit_geometry(geometry, target_width, target_height)
        except Exception as exc:  # parsers raise assorted errors on malformed input
            raise VectorParseFailed(source, str(exc) or type(exc).__name__) from exc
        if model.is_empty():
            raise VectorParseFailed(source, "no geometry")
        logger.debug("Normalized %s: %d primitives", source, model.count())
        return model

    async def placeholder_rectangle(self, source: str, target_width: float, target_height: float) -> VectorModel:
        return VectorModel.rectangle(target_width, target_height)
