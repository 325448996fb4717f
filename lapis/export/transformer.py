"""Coordinate system transformer -- screen-space elements to manufacturing geometry.

Screen space (the editing surface): pixels, origin top-left, Y down, angles
clockwise-positive.  Manufacturing space: inches, origin bottom-left, Y up.

The design tree is flattened by an explicit pass (no scene graph).  Every
node's local matrix is::

    T(left, top) · R(angle) · S(scale_x, scale_y)

which places the node's anchor point (``origin_x``/``origin_y``).  A group
additionally maps its children, whose coordinates are measured from the
group's top-left content corner, through ``T(-anchor) · F(flip)``.

Each leaf is then built as a local model (inches) and positioned in steps:

  1. flip about the box center (``flip_x``/``flip_y``);
  2. move the anchor point to the origin;
  3. scale, then shear (sign flipped for Y-up);
  4. rotate by the negated screen angle;
  5. move to ``(x / scale, frame_height - y / scale)``.

The scale, shear, angle and position come from decomposing the leaf's
absolute screen matrix.  Artwork, shapes and images are drawn Y-down from
their top-left corner and are mirrored into Y-up before step 1; text is
already Y-up around its baseline, and its anchor is located in the glyph
bounding box.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterator, Sequence

from lapis.config import DEFAULT_FLATTEN_TOLERANCE
from lapis.errors import ModelConversionFailed
from lapis.export.fonts import FontResourceCache
from lapis.export.glyphs import convert_text
from lapis.export.sources import VectorSourceNormalizer
from lapis.geometry import Extents, Line, Polyline, VectorModel
from lapis.geometry import transform as tf
from lapis.geometry.transform import Matrix
from lapis.models import (
    ORIGIN_X_FRACTION,
    ORIGIN_Y_FRACTION,
    BackgroundLayer,
    CanvasFrame,
    DesignElement,
    ElementBase,
    GroupElement,
    RasterImageElement,
    ShapeElement,
    TextElement,
    VectorArtworkElement,
)
from lapis.units import to_real

logger = logging.getLogger("lapis.export")


# ---------------------------------------------------------------------------
# Design tree flattening
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlacedElement:
    """A leaf element with its absolute screen matrix.

    ``matrix`` maps the element's anchor frame (origin at the anchor point,
    natural pixels) to canvas pixels.
    """

    element: ElementBase
    matrix: Matrix
    index: int
    parents: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.element.id or f"element-{self.index}"


def _local_matrix(element: ElementBase) -> Matrix:
    return tf.element_matrix(
        element.left, element.top, element.angle, element.scale_x, element.scale_y
    )


def _flip_matrix(element: ElementBase, cx: float, cy: float) -> Matrix:
    fx = -1.0 if element.flip_x else 1.0
    fy = -1.0 if element.flip_y else 1.0
    return tf.compose(tf.translation(cx, cy), tf.scaling(fx, fy), tf.translation(-cx, -cy))


def content_matrix(group: GroupElement) -> Matrix:
    """Matrix from a group's content frame (top-left origin) to its parent frame."""
    anchor_x = ORIGIN_X_FRACTION[group.origin_x] * group.width
    anchor_y = ORIGIN_Y_FRACTION[group.origin_y] * group.height
    return tf.compose(
        _local_matrix(group),
        tf.translation(-anchor_x, -anchor_y),
        _flip_matrix(group, group.width / 2, group.height / 2),
    )


def sorted_siblings(nodes: Sequence[DesignElement]) -> list[DesignElement]:
    """Siblings in paint order: ascending ``z_index``, ties keep input order."""
    return sorted(nodes, key=lambda n: n.z_index)


def flatten_design(nodes: Sequence[DesignElement]) -> list[PlacedElement]:
    """Walk the design tree depth-first and return the leaves in paint order."""
    placed: list[PlacedElement] = []
    stack: list[tuple[Iterator[DesignElement], Matrix, tuple[str, ...]]] = [
        (iter(sorted_siblings(nodes)), tf.identity(), ())
    ]
    while stack:
        siblings, parent, parents = stack[-1]
        node = next(siblings, None)
        if node is None:
            stack.pop()
            continue
        if isinstance(node, GroupElement):
            stack.append((
                iter(sorted_siblings(node.children)),
                parent @ content_matrix(node),
                parents + (node.id,),
            ))
            continue
        placed.append(PlacedElement(node, parent @ _local_matrix(node), len(placed), parents))
    return placed


# ---------------------------------------------------------------------------
# Conversion context
# ---------------------------------------------------------------------------


@dataclass
class ConversionContext:
    """Per-export state shared by the element builders."""

    frame: CanvasFrame
    fonts: FontResourceCache
    sources: VectorSourceNormalizer
    tolerance: float = DEFAULT_FLATTEN_TOLERANCE
    scale: float = field(init=False)

    def __post_init__(self) -> None:
        self.scale = self.frame.scale

    def inches(self, px: float) -> float:
        return to_real(px, self.scale)


@dataclass
class LocalModel:
    """A base model plus the box its anchor and flip are measured against.

    ``box`` is in the model's own Y-up frame: its top-left corner is
    ``(min_x, max_y)``.
    """

    model: VectorModel
    box: Extents


def _mirrored(model: VectorModel, width: float, height: float) -> LocalModel:
    """Mirror a Y-down, top-left-origin model into Y-up."""
    return LocalModel(model.mirror_y(), Extents(0.0, -height, width, 0.0))


def _natural_size(element: ElementBase, ctx: ConversionContext) -> tuple[float, float]:
    w, h = ctx.inches(element.width), ctx.inches(element.height)
    if w <= 0 and h <= 0:
        raise ModelConversionFailed(
            "element has no natural size", element_id=element.id, element_type=element.type
        )
    return w, h


# ---------------------------------------------------------------------------
# Builders -- one per element variant
# ---------------------------------------------------------------------------


async def build_text(element: TextElement, ctx: ConversionContext) -> LocalModel:
    model = convert_text(
        element.text,
        element.font_family,
        ctx.inches(element.font_size),
        ctx.fonts,
        char_spacing=element.char_spacing,
        line_height=element.line_height,
        text_align=element.text_align,
        tolerance=ctx.tolerance,
    )
    box = model.extents()
    if box is None:
        raise ModelConversionFailed(
            "text has no outline geometry", element_id=element.id, element_type="text"
        )
    return LocalModel(model, box)


async def build_artwork(element: VectorArtworkElement, ctx: ConversionContext) -> LocalModel:
    w, h = _natural_size(element, ctx)
    model = await ctx.sources.normalize(element.source, w, h)
    return _mirrored(model, w, h)


async def build_image(element: RasterImageElement, ctx: ConversionContext) -> LocalModel:
    """Raster content is not vectorized: export its placement rectangle."""
    w, h = _natural_size(element, ctx)
    return _mirrored(VectorModel.rectangle(w, h), w, h)


def _triangle(w: float, h: float) -> VectorModel:
    m = VectorModel()
    m.add_path(Polyline(((0.0, h), (w / 2, 0.0), (w, h)), closed=True), "triangle")
    return m


def _line(w: float, h: float) -> VectorModel:
    m = VectorModel()
    m.add_path(Line((0.0, 0.0), (w, h)), "line")
    return m


SHAPE_BUILDERS: dict[str, Callable[[float, float], VectorModel]] = {
    "rect": VectorModel.rectangle,
    "circle": lambda w, h: VectorModel.ellipse(w / 2, h / 2, w / 2, h / 2),
    "ellipse": lambda w, h: VectorModel.ellipse(w / 2, h / 2, w / 2, h / 2),
    "triangle": _triangle,
    "line": _line,
}


async def build_shape(element: ShapeElement, ctx: ConversionContext) -> LocalModel:
    w, h = _natural_size(element, ctx)
    return _mirrored(SHAPE_BUILDERS[element.kind](w, h), w, h)


Builder = Callable[..., Awaitable[LocalModel]]

BUILDERS: dict[str, Builder] = {
    "text": build_text,
    "artwork": build_artwork,
    "image": build_image,
    "shape": build_shape,
}


# ---------------------------------------------------------------------------
# Positioning
# ---------------------------------------------------------------------------


def placement_matrix(
    local: LocalModel,
    element: ElementBase,
    screen: Matrix,
    frame: CanvasFrame,
    scale: float,
) -> Matrix:
    """Compose the placement steps for one element into a single matrix."""
    d = tf.decompose(screen)
    if d.scale_x == 0 or d.scale_y == 0:
        raise ModelConversionFailed(
            "degenerate transform (zero scale)", element_id=element.id, element_type=element.type
        )
    box = local.box
    cx, cy = box.center
    anchor_x = box.min_x + ORIGIN_X_FRACTION[element.origin_x] * box.width
    anchor_y = box.max_y - ORIGIN_Y_FRACTION[element.origin_y] * box.height

    steps = [
        _flip_matrix(element, cx, cy),
        tf.translation(-anchor_x, -anchor_y),
        tf.scaling(d.scale_x, d.scale_y),
        tf.shearing(-d.shear),
        tf.rotation(-d.angle),
        tf.translation(d.translate_x / scale, frame.real_height - d.translate_y / scale),
    ]
    return tf.compose(*reversed(steps))


def position_model(local: LocalModel, placed: PlacedElement, ctx: ConversionContext) -> VectorModel:
    m = placement_matrix(local, placed.element, placed.matrix, ctx.frame, ctx.scale)
    return local.model.transformed(m)


async def convert_element(placed: PlacedElement, ctx: ConversionContext) -> VectorModel:
    """Build and position one leaf element.

    Raises:
        FontNotLoaded: text whose family failed to load.
        ModelConversionFailed: any other geometric failure.
    """
    element = placed.element
    builder = BUILDERS.get(element.type)
    if builder is None:
        raise ModelConversionFailed(
            f"unsupported element type {element.type!r}", element_id=element.id, element_type=element.type
        )
    local = await builder(element, ctx)
    try:
        model = position_model(local, placed, ctx)
    except (ValueError, ArithmeticError) as exc:
        raise ModelConversionFailed(
            str(exc),
            element_id=element.id,
            element_type=element.type,
            source=getattr(element, "source", None),
        ) from exc
    if model.is_empty():
        raise ModelConversionFailed(
            "no geometry after positioning", element_id=element.id, element_type=element.type
        )
    return model


async def convert_background(layer: BackgroundLayer, ctx: ConversionContext) -> VectorModel:
    """Place a template/overlay source at its real-world offset (top-left origin)."""
    model = await ctx.sources.normalize(layer.source, layer.real_width, layer.real_height)
    return model.mirror_y().move(layer.x, ctx.frame.real_height - layer.y)
