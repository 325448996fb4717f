"""Pydantic models — shared contract between the editing surface and the backend.

API Naming Contract:
  - Backend models use snake_case field names (Python convention).
  - The editing surface speaks camelCase (Fabric-style object JSON).
  - Every model inherits CamelModel, so ``model_dump(by_alias=True)`` produces
    camelCase keys and inputs are accepted in either form via
    populate_by_name=True.

Design elements form a closed tagged union on ``type``.  Groups nest other
elements; a child's ``left``/``top`` are measured from the group's top-left
content corner.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lapis.units import calculate_scale


# ---------------------------------------------------------------------------
# Enum / Literal Types
# ---------------------------------------------------------------------------

OriginX = Literal["left", "center", "right"]
OriginY = Literal["top", "center", "bottom"]
TextAlign = Literal["left", "center", "right"]
ShapeKind = Literal["rect", "circle", "ellipse", "triangle", "line"]
ExportFormat = Literal["dxf", "svg"]

# Anchor position as a fraction of the element's natural box.
ORIGIN_X_FRACTION: dict[str, float] = {"left": 0.0, "center": 0.5, "right": 1.0}
ORIGIN_Y_FRACTION: dict[str, float] = {"top": 0.0, "center": 0.5, "bottom": 1.0}


# ---------------------------------------------------------------------------
# Base model for camelCase serialization
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    """Base for models exchanged with the editing surface."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ---------------------------------------------------------------------------
# Canvas Frame / Edit Zone / Background Layer
# ---------------------------------------------------------------------------

class CanvasFrame(CamelModel):
    """Real-world product size and the current on-screen canvas size.

    Dimensions are not validated here: a non-positive value surfaces as
    InvalidDimension from ``scale`` so the export can fail before any work.
    """

    real_width: float = 24.0     # inches
    real_height: float = 18.0    # inches
    pixel_width: float = 1200.0
    pixel_height: float = 900.0

    @property
    def scale(self) -> float:
        """Pixels per inch.  Recomputed on every access (never cached)."""
        return calculate_scale(self.real_width, self.pixel_width)


class EditZone(CamelModel):
    """Rectangular bound, in inches from the frame's top-left corner.

    ``x == "center"`` centers the zone horizontally on the frame.
    """

    id: str
    x: float | Literal["center"] = 0.0
    y: float = 0.0
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class BackgroundLayer(CamelModel):
    """Template / overlay vector source drawn beneath the design elements."""

    id: str = ""
    source: str
    real_width: float = Field(gt=0)    # inches
    real_height: float = Field(gt=0)   # inches
    x: float = 0.0                     # inches from the frame's left edge
    y: float = 0.0                     # inches from the frame's top edge


# ---------------------------------------------------------------------------
# Design Elements
# ---------------------------------------------------------------------------

class ElementBase(CamelModel):
    """Fields shared by every design element.

    ``left``/``top`` give the pixel position of the anchor point selected by
    ``origin_x``/``origin_y`` in the parent frame.  ``angle`` is in degrees,
    clockwise-positive on screen.  ``width``/``height`` are the natural
    (unscaled) pixel size; for text it is the box measured by the editor.
    """

    id: str = ""
    left: float = 0.0
    top: float = 0.0
    angle: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    flip_x: bool = False
    flip_y: bool = False
    origin_x: OriginX = "left"
    origin_y: OriginY = "top"
    z_index: int = 0
    zone_id: str | None = None
    width: float = Field(default=0.0, ge=0)
    height: float = Field(default=0.0, ge=0)


class TextElement(ElementBase):
    type: Literal["text"] = "text"
    text: str = ""
    font_family: str = "Arial"
    font_size: float = Field(default=40.0, gt=0)   # px
    char_spacing: float = 0.0                      # 1/1000 em
    line_height: float = Field(default=1.16, gt=0)  # multiple of font size
    text_align: TextAlign = "left"
    fill: str = "#000000"


class VectorArtworkElement(ElementBase):
    type: Literal["artwork"] = "artwork"
    source: str
    fill: str | None = None


class RasterImageElement(ElementBase):
    type: Literal["image"] = "image"
    source: str
    fill: str | None = None


class ShapeElement(ElementBase):
    type: Literal["shape"] = "shape"
    kind: ShapeKind = "rect"


class GroupElement(ElementBase):
    type: Literal["group"] = "group"
    children: list[DesignElement] = Field(default_factory=list)


DesignElement = Annotated[
    Union[
        TextElement,
        VectorArtworkElement,
        RasterImageElement,
        ShapeElement,
        GroupElement,
    ],
    Field(discriminator="type"),
]

GroupElement.model_rebuild()


# ---------------------------------------------------------------------------
# Zone constraint contract
# ---------------------------------------------------------------------------

class PixelRect(CamelModel):
    """Axis-aligned rectangle in canvas pixels."""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


class ElementBounds(CamelModel):
    """The parts of an element the zone engine reads and adjusts."""

    left: float
    top: float
    width: float = Field(ge=0)     # natural px
    height: float = Field(ge=0)    # natural px
    scale_x: float = 1.0
    scale_y: float = 1.0
    origin_x: OriginX = "left"
    origin_y: OriginY = "top"

    @property
    def box(self) -> PixelRect:
        """Current on-screen box (rotation ignored)."""
        w = abs(self.width * self.scale_x)
        h = abs(self.height * self.scale_y)
        x0 = self.left - ORIGIN_X_FRACTION[self.origin_x] * w
        y0 = self.top - ORIGIN_Y_FRACTION[self.origin_y] * h
        return PixelRect(left=x0, top=y0, right=x0 + w, bottom=y0 + h)


class ConstrainRequest(CamelModel):
    """Request body for POST /api/zones/constrain."""

    frame: CanvasFrame
    zone: EditZone
    bounds: ElementBounds


class ConstrainResponse(CamelModel):
    bounds: ElementBounds
    zone_px: PixelRect
    adjusted: bool


# ---------------------------------------------------------------------------
# REST Request/Response Types
# ---------------------------------------------------------------------------

class ExportRequest(CamelModel):
    """Request body for POST /api/export and /api/export/preview."""

    design_id: str = ""
    name: str = ""
    frame: CanvasFrame = Field(default_factory=CanvasFrame)
    elements: list[DesignElement] = Field(default_factory=list)
    background_layers: list[BackgroundLayer] = Field(default_factory=list)
    zones: list[EditZone] = Field(default_factory=list)
    format: ExportFormat = "dxf"


class ModelSummary(CamelModel):
    """One named model in the export preview."""

    name: str
    entity_count: int
    extents: tuple[float, float, float, float] | None = None   # min_x, min_y, max_x, max_y


class SkippedElement(CamelModel):
    """An element omitted from the document, with the reason."""

    element_id: str
    element_type: str
    reason: str


class ExportPreviewResponse(CamelModel):
    """Response from POST /api/export/preview."""

    filename: str
    units: str = "inches"
    width: float
    height: float
    models: list[ModelSummary] = Field(default_factory=list)
    skipped: list[SkippedElement] = Field(default_factory=list)
