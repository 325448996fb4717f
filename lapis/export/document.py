"""Document assembly and serialization.

``ExportPipeline.assemble`` turns a design snapshot into a
``ManufacturingDocument``: background layers first, then every leaf element
in paint order, each under a unique name.  A failure in one element or
background layer, of any kind, is logged and recorded in
``document.skipped``; it never aborts the export.  An invalid
frame aborts before any work starts.

``serialize`` writes the document:
  - ``dxf`` -- DXF R2010 via ezdxf, ``$INSUNITS`` = inches, one layer per
    model.  Closed polylines become LWPOLYLINEs; open chains are written as
    individual LINEs.
  - ``svg`` -- a proof drawing (outline strokes only) sized in inches.

Any serialization failure raises DocumentSerializationFailed; nothing is
returned.
"""

from __future__ import annotations

import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Sequence

import ezdxf
from ezdxf import units

from lapis.config import Settings, get_settings
from lapis.errors import DocumentSerializationFailed, ElementError, ModelConversionFailed
from lapis.export.fonts import FontResourceCache
from lapis.export.sources import VectorSourceNormalizer
from lapis.export.transformer import (
    ConversionContext,
    convert_background,
    convert_element,
    flatten_design,
)
from lapis.geometry import Arc, Circle, Line, Polyline, VectorModel
from lapis.models import (
    BackgroundLayer,
    CanvasFrame,
    DesignElement,
    ExportFormat,
    ModelSummary,
    SkippedElement,
    TextElement,
)
from lapis.units import calculate_scale

logger = logging.getLogger("lapis.export")

MEDIA_TYPES: dict[str, str] = {
    "dxf": "application/dxf",
    "svg": "image/svg+xml",
}


# ---------------------------------------------------------------------------
# Manufacturing document
# ---------------------------------------------------------------------------


@dataclass
class ManufacturingDocument:
    """Named models in inches, origin bottom-left, Y up."""

    width: float
    height: float
    units: str = "inches"
    models: dict[str, VectorModel] = field(default_factory=dict)
    skipped: list[SkippedElement] = field(default_factory=list)

    def add(self, name: str, model: VectorModel) -> str:
        """Insert ``model`` under ``name``, suffixing ``-2``, ``-3``... on collision."""
        unique = name
        n = 2
        while unique in self.models:
            unique = f"{name}-{n}"
            n += 1
        self.models[unique] = model
        return unique

    def summary(self) -> list[ModelSummary]:
        result = []
        for name, model in self.models.items():
            ext = model.extents()
            result.append(
                ModelSummary(
                    name=name,
                    entity_count=model.count(),
                    extents=ext.as_tuple() if ext is not None else None,
                )
            )
        return result


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ExportPipeline:
    """Design snapshot -> ManufacturingDocument.

    The font cache and source normalizer are process-wide services injected
    by the app lifespan (or by tests).
    """

    def __init__(
        self,
        fonts: FontResourceCache,
        sources: VectorSourceNormalizer,
        settings: Settings | None = None,
    ) -> None:
        self.fonts = fonts
        self.sources = sources
        self.settings = settings or get_settings()

    async def assemble(
        self,
        frame: CanvasFrame,
        background_layers: Sequence[BackgroundLayer],
        elements: Sequence[DesignElement],
    ) -> ManufacturingDocument:
        """Convert every element; raises InvalidDimension for a bad frame."""
        calculate_scale(frame.real_width, frame.pixel_width)
        calculate_scale(frame.real_height, frame.pixel_height)

        ctx = ConversionContext(
            frame=frame,
            fonts=self.fonts,
            sources=self.sources,
            tolerance=self.settings.flatten_tolerance,
        )
        placed = flatten_design(elements)

        families = [p.element.font_family for p in placed if isinstance(p.element, TextElement)]
        if families:
            await self.fonts.resolve_all(families)

        document = ManufacturingDocument(width=frame.real_width, height=frame.real_height)

        for i, layer in enumerate(background_layers):
            name = layer.id or f"background-{i}"
            try:
                model = await convert_background(layer, ctx)
            except Exception as exc:
                self._skip(document, name, "background", exc, layer.source)
                continue
            document.add(name, model)

        for item in placed:
            element = item.element
            try:
                model = await convert_element(item, ctx)
            except Exception as exc:
                self._skip(
                    document, element.id, element.type, exc, getattr(element, "source", None)
                )
                continue
            document.add(item.name, model)

        logger.info(
            "Assembled document: %d models, %d skipped",
            len(document.models),
            len(document.skipped),
        )
        return document

    @staticmethod
    def _skip(
        document: ManufacturingDocument,
        element_id: str,
        element_type: str,
        exc: Exception,
        source: str | None = None,
    ) -> None:
        """Record a failed element; unexpected errors are logged with their traceback."""
        expected = isinstance(exc, (ElementError, ValueError, ArithmeticError))
        if isinstance(exc, ElementError):
            failure: ElementError = exc
        else:
            failure = ModelConversionFailed(
                str(exc) if expected else f"{type(exc).__name__}: {exc}",
                element_id=element_id,
                element_type=element_type,
                source=source,
            )
        logger.warning(
            "Skipping %s %s: %s",
            element_type,
            element_id or "<no id>",
            failure,
            exc_info=None if expected else exc,
        )
        document.skipped.append(
            SkippedElement(element_id=element_id, element_type=element_type, reason=str(failure))
        )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

_INVALID_LAYER_CHARS = re.compile(r'[<>/\\":;?*|=`]')
_SLUG = re.compile(r"[^a-z0-9]+")


def export_filename(design_id: str, fmt: ExportFormat = "dxf") -> str:
    """``<slug(design id)>-export.<ext>``; ``design`` when the id has no usable characters."""
    slug = _SLUG.sub("-", design_id.lower()).strip("-") or "design"
    return f"{slug}-export.{fmt}"


def layer_name(name: str) -> str:
    return _INVALID_LAYER_CHARS.sub("_", name).strip() or "0"


def _write_dxf(document: ManufacturingDocument) -> bytes:
    doc = ezdxf.new("R2010")
    doc.units = units.IN
    doc.header["$MEASUREMENT"] = 0
    doc.header["$EXTMIN"] = (0.0, 0.0, 0.0)
    doc.header["$EXTMAX"] = (document.width, document.height, 0.0)
    msp = doc.modelspace()

    for name, model in document.models.items():
        layer = layer_name(name)
        if layer not in doc.layers:
            doc.layers.add(layer)
        attribs = {"layer": layer}
        for prim in model.walk():
            if isinstance(prim, Line):
                msp.add_line(prim.start, prim.end, dxfattribs=attribs)
            elif isinstance(prim, Polyline):
                if prim.closed:
                    msp.add_lwpolyline(prim.points, close=True, dxfattribs=attribs)
                else:
                    for seg in prim.segments():
                        msp.add_line(seg.start, seg.end, dxfattribs=attribs)
            elif isinstance(prim, Circle):
                msp.add_circle(prim.center, prim.radius, dxfattribs=attribs)
            elif isinstance(prim, Arc):
                msp.add_arc(
                    prim.center, prim.radius, prim.start_angle, prim.end_angle, dxfattribs=attribs
                )

    stream = io.StringIO()
    doc.write(stream)
    return stream.getvalue().encode("utf-8")


def _num(v: float) -> str:
    text = f"{v:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _svg_arc_path(arc: Arc) -> str:
    sweep = arc.sweep
    if sweep >= 360.0:
        mid = arc.start_angle + 180.0
        parts = [(arc.start_angle, mid), (mid, arc.start_angle + 360.0)]
    else:
        parts = [(arc.start_angle, arc.start_angle + sweep)]
    x0, y0 = arc.point_at(parts[0][0])
    d = [f"M {_num(x0)} {_num(y0)}"]
    r = _num(arc.radius)
    for start, end in parts:
        x, y = arc.point_at(end)
        large = 1 if end - start > 180.0 else 0
        d.append(f"A {r} {r} 0 {large} 1 {_num(x)} {_num(y)}")
    return " ".join(d)


def _write_svg(document: ManufacturingDocument) -> bytes:
    w, h = document.width, document.height
    root = ET.Element(
        "svg",
        {
            "xmlns": "http://www.w3.org/2000/svg",
            "width": f"{_num(w)}in",
            "height": f"{_num(h)}in",
            "viewBox": f"0 0 {_num(w)} {_num(h)}",
        },
    )
    # Y-up drawing space
    flip = ET.SubElement(
        root,
        "g",
        {
            "transform": f"matrix(1 0 0 -1 0 {_num(h)})",
            "fill": "none",
            "stroke": "#000000",
            "stroke-width": "0.01",
        },
    )
    for name, model in document.models.items():
        group = ET.SubElement(flip, "g", {"id": name})
        for prim in model.walk():
            if isinstance(prim, Line):
                (x1, y1), (x2, y2) = prim.start, prim.end
                ET.SubElement(group, "line", {
                    "x1": _num(x1), "y1": _num(y1), "x2": _num(x2), "y2": _num(y2),
                })
            elif isinstance(prim, Polyline):
                tag = "polygon" if prim.closed else "polyline"
                points = " ".join(f"{_num(x)},{_num(y)}" for x, y in prim.points)
                ET.SubElement(group, tag, {"points": points})
            elif isinstance(prim, Circle):
                cx, cy = prim.center
                ET.SubElement(group, "circle", {
                    "cx": _num(cx), "cy": _num(cy), "r": _num(prim.radius),
                })
            elif isinstance(prim, Arc):
                ET.SubElement(group, "path", {"d": _svg_arc_path(prim)})
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


_WRITERS = {
    "dxf": _write_dxf,
    "svg": _write_svg,
}


def serialize(document: ManufacturingDocument, fmt: ExportFormat = "dxf") -> bytes:
    """Write ``document`` in ``fmt``.  CPU-bound: call from a worker thread."""
    writer = _WRITERS.get(fmt)
    if writer is None:
        raise DocumentSerializationFailed(f"Unsupported export format: {fmt!r}")
    try:
        return writer(document)
    except Exception as exc:  # ezdxf / ElementTree failures
        raise DocumentSerializationFailed(f"{fmt.upper()} serialization failed: {exc}") from exc
