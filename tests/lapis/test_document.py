"""Tests for document assembly and DXF/SVG serialization."""

from __future__ import annotations

import io
import logging
import xml.etree.ElementTree as ET

import anyio
import ezdxf
import httpx
import pytest
from ezdxf import recover

from lapis.config import Settings
from lapis.errors import DocumentSerializationFailed, InvalidDimension
from lapis.export import document as document_module
from lapis.export.document import (
    ExportPipeline,
    ManufacturingDocument,
    export_filename,
    layer_name,
    serialize,
)
from lapis.export.fetch import ResourceFetcher
from lapis.export.fonts import FontLoader, FontResourceCache
from lapis.export.sources import SourceCache, VectorSourceNormalizer
from lapis.export.transformer import BUILDERS
from lapis.geometry import Arc, Circle, Line, Polyline, VectorModel
from lapis.models import (
    BackgroundLayer,
    CanvasFrame,
    GroupElement,
    RasterImageElement,
    ShapeElement,
    TextElement,
    VectorArtworkElement,
)


def _assemble(pipeline: ExportPipeline, frame: CanvasFrame, elements, backgrounds=()):
    return anyio.run(pipeline.assemble, frame, list(backgrounds), list(elements))


def _read_dxf(data: bytes):
    doc, auditor = recover.read(io.BytesIO(data))
    return doc


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class TestAssemble:
    def test_one_failure_does_not_abort(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        """Four elements, one with an unloadable font: three models, one skipped."""
        elements = [
            TextElement(id="name", text="EST. 1990", font_family="Arial", font_size=100, left=100, top=100),
            ShapeElement(id="border", left=10, top=10, width=1180, height=880),
            TextElement(id="bad", text="Hello", font_family="Nope"),
            ShapeElement(id="dot", kind="circle", left=600, top=600, width=50, height=50),
        ]
        document = _assemble(pipeline, frame, elements)
        assert list(document.models) == ["name", "border", "dot"]
        (skipped,) = document.skipped
        assert skipped.element_id == "bad"
        assert skipped.element_type == "text"
        assert "Nope" in skipped.reason

    def test_degenerate_shape_skipped(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        elements = [ShapeElement(id="ok", width=10, height=10), ShapeElement(id="flat", width=0, height=0)]
        document = _assemble(pipeline, frame, elements)
        assert list(document.models) == ["ok"]
        assert [s.element_id for s in document.skipped] == ["flat"]

    def test_skip_is_logged(self, pipeline: ExportPipeline, frame: CanvasFrame, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="lapis.export"):
            _assemble(pipeline, frame, [TextElement(id="bad", text="x", font_family="Nope")])
        assert "Skipping text bad" in caplog.text

    def test_names_unique_and_generated(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        elements = [
            ShapeElement(id="dup", width=10, height=10),
            ShapeElement(id="dup", width=10, height=10),
            ShapeElement(width=10, height=10),
        ]
        document = _assemble(pipeline, frame, elements)
        assert list(document.models) == ["dup", "dup-2", "element-2"]

    def test_backgrounds_come_first(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        backgrounds = [
            BackgroundLayer(source="art/viewbox.svg", real_width=24, real_height=18),
            BackgroundLayer(id="overlay", source="art/missing.svg", real_width=4, real_height=2),
        ]
        document = _assemble(pipeline, frame, [ShapeElement(id="s", width=10, height=10)], backgrounds)
        assert list(document.models) == ["background-0", "overlay", "s"]
        # viewBox margins survive: 200x100 frame scaled to 24x18
        ext = document.models["background-0"].extents()
        assert ext.as_tuple() == pytest.approx((6.0, 4.5, 18.0, 13.5))

    def test_group_children_exported_individually(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        group = GroupElement(
            id="g", width=100, height=100,
            children=[ShapeElement(id="a", width=10, height=10), ShapeElement(id="b", width=10, height=10)],
        )
        document = _assemble(pipeline, frame, [group])
        assert list(document.models) == ["a", "b"]

    def test_document_in_inches(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        document = _assemble(pipeline, frame, [])
        assert (document.width, document.height, document.units) == (24, 18, "inches")
        assert document.models == {}

    @pytest.mark.parametrize(
        "bad_frame",
        [
            CanvasFrame(real_width=0),
            CanvasFrame(pixel_width=-1),
            CanvasFrame(real_height=0),
            CanvasFrame(pixel_height=0),
        ],
    )
    def test_invalid_frame_aborts(self, pipeline: ExportPipeline, bad_frame: CanvasFrame) -> None:
        with pytest.raises(InvalidDimension):
            _assemble(pipeline, bad_frame, [ShapeElement(id="s", width=10, height=10)])

    def test_summary(self, pipeline: ExportPipeline, frame: CanvasFrame) -> None:
        document = _assemble(pipeline, frame, [ShapeElement(id="s", left=0, top=0, width=100, height=50)])
        (summary,) = document.summary()
        assert summary.name == "s"
        assert summary.entity_count == 1
        assert summary.extents == pytest.approx((0.0, 17.0, 2.0, 18.0))


BAD_PORT_URL = "http://example.com:abc/logo.svg"


def _http_pipeline(client: httpx.AsyncClient, font_base: str = "fonts") -> ExportPipeline:
    fetcher = ResourceFetcher(client)
    return ExportPipeline(
        FontResourceCache(FontLoader(font_base, fetcher)),
        VectorSourceNormalizer(SourceCache(fetcher)),
        Settings(font_base=font_base),
    )


def _assemble_over_http(frame: CanvasFrame, elements, backgrounds=(), font_base: str = "fonts"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            pipeline = _http_pipeline(client, font_base)
            return await pipeline.assemble(frame, list(backgrounds), list(elements))

    return anyio.run(run)


class TestFailureBoundary:
    def test_malformed_artwork_url_becomes_placeholder(self, frame: CanvasFrame) -> None:
        elements = [
            ShapeElement(id="a", width=50, height=50),
            VectorArtworkElement(id="b", source=BAD_PORT_URL, left=100, top=100, width=100, height=50),
        ]
        document = _assemble_over_http(frame, elements)
        assert list(document.models) == ["a", "b"]
        assert document.skipped == []
        assert document.models["b"].extents().as_tuple() == pytest.approx((2.0, 15.0, 4.0, 16.0))

    def test_malformed_background_url_becomes_placeholder(self, frame: CanvasFrame) -> None:
        layer = BackgroundLayer(id="template", source=BAD_PORT_URL, real_width=24, real_height=18)
        document = _assemble_over_http(frame, [ShapeElement(id="a", width=50, height=50)], [layer])
        assert list(document.models) == ["template", "a"]

    def test_malformed_font_base_skips_text_only(self, frame: CanvasFrame) -> None:
        elements = [
            TextElement(id="name", text="SMITH", font_family="Arial"),
            ShapeElement(id="border", width=50, height=50),
        ]
        document = _assemble_over_http(frame, elements, font_base="http://example.com:abc/fonts")
        assert list(document.models) == ["border"]
        assert [s.element_id for s in document.skipped] == ["name"]

    def test_unexpected_builder_error_is_scoped(
        self, pipeline: ExportPipeline, frame: CanvasFrame, monkeypatch, caplog
    ) -> None:
        async def broken(element, ctx):
            raise TypeError("unsupported operand")

        monkeypatch.setitem(BUILDERS, "image", broken)
        elements = [
            ShapeElement(id="a", width=10, height=10),
            RasterImageElement(id="b", source="photo.png", width=10, height=10),
            ShapeElement(id="c", width=10, height=10),
        ]
        with caplog.at_level(logging.WARNING, logger="lapis.export"):
            document = _assemble(pipeline, frame, elements)
        assert list(document.models) == ["a", "c"]
        (skipped,) = document.skipped
        assert skipped.element_id == "b"
        assert skipped.element_type == "image"
        assert "TypeError: unsupported operand" in skipped.reason
        assert "source=photo.png" in skipped.reason
        assert "Traceback" in caplog.text

    def test_unexpected_background_error_is_scoped(
        self, pipeline: ExportPipeline, frame: CanvasFrame, monkeypatch
    ) -> None:
        async def broken(layer, ctx):
            raise KeyError("glyf")

        monkeypatch.setattr(document_module, "convert_background", broken)
        layer = BackgroundLayer(source="art/viewbox.svg", real_width=24, real_height=18)
        document = _assemble(pipeline, frame, [ShapeElement(id="a", width=10, height=10)], [layer])
        assert list(document.models) == ["a"]
        (skipped,) = document.skipped
        assert (skipped.element_id, skipped.element_type) == ("background-0", "background")
        assert "KeyError" in skipped.reason


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


@pytest.fixture
def document() -> ManufacturingDocument:
    doc = ManufacturingDocument(width=24, height=18)
    doc.add("plate", VectorModel.rectangle(10, 5).move(1, 1))
    ring = VectorModel()
    ring.add_path(Circle((12, 9), 2))
    ring.add_path(Arc((12, 9), 3, 0, 90))
    doc.add("ring", ring)
    trace = VectorModel()
    trace.add_path(Polyline(((0, 0), (1, 0), (1, 1)), closed=False))
    trace.add_path(Line((2, 2), (3, 3)))
    doc.add("trace", trace)
    return doc


class TestDxf:
    def test_header_units_inches(self, document: ManufacturingDocument) -> None:
        dxf = _read_dxf(serialize(document, "dxf"))
        assert dxf.header["$INSUNITS"] == 1
        assert dxf.units == ezdxf.units.IN
        assert dxf.header["$MEASUREMENT"] == 0

    def test_one_layer_per_model(self, document: ManufacturingDocument) -> None:
        dxf = _read_dxf(serialize(document, "dxf"))
        layers = {layer.dxf.name for layer in dxf.layers}
        assert {"plate", "ring", "trace"} <= layers

    def test_entities(self, document: ManufacturingDocument) -> None:
        msp = _read_dxf(serialize(document, "dxf")).modelspace()
        (plate,) = msp.query('LWPOLYLINE[layer=="plate"]')
        assert plate.closed
        assert [tuple(p) for p in plate.get_points("xy")] == [(1, 1), (11, 1), (11, 6), (1, 6)]
        (circle,) = msp.query("CIRCLE")
        assert circle.dxf.radius == pytest.approx(2)
        (arc,) = msp.query("ARC")
        assert arc.dxf.start_angle == pytest.approx(0)
        assert arc.dxf.end_angle == pytest.approx(90)

    def test_open_polyline_written_as_lines(self, document: ManufacturingDocument) -> None:
        msp = _read_dxf(serialize(document, "dxf")).modelspace()
        assert len(msp.query('LINE[layer=="trace"]')) == 3
        assert len(msp.query('LWPOLYLINE[layer=="trace"]')) == 0

    def test_awkward_layer_names_sanitized(self) -> None:
        assert layer_name('a/b:c"d') == "a_b_c_d"
        assert layer_name("  ") == "0"


class TestSvg:
    def test_sized_in_inches(self, document: ManufacturingDocument) -> None:
        data = serialize(document, "svg")
        assert data.startswith(b"<?xml")
        root = ET.fromstring(data)
        assert root.get("width") == "24in"
        assert root.get("height") == "18in"
        assert root.get("viewBox") == "0 0 24 18"

    def test_model_groups(self, document: ManufacturingDocument) -> None:
        root = ET.fromstring(serialize(document, "svg"))
        ns = {"svg": "http://www.w3.org/2000/svg"}
        ids = [g.get("id") for g in root.findall("svg:g/svg:g", ns)]
        assert ids == ["plate", "ring", "trace"]
        assert root.find(".//svg:polygon", ns) is not None
        assert root.find(".//svg:polyline", ns) is not None
        assert " A 3 3 " in root.find(".//svg:path", ns).get("d")

    def test_full_turn_arc_split(self) -> None:
        doc = ManufacturingDocument(width=4, height=4)
        model = VectorModel()
        model.add_path(Arc((2, 2), 1, 45, 45))
        doc.add("full", model)
        root = ET.fromstring(serialize(doc, "svg"))
        path = root.find(".//{http://www.w3.org/2000/svg}path")
        assert path.get("d").count(" A ") == 2


class TestSerialize:
    def test_unknown_format(self, document: ManufacturingDocument) -> None:
        with pytest.raises(DocumentSerializationFailed):
            serialize(document, "pdf")  # type: ignore[arg-type]


class TestExportFilename:
    @pytest.mark.parametrize(
        "design_id,fmt,expected",
        [
            ("Smith Family Memorial", "dxf", "smith-family-memorial-export.dxf"),
            ("  ", "svg", "design-export.svg"),
            ("job#42/proof", "svg", "job-42-proof-export.svg"),
        ],
    )
    def test_slug(self, design_id: str, fmt: str, expected: str) -> None:
        assert export_filename(design_id, fmt) == expected
