"""Shared fixtures for LAPIS tests."""

from __future__ import annotations

import io
from pathlib import Path

import ezdxf
import pytest
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen

from lapis.config import Settings
from lapis.export.document import ExportPipeline
from lapis.export.fonts import FontLoader, FontResource, FontResourceCache
from lapis.export.sources import SourceCache, VectorSourceNormalizer
from lapis.models import CanvasFrame


# ---------------------------------------------------------------------------
# Test font -- every letter/digit is a box spanning the full em
# ---------------------------------------------------------------------------

UNITS_PER_EM = 1000
BOX_ADVANCE = 600
PERIOD_ADVANCE = 200
SPACE_ADVANCE = 250
BOX_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def _box_glyph(x0: int, y0: int, x1: int, y1: int):
    pen = TTGlyphPen(None)
    pen.moveTo((x0, y0))
    pen.lineTo((x0, y1))
    pen.lineTo((x1, y1))
    pen.lineTo((x1, y0))
    pen.closePath()
    return pen.glyph()


def build_box_font(family: str = "LapisTest") -> bytes:
    """A minimal TrueType font: letters/digits are 500x1000 boxes, '.' a 100x100 box."""
    glyphs = {
        ".notdef": _box_glyph(50, 0, 550, 1000),
        "space": TTGlyphPen(None).glyph(),
        "period": _box_glyph(50, 0, 150, 100),
    }
    metrics = {
        ".notdef": (BOX_ADVANCE, 50),
        "space": (SPACE_ADVANCE, 0),
        "period": (PERIOD_ADVANCE, 50),
    }
    cmap = {ord(" "): "space", ord("."): "period"}
    for ch in BOX_CHARS:
        name = f"box{ord(ch)}"
        glyphs[name] = _box_glyph(50, 0, 550, 1000)
        metrics[name] = (BOX_ADVANCE, 50)
        cmap[ord(ch)] = name

    fb = FontBuilder(UNITS_PER_EM, isTTF=True)
    fb.setupGlyphOrder(list(glyphs))
    fb.setupCharacterMap(cmap)
    fb.setupGlyf(glyphs)
    fb.setupHorizontalMetrics(metrics)
    fb.setupHorizontalHeader(ascent=UNITS_PER_EM, descent=0)
    fb.setupNameTable({"familyName": family, "styleName": "Regular"})
    fb.setupOS2(sTypoAscender=UNITS_PER_EM, sTypoDescender=0, usWinAscent=UNITS_PER_EM, usWinDescent=0)
    fb.setupPost()
    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


@pytest.fixture(scope="session")
def font_bytes() -> bytes:
    return build_box_font()


@pytest.fixture
def box_font(font_bytes: bytes) -> FontResource:
    return FontResource.from_bytes("LapisTest", font_bytes)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

VIEWBOX_SVG = b"""<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 200 100">
  <rect x="50" y="25" width="100" height="50"/>
</svg>
"""

BARE_SVG = b"""<svg xmlns="http://www.w3.org/2000/svg">
  <rect x="50" y="25" width="100" height="50"/>
  <text x="0" y="0">ignored</text>
</svg>
"""


def build_sample_dxf() -> bytes:
    """10 x 5 closed rectangle with a circle inside, Y-up."""
    doc = ezdxf.new("R2010")
    msp = doc.modelspace()
    msp.add_lwpolyline([(0, 0), (10, 0), (10, 5), (0, 5)], close=True)
    msp.add_circle((5, 2.5), 1)
    stream = io.StringIO()
    doc.write(stream)
    return stream.getvalue().encode("utf-8")


class DictFetcher:
    """In-memory stand-in for ResourceFetcher; records every fetch."""

    def __init__(self, resources: dict[str, bytes] | None = None) -> None:
        self.resources = dict(resources or {})
        self.calls: list[str] = []

    async def fetch(self, ref: str) -> bytes:
        self.calls.append(ref)
        try:
            return self.resources[ref]
        except KeyError:
            raise FileNotFoundError(ref) from None


@pytest.fixture
def sources() -> dict[str, bytes]:
    return {
        "art/viewbox.svg": VIEWBOX_SVG,
        "art/bare.svg": BARE_SVG,
        "art/plate.dxf": build_sample_dxf(),
        "art/broken.svg": b"<svg><rect",
        "art/garbage.bin": b"not a vector file",
    }


@pytest.fixture
def fetcher(sources: dict[str, bytes], font_bytes: bytes) -> DictFetcher:
    resources = dict(sources)
    resources[str(Path("fonts") / "Arial.ttf")] = font_bytes
    resources[str(Path("fonts") / "Cinzel.ttf")] = font_bytes
    return DictFetcher(resources)


@pytest.fixture
def settings() -> Settings:
    return Settings(font_base="fonts")


@pytest.fixture
def font_cache(fetcher: DictFetcher, settings: Settings) -> FontResourceCache:
    return FontResourceCache(FontLoader(settings.font_base, fetcher))


@pytest.fixture
def normalizer(fetcher: DictFetcher, settings: Settings) -> VectorSourceNormalizer:
    return VectorSourceNormalizer(SourceCache(fetcher), settings.flatten_tolerance)


@pytest.fixture
def pipeline(font_cache, normalizer, settings) -> ExportPipeline:
    return ExportPipeline(font_cache, normalizer, settings)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


@pytest.fixture
def frame() -> CanvasFrame:
    """24 x 18 in product shown at 1200 x 900 px (50 px/in)."""
    return CanvasFrame(real_width=24, real_height=18, pixel_width=1200, pixel_height=900)


@pytest.fixture
def wide_frame() -> CanvasFrame:
    """66 x 24 in product shown at 1320 x 480 px (20 px/in)."""
    return CanvasFrame(real_width=66, real_height=24, pixel_width=1320, pixel_height=480)
