"""Export pipeline -- public API re-exports.

Usage::

    from lapis.export import ExportPipeline, serialize, export_filename
"""

from __future__ import annotations

from lapis.export.document import (
    ExportPipeline,
    ManufacturingDocument,
    export_filename,
    serialize,
)
from lapis.export.fetch import ResourceFetcher
from lapis.export.fonts import FontLoader, FontResource, FontResourceCache
from lapis.export.glyphs import convert_text, text_to_path
from lapis.export.sources import SourceCache, VectorSourceNormalizer
from lapis.export.transformer import ConversionContext, PlacedElement, flatten_design

__all__ = [
    "ConversionContext",
    "ExportPipeline",
    "FontLoader",
    "FontResource",
    "FontResourceCache",
    "ManufacturingDocument",
    "PlacedElement",
    "ResourceFetcher",
    "SourceCache",
    "VectorSourceNormalizer",
    "convert_text",
    "export_filename",
    "flatten_design",
    "serialize",
    "text_to_path",
]
