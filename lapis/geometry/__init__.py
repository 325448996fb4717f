"""Planar geometry -- public API re-exports.

Usage::

    from lapis.geometry import VectorModel, Extents, decompose
"""

from __future__ import annotations

from lapis.geometry.model import VectorModel
from lapis.geometry.primitives import Arc, Circle, Extents, Line, Polyline, Primitive
from lapis.geometry.transform import Decomposition, decompose

__all__ = [
    "Arc",
    "Circle",
    "Decomposition",
    "Extents",
    "Line",
    "Polyline",
    "Primitive",
    "VectorModel",
    "decompose",
]
