"""VectorModel -- file-format-independent planar geometry.

A model holds named primitives (``paths``) and named sub-models (``models``).
Geometric operations never mutate: each returns a new model, so a base model
(e.g. a normalized artwork shared by two elements) can be positioned twice.

Placement composes one affine matrix per element and applies it with
``transformed``; ``move`` and ``mirror_y`` cover background layers and
the Y-down to Y-up flip.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np
from numpy.typing import NDArray

from lapis.geometry.primitives import Circle, Extents, Polyline, Primitive
from lapis.geometry import transform as tf


@dataclass
class VectorModel:
    """Nestable container of primitives."""

    paths: dict[str, Primitive] = field(default_factory=dict)
    models: dict[str, VectorModel] = field(default_factory=dict)

    # ── Construction ──────────────────────────────────────────────────

    def add_path(self, primitive: Primitive, name: str | None = None) -> str:
        """Add a primitive; a free ``p<N>`` name is generated when omitted."""
        if name is None:
            name = f"p{len(self.paths)}"
            while name in self.paths:
                name += "_"
        self.paths[name] = primitive
        return name

    def add_model(self, name: str, model: VectorModel) -> None:
        self.models[name] = model

    @classmethod
    def rectangle(cls, width: float, height: float) -> VectorModel:
        """Closed rectangle with one corner at the origin."""
        m = cls()
        m.add_path(
            Polyline(((0.0, 0.0), (width, 0.0), (width, height), (0.0, height)), closed=True),
            "rect",
        )
        return m

    @classmethod
    def ellipse(cls, cx: float, cy: float, rx: float, ry: float) -> VectorModel:
        """Circle when ``rx == ry``, otherwise a closed polyline approximation."""
        m = cls()
        if math.isclose(rx, ry):
            m.add_path(Circle((cx, cy), rx), "ellipse")
            return m
        m.add_path(Circle((0.0, 0.0), 1.0).transformed(tf.compose(
            tf.translation(cx, cy), tf.scaling(rx, ry)
        )), "ellipse")
        return m

    # ── Inspection ────────────────────────────────────────────────────

    def walk(self) -> Iterator[Primitive]:
        """Yield every primitive, depth-first."""
        yield from self.paths.values()
        for child in self.models.values():
            yield from child.walk()

    def count(self) -> int:
        return sum(1 for _ in self.walk())

    def is_empty(self) -> bool:
        return next(self.walk(), None) is None

    def extents(self) -> Extents | None:
        """Bounding box of all primitives, or None for an empty model."""
        result: Extents | None = None
        for prim in self.walk():
            ext = prim.extents()
            result = ext if result is None else result.union(ext)
        return result

    # ── Transformation ────────────────────────────────────────────────

    def transformed(self, m: NDArray[np.float64]) -> VectorModel:
        """Return a copy with every primitive mapped through ``m``."""
        return VectorModel(
            paths={k: p.transformed(m) for k, p in self.paths.items()},
            models={k: sub.transformed(m) for k, sub in self.models.items()},
        )

    def move(self, dx: float, dy: float) -> VectorModel:
        return self.transformed(tf.translation(dx, dy))

    def mirror_y(self) -> VectorModel:
        """Reflect across the X axis (``y -> -y``)."""
        return self.transformed(tf.scaling(1.0, -1.0))
