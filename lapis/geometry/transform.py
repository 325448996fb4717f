"""3x3 affine matrices and their translate/rotate/scale/shear decomposition.

Matrices act on column vectors ``(x, y, 1)``.  ``rotation(deg)`` is the
standard rotation matrix: counter-clockwise in a Y-up frame, which is the
same matrix that renders clockwise in the editor's Y-down screen frame.

``decompose`` is the QR-style split used by canvas libraries::

    M = T(tx, ty) · R(angle) · H(shear) · S(sx, sy)

where ``H(k)`` is the horizontal shear ``x += k * y``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import reduce

import numpy as np
from numpy.typing import NDArray

Matrix = NDArray[np.float64]


def identity() -> Matrix:
    return np.eye(3)


def translation(tx: float, ty: float) -> Matrix:
    m = np.eye(3)
    m[0, 2] = tx
    m[1, 2] = ty
    return m


def rotation(degrees: float) -> Matrix:
    rad = math.radians(degrees)
    c, s = math.cos(rad), math.sin(rad)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def scaling(sx: float, sy: float) -> Matrix:
    return np.diag([sx, sy, 1.0])


def shearing(k: float) -> Matrix:
    m = np.eye(3)
    m[0, 1] = k
    return m


def compose(*matrices: Matrix) -> Matrix:
    """Left-to-right product: ``compose(A, B, C) == A @ B @ C``."""
    return reduce(np.matmul, matrices, np.eye(3))


def element_matrix(
    left: float,
    top: float,
    angle: float,
    scale_x: float,
    scale_y: float,
) -> Matrix:
    """Local screen matrix of an element whose anchor sits at (left, top)."""
    return compose(translation(left, top), rotation(angle), scaling(scale_x, scale_y))


# ---------------------------------------------------------------------------
# Decomposition
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Decomposition:
    """Sequential-step form of an affine matrix."""

    translate_x: float = 0.0
    translate_y: float = 0.0
    angle: float = 0.0        # degrees
    scale_x: float = 1.0
    scale_y: float = 1.0
    shear: float = 0.0        # x += shear * y, applied after scaling


def decompose(m: Matrix) -> Decomposition:
    """Split ``m`` into translate / rotate / shear / scale.

    The rotation is taken from the image of the X axis; a mirrored matrix
    therefore shows up as a negative ``scale_y``.  A degenerate matrix (zero
    X column) decomposes with zero scale.
    """
    a, c, e = m[0]
    b, d, f = m[1]
    sx = math.hypot(a, b)
    if sx == 0:
        return Decomposition(float(e), float(f), 0.0, 0.0, float(math.hypot(c, d)), 0.0)
    angle = math.degrees(math.atan2(b, a))
    sy = (a * d - b * c) / sx
    k = (a * c + b * d) / sx
    shear = k / sy if sy != 0 else 0.0
    return Decomposition(float(e), float(f), angle, float(sx), float(sy), float(shear))
