"""Scale calculator -- pixel <-> real-world (inch) conversion for a canvas frame.

The scale factor is pixels per inch along the frame width:

    scale = pixel_width / real_width

It is a pure function of the current frame dimensions; callers recompute it
whenever the canvas is resized instead of caching it.
"""

from __future__ import annotations

from lapis.errors import InvalidDimension, InvalidScale


def calculate_scale(real_width: float, pixel_width: float) -> float:
    """Return the scale factor (pixels per inch).

    Raises:
        InvalidDimension: if either dimension is zero or negative.

    Example::

        calculate_scale(12, 1200)  # -> 100.0
    """
    if real_width <= 0 or pixel_width <= 0:
        raise InvalidDimension(
            f"Both dimensions must be greater than zero "
            f"(real_width={real_width!r}, pixel_width={pixel_width!r})"
        )
    return pixel_width / real_width


def _check_scale(scale: float) -> None:
    if scale <= 0:
        raise InvalidScale(f"Scale must be greater than zero (got {scale!r})")


def to_pixels(real: float, scale: float) -> float:
    """Convert inches to pixels."""
    _check_scale(scale)
    return real * scale


def to_real(pixels: float, scale: float) -> float:
    """Convert pixels to inches."""
    _check_scale(scale)
    return pixels / scale


def to_pixels_rounded(real: float, scale: float) -> int:
    """Convert inches to the nearest whole pixel."""
    return round(to_pixels(real, scale))


def format_real(pixels: float, scale: float, precision: int = 2) -> str:
    """Format a pixel length as inches, e.g. ``6.00"``."""
    return f'{to_real(pixels, scale):.{precision}f}"'


def format_measurement(pixels: float, scale: float) -> str:
    """Format a pixel length with its inch equivalent, e.g. ``600px (6.00")``."""
    return f"{round(pixels)}px ({format_real(pixels, scale)})"
