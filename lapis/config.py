"""Runtime configuration read from ``LAPIS_*`` environment variables.

Values are re-read on every ``get_settings()`` call so tests can patch the
environment.  Malformed values never break a deployment: they fall back to
the default with a warning on the ``lapis`` logger.

  LAPIS_MODE               local (default) | cloud -- reported by /api/info
  LAPIS_FONT_BASE          base URL or directory holding font files (./fonts)
  LAPIS_FETCH_TIMEOUT      seconds per font/artwork fetch (15)
  LAPIS_MAX_SOURCE_BYTES   maximum size of a fetched resource (10 MiB)
  LAPIS_FLATTEN_TOLERANCE  max chordal deviation of flattened curves, inches (0.005)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

logger = logging.getLogger("lapis")

LapisMode = Literal["local", "cloud"]
_VALID_MODES: frozenset[str] = frozenset({"local", "cloud"})

DEFAULT_FONT_BASE = str(Path.cwd() / "fonts")
DEFAULT_FETCH_TIMEOUT = 15.0
DEFAULT_MAX_SOURCE_BYTES = 10 * 1024 * 1024
DEFAULT_FLATTEN_TOLERANCE = 0.005


@dataclass(frozen=True)
class Settings:
    """Resolved configuration snapshot."""

    mode: LapisMode = "local"
    font_base: str = DEFAULT_FONT_BASE
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_source_bytes: int = DEFAULT_MAX_SOURCE_BYTES
    flatten_tolerance: float = DEFAULT_FLATTEN_TOLERANCE


def get_mode() -> LapisMode:
    """Return LAPIS_MODE, defaulting to ``'local'`` for unknown values."""
    raw = os.environ.get("LAPIS_MODE", "local").strip().lower()
    if raw not in _VALID_MODES:
        logger.warning(
            "Unknown LAPIS_MODE=%r — falling back to 'local'. Valid values are: %s",
            raw,
            ", ".join(sorted(_VALID_MODES)),
        )
        return "local"
    return raw  # type: ignore[return-value]


def _positive_env(name: str, default: float, cast: type = float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Invalid %s=%r — using default %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive (got %r) — using default %s", name, raw, default)
        return default
    return value


def get_settings() -> Settings:
    """Build a :class:`Settings` from the current environment."""
    return Settings(
        mode=get_mode(),
        font_base=os.environ.get("LAPIS_FONT_BASE", DEFAULT_FONT_BASE),
        fetch_timeout=_positive_env("LAPIS_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT),
        max_source_bytes=int(
            _positive_env("LAPIS_MAX_SOURCE_BYTES", DEFAULT_MAX_SOURCE_BYTES, int)
        ),
        flatten_tolerance=_positive_env("LAPIS_FLATTEN_TOLERANCE", DEFAULT_FLATTEN_TOLERANCE),
    )
