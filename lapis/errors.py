"""Exception hierarchy for the export pipeline and zone engine.

Two severities:
  - pipeline-level (InvalidDimension, InvalidScale, DocumentSerializationFailed)
    abort the whole export before anything is written;
  - element-level (FontNotLoaded, VectorSourceFetchFailed, VectorParseFailed,
    ModelConversionFailed) are caught at the per-element boundary.
"""

from __future__ import annotations


class LapisError(Exception):
    """Base class for all LAPIS errors."""


# ---------------------------------------------------------------------------
# Pipeline-level (fatal)
# ---------------------------------------------------------------------------


class InvalidDimension(LapisError, ValueError):
    """A real-world or pixel dimension was zero or negative."""


class InvalidScale(LapisError, ValueError):
    """A scale factor (pixels per inch) was zero or negative."""


class DocumentSerializationFailed(LapisError):
    """The assembled document could not be written to the output format."""


# ---------------------------------------------------------------------------
# Element-level (recoverable)
# ---------------------------------------------------------------------------


class ElementError(LapisError):
    """An error scoped to a single design element or source."""


class FontNotLoaded(ElementError):
    """No font resource is available for the requested family."""

    def __init__(self, family: str) -> None:
        super().__init__(f"Font not loaded: {family}")
        self.family = family


class VectorSourceFetchFailed(ElementError):
    """An artwork/template source could not be fetched."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {source!r}: {reason}")
        self.source = source


class VectorParseFailed(ElementError):
    """A fetched source could not be parsed or held no geometry."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Failed to parse {source!r}: {reason}")
        self.source = source


class ModelConversionFailed(ElementError):
    """A geometric step failed while converting one element.

    Carries the diagnostic context (element id, type, source) that is logged
    and reported back in the export preview.
    """

    def __init__(
        self,
        reason: str,
        *,
        element_id: str = "",
        element_type: str = "",
        source: str | None = None,
    ) -> None:
        context = f"{element_type or 'element'} {element_id or '<no id>'}"
        if source:
            context += f" (source={source})"
        super().__init__(f"Conversion failed for {context}: {reason}")
        self.reason = reason
        self.element_id = element_id
        self.element_type = element_type
        self.source = source
