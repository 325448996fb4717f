"""Font resource cache -- loads outline fonts by family name with negative caching.

Fonts live at a well-known location (``LAPIS_FONT_BASE``: a base URL or a
directory), one file per family.  ``FONT_FILES`` mirrors the studio's font
catalogue; unknown families fall back to ``<family>.ttf``.

The cache is a process-wide service created by the app lifespan and injected
into the export pipeline.  Entries are written once, on first resolution:

  - success  -> FontResource (immutable)
  - failure  -> None (negative entry; the family is never retried)

Concurrent resolutions of the same family share one in-flight load.
"""

from __future__ import annotations

import io
import logging
from typing import Iterable

import anyio
from fontTools.pens.basePen import AbstractPen
from fontTools.ttLib import TTFont

from lapis.export.fetch import FETCH_ERRORS, ResourceFetcher, join_location

logger = logging.getLogger("lapis.fonts")

# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

FONT_FILES: dict[str, str] = {
    "Times New Roman": "Times New Roman.ttf",
    "Arial": "Arial.ttf",
    "Helvetica": "Helvetica.ttc",
    "Helvetica Neue": "HelveticaNeue.ttc",
    "Georgia": "Georgia.ttf",
    "Geneva": "Geneva.ttf",
    "Avenir": "Avenir.ttc",
    "Palatino": "Palatino.ttc",
    "Academy Engraved LET": "Academy Engraved LET Fonts.ttf",
    "Apple Chancery": "Apple Chancery.ttf",
    "BigCaslon": "BigCaslon.ttf",
    "Brush Script": "Brush Script.ttf",
    "Impact": "Impact.ttf",
    "Bodoni Moda SC": "BodoniModaSC.ttf",
    "Cinzel": "Cinzel.ttf",
    "Gloock": "Gloock-Regular.ttf",
    "Goudy Bookletter 1911": "GoudyBookletter1911-Regular.ttf",
    "Lavishly Yours": "LavishlyYours-Regular.ttf",
    "League Gothic": "LeagueGothic-Regular.ttf",
    "Monsieur La Doulaise": "MonsieurLaDoulaise-Regular.ttf",
    "Pinyon Script": "PinyonScript-Regular.ttf",
}


def font_filename(family: str) -> str:
    return FONT_FILES.get(family, f"{family}.ttf")


# ---------------------------------------------------------------------------
# FontResource
# ---------------------------------------------------------------------------


class FontResource:
    """A parsed outline font.

    Wraps a fontTools ``TTFont`` and exposes the handful of lookups the glyph
    converter needs.  Collections (``.ttc``) load their first face.
    """

    def __init__(self, family: str, font: TTFont) -> None:
        self.family = family
        self.units_per_em: int = font["head"].unitsPerEm
        self.glyph_set = font.getGlyphSet()
        self._cmap: dict[int, str] = font.getBestCmap() or {}

    @classmethod
    def from_bytes(cls, family: str, data: bytes) -> FontResource:
        return cls(family, TTFont(io.BytesIO(data), fontNumber=0))

    def glyph_name(self, char: str) -> str | None:
        """Glyph for ``char``; ``.notdef`` when unmapped, None if even that is missing."""
        name = self._cmap.get(ord(char), ".notdef")
        return name if name in self.glyph_set else None

    def advance(self, glyph_name: str) -> float:
        """Advance width in font units."""
        return self.glyph_set[glyph_name].width

    def draw(self, glyph_name: str, pen: AbstractPen) -> None:
        self.glyph_set[glyph_name].draw(pen)


# ---------------------------------------------------------------------------
# Loader + cache
# ---------------------------------------------------------------------------


class FontLoader:
    """Maps a family to its file location and fetches the bytes."""

    def __init__(self, base: str, fetcher: ResourceFetcher | None = None) -> None:
        self.base = base
        self.fetcher = fetcher or ResourceFetcher()

    def location(self, family: str) -> str:
        return join_location(self.base, font_filename(family))

    async def load(self, family: str) -> bytes:
        return await self.fetcher.fetch(self.location(family))


class FontResourceCache:
    """Process-wide family -> FontResource map with negative caching."""

    def __init__(self, loader: FontLoader) -> None:
        self._loader = loader
        self._fonts: dict[str, FontResource | None] = {}
        self._pending: dict[str, anyio.Event] = {}

    def __contains__(self, family: object) -> bool:
        return family in self._fonts

    def get(self, family: str) -> FontResource | None:
        """Return an already-resolved font (None if unresolved or failed)."""
        return self._fonts.get(family)

    def clear(self) -> None:
        """Forget every entry (process restart semantics; used by tests).

        Loads already in flight (``_pending``) are left alone: they still
        store their result when they complete.
        """
        self._fonts.clear()

    async def resolve(self, family: str) -> FontResource | None:
        """Load ``family`` once; later calls return the cached outcome."""
        if family in self._fonts:
            return self._fonts[family]

        pending = self._pending.get(family)
        if pending is not None:
            await pending.wait()
            return self._fonts.get(family)

        event = anyio.Event()
        self._pending[family] = event
        try:
            self._fonts[family] = await self._load(family)
        finally:
            del self._pending[family]
            event.set()
        return self._fonts[family]

    async def resolve_all(self, families: Iterable[str]) -> dict[str, FontResource | None]:
        """Resolve every distinct family concurrently and wait for all of them."""
        unique = list(dict.fromkeys(families))
        async with anyio.create_task_group() as tg:
            for family in unique:
                tg.start_soon(self.resolve, family)
        return {family: self._fonts.get(family) for family in unique}

    async def _load(self, family: str) -> FontResource | None:
        location = self._loader.location(family)
        try:
            data = await self._loader.load(family)
        except FETCH_ERRORS as exc:
            logger.warning("Failed to load font %s from %s: %s", family, location, exc)
            return None
        try:
            font = await anyio.to_thread.run_sync(FontResource.from_bytes, family, data)
        except Exception as exc:  # fontTools raises assorted errors on corrupt files
            logger.warning("Failed to parse font %s from %s: %s", family, location, exc)
            return None
        logger.info("Font loaded: %s", family)
        return font
