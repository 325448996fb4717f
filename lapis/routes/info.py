"""Info route -- exposes runtime configuration to the editing surface.

GET /api/info returns the deployment mode, the app version, the export
formats and the font catalogue so the editor can offer matching choices.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from lapis.config import get_settings
from lapis.export.document import MEDIA_TYPES
from lapis.export.fonts import FONT_FILES

router = APIRouter(prefix="/api", tags=["info"])


@router.get("/info")
async def get_info(request: Request) -> dict:
    """Return runtime information about the current LAPIS deployment.

    Response fields
    ---------------
    mode : str
        ``"local"`` (default) or ``"cloud"``; informational only.
    version : str
        Application version string sourced from the FastAPI app metadata.
    formats : list[str]
        Export formats accepted by POST /api/export.
    fonts : list[str]
        Font families with a catalogue entry.
    units : str
        Units of every exported document.
    """
    settings = get_settings()
    return {
        "mode": settings.mode,
        "version": request.app.version,
        "formats": sorted(MEDIA_TYPES),
        "fonts": sorted(FONT_FILES),
        "units": "inches",
    }
