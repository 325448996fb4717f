"""POST /api/export -- manufacturing file download; POST /api/export/preview.

Both routes run the same assembly pipeline.  The export route serializes the
document in a worker thread and returns it as an attachment; the preview
route returns the model summary and the skipped elements without a file.

Exports of the same design id are serialized by a per-design lock so two
requests never interleave their writes for one design.
"""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from lapis.config import get_settings
from lapis.errors import DocumentSerializationFailed, InvalidDimension, InvalidScale, LapisError
from lapis.export.document import (
    MEDIA_TYPES,
    ExportPipeline,
    ManufacturingDocument,
    export_filename,
    serialize,
)
from lapis.export.fetch import ResourceFetcher
from lapis.export.fonts import FontLoader, FontResourceCache
from lapis.export.sources import SourceCache, VectorSourceNormalizer
from lapis.models import ExportPreviewResponse, ExportRequest

logger = logging.getLogger("lapis.export")

router = APIRouter(prefix="/api", tags=["export"])

# ---------------------------------------------------------------------------
# Dependency: export pipeline
# ---------------------------------------------------------------------------

_pipeline: ExportPipeline | None = None


def create_pipeline(fetcher: ResourceFetcher | None = None) -> ExportPipeline:
    """Build a pipeline with fresh caches from the current settings."""
    settings = get_settings()
    fetcher = fetcher or ResourceFetcher(
        timeout=settings.fetch_timeout, max_bytes=settings.max_source_bytes
    )
    fonts = FontResourceCache(FontLoader(settings.font_base, fetcher))
    sources = VectorSourceNormalizer(SourceCache(fetcher), settings.flatten_tolerance)
    return ExportPipeline(fonts, sources, settings)


def _get_pipeline() -> ExportPipeline:
    """FastAPI dependency returning the active ExportPipeline.

    main.py installs the pipeline built in the lifespan; without one (e.g. a
    TestClient used outside a ``with`` block) a default is created on first
    use.  Tests may call ``set_pipeline()`` to inject fakes.
    """
    global _pipeline  # noqa: PLW0603
    if _pipeline is None:
        _pipeline = create_pipeline()
    return _pipeline


def set_pipeline(pipeline: ExportPipeline | None) -> None:
    """Override the active pipeline (used by tests and main.py)."""
    global _pipeline  # noqa: PLW0603
    _pipeline = pipeline


# ---------------------------------------------------------------------------
# Per-design export locks
# ---------------------------------------------------------------------------

_design_locks: dict[str, anyio.Lock] = {}


def _design_lock(design_id: str) -> anyio.Lock:
    lock = _design_locks.get(design_id)
    if lock is None:
        lock = _design_locks[design_id] = anyio.Lock()
    return lock


def _release_design_lock(design_id: str) -> None:
    lock = _design_locks.get(design_id)
    if lock is not None and not lock.locked() and lock.statistics().tasks_waiting == 0:
        del _design_locks[design_id]


async def _assemble(request: ExportRequest, pipeline: ExportPipeline) -> ManufacturingDocument:
    try:
        return await pipeline.assemble(request.frame, request.background_layers, request.elements)
    except (InvalidDimension, InvalidScale) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LapisError as exc:
        logger.exception("Export assembly failed")
        raise HTTPException(status_code=500, detail=f"Export failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/export")
async def export_design(
    request: ExportRequest,
    pipeline: ExportPipeline = Depends(_get_pipeline),
) -> Response:
    """Assemble the design and return the manufacturing file.

    Pipeline: validate frame -> resolve fonts -> convert elements ->
    serialize (worker thread) -> attachment response.
    """
    filename = export_filename(request.design_id, request.format)
    try:
        async with _design_lock(request.design_id):
            document = await _assemble(request, pipeline)
            try:
                payload = await anyio.to_thread.run_sync(serialize, document, request.format)
            except DocumentSerializationFailed as exc:
                logger.exception("Export serialization failed")
                raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        _release_design_lock(request.design_id)

    logger.info(
        "Exported %s (%d models, %d skipped, %d bytes)",
        filename,
        len(document.models),
        len(document.skipped),
        len(payload),
    )
    return Response(
        content=payload,
        media_type=MEDIA_TYPES[request.format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/export/preview", response_model=ExportPreviewResponse, response_model_by_alias=True)
async def export_preview(
    request: ExportRequest,
    pipeline: ExportPipeline = Depends(_get_pipeline),
) -> ExportPreviewResponse:
    """Assemble the design and report models and skipped elements, without a file."""
    document = await _assemble(request, pipeline)
    return ExportPreviewResponse(
        filename=export_filename(request.design_id, request.format),
        units=document.units,
        width=document.width,
        height=document.height,
        models=document.summary(),
        skipped=document.skipped,
    )
