"""FastAPI application — entry point for the LAPIS export backend.

Lifespan builds the process-wide services (shared HTTP client, font cache,
source cache) and installs the export pipeline; registers route modules and
serves the health endpoint.

Configuration comes from ``LAPIS_*`` environment variables (see
``lapis.config``).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lapis.config import get_settings
from lapis.export.fetch import ResourceFetcher
from lapis.routes.export import create_pipeline, router as export_router, set_pipeline
from lapis.routes.info import router as info_router
from lapis.routes.zones import router as zones_router

logger = logging.getLogger("lapis")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup tasks:
    1. Open the shared HTTP client used for font and artwork fetches
    2. Create the font/source caches and install the export pipeline
    On shutdown the pipeline is uninstalled and the client closed.
    """
    settings = get_settings()
    logger.info(
        "LAPIS_MODE=%s — fonts from %s, flatten tolerance %s in",
        settings.mode,
        settings.font_base,
        settings.flatten_tolerance,
    )
    async with httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=True) as client:
        fetcher = ResourceFetcher(
            client, timeout=settings.fetch_timeout, max_bytes=settings.max_source_bytes
        )
        set_pipeline(create_pipeline(fetcher))
        try:
            yield
        finally:
            set_pipeline(None)


app = FastAPI(title="LAPIS", version=VERSION, lifespan=lifespan)

# ---------------------------------------------------------------------------
# CORS middleware for development (Vite dev server at localhost:5173)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

# ---------------------------------------------------------------------------
# API route registration
# ---------------------------------------------------------------------------
app.include_router(export_router)
app.include_router(zones_router)
app.include_router(info_router)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "version": VERSION, "mode": get_settings().mode}
