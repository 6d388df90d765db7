"""FastAPI application for the Dev.Mode toggle surface.

Provides REST API endpoints wrapping the devmode Python package for:
- Reading and toggling the Active/Protected mode
- Reading and updating guard options
- Reading the audit log
- Inspecting uploads hardening
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the devmode package is importable by adding the project root to sys.path.
_project_root = str(Path(__file__).resolve().parents[3])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devmode import __version__
from web.backend.app.routers import devmode

app = FastAPI(
    title="Dev.Mode API",
    description=(
        "REST API for Dev.Mode. "
        "Provides endpoints for switching between Active and Protected, "
        "guard settings, the audit log and uploads hardening status."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (only the host's own admin origins)
# ---------------------------------------------------------------------------
_origins = [o.strip() for o in os.environ.get("DEVMODE_ALLOWED_ORIGINS", "").split(",") if o.strip()]
if _origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(devmode.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "Dev.Mode API",
        "version": __version__,
        "description": "Active/Protected operational guard",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
