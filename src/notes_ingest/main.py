"""Main entry point for the notes ingestion HTTP API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.exc import SQLAlchemyError

from notes_ingest.api.v1 import (
    boundaries_router,
    gaps_router,
    resolve_router,
    system_router,
)
from notes_ingest.core.settings import settings
from notes_ingest.db.session import SessionLocal
from notes_ingest.services.boundary_store import get_boundary_store

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Notes Ingest API",
    description="Country resolution and ingestion status for map notes",
    version=settings.app_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(resolve_router, prefix="/api/v1")
app.include_router(gaps_router, prefix="/api/v1")
app.include_router(boundaries_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    try:
        with SessionLocal() as db:
            get_boundary_store().load(db)
    except SQLAlchemyError:
        logger.warning("Boundary set not loaded at startup; database not ready", exc_info=True)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Country resolution and ingestion status for map notes",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("notes_ingest.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
