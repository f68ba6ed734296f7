"""System status endpoints for the ingestion service."""

from __future__ import annotations

import time
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.session import get_db
from notes_ingest.models import GapRecord, Note, NoteComment, ProcessLock
from notes_ingest.models.boundary import ROLE_ACTIVE
from notes_ingest.services.boundary_store import get_boundary_store, get_generation
from notes_ingest.services.lock import LOCK_ROW_ID
from notes_ingest.services.watermark import get_watermark

router = APIRouter(prefix="/system", tags=["system"])
SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/lock")
async def get_lock(db: SessionDep) -> dict[str, object]:
    """Report which job, if any, holds the process lock.

    Args:
        db: Database session

    Returns:
        Dictionary with ``held`` and, when held, the holder's tag, pid, host
        and acquisition time
    """
    row = db.get(ProcessLock, LOCK_ROW_ID)
    if row is None:
        return {"held": False}
    return {
        "held": True,
        "tag": row.tag,
        "pid": row.holder_pid,
        "hostname": row.hostname,
        "acquired_at": row.acquired_at.isoformat(),
    }


@router.get("/status")
async def get_system_status(db: SessionDep) -> dict[str, object]:
    """Summarize ingestion progress for monitoring dashboards.

    Args:
        db: Database session

    Returns:
        Dictionary with the watermark, note and comment counts, open gaps,
        the active boundary epoch and the epoch loaded in this process
    """
    watermark = get_watermark(db)
    active = get_generation(db, ROLE_ACTIVE)
    open_gaps = db.scalar(
        select(func.count()).select_from(GapRecord).where(GapRecord.processed.is_(False))
    )
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "timestamp": int(time.time()),
        "watermark": watermark.isoformat() if watermark is not None else None,
        "notes": int(db.scalar(select(func.count()).select_from(Note)) or 0),
        "comments": int(db.scalar(select(func.count()).select_from(NoteComment)) or 0),
        "open_gaps": int(open_gaps or 0),
        "boundaries": {
            "active_epoch": active.epoch if active is not None else None,
            "countries": active.country_count if active is not None else 0,
            "loaded_epoch": get_boundary_store().current.epoch,
        },
        "environment": "production" if not settings.debug else "development",
    }


@router.get("/health")
async def get_system_health(db: SessionDep) -> dict[str, object]:
    """Check database connectivity.

    Args:
        db: Database session

    Returns:
        Dictionary with overall status and per-component health
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": int(time.time()),
        "components": {"database": db_status},
        "version": settings.app_version,
    }
