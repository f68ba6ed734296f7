"""Read-only access to recorded data gaps."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_ingest.db.session import get_db
from notes_ingest.models import GapRecord
from notes_ingest.schemas.gap import GapRecordResponse

router = APIRouter(prefix="/gaps", tags=["gaps"])
SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/", response_model=list[GapRecordResponse])
async def list_gaps(
    db: SessionDep,
    gap_type: str | None = None,
    processed: bool | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[GapRecord]:
    """List gap records, newest first."""
    stmt = select(GapRecord)
    if gap_type is not None:
        stmt = stmt.where(GapRecord.gap_type == gap_type)
    if processed is not None:
        stmt = stmt.where(GapRecord.processed.is_(processed))
    stmt = stmt.order_by(GapRecord.created_at.desc(), GapRecord.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


@router.get("/{gap_id}", response_model=GapRecordResponse)
async def get_gap(gap_id: int, db: SessionDep) -> GapRecord:
    """Get a single gap record by ID."""
    gap = db.get(GapRecord, gap_id)
    if gap is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Gap record not found",
        )
    return gap
