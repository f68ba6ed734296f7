"""Boundary generation endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_ingest.db.session import get_db
from notes_ingest.models import BoundaryGeneration
from notes_ingest.models.boundary import ROLE_ACTIVE, ROLE_BACKUP
from notes_ingest.schemas.boundary import CountryDiff, DiffStatus, GenerationResponse
from notes_ingest.services.boundary_store import get_generation
from notes_ingest.services.boundary_update import diff_generations

router = APIRouter(prefix="/boundaries", tags=["boundaries"])
SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/", response_model=list[GenerationResponse])
async def list_generations(db: SessionDep) -> list[BoundaryGeneration]:
    """List the stored boundary generations (active, backup, candidate)."""
    return list(
        db.execute(select(BoundaryGeneration).order_by(BoundaryGeneration.id)).scalars()
    )


@router.get("/diff", response_model=list[CountryDiff])
async def get_boundary_diff(
    db: SessionDep,
    changed_only: bool = False,
) -> list[CountryDiff]:
    """Compare the backup generation with the active one.

    Args:
        db: Database session
        changed_only: Leave out countries whose geometry did not change

    Returns:
        One entry per country present in either generation, ordered by id
    """
    if get_generation(db, ROLE_ACTIVE) is None or get_generation(db, ROLE_BACKUP) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Both an active and a backup boundary generation are required",
        )
    diffs = diff_generations(db, old_role=ROLE_BACKUP, new_role=ROLE_ACTIVE)
    if changed_only:
        diffs = [entry for entry in diffs if entry.status is not DiffStatus.UNCHANGED]
    return diffs
