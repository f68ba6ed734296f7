"""Previously computed note locations.

A full load resolves every note against the boundaries, which dominates the
run time. A backup of ``note_id,country_id`` pairs from an earlier load lets
most notes skip that step: positive ids from the backup are trusted up front
and then checked against the polygons once, so a note whose country no
longer contains it is not left with a stale assignment.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from notes_ingest.models import Note
from notes_ingest.services.allocator import chunked
from notes_ingest.services.boundary_store import BoundarySet
from notes_ingest.services.resolver import resolve_point

logger = logging.getLogger(__name__)

LOCATIONS_FILE = "note_locations.csv"


def read_location_backup(path: str | Path) -> dict[int, int]:
    """Read ``note_id,country_id`` rows; only positive country ids are kept."""
    source = Path(path)
    if not source.exists():
        return {}
    locations: dict[int, int] = {}
    with source.open(encoding="utf-8", newline="") as handle:
        for row in csv.DictReader(handle):
            country_id = (row.get("country_id") or "").strip()
            if not country_id:
                continue
            if int(country_id) > 0:
                locations[int(row["note_id"])] = int(country_id)
    logger.info("Read %s note locations from %s", len(locations), source)
    return locations


def apply_location_backup(
    db: Session,
    locations: Mapping[int, int] | Iterable[tuple[int, int]],
) -> int:
    """Copy backed-up countries onto stored notes that have no positive one.

    Notes already carrying a positive country keep it.
    """
    pairs = {note_id: country_id for note_id, country_id in dict(locations).items() if country_id > 0}
    applied = 0
    for chunk in chunked(sorted(pairs)):
        notes = db.execute(
            select(Note).where(
                Note.note_id.in_(chunk),
                or_(Note.country_id.is_(None), Note.country_id < 0),
            )
        ).scalars()
        for note in notes:
            note.country_id = pairs[note.note_id]
            applied += 1
    db.flush()
    logger.info("Applied %s backed-up note locations", applied)
    return applied


@dataclass
class VerificationResult:
    checked: int = 0
    cleared: int = 0
    note_ids: list[int] = field(default_factory=list)


def verify_assignments(
    db: Session,
    boundaries: BoundarySet,
    note_ids: Iterable[int] | None = None,
    *,
    reresolve: bool = True,
) -> VerificationResult:
    """Check positive assignments against the polygons of ``boundaries``.

    A note whose country is missing from the set or does not contain it is
    cleared. With ``reresolve`` it is resolved again right away, otherwise
    its country stays NULL.
    """
    result = VerificationResult()
    if not len(boundaries):
        logger.warning("No boundaries loaded, skipping location verification")
        return result

    if note_ids is None:
        ids = list(
            db.execute(
                select(Note.note_id).where(Note.country_id > 0).order_by(Note.note_id)
            ).scalars()
        )
    else:
        ids = sorted(set(note_ids))

    for chunk in chunked(ids):
        notes = db.execute(
            select(Note).where(Note.note_id.in_(chunk), Note.country_id > 0)
        ).scalars()
        for note in notes:
            result.checked += 1
            country = boundaries.get(note.country_id)
            if country is not None and country.contains(note.longitude, note.latitude):
                continue
            result.cleared += 1
            result.note_ids.append(note.note_id)
            if reresolve:
                note.country_id = resolve_point(boundaries, note.longitude, note.latitude)
                note.resolved_epoch = boundaries.epoch
            else:
                note.country_id = None
                note.resolved_epoch = None
    db.flush()
    if result.cleared:
        logger.warning(
            "Cleared %s of %s note assignments outside their country",
            result.cleared,
            result.checked,
        )
    return result
