"""Re-resolution of notes affected by a boundary change.

After a swap, notes inside the bounding box of a changed country (old or new
shape) may belong to a different country. They are processed in small
batches so the work can be aborted and resumed at any point: a note is done
once its ``resolved_epoch`` matches the active epoch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.models import Country, Note
from notes_ingest.models.boundary import ROLE_ACTIVE, ROLE_BACKUP
from notes_ingest.services.boundary_store import BoundaryStore, get_boundary_store, get_generation
from notes_ingest.services.resolver import resolve_point

logger = logging.getLogger(__name__)

BBox = tuple[float, float, float, float]


@dataclass(frozen=True)
class ReassignmentBatch:
    processed: int
    changed: int

    def __add__(self, other: ReassignmentBatch) -> ReassignmentBatch:
        return ReassignmentBatch(self.processed + other.processed, self.changed + other.changed)


def _bbox(row: Country) -> BBox:
    return (row.min_lon, row.min_lat, row.max_lon, row.max_lat)


def affected_boxes(db: Session) -> list[BBox]:
    """Bounding boxes whose notes may need a new country.

    Covers the new and old extent of every flagged country plus the old
    extent of countries that disappeared from the active set.
    """
    active = get_generation(db, ROLE_ACTIVE)
    if active is None:
        return []
    flagged = {
        row.country_id: row
        for row in db.execute(
            select(Country).where(Country.generation_id == active.id, Country.updated.is_(True))
        ).scalars()
    }
    boxes = [_bbox(row) for row in flagged.values()]

    backup = get_generation(db, ROLE_BACKUP)
    if backup is not None:
        active_ids = set(
            db.execute(
                select(Country.country_id).where(Country.generation_id == active.id)
            ).scalars()
        )
        for row in db.execute(select(Country).where(Country.generation_id == backup.id)).scalars():
            if row.country_id in flagged or row.country_id not in active_ids:
                boxes.append(_bbox(row))
    return boxes


class NoteReassigner:
    """Batch re-resolution of notes inside affected bounding boxes."""

    def __init__(self, store: BoundaryStore | None = None, batch_size: int | None = None) -> None:
        self.store = store or get_boundary_store()
        self.batch_size = batch_size or settings.reassignment_batch_size

    def run_batch(self, db: Session, batch_size: int | None = None) -> ReassignmentBatch:
        """Process one batch and commit it.

        Rows locked by a concurrent worker are skipped. A result with
        ``processed == 0`` means there is nothing left to do.
        """
        boundaries = self.store.ensure_current(db)
        boxes = affected_boxes(db)
        if not boxes:
            return ReassignmentBatch(0, 0)

        in_boxes = or_(
            *(
                and_(
                    Note.longitude.between(min_lon, max_lon),
                    Note.latitude.between(min_lat, max_lat),
                )
                for min_lon, min_lat, max_lon, max_lat in boxes
            )
        )
        stale = or_(Note.resolved_epoch.is_(None), Note.resolved_epoch < boundaries.epoch)
        notes = db.execute(
            select(Note)
            .where(in_boxes, stale)
            .order_by(Note.note_id)
            .limit(batch_size or self.batch_size)
            .with_for_update(skip_locked=True)
        ).scalars().all()

        changed = 0
        for note in notes:
            country = resolve_point(boundaries, note.longitude, note.latitude, note.country_id)
            if country != note.country_id:
                logger.debug(
                    "Note %s moves from country %s to %s", note.note_id, note.country_id, country
                )
                note.country_id = country
                changed += 1
            note.resolved_epoch = boundaries.epoch
        db.commit()
        if notes:
            logger.info("Reassignment batch processed=%s changed=%s", len(notes), changed)
        return ReassignmentBatch(len(notes), changed)

    def run_until_done(self, db: Session, max_batches: int | None = None) -> ReassignmentBatch:
        """Loop over batches until one comes back empty."""
        total = ReassignmentBatch(0, 0)
        batches = 0
        while max_batches is None or batches < max_batches:
            batch = self.run_batch(db)
            batches += 1
            if batch.processed == 0:
                break
            total = total + batch
        logger.info("Reassignment finished: processed=%s changed=%s", total.processed, total.changed)
        return total
