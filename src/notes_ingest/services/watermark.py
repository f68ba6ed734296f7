"""Watermark bookkeeping and rollback to a cutoff."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, exists, or_, select
from sqlalchemy.orm import Session

from notes_ingest.db.time import ensure_utc
from notes_ingest.models import Note, NoteComment, NoteCommentText, Watermark

logger = logging.getLogger(__name__)


def _row(db: Session) -> Watermark:
    row = db.get(Watermark, 1)
    if row is None:
        row = Watermark(id=1, timestamp=None)
        db.add(row)
        db.flush()
    return row


def get_watermark(db: Session) -> datetime | None:
    row = db.get(Watermark, 1)
    return row.timestamp if row is not None else None


def advance_watermark(db: Session, candidate: datetime | None) -> datetime | None:
    """Move the watermark forward to ``candidate``. It never moves backwards."""
    row = _row(db)
    if candidate is None:
        return row.timestamp
    candidate = ensure_utc(candidate)
    if row.timestamp is None or candidate > row.timestamp:
        logger.info("Advancing watermark from %s to %s", row.timestamp, candidate)
        row.timestamp = candidate
        db.flush()
    return row.timestamp


def delete_after_cutoff(db: Session, cutoff: datetime) -> dict[str, int]:
    """Remove everything newer than ``cutoff`` and pull the watermark back.

    Notes created, first stored or closed after the cutoff go away together
    with all their comments and texts; comments created after the cutoff go
    away on surviving notes too. Used when restoring from a backup taken at
    ``cutoff``. The caller commits.
    """
    cutoff = ensure_utc(cutoff)
    doomed_notes = select(Note.note_id).where(
        or_(Note.created_at > cutoff, Note.insert_time > cutoff, Note.closed_at > cutoff)
    )
    late_comment = exists().where(
        NoteComment.note_id == NoteCommentText.note_id,
        NoteComment.sequence_action == NoteCommentText.sequence_action,
        NoteComment.created_at > cutoff,
    )

    texts = db.execute(
        delete(NoteCommentText).where(
            or_(NoteCommentText.note_id.in_(doomed_notes), late_comment)
        ),
        execution_options={"synchronize_session": False},
    ).rowcount
    comments = db.execute(
        delete(NoteComment).where(
            or_(NoteComment.note_id.in_(doomed_notes), NoteComment.created_at > cutoff)
        ),
        execution_options={"synchronize_session": False},
    ).rowcount
    notes = db.execute(
        delete(Note).where(
            or_(Note.created_at > cutoff, Note.insert_time > cutoff, Note.closed_at > cutoff)
        ),
        execution_options={"synchronize_session": False},
    ).rowcount

    row = _row(db)
    if row.timestamp is None or row.timestamp > cutoff:
        row.timestamp = cutoff
    db.flush()
    db.expire_all()
    counts = {"texts": int(texts or 0), "comments": int(comments or 0), "notes": int(notes or 0)}
    logger.info("Deleted data after %s: %s", cutoff, counts)
    return counts
