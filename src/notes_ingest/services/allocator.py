"""Id and per-note sequence allocation.

Both loaders draw comment and text ids from the same named counters, so ids
never collide no matter which path inserts a row. Per-note sequence numbers
are assigned explicitly: a supplied value is kept, a missing one gets the
next free number for that note.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notes_ingest.models import IdSequence, NoteComment, NoteCommentText

logger = logging.getLogger(__name__)

# Keeps IN lists well below driver parameter limits.
IN_CLAUSE_CHUNK = 500


def chunked(values: Sequence[Any], size: int = IN_CLAUSE_CHUNK) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class IdAllocator:
    """Hands out contiguous id ranges from a named counter row."""

    def __init__(self, name: str, model: type[NoteComment] | type[NoteCommentText]) -> None:
        self.name = name
        self.model = model

    def _counter(self, db: Session) -> IdSequence:
        counter = db.execute(
            select(IdSequence).where(IdSequence.name == self.name).with_for_update()
        ).scalar_one_or_none()
        if counter is None:
            start = int(db.scalar(select(func.max(self.model.id))) or 0)
            counter = IdSequence(name=self.name, last_value=start)
            db.add(counter)
            db.flush()
        return counter

    def allocate(self, db: Session, count: int) -> range:
        """Reserve ``count`` ids and return them in ascending order."""
        if count <= 0:
            return range(0)
        counter = self._counter(db)
        first = counter.last_value + 1
        counter.last_value += count
        db.flush()
        return range(first, first + count)

    def sync_with_table(self, db: Session) -> bool:
        """Advance the counter if rows exist above it.

        The common case costs one index probe; the full MAX scan only runs
        when drift is actually present. Returns True if the counter moved.
        """
        counter = self._counter(db)
        ahead = db.execute(
            select(self.model.id).where(self.model.id > counter.last_value).limit(1)
        ).scalar_one_or_none()
        if ahead is None:
            return False
        highest = int(db.scalar(select(func.max(self.model.id))) or 0)
        logger.warning(
            "Id counter %s behind table: last_value=%s max(id)=%s",
            self.name,
            counter.last_value,
            highest,
        )
        counter.last_value = highest
        db.flush()
        return True


def comment_id_allocator() -> IdAllocator:
    return IdAllocator("note_comment", NoteComment)


def comment_text_id_allocator() -> IdAllocator:
    return IdAllocator("note_comment_text", NoteCommentText)


class SequenceActionAllocator:
    """Assigns per-note ``sequence_action`` values where they are missing."""

    def existing_maxima(self, db: Session, note_ids: Iterable[int]) -> dict[int, int]:
        ids = sorted(set(note_ids))
        maxima: dict[int, int] = {}
        for chunk in chunked(ids):
            rows = db.execute(
                select(NoteComment.note_id, func.max(NoteComment.sequence_action))
                .where(NoteComment.note_id.in_(chunk))
                .group_by(NoteComment.note_id)
            ).all()
            maxima.update({note_id: int(value or 0) for note_id, value in rows})
        return maxima

    def assign(self, db: Session, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Fill ``sequence_action`` on rows lacking one, in the given order.

        Rows must already be ordered as they should be numbered. Supplied
        values are never overwritten, and assigned values start above both
        the stored maximum and any value supplied in the same batch.
        """
        maxima = self.existing_maxima(db, (row["note_id"] for row in rows))
        supplied: dict[int, int] = defaultdict(int)
        for row in rows:
            if row.get("sequence_action") is not None:
                supplied[row["note_id"]] = max(supplied[row["note_id"]], int(row["sequence_action"]))

        next_value: dict[int, int] = {}
        for row in rows:
            if row.get("sequence_action") is not None:
                continue
            note_id = row["note_id"]
            if note_id not in next_value:
                next_value[note_id] = max(maxima.get(note_id, 0), supplied.get(note_id, 0)) + 1
            row["sequence_action"] = next_value[note_id]
            next_value[note_id] += 1
        return rows
