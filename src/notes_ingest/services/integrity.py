"""Integrity checks for incremental cycles and gap bookkeeping.

A note without any comment means the note made it in but its comments did
not. A handful of those is tolerated; beyond the configured ratio the cycle
is reported as failed and the watermark stays where it was, so the next cycle
fetches the same window again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.time import utcnow
from notes_ingest.models import GapRecord, Note, NoteComment
from notes_ingest.services.allocator import chunked

logger = logging.getLogger(__name__)

GAP_NOTES_WITHOUT_COMMENTS = "notes_without_comments"
GAP_ORPHAN_COMMENT_TEXT = "orphan_comment_text"


def record_gap(
    db: Session,
    gap_type: str,
    gap_count: int,
    total_count: int,
    affected_ids: Iterable[int],
    error_details: str | None = None,
) -> GapRecord:
    """Append a gap record. Gap records are never updated by the pipeline."""
    percentage = round(gap_count * 100.0 / total_count, 2) if total_count else 0.0
    record = GapRecord(
        gap_type=gap_type,
        gap_count=gap_count,
        total_count=total_count,
        gap_percentage=percentage,
        affected_ids=sorted(set(int(value) for value in affected_ids)),
        error_details=error_details,
        processed=False,
        created_at=utcnow(),
    )
    db.add(record)
    db.flush()
    logger.warning(
        "Recorded %s gap: %s of %s (%.2f%%)", gap_type, gap_count, total_count, percentage
    )
    return record


@dataclass(frozen=True)
class IntegrityPolicy:
    grace: timedelta
    min_sample: int
    max_gap_ratio: float

    @classmethod
    def from_settings(cls) -> IntegrityPolicy:
        return cls(
            grace=timedelta(minutes=settings.integrity_grace_minutes),
            min_sample=settings.integrity_min_sample,
            max_gap_ratio=settings.integrity_max_gap_ratio,
        )


@dataclass(frozen=True)
class IntegrityResult:
    passed: bool
    eligible: int = 0
    missing: int = 0
    missing_note_ids: tuple[int, ...] = field(default_factory=tuple)
    gap_record_id: int | None = None
    reason: str = ""


class IntegrityChecker:
    """Checks that notes written in a cycle also got their comments."""

    def __init__(self, policy: IntegrityPolicy | None = None) -> None:
        self.policy = policy or IntegrityPolicy.from_settings()

    def check(
        self,
        db: Session,
        note_ids: Iterable[int],
        now: datetime | None = None,
    ) -> IntegrityResult:
        """Check the notes touched by this cycle.

        Only notes older than the grace period are eligible, since their
        comments may legitimately still be on the way. A gap record is
        written whenever anything is missing, even if the cycle still passes.
        """
        has_comments = db.execute(select(NoteComment.id).limit(1)).first() is not None
        if not has_comments:
            return IntegrityResult(passed=True, reason="no comments stored yet")

        cutoff = (now or utcnow()) - self.policy.grace
        ids = sorted(set(note_ids))
        eligible = 0
        missing: list[int] = []
        for chunk in chunked(ids):
            scoped = (Note.note_id.in_(chunk), Note.created_at < cutoff)
            eligible += len(db.execute(select(Note.note_id).where(*scoped)).all())
            missing.extend(
                db.execute(
                    select(Note.note_id).where(
                        *scoped,
                        ~exists().where(NoteComment.note_id == Note.note_id),
                    )
                ).scalars()
            )

        gap_id = None
        if missing:
            gap = record_gap(
                db,
                GAP_NOTES_WITHOUT_COMMENTS,
                len(missing),
                eligible,
                missing,
                "Notes were inserted but their comments failed to insert",
            )
            gap_id = gap.id

        if eligible < self.policy.min_sample:
            return IntegrityResult(
                passed=True,
                eligible=eligible,
                missing=len(missing),
                missing_note_ids=tuple(missing),
                gap_record_id=gap_id,
                reason="sample below minimum size",
            )

        passed = len(missing) / eligible <= self.policy.max_gap_ratio
        if not passed:
            logger.error(
                "Integrity check failed: %s of %s notes have no comments", len(missing), eligible
            )
        return IntegrityResult(
            passed=passed,
            eligible=eligible,
            missing=len(missing),
            missing_note_ids=tuple(missing),
            gap_record_id=gap_id,
            reason="within tolerance" if passed else "gap ratio above tolerance",
        )
