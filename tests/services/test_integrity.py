"""Tests for the notes-without-comments integrity check."""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from notes_ingest.models import GapRecord, Note, NoteComment
from notes_ingest.services.integrity import (
    GAP_NOTES_WITHOUT_COMMENTS,
    IntegrityChecker,
    IntegrityPolicy,
)
from tests.factories import BASE_TIME, BERLIN

NOW = BASE_TIME + timedelta(days=1)


@pytest.fixture()
def checker() -> IntegrityChecker:
    return IntegrityChecker(
        IntegrityPolicy(grace=timedelta(minutes=30), min_sample=10, max_gap_ratio=0.05)
    )


def _seed(db: Session, total: int, without_comments: int, created=BASE_TIME) -> list[int]:
    ids = list(range(1, total + 1))
    db.add_all(
        Note(note_id=i, longitude=BERLIN[0], latitude=BERLIN[1], created_at=created, status="open")
        for i in ids
    )
    db.flush()
    db.add_all(
        NoteComment(id=i, note_id=i, sequence_action=1, event="opened", created_at=created)
        for i in ids[without_comments:]
    )
    db.flush()
    return ids


def test_ratio_at_tolerance_passes(db_session: Session, checker: IntegrityChecker) -> None:
    ids = _seed(db_session, 100, 5)
    result = checker.check(db_session, ids, now=NOW)

    assert result.passed
    assert result.eligible == 100
    assert result.missing == 5
    assert result.missing_note_ids == (1, 2, 3, 4, 5)
    # The gap is recorded even when the cycle passes.
    gap = db_session.get(GapRecord, result.gap_record_id)
    assert gap.gap_type == GAP_NOTES_WITHOUT_COMMENTS
    assert gap.gap_percentage == pytest.approx(5.0)


def test_ratio_above_tolerance_fails(db_session: Session, checker: IntegrityChecker) -> None:
    ids = _seed(db_session, 100, 6)
    result = checker.check(db_session, ids, now=NOW)
    assert not result.passed
    assert result.missing == 6


def test_small_sample_always_passes(db_session: Session, checker: IntegrityChecker) -> None:
    ids = _seed(db_session, 9, 9 - 1)
    result = checker.check(db_session, ids, now=NOW)
    assert result.passed
    assert result.eligible == 9


def test_empty_comment_table_passes(db_session: Session, checker: IntegrityChecker) -> None:
    ids = _seed(db_session, 20, 20)
    result = checker.check(db_session, ids, now=NOW)
    assert result.passed
    assert result.gap_record_id is None


def test_recent_notes_are_not_eligible(db_session: Session, checker: IntegrityChecker) -> None:
    _seed(db_session, 1, 0)
    db_session.add_all(
        Note(note_id=i, longitude=BERLIN[0], latitude=BERLIN[1], created_at=NOW, status="open")
        for i in range(2, 30)
    )
    db_session.flush()

    result = checker.check(db_session, range(1, 30), now=NOW + timedelta(minutes=5))

    assert result.passed
    assert result.eligible == 1
    assert result.missing == 0
