"""Tests for the shared id allocator and per-note sequence numbers."""

from sqlalchemy.orm import Session

from notes_ingest.models import IdSequence, NoteComment
from notes_ingest.services.allocator import (
    SequenceActionAllocator,
    chunked,
    comment_id_allocator,
)
from tests.factories import BASE_TIME


def _comment(db: Session, comment_id: int, note_id: int, sequence: int) -> None:
    db.add(
        NoteComment(
            id=comment_id,
            note_id=note_id,
            sequence_action=sequence,
            event="commented",
            created_at=BASE_TIME,
        )
    )
    db.flush()


def test_chunked_splits_evenly() -> None:
    assert [list(chunk) for chunk in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]


def test_allocate_hands_out_contiguous_ranges(db_session: Session) -> None:
    allocator = comment_id_allocator()
    first = allocator.allocate(db_session, 3)
    second = allocator.allocate(db_session, 2)
    assert list(first) == [1, 2, 3]
    assert list(second) == [4, 5]
    assert db_session.get(IdSequence, "note_comment").last_value == 5


def test_allocate_zero_returns_empty_range(db_session: Session) -> None:
    assert len(comment_id_allocator().allocate(db_session, 0)) == 0


def test_counter_starts_above_existing_rows(db_session: Session, stored_note) -> None:
    _comment(db_session, 40, stored_note.note_id, 2)
    assert list(comment_id_allocator().allocate(db_session, 1)) == [41]


def test_sync_with_table_catches_up(db_session: Session, stored_note) -> None:
    allocator = comment_id_allocator()
    allocator.allocate(db_session, 1)
    assert not allocator.sync_with_table(db_session)

    _comment(db_session, 100, stored_note.note_id, 2)
    assert allocator.sync_with_table(db_session)
    assert list(allocator.allocate(db_session, 1)) == [101]


def test_sequence_assignment_continues_after_stored_maximum(db_session: Session, stored_note) -> None:
    _comment(db_session, 2, stored_note.note_id, 5)
    rows = [
        {"note_id": stored_note.note_id, "sequence_action": None},
        {"note_id": stored_note.note_id, "sequence_action": None},
        {"note_id": 77, "sequence_action": None},
    ]
    SequenceActionAllocator().assign(db_session, rows)
    assert [row["sequence_action"] for row in rows] == [6, 7, 1]


def test_supplied_sequences_are_kept_and_skipped_over(db_session: Session) -> None:
    rows = [
        {"note_id": 5, "sequence_action": None},
        {"note_id": 5, "sequence_action": 3},
        {"note_id": 5, "sequence_action": None},
    ]
    SequenceActionAllocator().assign(db_session, rows)
    assert [row["sequence_action"] for row in rows] == [4, 3, 5]
