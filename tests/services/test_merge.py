"""Tests for merging staged rows into the canonical tables."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notes_ingest.models import GapRecord, Note, NoteComment, NoteCommentText, NoteUser
from notes_ingest.models.note import COUNTRY_INTERNATIONAL_WATERS, COUNTRY_UNKNOWN
from notes_ingest.services.boundary_store import BoundaryStore
from notes_ingest.services.boundary_update import parse_feature_collection, stage_candidate, swap
from notes_ingest.services.feed import CommentRecord, TextRecord, records_as_rows
from notes_ingest.services.integrity import GAP_ORPHAN_COMMENT_TEXT
from notes_ingest.services.merge import CanonicalMerger, choose_country
from notes_ingest.services.resolver import CountryResolver
from tests.factories import BASE_TIME, FRANCE, GERMANY, make_batch, make_collection


@pytest.fixture()
def merger(db_session: Session) -> CanonicalMerger:
    store = BoundaryStore()
    stage_candidate(db_session, parse_feature_collection(make_collection()))
    swap(db_session, store)
    return CanonicalMerger(CountryResolver(store))


def _count(db: Session, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


@pytest.mark.parametrize(
    ("existing", "incoming", "expected"),
    [
        (None, 5, 5),
        (5, None, 5),
        (5, COUNTRY_UNKNOWN, 5),
        (5, COUNTRY_INTERNATIONAL_WATERS, 5),
        (COUNTRY_UNKNOWN, COUNTRY_INTERNATIONAL_WATERS, COUNTRY_INTERNATIONAL_WATERS),
        (COUNTRY_INTERNATIONAL_WATERS, COUNTRY_UNKNOWN, COUNTRY_INTERNATIONAL_WATERS),
        (5, 6, 6),
    ],
)
def test_choose_country(existing, incoming, expected) -> None:
    assert choose_country(existing, incoming) == expected


def test_new_notes_are_resolved_and_stamped(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1, 2])
    result = merger.merge_notes(db_session, records_as_rows(batch.notes))

    assert result.inserted == 2
    assert result.resolver_calls == 2
    note = db_session.get(Note, 1)
    assert note.country_id == GERMANY[0]
    assert note.resolved_epoch == 1
    assert note.insert_time is not None


def test_feed_country_is_only_a_hint(db_session: Session, merger: CanonicalMerger) -> None:
    rows = records_as_rows(make_batch([1]).notes)
    rows[0]["country_id"] = FRANCE[0]
    merger.merge_notes(db_session, rows)
    assert db_session.get(Note, 1).country_id == GERMANY[0]


def test_existing_note_keeps_better_country(db_session: Session, merger: CanonicalMerger) -> None:
    merger.merge_notes(db_session, records_as_rows(make_batch([1]).notes))
    rows = records_as_rows(make_batch([1]).notes)
    rows[0].update(status="close", closed_at=BASE_TIME + timedelta(days=1), country_id=COUNTRY_UNKNOWN)

    result = merger.merge_notes(db_session, rows)

    note = db_session.get(Note, 1)
    assert result.inserted == 0
    assert result.updated == 1
    assert note.status == "close"
    assert note.closed_at == BASE_TIME + timedelta(days=1)
    assert note.country_id == GERMANY[0]


def test_duplicate_notes_in_one_batch_are_folded(db_session: Session, merger: CanonicalMerger) -> None:
    rows = records_as_rows(make_batch([1]).notes) * 2
    rows[1] = dict(rows[1], status="close", closed_at=BASE_TIME + timedelta(hours=1))
    result = merger.merge_notes(db_session, rows)
    assert result.inserted == 1
    assert db_session.get(Note, 1).status == "close"


def test_comment_merge_is_idempotent(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1, 2], comments_per_note=3)
    merger.merge_notes(db_session, records_as_rows(batch.notes))

    first = merger.merge_comments(db_session, records_as_rows(batch.comments))
    second = merger.merge_comments(db_session, records_as_rows(batch.comments))

    assert first.inserted == 6
    assert second.inserted == 0
    assert second.skipped == 6
    assert _count(db_session, NoteComment) == 6


def test_sequences_follow_creation_time(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1], comments_per_note=3)
    merger.merge_notes(db_session, records_as_rows(batch.notes))
    merger.merge_comments(db_session, records_as_rows(reversed(batch.comments)))

    comments = db_session.execute(
        select(NoteComment).where(NoteComment.note_id == 1).order_by(NoteComment.created_at)
    ).scalars().all()
    assert [c.sequence_action for c in comments] == [1, 2, 3]
    assert [c.id for c in comments] == sorted(c.id for c in comments)


def test_same_moment_comments_with_distinct_sequences_are_kept(
    db_session: Session, merger: CanonicalMerger
) -> None:
    merger.merge_notes(db_session, records_as_rows(make_batch([1]).notes))
    later = BASE_TIME + timedelta(minutes=1)
    records = [
        CommentRecord(note_id=1, event="opened", created_at=BASE_TIME, sequence_action=1),
        CommentRecord(note_id=1, event="commented", created_at=later, sequence_action=2),
        CommentRecord(note_id=1, event="commented", created_at=later, sequence_action=3),
    ]

    result = merger.merge_comments(db_session, records_as_rows(records))

    assert result.inserted == 3
    assert result.skipped == 0
    stored = db_session.scalars(
        select(NoteComment.sequence_action).where(NoteComment.note_id == 1)
    ).all()
    assert sorted(stored) == [1, 2, 3]
    again = merger.merge_comments(db_session, records_as_rows(records))
    assert again.inserted == 0
    assert again.skipped == 3


def test_unsequenced_repeat_of_an_event_is_skipped(
    db_session: Session, merger: CanonicalMerger
) -> None:
    merger.merge_notes(db_session, records_as_rows(make_batch([1]).notes))
    record = CommentRecord(note_id=1, event="commented", created_at=BASE_TIME)

    result = merger.merge_comments(db_session, records_as_rows([record, record]))

    assert result.inserted == 1
    assert result.skipped == 1


def test_backed_up_location_skips_the_resolver(
    db_session: Session, merger: CanonicalMerger
) -> None:
    batch = make_batch([1, 2])
    result = merger.merge_notes(
        db_session, records_as_rows(batch.notes), known_locations={1: GERMANY[0], 2: -1}
    )

    assert result.inserted == 2
    assert result.resolver_calls == 1
    assert db_session.get(Note, 1).country_id == GERMANY[0]
    assert db_session.get(Note, 2).country_id == GERMANY[0]


def test_comments_for_unknown_notes_are_skipped(db_session: Session, merger: CanonicalMerger) -> None:
    rows = records_as_rows(
        [CommentRecord(note_id=999, event="opened", created_at=BASE_TIME)]
    )
    result = merger.merge_comments(db_session, rows)
    assert result.missing_note == 1
    assert result.inserted == 0


def test_usernames_are_upserted(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1])
    merger.merge_notes(db_session, records_as_rows(batch.notes))
    merger.merge_comments(db_session, records_as_rows(batch.comments))
    renamed = CommentRecord(
        note_id=1,
        event="commented",
        created_at=BASE_TIME + timedelta(hours=2),
        user_id=1001,
        username="renamed",
    )
    merger.merge_comments(db_session, records_as_rows([renamed]))
    assert db_session.get(NoteUser, 1001).username == "renamed"


def test_texts_need_their_comment(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1], comments_per_note=2, with_texts=True)
    merger.merge_notes(db_session, records_as_rows(batch.notes))
    merger.merge_comments(db_session, records_as_rows(batch.comments))
    orphan = TextRecord(note_id=1, sequence_action=9, body="no comment for me")

    result = merger.merge_texts(db_session, records_as_rows([*batch.texts, orphan]))

    assert result.inserted == 2
    assert result.orphaned == 1
    gap = db_session.get(GapRecord, result.gap_record_id)
    assert gap.gap_type == GAP_ORPHAN_COMMENT_TEXT
    assert gap.affected_ids == [1]
    assert _count(db_session, NoteCommentText) == 2

    again = merger.merge_texts(db_session, records_as_rows(batch.texts))
    assert again.inserted == 0
    assert again.skipped == 2


def test_notes_in_open_ocean_are_unknown(db_session: Session, merger: CanonicalMerger) -> None:
    batch = make_batch([1], position=(-40.0, -40.0))
    merger.merge_notes(db_session, records_as_rows(batch.notes))
    assert db_session.get(Note, 1).country_id == COUNTRY_UNKNOWN
    assert db_session.get(Note, 1).longitude == pytest.approx(-40.0)
