"""Tests for feed parsing and delta sources."""

from datetime import UTC, datetime

import httpx
import pytest

from notes_ingest.services.feed import (
    CommentRecord,
    DeltaBatch,
    DirectoryDeltaSource,
    FeedFormatError,
    FeedUnavailableError,
    HttpDeltaSource,
    NoteRecord,
    TextRecord,
    parse_csv,
    parse_timestamp,
    read_batch_directory,
)

NOTES_CSV = (
    "note_id,lat,lon,created_at,status,closed_at\n"
    "1,52.52,13.405,2024-01-01T12:00:00Z,open,\n"
    "2,48.85,2.35,2024-01-02 08:00:00 UTC,close,2024-01-03 09:30:00 UTC\n"
)
COMMENTS_CSV = (
    "note_id,event,created_at,sequence_action,user_id,username\n"
    "1,opened,2024-01-01T12:00:00Z,1,7,alice\n"
    "2,opened,2024-01-02T08:00:00Z,,,\n"
    "2,closed,2024-01-03T09:30:00Z,,8,bob\n"
)
TEXTS_CSV = "note_id,sequence_action,body\n1,1,Missing bench\n"


def _write_batch(directory) -> None:
    (directory / "notes.csv").write_text(NOTES_CSV, encoding="utf-8")
    (directory / "comments.csv").write_text(COMMENTS_CSV, encoding="utf-8")
    (directory / "texts.csv").write_text(TEXTS_CSV, encoding="utf-8")


def test_parse_timestamp_formats() -> None:
    expected = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    assert parse_timestamp("2024-01-01T12:00:00Z") == expected
    assert parse_timestamp("2024-01-01 12:00:00 UTC") == expected
    assert parse_timestamp("2024-01-01T13:00:00+01:00") == expected
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_parse_timestamp_rejects_garbage() -> None:
    with pytest.raises(FeedFormatError):
        parse_timestamp("yesterday")


def test_parse_notes() -> None:
    notes = parse_csv(NOTES_CSV, NoteRecord)
    assert [note.note_id for note in notes] == [1, 2]
    assert notes[0].longitude == pytest.approx(13.405)
    assert notes[0].closed_at is None
    assert notes[1].status == "close"
    assert notes[1].closed_at == datetime(2024, 1, 3, 9, 30, tzinfo=UTC)


def test_parse_comments_with_missing_optional_fields() -> None:
    comments = parse_csv(COMMENTS_CSV, CommentRecord)
    assert comments[0].sequence_action == 1
    assert comments[0].username == "alice"
    assert comments[1].sequence_action is None
    assert comments[1].user_id is None
    assert comments[1].username is None


def test_invalid_note_row_raises_format_error() -> None:
    with pytest.raises(FeedFormatError):
        NoteRecord.from_row({"note_id": "x", "lat": "1", "lon": "2", "created_at": "2024-01-01"})
    with pytest.raises(FeedFormatError):
        NoteRecord.from_row({"note_id": "1", "lat": "1", "lon": "2"})


def test_text_record_defaults_body() -> None:
    assert TextRecord.from_row({"note_id": "1", "sequence_action": "2"}).body == ""


def test_latest_change_covers_closures_and_comments() -> None:
    notes = parse_csv(NOTES_CSV, NoteRecord)
    comments = parse_csv(COMMENTS_CSV, CommentRecord)
    assert DeltaBatch(notes, comments).latest_change() == datetime(2024, 1, 3, 9, 30, tzinfo=UTC)
    assert DeltaBatch().latest_change() is None


def test_read_batch_directory(tmp_path) -> None:
    _write_batch(tmp_path)
    batch = read_batch_directory(tmp_path)
    assert (len(batch.notes), len(batch.comments), len(batch.texts)) == (2, 3, 1)
    assert len(batch) == 6


def test_missing_files_read_as_empty(tmp_path) -> None:
    (tmp_path / "notes.csv").write_text(NOTES_CSV, encoding="utf-8")
    batch = read_batch_directory(tmp_path)
    assert len(batch.notes) == 2
    assert batch.comments == []


def test_directory_source_returns_whole_drop(tmp_path) -> None:
    """The drop holds exactly one window; re-reading it is harmless."""
    _write_batch(tmp_path)
    source = DirectoryDeltaSource(tmp_path)
    assert len(source.fetch(datetime(2024, 1, 2, tzinfo=UTC))) == 6
    assert len(source.fetch(None)) == 6


def test_directory_source_missing_directory_is_unavailable(tmp_path) -> None:
    with pytest.raises(FeedUnavailableError):
        DirectoryDeltaSource(tmp_path / "absent").fetch(None)


def test_http_source_fetches_three_documents() -> None:
    documents = {"/notes.csv": NOTES_CSV, "/comments.csv": COMMENTS_CSV, "/texts.csv": TEXTS_CSV}
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=documents[request.url.path])

    client = httpx.Client(transport=httpx.MockTransport(handler))
    source = HttpDeltaSource("http://feed.test", client=client)
    batch = source.fetch(datetime(2024, 1, 1, tzinfo=UTC))

    assert (len(batch.notes), len(batch.comments), len(batch.texts)) == (2, 3, 1)
    assert all(request.url.params["since"].startswith("2024-01-01") for request in seen)
    source.close()


def test_http_source_errors_are_transient() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    source = HttpDeltaSource("http://feed.test", client=client)
    with pytest.raises(FeedUnavailableError):
        source.fetch(None)


def test_http_source_requires_base_url(mocker) -> None:
    mocker.patch("notes_ingest.services.feed.settings.feed_base_url", None)
    with pytest.raises(ValueError):
        HttpDeltaSource()
