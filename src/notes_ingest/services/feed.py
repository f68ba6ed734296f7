"""Feed records and delta sources.

Both the Planet dump and the API delta arrive as three delimited files:
notes, comments and comment texts. Records are parsed into small frozen
dataclasses before they reach staging.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import httpx

from notes_ingest.core.settings import settings
from notes_ingest.db.time import ensure_utc

logger = logging.getLogger(__name__)

NOTES_FILE = "notes.csv"
COMMENTS_FILE = "comments.csv"
TEXTS_FILE = "texts.csv"


class FeedUnavailableError(RuntimeError):
    """Raised when the upstream feed cannot be read right now."""


class FeedFormatError(ValueError):
    """Raised when a feed record cannot be parsed."""


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse feed timestamps such as ``2013-04-24T08:07:02Z`` or ``2013-04-24 08:07:02 UTC``."""
    if value is None or isinstance(value, datetime):
        return ensure_utc(value) if value is not None else None
    text = value.strip()
    if not text:
        return None
    if text.endswith(" UTC"):
        text = text[:-4]
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise FeedFormatError(f"invalid timestamp {value!r}") from exc


def _optional_int(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return int(value)


def _required(row: Mapping[str, Any], key: str) -> Any:
    value = row.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise FeedFormatError(f"missing {key} in {dict(row)!r}")
    return value


@dataclass(frozen=True)
class NoteRecord:
    note_id: int
    latitude: float
    longitude: float
    created_at: datetime
    status: str = "open"
    closed_at: datetime | None = None
    country_id: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> NoteRecord:
        try:
            return cls(
                note_id=int(_required(row, "note_id")),
                latitude=float(_required(row, "lat" if "lat" in row else "latitude")),
                longitude=float(_required(row, "lon" if "lon" in row else "longitude")),
                created_at=parse_timestamp(_required(row, "created_at")),
                status=(row.get("status") or "open").strip(),
                closed_at=parse_timestamp(row.get("closed_at")),
                country_id=_optional_int(row.get("country_id")),
            )
        except FeedFormatError:
            raise
        except (TypeError, ValueError) as exc:
            raise FeedFormatError(f"invalid note record {dict(row)!r}") from exc

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommentRecord:
    note_id: int
    event: str
    created_at: datetime
    sequence_action: int | None = None
    user_id: int | None = None
    username: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CommentRecord:
        try:
            return cls(
                note_id=int(_required(row, "note_id")),
                event=str(_required(row, "event")).strip(),
                created_at=parse_timestamp(_required(row, "created_at")),
                sequence_action=_optional_int(row.get("sequence_action")),
                user_id=_optional_int(row.get("user_id")),
                username=(row.get("username") or None),
            )
        except FeedFormatError:
            raise
        except (TypeError, ValueError) as exc:
            raise FeedFormatError(f"invalid comment record {dict(row)!r}") from exc

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TextRecord:
    note_id: int
    sequence_action: int
    body: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> TextRecord:
        try:
            return cls(
                note_id=int(_required(row, "note_id")),
                sequence_action=int(_required(row, "sequence_action")),
                body=row.get("body") or "",
            )
        except FeedFormatError:
            raise
        except (TypeError, ValueError) as exc:
            raise FeedFormatError(f"invalid comment text record {dict(row)!r}") from exc

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeltaBatch:
    """Everything one fetch returned."""

    notes: list[NoteRecord] = field(default_factory=list)
    comments: list[CommentRecord] = field(default_factory=list)
    texts: list[TextRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.notes) + len(self.comments) + len(self.texts)

    def latest_change(self) -> datetime | None:
        """Newest note creation, note closure or comment time in the batch."""
        moments: list[datetime] = []
        for note in self.notes:
            moments.append(note.created_at)
            if note.closed_at is not None:
                moments.append(note.closed_at)
        moments.extend(comment.created_at for comment in self.comments)
        return max(moments) if moments else None


def parse_csv(text: str, record_type: type) -> list[Any]:
    reader = csv.DictReader(io.StringIO(text))
    return [record_type.from_row(row) for row in reader]


def read_csv_file(path: Path, record_type: type) -> list[Any]:
    if not path.exists():
        return []
    with path.open(encoding="utf-8", newline="") as handle:
        return [record_type.from_row(row) for row in csv.DictReader(handle)]


def read_batch_directory(directory: str | Path) -> DeltaBatch:
    """Read ``notes.csv``, ``comments.csv`` and ``texts.csv`` from a directory."""
    root = Path(directory)
    return DeltaBatch(
        notes=read_csv_file(root / NOTES_FILE, NoteRecord),
        comments=read_csv_file(root / COMMENTS_FILE, CommentRecord),
        texts=read_csv_file(root / TEXTS_FILE, TextRecord),
    )


class DeltaSource(Protocol):
    def fetch(self, since: datetime | None) -> DeltaBatch: ...


class DirectoryDeltaSource:
    """Delta files dropped on disk by an external downloader."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def fetch(self, since: datetime | None) -> DeltaBatch:
        if not self.directory.is_dir():
            raise FeedUnavailableError(f"delta directory {self.directory} does not exist")
        batch = read_batch_directory(self.directory)
        logger.info(
            "Read delta from %s since=%s notes=%s comments=%s texts=%s",
            self.directory,
            since,
            len(batch.notes),
            len(batch.comments),
            len(batch.texts),
        )
        return batch


class HttpDeltaSource:
    """Delta served over HTTP as three CSV documents."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.feed_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("FEED_BASE_URL is not configured")
        self._client = client or httpx.Client(
            timeout=timeout if timeout is not None else settings.feed_timeout_seconds
        )

    def _get(self, name: str, since: datetime | None) -> str:
        params = {"since": since.isoformat()} if since is not None else {}
        url = f"{self.base_url}/{name}"
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Feed request %s failed: %s", url, exc)
            raise FeedUnavailableError(f"failed to fetch {url}: {exc}") from exc
        return response.text

    def fetch(self, since: datetime | None) -> DeltaBatch:
        return DeltaBatch(
            notes=parse_csv(self._get(NOTES_FILE, since), NoteRecord),
            comments=parse_csv(self._get(COMMENTS_FILE, since), CommentRecord),
            texts=parse_csv(self._get(TEXTS_FILE, since), TextRecord),
        )

    def close(self) -> None:
        self._client.close()


def records_as_rows(records: Iterable[Any]) -> list[dict[str, Any]]:
    return [record.as_row() for record in records]
