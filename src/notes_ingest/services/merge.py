"""Merge staged records into the canonical tables.

Shared by the bulk loader and the incremental sync so both paths apply the
same rules:

* new notes are resolved once; existing notes only take a country value that
  is at least as good as the one they have,
* comments are deduplicated on their logical key, get ids from the shared
  allocator and a per-note sequence number when the feed omitted one,
* comment texts are kept only when their comment exists.

All methods flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.time import utcnow
from notes_ingest.models import Note, NoteComment, NoteCommentText, NoteUser
from notes_ingest.services.allocator import (
    IdAllocator,
    SequenceActionAllocator,
    chunked,
    comment_id_allocator,
    comment_text_id_allocator,
)
from notes_ingest.services.integrity import GAP_ORPHAN_COMMENT_TEXT, record_gap
from notes_ingest.services.resolver import CountryResolver, resolve_point

logger = logging.getLogger(__name__)


def _country_quality(value: int | None) -> int:
    if value is None:
        return 0
    if value > 0:
        return 3
    if value == -1:
        return 2
    return 1


def choose_country(existing: int | None, incoming: int | None) -> int | None:
    """Keep the existing country unless the incoming one is at least as good."""
    if incoming is None:
        return existing
    if _country_quality(incoming) >= _country_quality(existing):
        return incoming
    return existing


@dataclass
class NoteMergeResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    resolver_calls: int = 0
    note_ids: list[int] = field(default_factory=list)


@dataclass
class CommentMergeResult:
    inserted: int = 0
    skipped: int = 0
    missing_note: int = 0
    latest_created_at: datetime | None = None


@dataclass
class TextMergeResult:
    inserted: int = 0
    skipped: int = 0
    orphaned: int = 0
    gap_record_id: int | None = None


class CanonicalMerger:
    """Applies staged rows to ``note``, ``note_comment`` and ``note_comment_text``."""

    def __init__(
        self,
        resolver: CountryResolver | None = None,
        comment_ids: IdAllocator | None = None,
        text_ids: IdAllocator | None = None,
        sequences: SequenceActionAllocator | None = None,
        chunk_size: int | None = None,
    ) -> None:
        self.resolver = resolver or CountryResolver()
        self.comment_ids = comment_ids or comment_id_allocator()
        self.text_ids = text_ids or comment_text_id_allocator()
        self.sequences = sequences or SequenceActionAllocator()
        self.chunk_size = chunk_size or settings.bulk_chunk_size

    # --- notes ---------------------------------------------------------------

    @staticmethod
    def _fold(previous: dict[str, Any] | None, row: dict[str, Any]) -> dict[str, Any]:
        if previous is None:
            return dict(row)
        folded = dict(row)
        if folded.get("closed_at") is None:
            folded["closed_at"] = previous.get("closed_at")
        folded["country_id"] = choose_country(previous.get("country_id"), row.get("country_id"))
        return folded

    def merge_notes(
        self,
        db: Session,
        rows: Sequence[dict[str, Any]],
        known_locations: Mapping[int, int] | None = None,
    ) -> NoteMergeResult:
        """Insert new notes and update existing ones.

        A new note found in ``known_locations`` with a positive country takes
        it without a resolver call.
        """
        result = NoteMergeResult()
        latest: dict[int, dict[str, Any]] = {}
        for row in rows:
            latest[row["note_id"]] = self._fold(latest.get(row["note_id"]), row)
        if not latest:
            return result

        ids = sorted(latest)
        existing: dict[int, Note] = {}
        for chunk in chunked(ids):
            for note in db.execute(select(Note).where(Note.note_id.in_(chunk))).scalars():
                existing[note.note_id] = note

        boundaries = self.resolver.boundaries(db)
        now = utcnow()
        fresh: list[dict[str, Any]] = []
        for note_id in ids:
            row = latest[note_id]
            note = existing.get(note_id)
            if note is None:
                country = (known_locations or {}).get(note_id)
                if country is None or country <= 0:
                    country = resolve_point(
                        boundaries, row["longitude"], row["latitude"], row.get("country_id")
                    )
                    result.resolver_calls += 1
                fresh.append(
                    {
                        "note_id": note_id,
                        "longitude": row["longitude"],
                        "latitude": row["latitude"],
                        "created_at": row["created_at"],
                        "closed_at": row.get("closed_at"),
                        "status": row.get("status") or "open",
                        "country_id": country,
                        "insert_time": now,
                        "resolved_epoch": boundaries.epoch,
                    }
                )
                continue

            changed = False
            status = row.get("status")
            if status and status != note.status:
                note.status = status
                changed = True
            closed_at = row.get("closed_at")
            if closed_at is not None and closed_at != note.closed_at:
                note.closed_at = closed_at
                changed = True
            country = choose_country(note.country_id, row.get("country_id"))
            if country != note.country_id:
                note.country_id = country
                changed = True
            if changed:
                result.updated += 1
            else:
                result.unchanged += 1

        for chunk in chunked(fresh, self.chunk_size):
            db.execute(insert(Note), list(chunk))
        db.flush()

        result.inserted = len(fresh)
        result.note_ids = ids
        logger.info(
            "Merged notes: inserted=%s updated=%s unchanged=%s",
            result.inserted,
            result.updated,
            result.unchanged,
        )
        return result

    # --- comments ------------------------------------------------------------

    def _insert_rows(self, db: Session, model: type, payload: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert in chunks; on a key collision retry the chunk row by row.

        Colliding rows are discarded, everything else is kept.
        """
        inserted = 0
        discarded = 0
        for chunk in chunked(payload, self.chunk_size):
            try:
                with db.begin_nested():
                    db.execute(insert(model), list(chunk))
                inserted += len(chunk)
                continue
            except IntegrityError:
                logger.warning(
                    "Collision while inserting %s rows into %s, retrying one by one",
                    len(chunk),
                    model.__tablename__,
                )
            for row in chunk:
                try:
                    with db.begin_nested():
                        db.execute(insert(model), [row])
                    inserted += 1
                except IntegrityError:
                    logger.debug("Discarded colliding %s row %s", model.__tablename__, row)
                    discarded += 1
        return inserted, discarded

    def _existing_notes(self, db: Session, note_ids: list[int]) -> set[int]:
        found: set[int] = set()
        for chunk in chunked(note_ids):
            found.update(db.execute(select(Note.note_id).where(Note.note_id.in_(chunk))).scalars())
        return found

    def _upsert_users(self, db: Session, rows: list[dict[str, Any]]) -> None:
        users = {
            row["user_id"]: row["username"]
            for row in rows
            if row.get("user_id") is not None and row.get("username")
        }
        if not users:
            return
        known: dict[int, NoteUser] = {}
        for chunk in chunked(sorted(users)):
            for user in db.execute(select(NoteUser).where(NoteUser.user_id.in_(chunk))).scalars():
                known[user.user_id] = user
        for user_id, username in users.items():
            user = known.get(user_id)
            if user is None:
                db.add(NoteUser(user_id=user_id, username=username))
            elif user.username != username:
                user.username = username
        db.flush()

    def merge_comments(self, db: Session, rows: Sequence[dict[str, Any]]) -> CommentMergeResult:
        result = CommentMergeResult()
        ordered = sorted(
            (dict(row) for row in rows),
            key=lambda r: (r["note_id"], r["created_at"], r.get("partition_id", 0), r.get("position", 0)),
        )
        if not ordered:
            return result

        note_ids = sorted({row["note_id"] for row in ordered})
        known_notes = self._existing_notes(db, note_ids)
        event_keys: set[tuple[int, str, datetime]] = set()
        sequence_keys: set[tuple[int, int]] = set()
        for chunk in chunked(note_ids):
            for note_id, event, created_at, sequence_action in db.execute(
                select(
                    NoteComment.note_id,
                    NoteComment.event,
                    NoteComment.created_at,
                    NoteComment.sequence_action,
                ).where(NoteComment.note_id.in_(chunk))
            ):
                event_keys.add((note_id, event, created_at))
                sequence_keys.add((note_id, sequence_action))

        fresh: list[dict[str, Any]] = []
        for row in ordered:
            if row["note_id"] not in known_notes:
                result.missing_note += 1
                continue
            event_key = (row["note_id"], row["event"], row["created_at"])
            sequence_action = row.get("sequence_action")
            # A supplied sequence number identifies the comment; event and time only when it is absent.
            if sequence_action is not None:
                duplicate = (row["note_id"], sequence_action) in sequence_keys
            else:
                duplicate = event_key in event_keys
            if duplicate:
                result.skipped += 1
                continue
            event_keys.add(event_key)
            if sequence_action is not None:
                sequence_keys.add((row["note_id"], sequence_action))
            fresh.append(row)

        if result.missing_note:
            logger.warning("Skipped %s comments whose note is unknown", result.missing_note)
        if not fresh:
            return result

        self.sequences.assign(db, fresh)
        self.comment_ids.sync_with_table(db)
        ids = self.comment_ids.allocate(db, len(fresh))
        now = utcnow()
        payload = [
            {
                "id": comment_id,
                "note_id": row["note_id"],
                "sequence_action": row["sequence_action"],
                "event": row["event"],
                "created_at": row["created_at"],
                "user_id": row.get("user_id"),
                "username": row.get("username"),
                "processing_time": now,
            }
            for comment_id, row in zip(ids, fresh)
        ]
        inserted, discarded = self._insert_rows(db, NoteComment, payload)
        self._upsert_users(db, fresh)

        result.inserted = inserted
        result.skipped += discarded
        result.latest_created_at = max(row["created_at"] for row in fresh)
        logger.info(
            "Merged comments: inserted=%s skipped=%s missing_note=%s",
            result.inserted,
            result.skipped,
            result.missing_note,
        )
        return result

    # --- comment texts -------------------------------------------------------

    def merge_texts(self, db: Session, rows: Sequence[dict[str, Any]]) -> TextMergeResult:
        result = TextMergeResult()
        if not rows:
            return result

        note_ids = sorted({row["note_id"] for row in rows})
        comment_keys: set[tuple[int, int]] = set()
        text_keys: set[tuple[int, int]] = set()
        for chunk in chunked(note_ids):
            comment_keys.update(
                tuple(key)
                for key in db.execute(
                    select(NoteComment.note_id, NoteComment.sequence_action).where(
                        NoteComment.note_id.in_(chunk)
                    )
                )
            )
            text_keys.update(
                tuple(key)
                for key in db.execute(
                    select(NoteCommentText.note_id, NoteCommentText.sequence_action).where(
                        NoteCommentText.note_id.in_(chunk)
                    )
                )
            )

        fresh: list[dict[str, Any]] = []
        orphans: list[dict[str, Any]] = []
        for row in rows:
            key = (row["note_id"], row["sequence_action"])
            if key in text_keys:
                result.skipped += 1
                continue
            if key not in comment_keys:
                orphans.append(row)
                continue
            text_keys.add(key)
            fresh.append(row)

        if fresh:
            self.text_ids.sync_with_table(db)
            ids = self.text_ids.allocate(db, len(fresh))
            now = utcnow()
            payload = [
                {
                    "id": text_id,
                    "note_id": row["note_id"],
                    "sequence_action": row["sequence_action"],
                    "body": row.get("body") or "",
                    "processing_time": now,
                }
                for text_id, row in zip(ids, fresh)
            ]
            inserted, discarded = self._insert_rows(db, NoteCommentText, payload)
            result.inserted = inserted
            result.skipped += discarded

        if orphans:
            result.orphaned = len(orphans)
            gap = record_gap(
                db,
                GAP_ORPHAN_COMMENT_TEXT,
                len(orphans),
                len(rows),
                (row["note_id"] for row in orphans),
                "Comment texts arrived without a matching comment",
            )
            result.gap_record_id = gap.id
        logger.info(
            "Merged comment texts: inserted=%s skipped=%s orphaned=%s",
            result.inserted,
            result.skipped,
            result.orphaned,
        )
        return result
