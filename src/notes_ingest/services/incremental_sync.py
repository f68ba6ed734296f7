"""Incremental (API) sync cycle.

One cycle: take the lock, read the watermark, fetch everything newer, stage
it, merge it, check integrity, and only then move the watermark. A failed
integrity check leaves the data in place but holds the watermark back, so the
same window is fetched again next time and the idempotent merge fills in what
was missing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.session import SessionLocal
from notes_ingest.schemas.job import JobStatus
from notes_ingest.services.feed import DeltaSource, FeedUnavailableError
from notes_ingest.services.integrity import IntegrityChecker, IntegrityResult
from notes_ingest.services.lock import LockCoordinator, LockStatus
from notes_ingest.services.merge import CanonicalMerger
from notes_ingest.services.staging import staging_area
from notes_ingest.services.watermark import advance_watermark, get_watermark

logger = logging.getLogger(__name__)

STAGING_LABEL = "api"


@dataclass
class SyncResult:
    status: JobStatus
    notes_inserted: int = 0
    notes_updated: int = 0
    comments_inserted: int = 0
    comments_skipped: int = 0
    texts_inserted: int = 0
    texts_orphaned: int = 0
    integrity: IntegrityResult | None = None
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    detail: str = ""


class IncrementalSync:
    """Runs incremental cycles against a delta source."""

    def __init__(
        self,
        source: DeltaSource,
        session_factory: Callable[[], Session] | None = None,
        *,
        lock: LockCoordinator | None = None,
        merger: CanonicalMerger | None = None,
        checker: IntegrityChecker | None = None,
        tag: str | None = None,
    ) -> None:
        self.source = source
        self.session_factory = session_factory or SessionLocal
        self.lock = lock or LockCoordinator(self.session_factory)
        self.merger = merger or CanonicalMerger()
        self.checker = checker or IntegrityChecker()
        self.tag = tag or settings.lock_tag_api

    def run_cycle(self, now: datetime | None = None) -> SyncResult:
        if self.lock.acquire(self.tag) is LockStatus.BUSY:
            holder = self.lock.holder()
            detail = f"lock held by {holder.tag}" if holder is not None else "lock busy"
            logger.info("Skipping incremental cycle: %s", detail)
            return SyncResult(status=JobStatus.LOCKED, detail=detail)
        try:
            return self._cycle(now)
        finally:
            self.lock.release(self.tag)

    def _cycle(self, now: datetime | None) -> SyncResult:
        with self.session_factory() as db:
            since = get_watermark(db)

        try:
            batch = self.source.fetch(since)
        except FeedUnavailableError as exc:
            logger.warning("Feed unavailable, watermark stays at %s: %s", since, exc)
            return SyncResult(
                status=JobStatus.TRANSIENT_FAILURE,
                watermark_before=since,
                watermark_after=since,
                detail=str(exc),
            )

        result = SyncResult(status=JobStatus.SUCCESS, watermark_before=since)
        if len(batch) == 0:
            result.watermark_after = since
            result.detail = "no changes"
            return result

        area = staging_area(STAGING_LABEL)
        with self.session_factory() as db:
            self.lock.assert_holder(self.tag)
            conn = db.connection()
            area.reset(conn)
            try:
                area.append(conn, batch)
                notes = self.merger.merge_notes(db, area.read_notes(conn))
                comments = self.merger.merge_comments(db, area.read_comments(conn))
                texts = self.merger.merge_texts(db, area.read_texts(conn))
                db.commit()
            finally:
                db.rollback()
                area.drop(db.connection())
                db.commit()

            result.notes_inserted = notes.inserted
            result.notes_updated = notes.updated
            result.comments_inserted = comments.inserted
            result.comments_skipped = comments.skipped + comments.missing_note
            result.texts_inserted = texts.inserted
            result.texts_orphaned = texts.orphaned

            integrity = self.checker.check(db, notes.note_ids, now=now)
            result.integrity = integrity
            if integrity.passed:
                result.watermark_after = advance_watermark(db, batch.latest_change())
            else:
                result.status = JobStatus.GAP_DETECTED
                result.watermark_after = since
                result.detail = (
                    f"{integrity.missing} of {integrity.eligible} notes have no comments"
                )
            db.commit()

        logger.info(
            "Incremental cycle %s: notes=%s/%s comments=%s watermark %s -> %s",
            result.status.value,
            result.notes_inserted,
            result.notes_updated,
            result.comments_inserted,
            result.watermark_before,
            result.watermark_after,
        )
        return result
