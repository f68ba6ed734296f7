"""Job entry points.

Each runner wraps one pipeline in the process lock where required and turns
the domain exceptions into a :class:`JobReport` with a :class:`JobStatus`.
Unexpected exceptions propagate to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.session import SessionLocal
from notes_ingest.db.time import utcnow
from notes_ingest.schemas.job import JobReport, JobStatus
from notes_ingest.services.boundary_store import BoundaryStore, get_boundary_store, load_boundary_set
from notes_ingest.services.boundary_update import (
    BoundarySwapRefused,
    clear_update_flags,
    diff_generations,
    flag_changed,
    read_boundary_file,
    restore_backup,
    stage_candidate,
    swap,
)
from notes_ingest.services.bulk_loader import BulkLoader, PartitionLoadError, split_partitions
from notes_ingest.services.feed import DeltaSource, read_batch_directory
from notes_ingest.services.incremental_sync import IncrementalSync
from notes_ingest.services.known_waters import rebuild_known_waters
from notes_ingest.services.location_backup import LOCATIONS_FILE, read_location_backup
from notes_ingest.services.lock import LockBusyError, LockCoordinator
from notes_ingest.services.reassignment import NoteReassigner

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _bind_engine(session_factory: SessionFactory):
    with session_factory() as db:
        return db.get_bind()


def run_planet_job(
    source_dir: str | Path,
    session_factory: SessionFactory | None = None,
    *,
    partitions: int | None = None,
    lock: LockCoordinator | None = None,
    loader: BulkLoader | None = None,
    locations_file: str | Path | None = None,
) -> JobReport:
    """Load a full dump directory through the partitioned bulk loader.

    Note locations are read from ``locations_file`` or, when not given, from
    ``note_locations.csv`` in the dump directory if it exists.
    """
    factory = session_factory or SessionLocal
    lock = lock or LockCoordinator(factory)
    report = JobReport(job="planet", status=JobStatus.SUCCESS, started_at=utcnow())
    try:
        with lock.held(settings.lock_tag_planet):
            batch = read_batch_directory(source_dir)
            locations = read_location_backup(locations_file or Path(source_dir) / LOCATIONS_FILE)
            loader = loader or BulkLoader(_bind_engine(factory))
            result = loader.load(
                split_partitions(batch, partitions or settings.bulk_partitions), locations
            )
    except LockBusyError as exc:
        report.status = JobStatus.LOCKED
        report.detail = str(exc)
    except PartitionLoadError as exc:
        logger.error("Planet load aborted: %s", exc)
        report.status = JobStatus.FAILED
        report.detail = str(exc)
    else:
        report.processed = result.notes_inserted + result.comments_inserted + result.texts_inserted
        report.skipped = result.comments_skipped + result.texts_orphaned
        report.gaps = list(result.gap_record_ids)
    report.finished_at = utcnow()
    return report


def run_api_job(
    source: DeltaSource,
    session_factory: SessionFactory | None = None,
    *,
    lock: LockCoordinator | None = None,
) -> JobReport:
    """Run one incremental cycle."""
    started = utcnow()
    result = IncrementalSync(source, session_factory, lock=lock).run_cycle()
    gaps = []
    if result.integrity is not None and result.integrity.gap_record_id is not None:
        gaps.append(result.integrity.gap_record_id)
    return JobReport(
        job="api",
        status=result.status,
        processed=result.notes_inserted + result.comments_inserted + result.texts_inserted,
        skipped=result.comments_skipped + result.texts_orphaned,
        gaps=gaps,
        detail=result.detail,
        started_at=started,
        finished_at=utcnow(),
    )


def run_boundary_job(
    boundary_file: str | Path,
    session_factory: SessionFactory | None = None,
    *,
    store: BoundaryStore | None = None,
    reassign: bool = True,
    rebuild_waters: bool = True,
) -> JobReport:
    """Stage a new boundary set, diff, flag, swap and reassign affected notes."""
    factory = session_factory or SessionLocal
    store = store or get_boundary_store()
    report = JobReport(job="boundaries", status=JobStatus.SUCCESS, started_at=utcnow())
    with factory() as db:
        stage_candidate(db, read_boundary_file(boundary_file))
        diffs = diff_generations(db)
        flagged = flag_changed(db, diffs)
        db.commit()
        try:
            swap(db, store)
        except BoundarySwapRefused as exc:
            db.rollback()
            report.status = JobStatus.SWAP_REFUSED
            report.detail = str(exc)
            report.finished_at = utcnow()
            return report

        if rebuild_waters:
            rebuild_known_waters(db, load_boundary_set(db))
            db.commit()
            store.load(db)

        processed = 0
        if reassign:
            processed = NoteReassigner(store).run_until_done(db).processed
        report.processed = processed
        report.detail = f"{flagged} countries changed"
    report.finished_at = utcnow()
    return report


def run_restore_job(
    session_factory: SessionFactory | None = None,
    *,
    store: BoundaryStore | None = None,
    reassign: bool = True,
) -> JobReport:
    """Put the backup boundary set back in place and reassign what it affects."""
    factory = session_factory or SessionLocal
    store = store or get_boundary_store()
    report = JobReport(job="restore", status=JobStatus.SUCCESS, started_at=utcnow())
    with factory() as db:
        try:
            generation = restore_backup(db, store)
        except BoundarySwapRefused as exc:
            db.rollback()
            report.status = JobStatus.SWAP_REFUSED
            report.detail = str(exc)
            report.finished_at = utcnow()
            return report
        if reassign:
            report.processed = NoteReassigner(store).run_until_done(db).processed
        report.detail = f"generation {generation.id} active at epoch {generation.epoch}"
    report.finished_at = utcnow()
    return report


def run_reassign_job(
    session_factory: SessionFactory | None = None,
    *,
    store: BoundaryStore | None = None,
    max_batches: int | None = None,
    clear_flags: bool = False,
) -> JobReport:
    """Resume reassignment of notes after a boundary change."""
    factory = session_factory or SessionLocal
    report = JobReport(job="reassign", status=JobStatus.SUCCESS, started_at=utcnow())
    with factory() as db:
        total = NoteReassigner(store).run_until_done(db, max_batches=max_batches)
        report.processed = total.processed
        report.detail = f"{total.changed} notes changed country"
        if clear_flags:
            cleared = clear_update_flags(db)
            logger.info("Cleared update flag on %s countries", cleared)
    report.finished_at = utcnow()
    return report
