"""Command line entry point for the ingestion jobs.

The process exit code tells the scheduler what happened: 0 success,
75 lock busy (retry later), 3 gap detected, 4 boundary swap refused,
69 feed unavailable, 1 failure.
"""
from __future__ import annotations

import argparse
import logging
import sys

from notes_ingest.core.settings import settings
from notes_ingest.db.session import SessionLocal
from notes_ingest.db.time import utcnow
from notes_ingest.schemas.job import JobReport, JobStatus
from notes_ingest.services.boundary_update import drop_backup
from notes_ingest.services.feed import DirectoryDeltaSource, HttpDeltaSource, parse_timestamp
from notes_ingest.services.jobs import (
    run_api_job,
    run_boundary_job,
    run_planet_job,
    run_reassign_job,
    run_restore_job,
)
from notes_ingest.services.known_waters import seed_known_waters
from notes_ingest.services.watermark import delete_after_cutoff

logger = logging.getLogger("notes_ingest.jobs")


def _planet(args: argparse.Namespace) -> JobReport:
    return run_planet_job(args.directory, partitions=args.partitions, locations_file=args.locations)


def _api(args: argparse.Namespace) -> JobReport:
    directory = args.directory or (None if args.url else settings.feed_directory)
    if directory:
        return run_api_job(DirectoryDeltaSource(directory))
    source = HttpDeltaSource(args.url)
    try:
        return run_api_job(source)
    finally:
        source.close()


def _boundaries(args: argparse.Namespace) -> JobReport:
    return run_boundary_job(args.file, reassign=not args.no_reassign)


def _restore(args: argparse.Namespace) -> JobReport:
    return run_restore_job(reassign=not args.no_reassign)


def _reassign(args: argparse.Namespace) -> JobReport:
    return run_reassign_job(max_batches=args.max_batches, clear_flags=args.clear_flags)


def _simple(job: str, detail: str) -> JobReport:
    now = utcnow()
    return JobReport(job=job, status=JobStatus.SUCCESS, detail=detail, started_at=now, finished_at=now)


def _drop_backup(args: argparse.Namespace) -> JobReport:
    with SessionLocal() as db:
        dropped = drop_backup(db)
    return _simple("drop-backup", "backup dropped" if dropped else "no backup present")


def _seed_waters(args: argparse.Namespace) -> JobReport:
    with SessionLocal() as db:
        added = seed_known_waters(db)
        db.commit()
    return _simple("seed-waters", f"{added} curated areas added")


def _delete_after(args: argparse.Namespace) -> JobReport:
    cutoff = parse_timestamp(args.cutoff)
    with SessionLocal() as db:
        counts = delete_after_cutoff(db, cutoff)
        db.commit()
    report = _simple("delete-after", ", ".join(f"{k}={v}" for k, v in counts.items()))
    report.processed = sum(counts.values())
    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a notes ingestion job")
    sub = parser.add_subparsers(dest="command", required=True)

    planet = sub.add_parser("planet", help="Bulk load a full dump directory")
    planet.add_argument("directory", help="Directory holding notes.csv, comments.csv, texts.csv")
    planet.add_argument("--partitions", type=int, default=None)
    planet.add_argument(
        "--locations", default=None, help="CSV of note_id,country_id from an earlier load"
    )
    planet.set_defaults(handler=_planet)

    api = sub.add_parser("api", help="Run one incremental cycle")
    api.add_argument("--directory", default=None, help="Read the delta from a directory")
    api.add_argument("--url", default=None, help="Override the feed base URL")
    api.set_defaults(handler=_api)

    boundaries = sub.add_parser("boundaries", help="Load a new boundary set and swap it in")
    boundaries.add_argument("file", help="GeoJSON FeatureCollection of countries")
    boundaries.add_argument("--no-reassign", action="store_true")
    boundaries.set_defaults(handler=_boundaries)

    restore = sub.add_parser("restore", help="Make the backup boundary set active again")
    restore.add_argument("--no-reassign", action="store_true")
    restore.set_defaults(handler=_restore)

    reassign = sub.add_parser("reassign", help="Resume note reassignment")
    reassign.add_argument("--max-batches", type=int, default=None)
    reassign.add_argument("--clear-flags", action="store_true")
    reassign.set_defaults(handler=_reassign)

    drop = sub.add_parser("drop-backup", help="Delete the backup boundary set")
    drop.set_defaults(handler=_drop_backup)

    seed = sub.add_parser("seed-waters", help="Insert the curated known water areas")
    seed.set_defaults(handler=_seed_waters)

    delete = sub.add_parser("delete-after", help="Remove data newer than a cutoff")
    delete.add_argument("cutoff", help="ISO 8601 timestamp")
    delete.set_defaults(handler=_delete_after)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        report = args.handler(args)
    except Exception:
        logger.exception("Job %s failed", args.command)
        sys.exit(1)
    logger.info(
        "Job %s finished with %s (processed=%s skipped=%s)",
        report.job,
        report.status.value,
        report.processed,
        report.skipped,
    )
    print(report.model_dump_json())
    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
