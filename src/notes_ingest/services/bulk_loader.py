"""Partitioned bulk (Planet) loader.

Phases:

1. one staging area per partition is created, one after another,
2. workers append their partition concurrently, each on its own connection,
3. barrier: every worker must finish; a single failure aborts the load,
4. consolidation runs once per logical table, in a fixed order, on one
   session. Ids are only handed out here, so they follow a total order
   instead of the order in which workers happened to finish,
5. when a location backup is supplied, backed-up countries are applied to
   the notes and every assignment taken from it is checked once against
   the polygons.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.services.feed import DeltaBatch
from notes_ingest.services.location_backup import apply_location_backup, verify_assignments
from notes_ingest.services.merge import CanonicalMerger
from notes_ingest.services.staging import StagingArea, gather, staging_area

logger = logging.getLogger(__name__)


class PartitionLoadError(RuntimeError):
    """Raised when at least one partition failed to load into staging."""

    def __init__(self, failed: Sequence[int]) -> None:
        self.failed = tuple(failed)
        super().__init__(f"partitions failed to load: {', '.join(map(str, self.failed))}")


@dataclass(frozen=True)
class Partition:
    index: int
    batch: DeltaBatch


@dataclass
class BulkLoadResult:
    partitions: int = 0
    staged_rows: int = 0
    notes_inserted: int = 0
    notes_updated: int = 0
    resolver_calls: int = 0
    comments_inserted: int = 0
    comments_skipped: int = 0
    texts_inserted: int = 0
    texts_orphaned: int = 0
    locations_applied: int = 0
    locations_cleared: int = 0
    gap_record_ids: list[int] = field(default_factory=list)


def split_partitions(batch: DeltaBatch, count: int) -> list[Partition]:
    """Split a batch into ``count`` partitions by note id.

    Any split is valid; keeping a note's rows together just keeps the
    partitions roughly the same size.
    """
    if count < 1:
        raise ValueError("partition count must be at least 1")
    parts = [DeltaBatch() for _ in range(count)]
    for note in batch.notes:
        parts[note.note_id % count].notes.append(note)
    for comment in batch.comments:
        parts[comment.note_id % count].comments.append(comment)
    for text in batch.texts:
        parts[text.note_id % count].texts.append(text)
    return [Partition(index, part) for index, part in enumerate(parts)]


class BulkLoader:
    """Loads partitions concurrently and consolidates them once."""

    def __init__(
        self,
        engine: Engine,
        merger: CanonicalMerger | None = None,
        *,
        workers: int | None = None,
    ) -> None:
        self.engine = engine
        self.merger = merger or CanonicalMerger()
        self.workers = workers or settings.bulk_workers

    def _load_partition(self, area: StagingArea, partition: Partition) -> int:
        with self.engine.begin() as conn:
            written = area.append(conn, partition.batch, partition_id=partition.index)
        logger.info("Partition %s staged %s rows", partition.index, written)
        return written

    def load(
        self,
        partitions: Sequence[Partition],
        locations: Mapping[int, int] | None = None,
    ) -> BulkLoadResult:
        areas = [staging_area(f"p{partition.index}") for partition in partitions]
        for area in areas:
            area.reset(self.engine)

        result = BulkLoadResult(partitions=len(partitions))
        try:
            failed: list[int] = []
            with ThreadPoolExecutor(max_workers=max(1, self.workers)) as pool:
                futures = {
                    pool.submit(self._load_partition, area, partition): partition.index
                    for area, partition in zip(areas, partitions)
                }
                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        result.staged_rows += future.result()
                    except Exception:
                        logger.error("Partition %s failed to load", index, exc_info=True)
                        failed.append(index)
            if failed:
                raise PartitionLoadError(sorted(failed))
            self._consolidate(areas, result, locations or {})
        finally:
            for area in areas:
                area.drop(self.engine)
        return result

    def _consolidate(
        self,
        areas: Sequence[StagingArea],
        result: BulkLoadResult,
        locations: Mapping[int, int],
    ) -> None:
        with Session(self.engine) as db:
            notes = self.merger.merge_notes(
                db, gather(db.connection(), areas, "notes"), known_locations=locations
            )
            db.commit()
            result.notes_inserted = notes.inserted
            result.notes_updated = notes.updated
            result.resolver_calls = notes.resolver_calls

            if locations:
                result.locations_applied = apply_location_backup(db, locations)
                checked = verify_assignments(
                    db, self.merger.resolver.boundaries(db), note_ids=locations
                )
                db.commit()
                result.locations_cleared = checked.cleared

            comments = self.merger.merge_comments(db, gather(db.connection(), areas, "comments"))
            db.commit()
            result.comments_inserted = comments.inserted
            result.comments_skipped = comments.skipped + comments.missing_note

            texts = self.merger.merge_texts(db, gather(db.connection(), areas, "texts"))
            db.commit()
            result.texts_inserted = texts.inserted
            result.texts_orphaned = texts.orphaned
            if texts.gap_record_id is not None:
                result.gap_record_ids.append(texts.gap_record_id)

        logger.info(
            "Bulk load consolidated: notes=%s comments=%s texts=%s orphaned_texts=%s",
            result.notes_inserted,
            result.comments_inserted,
            result.texts_inserted,
            result.texts_orphaned,
        )
