"""Staging tables for raw feed records.

Each loader writes into its own set of unindexed staging tables
(``note_staging_<label>`` and friends) before anything touches the canonical
tables. Bulk partitions get one label each, the incremental job uses
``api``. Staging tables are created fresh for every run.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine

from notes_ingest.db.time import UTCDateTime
from notes_ingest.services.feed import DeltaBatch

logger = logging.getLogger(__name__)

_LABEL_PATTERN = re.compile(r"[a-z0-9_]{1,32}")


class StagingArea:
    """The three staging tables belonging to one label."""

    def __init__(self, label: str) -> None:
        if not _LABEL_PATTERN.fullmatch(label):
            raise ValueError(f"invalid staging label {label!r}")
        self.label = label
        self.metadata = MetaData()
        self.notes = Table(
            f"note_staging_{label}",
            self.metadata,
            Column("note_id", BigInteger, nullable=False),
            Column("latitude", Float, nullable=False),
            Column("longitude", Float, nullable=False),
            Column("created_at", UTCDateTime, nullable=False),
            Column("status", String(16), nullable=False),
            Column("closed_at", UTCDateTime, nullable=True),
            Column("country_id", Integer, nullable=True),
            Column("partition_id", Integer, nullable=False),
            Column("position", Integer, nullable=False),
        )
        self.comments = Table(
            f"comment_staging_{label}",
            self.metadata,
            Column("note_id", BigInteger, nullable=False),
            Column("sequence_action", Integer, nullable=True),
            Column("event", String(16), nullable=False),
            Column("created_at", UTCDateTime, nullable=False),
            Column("user_id", BigInteger, nullable=True),
            Column("username", Text, nullable=True),
            Column("partition_id", Integer, nullable=False),
            Column("position", Integer, nullable=False),
        )
        self.texts = Table(
            f"comment_text_staging_{label}",
            self.metadata,
            Column("note_id", BigInteger, nullable=False),
            Column("sequence_action", Integer, nullable=False),
            Column("body", Text, nullable=False),
            Column("partition_id", Integer, nullable=False),
            Column("position", Integer, nullable=False),
        )

    def reset(self, bind: Engine | Connection) -> None:
        """Drop leftovers from an earlier run and create empty tables."""
        self.metadata.drop_all(bind=bind, checkfirst=True)
        self.metadata.create_all(bind=bind)

    def drop(self, bind: Engine | Connection) -> None:
        self.metadata.drop_all(bind=bind, checkfirst=True)

    @staticmethod
    def _rows(records: Sequence[Any], partition_id: int) -> list[dict[str, Any]]:
        rows = []
        for position, record in enumerate(records):
            row = record.as_row()
            row["partition_id"] = partition_id
            row["position"] = position
            rows.append(row)
        return rows

    def append(self, conn: Connection, batch: DeltaBatch, partition_id: int = 0) -> int:
        """Bulk-append a batch without validation; return rows written."""
        written = 0
        for table, records in (
            (self.notes, batch.notes),
            (self.comments, batch.comments),
            (self.texts, batch.texts),
        ):
            if records:
                conn.execute(insert(table), self._rows(records, partition_id))
                written += len(records)
        logger.debug("Staged %s rows into %s tables", written, self.label)
        return written

    def _read(self, conn: Connection, table: Table) -> list[dict[str, Any]]:
        result = conn.execute(select(table).order_by(table.c.partition_id, table.c.position))
        return [dict(row) for row in result.mappings()]

    def read_notes(self, conn: Connection) -> list[dict[str, Any]]:
        return self._read(conn, self.notes)

    def read_comments(self, conn: Connection) -> list[dict[str, Any]]:
        return self._read(conn, self.comments)

    def read_texts(self, conn: Connection) -> list[dict[str, Any]]:
        return self._read(conn, self.texts)


def staging_area(label: str) -> StagingArea:
    return StagingArea(label)


def gather(conn: Connection, areas: Iterable[StagingArea], kind: str) -> list[dict[str, Any]]:
    """Concatenate one logical table across staging areas."""
    reader = {
        "notes": StagingArea.read_notes,
        "comments": StagingArea.read_comments,
        "texts": StagingArea.read_texts,
    }[kind]
    rows: list[dict[str, Any]] = []
    for area in areas:
        rows.extend(reader(area, conn))
    return rows

