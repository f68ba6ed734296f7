# src/notes_ingest/models/system.py
"""System-level bookkeeping models."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notes_ingest.db.session import Base
from notes_ingest.db.time import UTCDateTime, utcnow


class Watermark(Base):
    """Single-row high-water mark of the newest ingested change."""

    __tablename__ = "watermark"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    timestamp: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class ProcessLock(Base):
    """Single-row mutual exclusion token for the long-running jobs."""

    __tablename__ = "process_lock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    holder_pid: Mapped[int] = mapped_column(Integer, nullable=False)
    tag: Mapped[str] = mapped_column(String(32), nullable=False)
    hostname: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    acquired_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class IdSequence(Base):
    """Named counter backing the shared id allocators."""

    __tablename__ = "id_sequence"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class GapRecord(Base):
    """Audit row describing a detected data gap. Never deleted by the pipeline."""

    __tablename__ = "gap_record"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    gap_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    gap_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gap_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    affected_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
