# src/notes_ingest/models/boundary.py
"""SQLAlchemy models for country boundaries and known water areas."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from notes_ingest.db.session import Base
from notes_ingest.db.time import UTCDateTime, utcnow

ROLE_ACTIVE = "active"
ROLE_CANDIDATE = "candidate"
ROLE_BACKUP = "backup"

WATER_SOURCE_CURATED = "curated"
WATER_SOURCE_DERIVED = "derived"


class BoundaryGeneration(Base):
    """One complete country boundary set.

    At most one generation holds each role. Promoting a generation to
    ``active`` stamps it with a fresh epoch so readers can tell that their
    in-memory snapshot is out of date.
    """

    __tablename__ = "boundary_generation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    epoch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    country_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Country(Base):
    """Country polygon belonging to a boundary generation."""

    __tablename__ = "country"

    generation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("boundary_generation.id", ondelete="CASCADE"),
        primary_key=True,
    )
    country_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    name_en: Mapped[str | None] = mapped_column(Text, nullable=True)
    name_es: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Polygon or multipolygon, EPSG:4326, stored as WKB.
    geom: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    min_lon: Mapped[float] = mapped_column(Float, nullable=False)
    min_lat: Mapped[float] = mapped_column(Float, nullable=False)
    max_lon: Mapped[float] = mapped_column(Float, nullable=False)
    max_lat: Mapped[float] = mapped_column(Float, nullable=False)

    # Zone name -> search rank; lower ranks are tried first.
    zone_ranks: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_maritime: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    update_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_update_attempt: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_country_generation_bbox", "generation_id", "min_lon", "max_lon"),
        Index("ix_country_generation_updated", "generation_id", "updated"),
    )


class KnownWaterArea(Base):
    """Ocean region or special point that short-circuits country lookups."""

    __tablename__ = "known_water_area"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    geom: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    point_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    point_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_special_point: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=WATER_SOURCE_CURATED,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
