# src/notes_ingest/models/note.py
"""SQLAlchemy models for notes, their comments and comment texts."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from notes_ingest.db.session import Base
from notes_ingest.db.time import UTCDateTime, utcnow

NOTE_STATUSES = ("open", "close", "hidden")
COMMENT_EVENTS = ("opened", "closed", "reopened", "commented", "hidden")

# Sentinel country ids.
COUNTRY_INTERNATIONAL_WATERS = -1
COUNTRY_UNKNOWN = -2


class Note(Base):
    """Geotagged note as received from either feed."""

    __tablename__ = "note"

    note_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")

    # Positive country id, -1 (international waters), -2 (unresolved) or NULL.
    country_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    # When this system first stored the note.
    insert_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    # Boundary epoch the country assignment was computed against.
    resolved_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_note_coordinates", "longitude", "latitude"),)


class NoteComment(Base):
    """Lifecycle event on a note."""

    __tablename__ = "note_comment"

    # Assigned by the shared id allocator, never by the database.
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    note_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("note.note_id"),
        nullable=False,
    )
    sequence_action: Mapped[int] = mapped_column(Integer, nullable=False)
    event: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    username: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("note_id", "sequence_action", name="uq_note_comment_sequence"),
        Index("ix_note_comment_event", "note_id", "event", "created_at"),
    )


class NoteCommentText(Base):
    """Free text attached to a comment, keyed by (note, sequence)."""

    __tablename__ = "note_comment_text"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    note_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sequence_action: Mapped[int] = mapped_column(Integer, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    processing_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("note_id", "sequence_action", name="uq_note_comment_text_sequence"),
    )


class NoteUser(Base):
    """Last known username for a user id seen in comments."""

    __tablename__ = "note_user"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str] = mapped_column(Text, nullable=False)
