# src/notes_ingest/models/__init__.py
"""SQLAlchemy models for the notes ingestion service."""

from .boundary import BoundaryGeneration, Country, KnownWaterArea
from .note import Note, NoteComment, NoteCommentText, NoteUser
from .system import GapRecord, IdSequence, ProcessLock, Watermark

__all__ = [
    "BoundaryGeneration", "Country", "KnownWaterArea",
    "Note", "NoteComment", "NoteCommentText", "NoteUser",
    "GapRecord", "IdSequence", "ProcessLock", "Watermark",
]
