# src/notes_ingest/schemas/__init__.py
"""
Pydantic schemas for API responses and service reports.
"""

from .boundary import CountryDiff, DiffStatus, GenerationResponse
from .gap import GapRecordResponse
from .job import EXIT_CODES, JobReport, JobStatus
from .resolution import ResolveResponse

__all__ = [
    "CountryDiff", "DiffStatus", "GenerationResponse",
    "GapRecordResponse",
    "EXIT_CODES", "JobReport", "JobStatus",
    "ResolveResponse",
]
