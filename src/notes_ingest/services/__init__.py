# src/notes_ingest/services/__init__.py
"""Ingestion, boundary and resolution services."""

from .boundary_store import BoundaryStore, get_boundary_store
from .bulk_loader import BulkLoader
from .incremental_sync import IncrementalSync
from .lock import LockCoordinator
from .merge import CanonicalMerger
from .resolver import CountryResolver

__all__ = [
    "BoundaryStore",
    "BulkLoader",
    "CanonicalMerger",
    "CountryResolver",
    "IncrementalSync",
    "LockCoordinator",
    "get_boundary_store",
]
