"""Geospatial country resolver.

Maps a coordinate to a country id, ``-1`` for known international waters or
``-2`` when no boundary contains it. The search is:

1. the note's current country alone (sticky fast path),
2. known water polygons and special points,
3. every country in the coordinate's zone order, cheapest rejection first.
"""

from __future__ import annotations

import logging
import math

from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_ingest.geo.zones import Zone, classify
from notes_ingest.models import Note
from notes_ingest.models.note import COUNTRY_INTERNATIONAL_WATERS, COUNTRY_UNKNOWN
from notes_ingest.services.boundary_store import BoundarySet, BoundaryStore, get_boundary_store

logger = logging.getLogger(__name__)


def _valid_coordinate(lon: float, lat: float) -> bool:
    if lon is None or lat is None:
        return False
    if math.isnan(lon) or math.isnan(lat):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


def resolve_point(
    boundaries: BoundarySet,
    lon: float,
    lat: float,
    current_country: int | None = None,
) -> int:
    """Resolve a coordinate against one boundary snapshot.

    Args:
        boundaries: Snapshot to search
        lon: Longitude in degrees
        lat: Latitude in degrees
        current_country: Country the note is assigned to today, if known

    Returns:
        Positive country id, -1 for known waters or -2 when unresolved
    """
    if not _valid_coordinate(lon, lat):
        return COUNTRY_UNKNOWN

    sticky = boundaries.get(current_country) if current_country and current_country > 0 else None
    if sticky is not None and sticky.contains(lon, lat):
        return sticky.country_id

    if boundaries.in_known_water(lon, lat):
        return COUNTRY_INTERNATIONAL_WATERS

    zone = classify(lon, lat)
    for country_id in boundaries.candidates(zone):
        if sticky is not None and country_id == sticky.country_id:
            continue
        if boundaries.countries[country_id].contains(lon, lat):
            return country_id
    return COUNTRY_UNKNOWN


class CountryResolver:
    """Resolve note coordinates against the active boundary set."""

    def __init__(self, store: BoundaryStore | None = None) -> None:
        self.store = store or get_boundary_store()

    def boundaries(self, db: Session) -> BoundarySet:
        return self.store.ensure_current(db)

    def resolve(self, db: Session, lon: float, lat: float, note_id: int | None = None) -> int:
        """Resolve a coordinate, using the note's stored country as the first guess."""
        current = None
        if note_id is not None:
            current = db.execute(
                select(Note.country_id).where(Note.note_id == note_id)
            ).scalar_one_or_none()
        return resolve_point(self.boundaries(db), lon, lat, current)

    def resolve_with_current(
        self,
        db: Session,
        lon: float,
        lat: float,
        current_country: int | None,
    ) -> int:
        """Resolve when the caller already knows the current assignment."""
        return resolve_point(self.boundaries(db), lon, lat, current_country)

    def zone_for(self, lon: float, lat: float) -> Zone:
        return classify(lon, lat)
