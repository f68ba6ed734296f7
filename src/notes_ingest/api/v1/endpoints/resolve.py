"""Country resolution endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from notes_ingest.db.session import get_db
from notes_ingest.schemas.resolution import ResolveResponse
from notes_ingest.services.resolver import CountryResolver

router = APIRouter(tags=["resolve"])


def get_resolver() -> CountryResolver:
    """Get CountryResolver dependency for dependency injection."""
    return CountryResolver()


SessionDep = Annotated[Session, Depends(get_db)]
ResolverDep = Annotated[CountryResolver, Depends(get_resolver)]


@router.get("/resolve", response_model=ResolveResponse)
async def resolve_coordinate(
    db: SessionDep,
    resolver: ResolverDep,
    lon: Annotated[float, Query(ge=-180.0, le=180.0)],
    lat: Annotated[float, Query(ge=-90.0, le=90.0)],
    note_id: Annotated[int | None, Query(gt=0)] = None,
) -> ResolveResponse:
    """Resolve a coordinate to a country against the active boundaries.

    Args:
        db: Database session
        resolver: Country resolver bound to the process-wide boundary store
        lon: Longitude in degrees
        lat: Latitude in degrees
        note_id: Optional note whose stored country is tried first

    Returns:
        Country id, the zone the point falls in and the boundary epoch used
    """
    boundaries = resolver.boundaries(db)
    country_id = resolver.resolve(db, lon, lat, note_id=note_id)
    return ResolveResponse(
        longitude=lon,
        latitude=lat,
        country_id=country_id,
        zone=resolver.zone_for(lon, lat).value,
        epoch=boundaries.epoch,
    )
