"""Known international water areas.

Curated rows are seeded once and never touched again. Derived rows are the
ocean left over after subtracting every country polygon from the world
envelope, and are regenerated whenever the boundaries change.
"""

from __future__ import annotations

import logging

from shapely.geometry import box
from shapely.ops import unary_union
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.geo.geometry import geodesic_area_km2, to_wkb
from notes_ingest.models import KnownWaterArea
from notes_ingest.models.boundary import WATER_SOURCE_CURATED, WATER_SOURCE_DERIVED
from notes_ingest.services.boundary_store import BoundarySet, bump_water_version

logger = logging.getLogger(__name__)

WORLD_ENVELOPE = box(-180.0, -90.0, 180.0, 90.0)

DEFAULT_KNOWN_WATERS: tuple[dict[str, object], ...] = (
    {
        "name": "Null Island",
        "description": "Point 0,0 in the Gulf of Guinea, a common placeholder for missing coordinates",
        "point": (0.0, 0.0),
    },
    {
        "name": "Central Pacific",
        "description": "Open ocean between Hawaii and South America",
        "bounds": (-150.0, -20.0, -100.0, 20.0),
    },
    {
        "name": "South Atlantic",
        "description": "Open ocean between South America and Africa",
        "bounds": (-40.0, -50.0, 0.0, -30.0),
    },
    {
        "name": "North Pacific",
        "description": "Open ocean between Asia and North America",
        "bounds": (-180.0, 20.0, -120.0, 50.0),
    },
    {
        "name": "Central Indian Ocean",
        "description": "Open ocean south of India",
        "bounds": (60.0, -30.0, 100.0, 0.0),
    },
)


def seed_known_waters(db: Session) -> int:
    """Insert the default curated areas that are not present yet."""
    existing = set(
        db.execute(
            select(KnownWaterArea.name).where(KnownWaterArea.source == WATER_SOURCE_CURATED)
        ).scalars()
    )
    added = 0
    for entry in DEFAULT_KNOWN_WATERS:
        if entry["name"] in existing:
            continue
        row = KnownWaterArea(
            name=entry["name"],
            description=entry["description"],
            source=WATER_SOURCE_CURATED,
        )
        if "point" in entry:
            row.point_lon, row.point_lat = entry["point"]
            row.is_special_point = True
        else:
            row.geom = to_wkb(box(*entry["bounds"]))
        db.add(row)
        added += 1
    db.flush()
    if added:
        bump_water_version(db)
    logger.info("Seeded %s curated known water areas", added)
    return added


def derive_water_polygons(boundaries: BoundarySet, min_area_km2: float) -> list:
    """Return ocean polygons not covered by any country, above a size floor."""
    if not boundaries.countries:
        return []
    land = unary_union([country.geometry for country in boundaries.countries.values()])
    ocean = WORLD_ENVELOPE.difference(land)
    if ocean.is_empty:
        return []
    parts = list(getattr(ocean, "geoms", [ocean]))
    return [
        part
        for part in parts
        if part.geom_type == "Polygon" and geodesic_area_km2(part) >= min_area_km2
    ]


def rebuild_known_waters(
    db: Session,
    boundaries: BoundarySet,
    min_area_km2: float | None = None,
) -> int:
    """Replace the derived water areas using the given boundary set."""
    floor = settings.known_water_min_area_km2 if min_area_km2 is None else min_area_km2
    polygons = derive_water_polygons(boundaries, floor)
    removed = db.execute(
        delete(KnownWaterArea).where(KnownWaterArea.source == WATER_SOURCE_DERIVED)
    ).rowcount
    for index, polygon in enumerate(polygons, start=1):
        db.add(
            KnownWaterArea(
                name=f"derived-water-{index}",
                description=f"Ocean area of {geodesic_area_km2(polygon):.0f} km2 outside all countries",
                geom=to_wkb(polygon),
                source=WATER_SOURCE_DERIVED,
            )
        )
    db.flush()
    bump_water_version(db)
    logger.info(
        "Rebuilt derived water areas: removed=%s added=%s epoch=%s",
        removed,
        len(polygons),
        boundaries.epoch,
    )
    return len(polygons)
