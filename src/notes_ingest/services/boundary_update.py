"""Boundary update workflow: stage, diff, flag, swap, roll back.

A new boundary set is loaded as the ``candidate`` generation, compared with
the ``active`` one, and promoted atomically. The previous active set is kept
as ``backup`` until an operator drops it, which also makes rollback cheap.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shapely.geometry.base import BaseGeometry
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.db.time import utcnow
from notes_ingest.geo.geometry import (
    from_wkb,
    geodesic_area_perimeter,
    load_boundary_geometry,
    to_wkb,
    vertex_count,
)
from notes_ingest.geo.zones import default_zone_ranks
from notes_ingest.models import BoundaryGeneration, Country
from notes_ingest.models.boundary import ROLE_ACTIVE, ROLE_BACKUP, ROLE_CANDIDATE
from notes_ingest.schemas.boundary import CountryDiff, DiffStatus
from notes_ingest.services.boundary_store import (
    BoundarySet,
    BoundaryStore,
    get_boundary_store,
    get_generation,
    load_boundary_set,
)

logger = logging.getLogger(__name__)

# Area change beyond which a changed country counts as grown or shrunk.
AREA_TREND_RATIO = 0.01


class BoundarySwapRefused(RuntimeError):
    """Raised when a swap or restore precondition does not hold.

    Nothing is changed when this is raised.
    """


@dataclass(frozen=True)
class BoundaryFeature:
    """One country taken from a boundary feed."""

    country_id: int
    name: str
    geometry: BaseGeometry
    name_en: str | None = None
    name_es: str | None = None
    is_maritime: bool = False
    zone_ranks: Mapping[str, int] | None = field(default=None)


def parse_feature(feature: Mapping[str, Any]) -> BoundaryFeature:
    """Build a :class:`BoundaryFeature` from a GeoJSON feature mapping."""
    properties = feature.get("properties") or {}
    raw_id = properties.get("country_id", feature.get("id"))
    if raw_id is None:
        raise ValueError("boundary feature has no country id")
    country_id = int(raw_id)
    if country_id <= 0:
        raise ValueError(f"country id must be positive, got {country_id}")
    name = properties.get("name") or properties.get("name_en") or str(country_id)
    ranks = properties.get("zone_ranks")
    return BoundaryFeature(
        country_id=country_id,
        name=name,
        geometry=load_boundary_geometry(feature["geometry"]),
        name_en=properties.get("name_en"),
        name_es=properties.get("name_es"),
        is_maritime=bool(properties.get("is_maritime", False)),
        zone_ranks={str(k): int(v) for k, v in ranks.items()} if ranks else None,
    )


def parse_feature_collection(collection: Mapping[str, Any]) -> list[BoundaryFeature]:
    if collection.get("type") != "FeatureCollection":
        raise ValueError("boundary feed must be a GeoJSON FeatureCollection")
    return [parse_feature(feature) for feature in collection.get("features", [])]


def read_boundary_file(path: str | Path) -> list[BoundaryFeature]:
    with open(path, encoding="utf-8") as handle:
        return parse_feature_collection(json.load(handle))


def _delete_generation(db: Session, generation: BoundaryGeneration) -> None:
    db.execute(delete(Country).where(Country.generation_id == generation.id))
    db.delete(generation)
    db.flush()


def _next_epoch(db: Session) -> int:
    return int(db.scalar(select(func.max(BoundaryGeneration.epoch))) or 0) + 1


def stage_candidate(
    db: Session,
    features: Iterable[BoundaryFeature],
    *,
    min_area_ratio: float | None = None,
) -> BoundaryGeneration:
    """Load a complete boundary set as the candidate generation.

    A country whose new polygon is smaller than ``min_area_ratio`` of its
    active polygon keeps the active geometry and is marked ``update_failed``.
    """
    ratio = settings.boundary_min_area_ratio if min_area_ratio is None else min_area_ratio
    previous = get_generation(db, ROLE_CANDIDATE)
    if previous is not None:
        logger.info("Discarding previous candidate generation %s", previous.id)
        _delete_generation(db, previous)

    active = get_generation(db, ROLE_ACTIVE)
    active_rows: dict[int, Country] = {}
    if active is not None:
        active_rows = {
            row.country_id: row
            for row in db.execute(
                select(Country).where(Country.generation_id == active.id)
            ).scalars()
        }

    generation = BoundaryGeneration(role=ROLE_CANDIDATE, epoch=0, created_at=utcnow())
    db.add(generation)
    db.flush()

    attempted_at = utcnow()
    seen: set[int] = set()
    failed = 0
    staged: list[Country] = []
    for feature in features:
        if feature.country_id in seen:
            raise ValueError(f"duplicate country id {feature.country_id} in boundary set")
        seen.add(feature.country_id)

        geometry = feature.geometry
        update_failed = False
        previous_row = active_rows.get(feature.country_id)
        if previous_row is not None:
            old_geometry = from_wkb(previous_row.geom)
            old_area = geodesic_area_perimeter(old_geometry)[0]
            new_area = geodesic_area_perimeter(geometry)[0]
            if old_area > 0 and new_area < old_area * ratio:
                logger.warning(
                    "Keeping previous geometry for country %s: area dropped from %.0f to %.0f m2",
                    feature.country_id,
                    old_area,
                    new_area,
                )
                geometry = old_geometry
                update_failed = True
                failed += 1

        bounds = tuple(geometry.bounds)
        staged.append(
            Country(
                generation_id=generation.id,
                country_id=feature.country_id,
                name=feature.name,
                name_en=feature.name_en,
                name_es=feature.name_es,
                geom=to_wkb(geometry),
                min_lon=bounds[0],
                min_lat=bounds[1],
                max_lon=bounds[2],
                max_lat=bounds[3],
                zone_ranks=dict(feature.zone_ranks or {}),
                is_maritime=feature.is_maritime,
                updated=False,
                update_failed=update_failed,
                last_update_attempt=attempted_at,
            )
        )

    derived = default_zone_ranks(
        {row.country_id: (row.min_lon, row.min_lat, row.max_lon, row.max_lat) for row in staged}
    )
    for row in staged:
        if not row.zone_ranks:
            row.zone_ranks = derived[row.country_id]
    db.add_all(staged)

    generation.country_count = len(seen)
    db.flush()
    logger.info(
        "Staged candidate generation %s with %s countries (%s kept previous geometry)",
        generation.id,
        generation.country_count,
        failed,
    )
    return generation


def _percent_change(old: float, new: float) -> float:
    if old == 0:
        return 0.0 if new == 0 else 100.0
    return (new - old) / old * 100.0


def compare_geometries(
    country_id: int,
    name: str,
    old: BaseGeometry,
    new: BaseGeometry,
    tolerance_percent: float,
) -> CountryDiff:
    old_area, old_perimeter = geodesic_area_perimeter(old)
    new_area, new_perimeter = geodesic_area_perimeter(new)
    area_change = _percent_change(old_area, new_area)
    perimeter_change = _percent_change(old_perimeter, new_perimeter)

    if abs(area_change) < tolerance_percent and abs(perimeter_change) < tolerance_percent:
        status = DiffStatus.UNCHANGED
    elif new_area > old_area * (1 + AREA_TREND_RATIO):
        status = DiffStatus.INCREASED
    elif new_area < old_area * (1 - AREA_TREND_RATIO):
        status = DiffStatus.DECREASED
    else:
        status = DiffStatus.MODIFIED

    return CountryDiff(
        country_id=country_id,
        name=name,
        status=status,
        area_change_percent=round(area_change, 6),
        perimeter_change_percent=round(perimeter_change, 6),
        vertices_change=vertex_count(new) - vertex_count(old),
        geometry_changed=not old.equals(new),
    )


def diff(
    old: BoundarySet,
    new: BoundarySet,
    tolerance_percent: float | None = None,
) -> list[CountryDiff]:
    """Compare two boundary sets country by country, ordered by country id."""
    tolerance = (
        settings.boundary_diff_tolerance_percent if tolerance_percent is None else tolerance_percent
    )
    report: list[CountryDiff] = []
    for country_id in sorted(set(old.countries) | set(new.countries)):
        before = old.get(country_id)
        after = new.get(country_id)
        if before is None:
            report.append(CountryDiff(country_id=country_id, name=after.name, status=DiffStatus.NEW))
        elif after is None:
            report.append(
                CountryDiff(country_id=country_id, name=before.name, status=DiffStatus.DELETED)
            )
        else:
            report.append(
                compare_geometries(country_id, after.name, before.geometry, after.geometry, tolerance)
            )
    return report


def diff_generations(
    db: Session,
    old_role: str = ROLE_ACTIVE,
    new_role: str = ROLE_CANDIDATE,
    tolerance_percent: float | None = None,
) -> list[CountryDiff]:
    """Diff the generations currently holding two roles.

    With nothing in ``old_role`` every country of ``new_role`` reports as new.
    """
    if get_generation(db, new_role) is None:
        return []
    return diff(
        load_boundary_set(db, old_role),
        load_boundary_set(db, new_role),
        tolerance_percent,
    )


def flag_changed(db: Session, diffs: Iterable[CountryDiff], role: str = ROLE_CANDIDATE) -> int:
    """Mark every country whose status is not ``unchanged``; return how many."""
    generation = get_generation(db, role)
    if generation is None:
        return 0
    changed = [
        entry.country_id
        for entry in diffs
        if entry.status not in (DiffStatus.UNCHANGED, DiffStatus.DELETED)
    ]
    if not changed:
        return 0
    result = db.execute(
        update(Country)
        .where(Country.generation_id == generation.id, Country.country_id.in_(changed))
        .values(updated=True)
    )
    db.flush()
    logger.info("Flagged %s changed countries in generation %s", result.rowcount, generation.id)
    return int(result.rowcount or 0)


def _country_count(db: Session, generation: BoundaryGeneration) -> int:
    return int(
        db.scalar(
            select(func.count()).select_from(Country).where(Country.generation_id == generation.id)
        )
        or 0
    )


def _ensure_indexes_and_statistics(db: Session) -> None:
    connection = db.connection()
    for index in Country.__table__.indexes:
        index.create(bind=connection, checkfirst=True)
    if connection.dialect.name == "postgresql":
        db.execute(text("ANALYZE country"))


def swap(db: Session, store: BoundaryStore | None = None) -> BoundaryGeneration:
    """Promote the candidate generation to active in one transaction.

    Raises:
        BoundarySwapRefused: If there is no candidate or it holds no countries
    """
    candidate = get_generation(db, ROLE_CANDIDATE)
    if candidate is None:
        raise BoundarySwapRefused("no candidate boundary set has been staged")
    if _country_count(db, candidate) == 0:
        raise BoundarySwapRefused(f"candidate generation {candidate.id} is empty")

    old_backup = get_generation(db, ROLE_BACKUP)
    if old_backup is not None:
        _delete_generation(db, old_backup)
    active = get_generation(db, ROLE_ACTIVE)
    if active is not None:
        active.role = ROLE_BACKUP

    candidate.role = ROLE_ACTIVE
    candidate.epoch = _next_epoch(db)
    candidate.activated_at = utcnow()
    db.flush()
    _ensure_indexes_and_statistics(db)
    db.commit()

    (store or get_boundary_store()).load(db)
    logger.info(
        "Swapped boundary generation %s in as active (epoch %s)", candidate.id, candidate.epoch
    )
    return candidate


def restore_backup(db: Session, store: BoundaryStore | None = None) -> BoundaryGeneration:
    """Make the backup generation active again and flag what differs.

    The generation being rolled back becomes the new backup, so a restore can
    itself be undone.
    """
    backup = get_generation(db, ROLE_BACKUP)
    if backup is None or _country_count(db, backup) == 0:
        raise BoundarySwapRefused("no usable backup boundary set to restore")
    active = get_generation(db, ROLE_ACTIVE)
    rolled_back = load_boundary_set(db, ROLE_ACTIVE)

    if active is not None:
        active.role = ROLE_BACKUP
    backup.role = ROLE_ACTIVE
    backup.epoch = _next_epoch(db)
    backup.activated_at = utcnow()
    db.execute(update(Country).where(Country.generation_id == backup.id).values(updated=False))
    db.flush()

    flag_changed(db, diff(rolled_back, load_boundary_set(db, ROLE_ACTIVE)), role=ROLE_ACTIVE)
    _ensure_indexes_and_statistics(db)
    db.commit()

    (store or get_boundary_store()).load(db)
    logger.info("Restored generation %s as active (epoch %s)", backup.id, backup.epoch)
    return backup


def drop_backup(db: Session) -> bool:
    """Delete the backup generation. Only run once the operator confirms."""
    backup = get_generation(db, ROLE_BACKUP)
    if backup is None:
        return False
    _delete_generation(db, backup)
    db.commit()
    logger.info("Dropped backup generation %s", backup.id)
    return True


def clear_update_flags(db: Session) -> int:
    """Reset ``updated`` on the active generation once reassignment converged."""
    active = get_generation(db, ROLE_ACTIVE)
    if active is None:
        return 0
    result = db.execute(
        update(Country)
        .where(Country.generation_id == active.id, Country.updated.is_(True))
        .values(updated=False)
    )
    db.commit()
    return int(result.rowcount or 0)
