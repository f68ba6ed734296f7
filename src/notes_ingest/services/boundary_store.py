"""In-memory snapshot of the active country boundaries.

Readers always work against one immutable :class:`BoundarySet`. Publishing a
new set replaces the reference under a lock, so a reader sees either the old
set or the new one, never a mix. Each set carries the epoch of the boundary
generation it was built from.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.prepared import PreparedGeometry, prep
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notes_ingest.core.settings import settings
from notes_ingest.geo.geometry import from_wkb
from notes_ingest.geo.zones import Zone
from notes_ingest.models import BoundaryGeneration, Country, IdSequence, KnownWaterArea
from notes_ingest.models.boundary import ROLE_ACTIVE

logger = logging.getLogger(__name__)

WATER_VERSION_COUNTER = "known_water_area"


@dataclass(frozen=True, eq=False)
class CountryBoundary:
    """A country polygon ready for point-in-polygon tests."""

    country_id: int
    name: str
    geometry: BaseGeometry
    prepared: PreparedGeometry
    bounds: tuple[float, float, float, float]
    zone_ranks: Mapping[str, int] = field(default_factory=dict)
    is_maritime: bool = False

    @classmethod
    def build(
        cls,
        country_id: int,
        name: str,
        geometry: BaseGeometry,
        zone_ranks: Mapping[str, int] | None = None,
        is_maritime: bool = False,
    ) -> CountryBoundary:
        return cls(
            country_id=country_id,
            name=name,
            geometry=geometry,
            prepared=prep(geometry),
            bounds=tuple(geometry.bounds),
            zone_ranks=MappingProxyType(dict(zone_ranks or {})),
            is_maritime=is_maritime,
        )

    def bbox_contains(self, lon: float, lat: float) -> bool:
        min_lon, min_lat, max_lon, max_lat = self.bounds
        return min_lon <= lon <= max_lon and min_lat <= lat <= max_lat

    def contains(self, lon: float, lat: float) -> bool:
        """Bounding-box rejection followed by an exact containment test."""
        if not self.bbox_contains(lon, lat):
            return False
        return self.prepared.contains(Point(lon, lat))


@dataclass(frozen=True, eq=False)
class WaterArea:
    """Curated or derived ocean region, or a special point."""

    name: str
    geometry: BaseGeometry | None = None
    point: tuple[float, float] | None = None
    prepared: PreparedGeometry | None = None

    def matches(self, lon: float, lat: float, radius: float) -> bool:
        if self.point is not None:
            return math.hypot(lon - self.point[0], lat - self.point[1]) <= radius
        if self.geometry is None:
            return False
        min_lon, min_lat, max_lon, max_lat = self.geometry.bounds
        if not (min_lon <= lon <= max_lon and min_lat <= lat <= max_lat):
            return False
        target = self.prepared if self.prepared is not None else self.geometry
        return target.contains(Point(lon, lat))


def _rank_key(country: CountryBoundary, zone: Zone) -> tuple[int, int, int]:
    rank = country.zone_ranks.get(zone.value)
    if rank is None:
        return (1, 0, country.country_id)
    return (0, int(rank), country.country_id)


class BoundarySet:
    """Immutable collection of country boundaries plus known waters.

    The per-zone candidate order is computed once here: ranked countries
    first (ascending rank), then unranked ones, ties broken by country id.
    Every country appears in every zone's order, so a bad rank only costs
    time, never correctness.
    """

    def __init__(
        self,
        countries: Iterable[CountryBoundary] = (),
        waters: Iterable[WaterArea] = (),
        *,
        epoch: int = 0,
        generation_id: int | None = None,
        water_radius: float | None = None,
    ) -> None:
        self.epoch = epoch
        self.generation_id = generation_id
        self.water_radius = (
            settings.known_water_point_radius_degrees if water_radius is None else water_radius
        )
        self.countries: Mapping[int, CountryBoundary] = MappingProxyType(
            {country.country_id: country for country in countries}
        )
        self.waters: tuple[WaterArea, ...] = tuple(waters)
        ordered = {
            zone: tuple(
                country.country_id
                for country in sorted(self.countries.values(), key=lambda c, z=zone: _rank_key(c, z))
            )
            for zone in Zone
        }
        self.zone_order: Mapping[Zone, tuple[int, ...]] = MappingProxyType(ordered)

    def __len__(self) -> int:
        return len(self.countries)

    def get(self, country_id: int | None) -> CountryBoundary | None:
        if country_id is None:
            return None
        return self.countries.get(country_id)

    def candidates(self, zone: Zone) -> tuple[int, ...]:
        return self.zone_order[zone]

    def in_known_water(self, lon: float, lat: float) -> bool:
        return any(water.matches(lon, lat, self.water_radius) for water in self.waters)


def get_generation(db: Session, role: str) -> BoundaryGeneration | None:
    """Return the generation currently holding ``role``."""
    return db.execute(
        select(BoundaryGeneration)
        .where(BoundaryGeneration.role == role)
        .order_by(BoundaryGeneration.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def load_countries(db: Session, generation_id: int) -> list[CountryBoundary]:
    rows = db.execute(
        select(Country)
        .where(Country.generation_id == generation_id)
        .order_by(Country.country_id)
    ).scalars()
    return [
        CountryBoundary.build(
            row.country_id,
            row.name,
            from_wkb(row.geom),
            zone_ranks=row.zone_ranks,
            is_maritime=row.is_maritime,
        )
        for row in rows
    ]


def load_waters(db: Session) -> list[WaterArea]:
    waters: list[WaterArea] = []
    for row in db.execute(select(KnownWaterArea).order_by(KnownWaterArea.id)).scalars():
        if row.is_special_point and row.point_lon is not None and row.point_lat is not None:
            waters.append(WaterArea(row.name, point=(row.point_lon, row.point_lat)))
        elif row.geom is not None:
            geometry = from_wkb(row.geom)
            waters.append(WaterArea(row.name, geometry=geometry, prepared=prep(geometry)))
    return waters


def load_boundary_set(db: Session, role: str = ROLE_ACTIVE) -> BoundarySet:
    """Build a snapshot of the generation holding ``role`` from the database."""
    generation = get_generation(db, role)
    if generation is None:
        return BoundarySet(waters=load_waters(db))
    return BoundarySet(
        load_countries(db, generation.id),
        load_waters(db),
        epoch=generation.epoch,
        generation_id=generation.id,
    )


def bump_water_version(db: Session) -> int:
    """Record that the known water rows changed; readers reload on their next check."""
    counter = db.execute(
        select(IdSequence).where(IdSequence.name == WATER_VERSION_COUNTER).with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        counter = IdSequence(name=WATER_VERSION_COUNTER, last_value=0)
        db.add(counter)
    counter.last_value += 1
    db.flush()
    return counter.last_value


def _water_signature(db: Session) -> tuple[int, int, int]:
    count, max_id = db.execute(
        select(func.count(KnownWaterArea.id), func.max(KnownWaterArea.id))
    ).one()
    version = db.scalar(
        select(IdSequence.last_value).where(IdSequence.name == WATER_VERSION_COUNTER)
    )
    return int(count or 0), int(max_id or 0), int(version or 0)


class BoundaryStore:
    """Holder of the current :class:`BoundarySet` reference."""

    def __init__(self, initial: BoundarySet | None = None) -> None:
        self._lock = threading.Lock()
        self._current = initial or BoundarySet()
        self._water_signature: tuple[int, int, int] | None = None

    @property
    def current(self) -> BoundarySet:
        return self._current

    def publish(self, boundary_set: BoundarySet) -> None:
        with self._lock:
            self._current = boundary_set
        logger.info(
            "Published boundary set epoch=%s countries=%s waters=%s",
            boundary_set.epoch,
            len(boundary_set),
            len(boundary_set.waters),
        )

    def load(self, db: Session) -> BoundarySet:
        """Rebuild from the database and publish unconditionally."""
        boundary_set = load_boundary_set(db)
        signature = _water_signature(db)
        with self._lock:
            self._current = boundary_set
            self._water_signature = signature
        logger.info(
            "Loaded boundary set epoch=%s countries=%s waters=%s",
            boundary_set.epoch,
            len(boundary_set),
            len(boundary_set.waters),
        )
        return boundary_set

    def ensure_current(self, db: Session) -> BoundarySet:
        """Reload when the active epoch or the water areas changed in the database."""
        active = get_generation(db, ROLE_ACTIVE)
        epoch = active.epoch if active is not None else 0
        current = self._current
        if epoch == current.epoch and _water_signature(db) == self._water_signature:
            return current
        return self.load(db)


_STORE: BoundaryStore | None = None
_STORE_LOCK = threading.Lock()


def get_boundary_store() -> BoundaryStore:
    """Return the process-wide boundary store."""
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = BoundaryStore()
        return _STORE


def reset_boundary_store() -> None:
    """Forget the process-wide store; the next access starts empty."""
    global _STORE
    with _STORE_LOCK:
        _STORE = None
