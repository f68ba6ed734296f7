"""Geographic zones used to order country candidates.

The world is cut into 24 named rectangles (plus four wide longitude bands used
as fallbacks). Classification is first-match in the order below, so the
overlapping rectangles resolve deterministically.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


class Zone(str, Enum):
    """Named search zone."""

    ARCTIC = "arctic"
    ANTARCTIC = "antarctic"
    US_CANADA = "us_canada"
    MEXICO_CENTRAL_AMERICA = "mexico_central_america"
    CARIBBEAN = "caribbean"
    NORTHERN_SOUTH_AMERICA = "northern_south_america"
    SOUTHERN_SOUTH_AMERICA = "southern_south_america"
    WESTERN_EUROPE = "western_europe"
    EASTERN_EUROPE = "eastern_europe"
    NORTHERN_EUROPE = "northern_europe"
    SOUTHERN_EUROPE = "southern_europe"
    NORTHERN_AFRICA = "northern_africa"
    WESTERN_AFRICA = "western_africa"
    EASTERN_AFRICA = "eastern_africa"
    SOUTHERN_AFRICA = "southern_africa"
    MIDDLE_EAST = "middle_east"
    RUSSIA_NORTH = "russia_north"
    RUSSIA_SOUTH = "russia_south"
    CENTRAL_ASIA = "central_asia"
    INDIA_SOUTH_ASIA = "india_south_asia"
    SOUTHEAST_ASIA = "southeast_asia"
    EASTERN_ASIA = "eastern_asia"
    AUSTRALIA_NZ = "australia_nz"
    PACIFIC_ISLANDS = "pacific_islands"
    # Longitude-band fallbacks
    AMERICAS = "americas"
    EUROPE = "europe"
    RUSSIA_MIDDLE_EAST = "russia_middle_east"
    ASIA_OCEANIA = "asia_oceania"


FALLBACK_ZONES: tuple[Zone, ...] = (
    Zone.AMERICAS,
    Zone.EUROPE,
    Zone.RUSSIA_MIDDLE_EAST,
    Zone.ASIA_OCEANIA,
)


@dataclass(frozen=True)
class ZoneBox:
    """Half-open rectangle; the max edges are inclusive only when flagged."""

    zone: Zone
    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float
    lon_max_inclusive: bool = False
    lat_max_inclusive: bool = False

    def contains(self, lon: float, lat: float) -> bool:
        if lon < self.min_lon or lat < self.min_lat:
            return False
        lon_ok = lon <= self.max_lon if self.lon_max_inclusive else lon < self.max_lon
        lat_ok = lat <= self.max_lat if self.lat_max_inclusive else lat < self.max_lat
        return lon_ok and lat_ok

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


# Checked in order after the polar caps; first match wins.
ZONE_BOXES: tuple[ZoneBox, ...] = (
    ZoneBox(Zone.US_CANADA, -150, -60, 30, 75, lat_max_inclusive=True),
    ZoneBox(Zone.MEXICO_CENTRAL_AMERICA, -120, -75, 5, 35),
    ZoneBox(Zone.CARIBBEAN, -90, -60, 10, 30),
    ZoneBox(Zone.NORTHERN_SOUTH_AMERICA, -80, -35, -15, 15, lat_max_inclusive=True),
    ZoneBox(Zone.SOUTHERN_SOUTH_AMERICA, -75, -35, -56, -15),
    ZoneBox(Zone.WESTERN_EUROPE, -10, 15, 35, 60),
    ZoneBox(Zone.EASTERN_EUROPE, 15, 45, 35, 60),
    ZoneBox(Zone.NORTHERN_EUROPE, -10, 35, 55, 75, lat_max_inclusive=True),
    ZoneBox(Zone.SOUTHERN_EUROPE, -10, 30, 30, 50),
    ZoneBox(Zone.NORTHERN_AFRICA, -20, 50, 15, 40),
    ZoneBox(Zone.WESTERN_AFRICA, -20, 20, -10, 20),
    ZoneBox(Zone.EASTERN_AFRICA, 20, 55, -15, 20),
    ZoneBox(Zone.SOUTHERN_AFRICA, 10, 50, -36, -15),
    ZoneBox(Zone.MIDDLE_EAST, 25, 65, 10, 45),
    ZoneBox(
        Zone.RUSSIA_NORTH, 25, 180, 55, 80, lon_max_inclusive=True, lat_max_inclusive=True
    ),
    ZoneBox(Zone.RUSSIA_SOUTH, 30, 150, 40, 60),
    ZoneBox(Zone.CENTRAL_ASIA, 45, 90, 30, 55),
    ZoneBox(Zone.INDIA_SOUTH_ASIA, 60, 95, 5, 40),
    ZoneBox(Zone.SOUTHEAST_ASIA, 95, 140, -12, 25),
    ZoneBox(Zone.EASTERN_ASIA, 100, 145, 20, 55),
    ZoneBox(Zone.AUSTRALIA_NZ, 110, 180, -50, -10, lon_max_inclusive=True),
)

# Rectangles (min_lon, min_lat, max_lon, max_lat) covered by each zone, used
# to derive default ranks from a country's bounding box.
ZONE_EXTENTS: dict[Zone, tuple[tuple[float, float, float, float], ...]] = {
    Zone.ARCTIC: ((-180, 70, 180, 90),),
    Zone.ANTARCTIC: ((-180, -90, 180, -60),),
    Zone.PACIFIC_ISLANDS: ((130, -30, 180, 30), (-180, -30, -120, 30)),
    Zone.AMERICAS: ((-180, -90, -30, 90),),
    Zone.EUROPE: ((-30, -90, 25, 90),),
    Zone.RUSSIA_MIDDLE_EAST: ((25, -90, 65, 90),),
    Zone.ASIA_OCEANIA: ((65, -90, 180, 90),),
    **{box.zone: (box.bounds,) for box in ZONE_BOXES},
}

# Null Island neighbourhood: placeholder coordinates cluster here and the
# nearby coast belongs to West African countries.
_NULL_ISLAND = ZoneBox(Zone.WESTERN_AFRICA, -4, 4, -5, 4.53)


def classify(lon: float, lat: float) -> Zone:
    """Return the zone a coordinate falls into."""
    if _NULL_ISLAND.min_lat < lat < _NULL_ISLAND.max_lat and (
        _NULL_ISLAND.min_lon < lon < _NULL_ISLAND.max_lon
    ):
        return Zone.WESTERN_AFRICA
    if lat > 70:
        return Zone.ARCTIC
    if lat < -60:
        return Zone.ANTARCTIC
    for box in ZONE_BOXES:
        if box.contains(lon, lat):
            return box.zone
    if (lon >= 130 or lon < -120) and -30 <= lat < 30:
        return Zone.PACIFIC_ISLANDS
    if lon < -30:
        return Zone.AMERICAS
    if lon < 25:
        return Zone.EUROPE
    if lon < 65:
        return Zone.RUSSIA_MIDDLE_EAST
    return Zone.ASIA_OCEANIA


def _overlap_area(
    a: tuple[float, float, float, float],
    b: tuple[float, float, float, float],
) -> float:
    width = min(a[2], b[2]) - max(a[0], b[0])
    height = min(a[3], b[3]) - max(a[1], b[1])
    if width < 0 or height < 0:
        return 0.0
    # Degenerate boxes (points, lines) still count as touching the zone.
    return max(width, 1e-9) * max(height, 1e-9)


def default_zone_ranks(
    bounds_by_country: Mapping[int, tuple[float, float, float, float]],
) -> dict[int, dict[str, int]]:
    """Rank countries within each zone by how much of the zone their bbox covers.

    In every zone the country with the largest overlap gets rank 1, ties go
    to the lower country id. A country gets no rank in zones it does not
    touch. Returns the ranks keyed by country id, then zone.
    """
    ranks: dict[int, dict[str, int]] = {country_id: {} for country_id in bounds_by_country}
    for zone, extents in ZONE_EXTENTS.items():
        overlaps: list[tuple[float, int]] = []
        for country_id, bounds in bounds_by_country.items():
            area = sum(_overlap_area(bounds, extent) for extent in extents)
            if area > 0:
                overlaps.append((area, country_id))
        overlaps.sort(key=lambda item: (-item[0], item[1]))
        for rank, (_, country_id) in enumerate(overlaps, start=1):
            ranks[country_id][zone.value] = rank
    return ranks
