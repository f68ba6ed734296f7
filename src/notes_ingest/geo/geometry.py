"""Geometry helpers: WKB storage, repair and geodesic measurements."""

from __future__ import annotations

from typing import Any

import shapely
from pyproj import Geod
from shapely import wkb
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

_GEOD = Geod(ellps="WGS84")


class InvalidBoundaryGeometry(ValueError):
    """Raised when a boundary geometry has no polygonal content."""


def to_wkb(geom: BaseGeometry) -> bytes:
    return wkb.dumps(geom)


def from_wkb(data: bytes) -> BaseGeometry:
    return wkb.loads(bytes(data))


def polygonal(geom: BaseGeometry) -> Polygon | MultiPolygon:
    """Return the polygonal part of a geometry, dropping points and lines."""
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    parts = [part for part in getattr(geom, "geoms", []) if isinstance(part, (Polygon, MultiPolygon))]
    if not parts:
        raise InvalidBoundaryGeometry(f"no polygonal content in {geom.geom_type}")
    merged = unary_union(parts)
    if not isinstance(merged, (Polygon, MultiPolygon)):
        raise InvalidBoundaryGeometry(f"no polygonal content in {geom.geom_type}")
    return merged


def load_boundary_geometry(geojson_geometry: dict[str, Any]) -> Polygon | MultiPolygon:
    """Build a valid polygonal geometry from a GeoJSON geometry mapping."""
    geom = shape(geojson_geometry)
    if geom.is_empty:
        raise InvalidBoundaryGeometry("empty geometry")
    if not geom.is_valid:
        geom = make_valid(geom)
    return polygonal(geom)


def geodesic_area_perimeter(geom: BaseGeometry) -> tuple[float, float]:
    """Return (area m², perimeter m) on the WGS84 ellipsoid."""
    if geom.is_empty:
        return 0.0, 0.0
    area, perimeter = _GEOD.geometry_area_perimeter(geom)
    return abs(area), perimeter


def geodesic_area_km2(geom: BaseGeometry) -> float:
    return geodesic_area_perimeter(geom)[0] / 1_000_000.0


def vertex_count(geom: BaseGeometry) -> int:
    return int(shapely.get_num_coordinates(geom))
