"""
Region membership oracle - answers "is this point inside region R" for GeoJSON geofences.

Registered on every store connection as the SQL function
region_contains(geometry, lon, lat) so region filters stay in SQL.
"""

import json
from functools import lru_cache
from typing import List, Sequence, Tuple

Ring = List[Tuple[float, float]]
Polygon = List[Ring]


class RegionError(Exception):
    """Geofence geometry is missing or not a usable GeoJSON polygon."""
    pass


def _parse_ring(raw) -> Ring:
    ring = [(float(point[0]), float(point[1])) for point in raw]
    if len(ring) < 3:
        raise RegionError("Polygon ring needs at least three positions")
    return ring


def parse_geometry(geometry: str) -> List[Polygon]:
    """Parse a GeoJSON Polygon/MultiPolygon (optionally wrapped in a Feature) into polygons."""
    try:
        data = json.loads(geometry)
    except (TypeError, ValueError) as e:
        raise RegionError(f"Geofence geometry is not valid JSON: {e}")

    if isinstance(data, dict) and data.get("type") == "Feature":
        data = data.get("geometry")

    if not isinstance(data, dict):
        raise RegionError("Geofence geometry must be a GeoJSON object")

    geometry_type = data.get("type")
    coordinates = data.get("coordinates")

    try:
        if geometry_type == "Polygon":
            return [[_parse_ring(ring) for ring in coordinates]]
        if geometry_type == "MultiPolygon":
            return [[_parse_ring(ring) for ring in polygon] for polygon in coordinates]
    except (TypeError, IndexError, ValueError) as e:
        raise RegionError(f"Malformed {geometry_type} coordinates: {e}")

    raise RegionError(f"Unsupported geofence geometry type: {geometry_type}")


def point_in_ring(lon: float, lat: float, ring: Sequence[Tuple[float, float]]) -> bool:
    """Ray casting test; positions are (lon, lat) as in GeoJSON."""
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(lon: float, lat: float, polygon: Polygon) -> bool:
    """First ring is the exterior, any further rings are holes."""
    if not point_in_ring(lon, lat, polygon[0]):
        return False
    return not any(point_in_ring(lon, lat, hole) for hole in polygon[1:])


class RegionOracle:
    """Point-in-region checks with parsed geometries memoised per geometry string."""

    def __init__(self, cache_size: int = 32):
        self._parse = lru_cache(maxsize=cache_size)(parse_geometry)

    def contains(self, geometry: str, lon: float, lat: float) -> bool:
        if geometry is None:
            raise RegionError("Geofence not found")
        if lon is None or lat is None:
            return False
        polygons = self._parse(geometry)
        return any(point_in_polygon(float(lon), float(lat), polygon) for polygon in polygons)

    def sql_function(self, geometry, lon, lat) -> int:
        """Adapter for sqlite3 create_function; SQLite has no boolean type."""
        return 1 if self.contains(geometry, lon, lat) else 0
