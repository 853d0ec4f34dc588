"""Great-circle helpers and WKT builders for tracks."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

from shapely import wkt as shapely_wkt
from shapely.geometry import LineString, MultiPolygon, Point, Polygon

from .models import Fix, LatLng

EARTH_RADIUS_M = 6_371_000.0
SRID = 4326


def haversine_m(first: LatLng, second: LatLng) -> float:
    """Great-circle distance in metres between two (lat, lng) pairs."""

    lat1, lon1 = first
    lat2, lon2 = second
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = math.radians(lon2 - lon1)
    sin_half_lat = math.sin(delta_lat / 2.0)
    sin_half_lon = math.sin(delta_lon / 2.0)
    a = sin_half_lat**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * sin_half_lon**2
    # Clamp against float drift for (near) antipodal points.
    return 2.0 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


def path_length_m(points: Sequence[LatLng]) -> float:
    if len(points) < 2:
        return 0.0
    total = 0.0
    previous = points[0]
    for current in points[1:]:
        total += haversine_m(previous, current)
        previous = current
    return total


def best_estimate(fixes: Iterable[Fix]) -> List[LatLng]:
    return [fix.best for fix in fixes]


def distinct_point_count(points: Iterable[LatLng]) -> int:
    return len(set(points))


def _dedupe_consecutive(points: Sequence[LatLng]) -> List[LatLng]:
    cleaned: List[LatLng] = []
    for point in points:
        if not cleaned or cleaned[-1] != point:
            cleaned.append(point)
    return cleaned


def polygon_wkt(points: Sequence[LatLng]) -> Optional[str]:
    """Return a closed MULTIPOLYGON WKT (lng lat order) or None below 3 distinct points."""

    if distinct_point_count(points) < 3:
        return None
    ring = _dedupe_consecutive(points)
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring = ring[:-1]
    polygon = Polygon([(lng, lat) for lat, lng in ring])
    return shapely_wkt.dumps(MultiPolygon([polygon]), trim=True)


def linestring_wkt(points: Sequence[LatLng]) -> Optional[str]:
    if len(points) < 2:
        return None
    return shapely_wkt.dumps(LineString([(lng, lat) for lat, lng in points]), trim=True)


def point_wkt(point: LatLng) -> str:
    lat, lng = point
    return shapely_wkt.dumps(Point(lng, lat), trim=True)


def to_ewkt(wkt_text: str, srid: int = SRID) -> str:
    """Prefix a WKT string with its SRID for PostGIS-backed storage."""

    return f"SRID={srid};{wkt_text}"


__all__ = [
    "EARTH_RADIUS_M",
    "haversine_m",
    "path_length_m",
    "best_estimate",
    "distinct_point_count",
    "polygon_wkt",
    "linestring_wkt",
    "point_wkt",
    "to_ewkt",
]
