"""
Geometry utilities for polygon searches.

Polygons are ordered sequences of (lon, lat) vertices, closed implicitly.
The degree/meter conversion is a local flat-earth approximation and is not
valid near the poles.
"""
import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

from pano_discovery.config import METERS_PER_DEGREE
from pano_discovery.errors import InvalidPolygon

logger = logging.getLogger(__name__)

Vertex = Tuple[float, float]


@dataclass(frozen=True)
class GridPoint:
    lon: float
    lat: float


@dataclass(frozen=True)
class BoundingBox:
    west: float
    south: float
    east: float
    north: float

    @property
    def center_lat(self) -> float:
        return (self.south + self.north) / 2


def validate_polygon(polygon: Sequence[Sequence[float]]) -> Tuple[Vertex, ...]:
    """
    Check a polygon and return it as an immutable tuple of (lon, lat) vertices.

    Raises:
        InvalidPolygon: fewer than 3 vertices or a vertex that is not a valid (lon, lat) pair
    """
    if polygon is None or len(polygon) < 3:
        raise InvalidPolygon(f"Polygon needs at least 3 vertices, got {0 if polygon is None else len(polygon)}")

    vertices = []
    for vertex in polygon:
        try:
            lon, lat = (float(value) for value in vertex)
        except (TypeError, ValueError) as e:
            raise InvalidPolygon(f"Vertex {vertex!r} is not a (lon, lat) pair") from e
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise InvalidPolygon(f"Vertex {vertex!r} has non-finite coordinates")
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            raise InvalidPolygon(f"Vertex {vertex!r} is outside the WGS84 range")
        vertices.append((lon, lat))
    return tuple(vertices)


def point_in_polygon(point: Vertex, polygon: Sequence[Vertex]) -> bool:
    """
    Ray-casting test. A point exactly on an edge may land on either side.
    """
    x, y = point
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def meters_per_degree(center_lat: float) -> Tuple[float, float]:
    """Return (meters per degree latitude, meters per degree longitude) at center_lat."""
    meters_per_deg_lat = METERS_PER_DEGREE
    meters_per_deg_lon = METERS_PER_DEGREE * math.cos(math.radians(center_lat))
    return meters_per_deg_lat, meters_per_deg_lon


def bounding_box(polygon: Sequence[Vertex]) -> BoundingBox:
    lons = [vertex[0] for vertex in polygon]
    lats = [vertex[1] for vertex in polygon]
    return BoundingBox(west=min(lons), south=min(lats), east=max(lons), north=max(lats))
