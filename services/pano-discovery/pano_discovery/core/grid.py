"""
Grid Generator - Produces candidate sample points covering a polygon.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from pano_discovery.core.geometry import GridPoint, Vertex, bounding_box, meters_per_degree, point_in_polygon

logger = logging.getLogger(__name__)


@dataclass
class GridPlan:
    """Grid points inside a polygon plus how the generation ended."""
    points: List[GridPoint] = field(default_factory=list)
    candidates_tested: int = 0
    cap_reached: bool = False


def generate_grid(polygon: Sequence[Vertex], spacing_meters: float, max_points: int) -> GridPlan:
    """
    Generate grid points at a fixed physical spacing inside the polygon.

    Rows start half a step in from the south-west corner of the bounding box.
    Generation stops as soon as ``max_points`` points are accepted, so a capped
    grid covers only the southern part of a large polygon.

    Args:
        polygon: Ordered (lon, lat) vertices
        spacing_meters: Distance between neighbouring points
        max_points: Hard cap on accepted points

    Returns:
        GridPlan with the accepted points in row-major order
    """
    bounds = bounding_box(polygon)
    meters_per_deg_lat, meters_per_deg_lon = meters_per_degree(bounds.center_lat)
    step_lat = spacing_meters / meters_per_deg_lat
    step_lon = spacing_meters / meters_per_deg_lon

    logger.info(f"Generating grid with {spacing_meters}m spacing, steps lon={step_lon:.6f} lat={step_lat:.6f}")

    plan = GridPlan()
    if max_points <= 0:
        plan.cap_reached = True
        return plan

    row = 0
    lat = bounds.south + step_lat / 2
    while lat <= bounds.north:
        col = 0
        lon = bounds.west + step_lon / 2
        while lon <= bounds.east:
            plan.candidates_tested += 1
            if point_in_polygon((lon, lat), polygon):
                plan.points.append(GridPoint(lon=lon, lat=lat))
                if len(plan.points) >= max_points:
                    plan.cap_reached = True
                    logger.warning(f"Grid capped at {max_points} points, polygon coverage is partial")
                    return plan
            col += 1
            lon = bounds.west + step_lon / 2 + col * step_lon
        row += 1
        lat = bounds.south + step_lat / 2 + row * step_lat

    logger.info(f"Grid generation complete: {plan.candidates_tested} candidates tested, {len(plan.points)} inside polygon")
    return plan
