"""
Line Splitter

Turns a freehand stroke into two polygons that partition the boundary.

Algorithm:
1. Direction vector from the stroke's first to last point.
2. Probe a point just right of the midpoint (90° clockwise rotation of the
   direction). If its longitude is greater than the midpoint's, the right
   side is east. On an exact tie the side whose probe sits at the higher
   latitude is east.
3. For each side, build a half-plane mask: the stroke extended far past
   both ends along the direction vector, closed by two far corners on that
   side. The reach is MASK_EXTENT_FACTOR x the boundary bbox diagonal.
4. Intersect each mask with the boundary.

Strokes given as (lat, lng); geometry runs in (x=lng, y=lat).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon

from . import config
from .errors import NoValidSplit
from .geometry_utils import (
    Ring,
    bbox_diagonal,
    exterior_ring,
    largest_polygon,
    polygon_parts,
    ring_to_polygon,
    safe_intersection,
)

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]


@dataclass(frozen=True)
class SplitResult:
    """East and west halves of a boundary, each a single simple polygon."""

    east: Polygon
    west: Polygon

    @property
    def east_ring(self) -> Ring:
        return exterior_ring(self.east)

    @property
    def west_ring(self) -> Ring:
        return exterior_ring(self.west)

    def to_rings(self) -> Dict[str, Ring]:
        return {config.SIDE_EAST: self.east_ring, config.SIDE_WEST: self.west_ring}

    @classmethod
    def from_rings(cls, east: Sequence[Sequence[float]], west: Sequence[Sequence[float]]) -> "SplitResult":
        """Rebuild from stored (lng, lat) rings. Raises InvalidPolygon on bad rings."""
        return cls(east=ring_to_polygon(east), west=ring_to_polygon(west))


def _stroke_xy(stroke: Sequence[Sequence[float]]) -> List[Tuple[float, float]]:
    try:
        pts = [(float(p[1]), float(p[0])) for p in stroke]
    except (TypeError, ValueError, IndexError) as exc:
        raise NoValidSplit(f"unreadable stroke point: {exc}") from exc
    if not all(math.isfinite(x) and math.isfinite(y) for x, y in pts):
        raise NoValidSplit("stroke contains non-finite coordinates")
    return pts


def right_side_is_east(first: Tuple[float, float], last: Tuple[float, float], ux: float, uy: float) -> bool:
    """
    Decide whether the right-hand side of the stroke direction is east.

    (ux, uy) is the unit direction in (lng, lat).
    """
    mid_x = (first[0] + last[0]) / 2.0
    mid_y = (first[1] + last[1]) / 2.0
    probe_x = mid_x + uy * config.PROBE_EPSILON
    probe_y = mid_y - ux * config.PROBE_EPSILON
    if probe_x != mid_x:
        return probe_x > mid_x
    return probe_y > mid_y


def _half_plane_mask(
    pts: List[Tuple[float, float]],
    ux: float,
    uy: float,
    side: float,
    extent: float,
) -> Polygon:
    """Mask covering everything on one side of the extended stroke (side=+1 right, -1 left)."""
    (x0, y0), (x1, y1) = pts[0], pts[-1]
    start = (x0 - ux * extent, y0 - uy * extent)
    end = (x1 + ux * extent, y1 + uy * extent)
    # Right perpendicular of (ux, uy) is (uy, -ux)
    px, py = uy * side * extent, -ux * side * extent
    ring = [start, *pts, end, (end[0] + px, end[1] + py), (start[0] + px, start[1] + py)]
    return Polygon(ring)


def _reduce_side(geom, name: str) -> Polygon:
    parts = polygon_parts(geom)
    if not parts:
        raise NoValidSplit(f"{name} side is empty")
    if len(parts) > 1:
        # Stroke re-enters the boundary. Only one polygon per side is stored.
        logger.warning(f"{name} side split into {len(parts)} parts; keeping the largest")
    return Polygon(largest_polygon(geom).exterior.coords)


def split_boundary(boundary: Polygon, stroke: Sequence[Sequence[float]]) -> SplitResult:
    """
    Split the boundary into east and west polygons along a stroke.

    Args:
        boundary: reference polygon in (lng, lat)
        stroke: ordered (lat, lng) points, at least two

    Returns:
        SplitResult with the east and west polygons

    Raises:
        NoValidSplit: if the stroke does not cleanly bisect the boundary
    """
    if stroke is None or len(stroke) < 2:
        raise NoValidSplit(f"stroke needs at least 2 points, got {0 if stroke is None else len(stroke)}")

    pts = _stroke_xy(stroke)
    (x0, y0), (x1, y1) = pts[0], pts[-1]
    length = math.hypot(x1 - x0, y1 - y0)
    if length == 0.0:
        raise NoValidSplit("stroke starts and ends at the same point")
    ux, uy = (x1 - x0) / length, (y1 - y0) / length

    try:
        if not LineString(pts).intersects(boundary):
            raise NoValidSplit("stroke does not cross the boundary")
    except GEOSException as exc:
        raise NoValidSplit(f"stroke is malformed: {exc}") from exc

    extent = config.MASK_EXTENT_FACTOR * bbox_diagonal(boundary)
    east_sign = 1.0 if right_side_is_east(pts[0], pts[-1], ux, uy) else -1.0

    east_mask = _half_plane_mask(pts, ux, uy, east_sign, extent)
    west_mask = _half_plane_mask(pts, ux, uy, -east_sign, extent)
    if not (east_mask.is_valid and west_mask.is_valid):
        raise NoValidSplit("stroke self-intersects")

    east_geom = safe_intersection(boundary, east_mask)
    west_geom = safe_intersection(boundary, west_mask)
    if east_geom is None or west_geom is None:
        raise NoValidSplit("polygon intersection failed")

    east = _reduce_side(east_geom, config.SIDE_EAST)
    west = _reduce_side(west_geom, config.SIDE_WEST)

    min_area = config.MIN_PART_AREA_RATIO * boundary.area
    if east.area <= min_area or west.area <= min_area:
        raise NoValidSplit("stroke leaves one side degenerate")
    if not (east.is_valid and west.is_valid):
        raise NoValidSplit("split produced an invalid polygon")

    total = east.area + west.area
    if abs(total - boundary.area) > config.AREA_REL_TOLERANCE * boundary.area:
        logger.warning(
            f"Split covers {total / boundary.area:.4f} of the boundary area "
            f"(dropped parts or holes)"
        )

    logger.debug(f"Split ok: east={east.area:.6g} west={west.area:.6g}")
    return SplitResult(east=east, west=west)


def thin_stroke(stroke: Sequence[Sequence[float]], tolerance: float = config.STROKE_THIN_TOLERANCE) -> List[LatLng]:
    """
    Douglas-Peucker thinning of a (lat, lng) stroke. Endpoints are kept.

    Raw pointer strokes carry hundreds of near-collinear points; the stored
    form does not need them.
    """
    pts = [(float(p[0]), float(p[1])) for p in stroke]
    if len(pts) < 3 or tolerance <= 0:
        return pts
    line = LineString([(lng, lat) for lat, lng in pts])
    thinned = line.simplify(tolerance, preserve_topology=False)
    if thinned.is_empty or len(thinned.coords) < 2:
        return [pts[0], pts[-1]]
    return [(lat, lng) for lng, lat in thinned.coords]
