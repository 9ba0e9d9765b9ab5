"""
Planar geometry helpers on top of Shapely 2.x.

Coordinates are treated as a local plane: x = longitude, y = latitude.
Everything that touches GEOS directly lives here so that GEOS failures are
translated into the eastwest error taxonomy at a single seam.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.errors import GEOSException
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

from .errors import InvalidPolygon, PointTestFailure

LngLat = Tuple[float, float]
Ring = List[LngLat]


def close_ring(coords: Iterable[Sequence[float]]) -> Ring:
    """Return coords as (lng, lat) tuples with the first point repeated at the end."""
    ring = [(float(c[0]), float(c[1])) for c in coords]
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def ring_to_polygon(coords: Iterable[Sequence[float]]) -> Polygon:
    """
    Build a validated simple polygon from a single (lng, lat) ring.

    Raises:
        InvalidPolygon: if the ring is too short, non-finite,
            self-intersecting or has zero area
    """
    try:
        ring = close_ring(coords)
    except (TypeError, ValueError, IndexError) as exc:
        raise InvalidPolygon(f"unreadable ring: {exc}") from exc

    if len(set(ring)) < 3:
        raise InvalidPolygon(f"ring needs at least 3 distinct points, got {len(set(ring))}")
    if not all(math.isfinite(x) and math.isfinite(y) for x, y in ring):
        raise InvalidPolygon("ring contains non-finite coordinates")

    try:
        poly = Polygon(ring)
        valid = poly.is_valid
    except (GEOSException, ValueError) as exc:
        raise InvalidPolygon(str(exc)) from exc

    if not valid:
        raise InvalidPolygon(shapely.is_valid_reason(poly))
    if poly.area <= 0.0:
        raise InvalidPolygon("ring has zero area")
    return poly


def exterior_ring(poly: Polygon) -> Ring:
    """Closed (lng, lat) exterior ring of a polygon, holes dropped."""
    return [(float(x), float(y)) for x, y in poly.exterior.coords]


def polygon_parts(geom: Optional[BaseGeometry]) -> List[Polygon]:
    """Non-empty polygon parts of any geometry (collections are flattened)."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    parts: List[Polygon] = []
    for sub in getattr(geom, "geoms", []):
        parts.extend(polygon_parts(sub))
    return parts


def largest_polygon(geom: Optional[BaseGeometry]) -> Optional[Polygon]:
    parts = polygon_parts(geom)
    if not parts:
        return None
    return max(parts, key=lambda p: p.area)


def make_valid_polygon(geom: BaseGeometry) -> Optional[Polygon]:
    """Repair a polygonal geometry and keep its largest polygon part."""
    if geom.is_valid:
        return largest_polygon(geom)
    return largest_polygon(shapely.make_valid(geom))


def bbox_diagonal(geom: BaseGeometry) -> float:
    minx, miny, maxx, maxy = geom.bounds
    return math.hypot(maxx - minx, maxy - miny)


def safe_intersection(a: BaseGeometry, b: BaseGeometry) -> Optional[BaseGeometry]:
    """Intersection of two geometries, or None if GEOS refuses."""
    try:
        return a.intersection(b)
    except GEOSException:
        return None


def point_in_polygon(poly: Polygon, x: float, y: float) -> bool:
    """
    Boundary-inclusive point-in-polygon for a single point.

    Raises:
        PointTestFailure: if the coordinates are not finite or GEOS fails
    """
    if not (math.isfinite(x) and math.isfinite(y)):
        raise PointTestFailure(f"non-finite point ({x}, {y})")
    try:
        return bool(shapely.intersects_xy(poly, x, y))
    except GEOSException as exc:
        raise PointTestFailure(str(exc)) from exc


def points_in_polygon(poly: Polygon, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised boundary-inclusive point-in-polygon.

    Points on the polygon edge count as inside.

    Returns:
        (hits, failed) boolean arrays. A failed point is neither a hit nor
        a miss and must be left uncounted by the caller.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    failed = ~(np.isfinite(xs) & np.isfinite(ys))
    hits = np.zeros(xs.shape, dtype=bool)
    ok = ~failed
    if not ok.any():
        return hits, failed

    try:
        hits[ok] = shapely.intersects_xy(poly, xs[ok], ys[ok])
        return hits, failed
    except GEOSException:
        pass

    # Vectorised test blew up; fall back to one point at a time so a single
    # bad point only costs itself.
    for i in np.flatnonzero(ok):
        try:
            hits[i] = point_in_polygon(poly, float(xs[i]), float(ys[i]))
        except PointTestFailure:
            failed[i] = True
    return hits, failed
