"""
Loading the reference boundary.

The boundary is a single polygon in (lng, lat). Sources may be a GeoJSON
file (anything geopandas can read), an http(s) URL serving GeoJSON, or an
already-parsed GeoJSON mapping. Multi-feature sources are dissolved into
one polygon; if that leaves several disjoint parts, the largest is kept.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Union

import geopandas as gpd
import requests
from shapely.errors import GEOSException
from shapely.geometry import Polygon, shape
from shapely.ops import unary_union

from .errors import BoundaryLoadError
from .geometry_utils import make_valid_polygon, polygon_parts

logger = logging.getLogger(__name__)

BOUNDARY_TIMEOUT = float(os.environ.get("EW_BOUNDARY_TIMEOUT", "15"))

BoundarySource = Union[str, os.PathLike, Mapping[str, Any]]


def _geometries_from_geojson(data: Mapping[str, Any]) -> list:
    kind = data.get("type")
    if kind == "FeatureCollection":
        return [shape(f["geometry"]) for f in data.get("features", []) if f.get("geometry")]
    if kind == "Feature":
        return [shape(data["geometry"])] if data.get("geometry") else []
    return [shape(data)]


def _to_single_polygon(geoms: list, source: str) -> Polygon:
    if not geoms:
        raise BoundaryLoadError(f"No geometry found in boundary source {source}")

    merged = unary_union(geoms)
    parts = polygon_parts(merged)
    if len(parts) > 1:
        logger.warning(f"Boundary {source} has {len(parts)} disjoint parts; keeping the largest")

    poly = make_valid_polygon(merged)
    if poly is None or poly.is_empty or poly.area <= 0:
        raise BoundaryLoadError(f"Boundary {source} has no polygonal area")
    return poly


def boundary_from_geojson(data: Mapping[str, Any], source: str = "<mapping>") -> Polygon:
    """Build the boundary polygon from a parsed GeoJSON object."""
    try:
        geoms = _geometries_from_geojson(data)
        return _to_single_polygon(geoms, source)
    except BoundaryLoadError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError, GEOSException) as exc:
        raise BoundaryLoadError(f"Could not parse boundary {source}: {exc}") from exc


def _fetch_geojson(url: str) -> Mapping[str, Any]:
    logger.info(f"Fetching boundary from {url}")
    try:
        resp = requests.get(url, timeout=BOUNDARY_TIMEOUT)
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise BoundaryLoadError(f"Could not fetch boundary from {url}: {exc}") from exc


def _read_file(path: str) -> Polygon:
    if not os.path.exists(path):
        raise BoundaryLoadError(f"Boundary file not found: {path}")

    logger.info(f"Loading boundary from {path}")
    try:
        gdf = gpd.read_file(path)
    except Exception as exc:
        raise BoundaryLoadError(f"Could not read boundary {path}: {exc}") from exc

    # Ensure WGS84 CRS
    if gdf.crs is None:
        gdf = gdf.set_crs("EPSG:4326")
    elif gdf.crs.to_epsg() != 4326:
        gdf = gdf.to_crs("EPSG:4326")

    geoms = [g for g in gdf.geometry if g is not None and not g.is_empty]
    try:
        return _to_single_polygon(geoms, path)
    except GEOSException as exc:
        raise BoundaryLoadError(f"Could not dissolve boundary {path}: {exc}") from exc


def load_boundary(source: BoundarySource) -> Polygon:
    """
    Load the reference boundary polygon.

    Args:
        source: file path, http(s) URL, or GeoJSON mapping

    Returns:
        A single shapely Polygon in (lng, lat)

    Raises:
        BoundaryLoadError: on any fetch, read or parse failure
    """
    if isinstance(source, Mapping):
        poly = boundary_from_geojson(source)
    else:
        text = os.fspath(source)
        if text.startswith(("http://", "https://")):
            poly = boundary_from_geojson(_fetch_geojson(text), source=text)
        else:
            poly = _read_file(text)

    minx, miny, maxx, maxy = poly.bounds
    logger.info(
        f"Boundary ready: {len(poly.exterior.coords) - 1} vertices, "
        f"bbox=({minx:.5f}, {miny:.5f}, {maxx:.5f}, {maxy:.5f})"
    )
    return poly
