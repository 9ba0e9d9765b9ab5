"""Shared fixtures: small planar boundaries and ready-made splits."""
import json

import pytest
from shapely.geometry import Polygon, mapping

from eastwest.splitter import split_boundary


@pytest.fixture
def unit_square() -> Polygon:
    return Polygon([(0, 0), (1, 0), (1, 1), (0, 1)])


@pytest.fixture
def triangle() -> Polygon:
    return Polygon([(0, 0), (1, 0), (0, 1)])


@pytest.fixture
def wide_l() -> Polygon:
    """L shape with a long bottom arm: a diagonal cut through the notch gives two east parts."""
    return Polygon([(0, 0), (3, 0), (3, 1), (1, 1), (1, 2), (0, 2)])


@pytest.fixture
def city() -> Polygon:
    """Rough hexagon around central Toronto, in (lng, lat)."""
    return Polygon([
        (-79.60, 43.60),
        (-79.35, 43.58),
        (-79.15, 43.70),
        (-79.20, 43.84),
        (-79.45, 43.85),
        (-79.62, 43.74),
    ])


def vertical_stroke(x: float):
    """(lat, lng) stroke running south to north along lng = x, crossing the unit square."""
    return [(-1.0, x), (2.0, x)]


@pytest.fixture
def split_at(unit_square):
    def _split(x: float):
        return split_boundary(unit_square, vertical_stroke(x))
    return _split


@pytest.fixture
def boundary_file(tmp_path, unit_square):
    path = tmp_path / "boundary.geojson"
    path.write_text(json.dumps({
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "properties": {"name": "square"}, "geometry": mapping(unit_square)}],
    }))
    return str(path)


@pytest.fixture
def stroke_file(tmp_path):
    def _write(points, name="stroke.json"):
        path = tmp_path / name
        path.write_text(json.dumps([list(p) for p in points]))
        return str(path)
    return _write
