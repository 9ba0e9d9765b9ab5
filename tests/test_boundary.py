"""
Test boundary loading from GeoJSON mappings, files and URLs.
"""
import json

import pytest
import requests
from shapely.geometry import box, mapping

from eastwest import boundary as boundary_mod
from eastwest.boundary import boundary_from_geojson, load_boundary
from eastwest.errors import BoundaryLoadError


def feature(geom):
    return {"type": "Feature", "properties": {}, "geometry": mapping(geom)}


class TestBoundaryFromGeojson:
    def test_bare_geometry(self):
        poly = boundary_from_geojson(mapping(box(0, 0, 2, 1)))

        assert poly.area == pytest.approx(2.0)

    def test_adjacent_features_dissolve(self):
        data = {"type": "FeatureCollection", "features": [feature(box(0, 0, 1, 1)), feature(box(1, 0, 2, 1))]}
        poly = boundary_from_geojson(data)

        assert poly.geom_type == "Polygon"
        assert poly.area == pytest.approx(2.0)

    def test_disjoint_parts_keep_largest(self, caplog):
        data = {"type": "FeatureCollection", "features": [feature(box(0, 0, 3, 3)), feature(box(10, 10, 11, 11))]}
        poly = boundary_from_geojson(data)

        assert poly.area == pytest.approx(9.0)
        assert any("disjoint" in r.message for r in caplog.records)

    @pytest.mark.parametrize("data", [
        {"type": "FeatureCollection", "features": []},
        {"type": "Feature", "geometry": None},
        {"type": "Point", "coordinates": [0, 0]},
        {"type": "Polygon"},
    ])
    def test_unusable(self, data):
        with pytest.raises(BoundaryLoadError):
            boundary_from_geojson(data)


class TestLoadBoundary:
    def test_from_file(self, boundary_file):
        poly = load_boundary(boundary_file)

        assert poly.bounds == pytest.approx((0.0, 0.0, 1.0, 1.0))

    def test_missing_file(self, tmp_path):
        with pytest.raises(BoundaryLoadError, match="not found"):
            load_boundary(str(tmp_path / "missing.geojson"))

    def test_garbage_file(self, tmp_path):
        path = tmp_path / "bad.geojson"
        path.write_text("this is not geojson")

        with pytest.raises(BoundaryLoadError):
            load_boundary(str(path))

    def test_from_mapping(self):
        poly = load_boundary(feature(box(0, 0, 1, 2)))

        assert poly.area == pytest.approx(2.0)

    def test_from_url(self, monkeypatch):
        payload = {"type": "FeatureCollection", "features": [feature(box(-79.5, 43.6, -79.2, 43.8))]}

        class FakeResponse:
            def raise_for_status(self):
                pass

            def json(self):
                return json.loads(json.dumps(payload))

        seen = {}

        def fake_get(url, timeout):
            seen["url"] = url
            return FakeResponse()

        monkeypatch.setattr(boundary_mod.requests, "get", fake_get)
        poly = load_boundary("https://example.org/city.geojson")

        assert seen["url"] == "https://example.org/city.geojson"
        assert poly.bounds == pytest.approx((-79.5, 43.6, -79.2, 43.8))

    def test_url_failure(self, monkeypatch):
        def fake_get(url, timeout):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(boundary_mod.requests, "get", fake_get)
        with pytest.raises(BoundaryLoadError, match="offline"):
            load_boundary("http://example.org/city.geojson")
