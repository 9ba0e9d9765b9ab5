"""
Test HTTP API

Runs the FastAPI app against a unit-square boundary and a temporary
submission store.
"""
import json

import pytest
from fastapi.testclient import TestClient

from api.app import main as api_main
from eastwest import config


@pytest.fixture
def client(tmp_path, boundary_file, monkeypatch):
    monkeypatch.setattr(config, "BOUNDARY_PATH", boundary_file)
    monkeypatch.setattr(config, "STORE_PATH", str(tmp_path / "submissions.json"))
    api_main.reset_state()
    with TestClient(api_main.app) as c:
        yield c
    api_main.reset_state()


VERTICAL = [[-1.0, 0.5], [2.0, 0.5]]


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["ok"] is True


class TestSplitEndpoint:
    def test_preview(self, client):
        resp = client.post("/api/split", json={"stroke": VERTICAL})

        assert resp.status_code == 200
        body = resp.json()
        assert body["east_area"] == pytest.approx(0.5)
        assert body["west_area"] == pytest.approx(0.5)
        assert min(p["lng"] for p in body["east"]) == pytest.approx(0.5)

    def test_no_valid_split(self, client):
        resp = client.post("/api/split", json={"stroke": [[0.5, 0.5]]})

        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert detail["error"] == "NoValidSplit"
        assert "at least 2 points" in detail["reason"]

    def test_missing_boundary(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "BOUNDARY_PATH", str(tmp_path / "missing.geojson"))
        api_main.reset_state()

        resp = client.post("/api/split", json={"stroke": VERTICAL})
        assert resp.status_code == 503


class TestSubmissionsAndHeatmap:
    def test_put_then_heatmap(self, client, tmp_path):
        resp = client.put("/api/submissions/obs-1", json={"stroke": [[-1.0, 0.3], [2.0, 0.3]]})
        assert resp.status_code == 200
        assert resp.json()["observer_id"] == "obs-1"
        assert "eastPolygon" in resp.json()

        # Same observer again: replaces, does not add
        client.put("/api/submissions/obs-1", json={"stroke": VERTICAL})
        client.put("/api/submissions/obs-2", json={"stroke": VERTICAL})

        stored = json.loads((tmp_path / "submissions.json").read_text())
        assert sorted(stored) == ["obs-1", "obs-2"]

        heat = client.get("/api/heatmap").json()
        assert (heat["cols"], heat["rows"]) == (config.GRID_COLS, config.GRID_ROWS)
        assert heat["submissions"] == 2
        assert len(heat["cells"]) == config.GRID_COLS * config.GRID_ROWS
        assert all(c["east"] + c["west"] == 2 for c in heat["cells"])
        assert [b["label"] for b in heat["legend"]] == ["0% East", "100% East"]
        assert sorted(r["side"] for r in heat["regions"]) == ["east", "west"]

    def test_rejected_submission_not_stored(self, client, tmp_path):
        resp = client.put("/api/submissions/obs-1", json={"stroke": [[5.0, 5.0], [6.0, 6.0]]})

        assert resp.status_code == 422
        assert not (tmp_path / "submissions.json").exists()

    def test_corrupt_store(self, client, tmp_path):
        (tmp_path / "submissions.json").write_text("{not json")

        heat = client.get("/api/heatmap")
        put = client.put("/api/submissions/obs-1", json={"stroke": VERTICAL})

        assert heat.status_code == 503
        assert "not valid JSON" in heat.json()["detail"]
        assert put.status_code == 503
        assert (tmp_path / "submissions.json").read_text() == "{not json"

    def test_empty_heatmap(self, client):
        heat = client.get("/api/heatmap").json()

        assert heat["submissions"] == 0
        assert heat["cells"] == []
        assert heat["legend"] == []
