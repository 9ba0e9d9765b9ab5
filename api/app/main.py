#!/usr/bin/env python3
# api/app/main.py

import os
from functools import lru_cache
from typing import Any, Dict, List, Tuple

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from eastwest import config
from eastwest.bands import label
from eastwest.boundary import load_boundary
from eastwest.errors import BoundaryLoadError, NoValidSplit
from eastwest.grid import build_grid
from eastwest.layer import cell_properties
from eastwest.session import AggregationScheduler
from eastwest.splitter import split_boundary, thin_stroke
from eastwest.store import SubmissionStore, encode_ring

APP_NAME = "eastwest split API"

# ---------- Config ----------
AGGREGATION_TIMEOUT = float(os.environ.get("EW_AGGREGATION_TIMEOUT", "60"))
_FRONTEND_ORIGIN = (os.environ.get("EW_FRONTEND_ORIGIN") or "*").strip()


# ---------- Shared state (cached) ----------
@lru_cache(maxsize=1)
def get_boundary():
    return load_boundary(config.BOUNDARY_PATH)


@lru_cache(maxsize=1)
def get_grid():
    return build_grid(get_boundary())


@lru_cache(maxsize=1)
def get_store() -> SubmissionStore:
    return SubmissionStore.load(config.STORE_PATH)


@lru_cache(maxsize=1)
def get_scheduler() -> AggregationScheduler:
    return AggregationScheduler(get_grid())


def reset_state() -> None:
    """Drop cached boundary, grid, store and scheduler (config changed)."""
    if get_scheduler.cache_info().currsize:
        get_scheduler().shutdown()
    for fn in (get_boundary, get_grid, get_store, get_scheduler):
        fn.cache_clear()


def _boundary_or_503():
    try:
        return get_boundary()
    except BoundaryLoadError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _store_or_503() -> SubmissionStore:
    try:
        return get_store()
    except (OSError, ValueError) as e:
        raise HTTPException(status_code=503, detail=str(e))


class StrokeBody(BaseModel):
    stroke: List[Tuple[float, float]]  # [[lat, lng], ...]


def _split(body: StrokeBody):
    boundary = _boundary_or_503()
    try:
        return split_boundary(boundary, thin_stroke(body.stroke))
    except NoValidSplit as e:
        raise HTTPException(status_code=422, detail={"error": "NoValidSplit", "reason": e.reason})


# ---------- FastAPI ----------
app = FastAPI(title=APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_FRONTEND_ORIGIN],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"ok": True, "app": APP_NAME}


@app.post("/api/split")
def preview_split(body: StrokeBody) -> Dict[str, Any]:
    """Preview the east/west halves for a stroke without storing anything."""
    split = _split(body)
    return {
        "east": encode_ring(split.east_ring),
        "west": encode_ring(split.west_ring),
        "east_area": split.east.area,
        "west_area": split.west.area,
    }


@app.put("/api/submissions/{observer_id}")
def put_submission(observer_id: str, body: StrokeBody) -> Dict[str, Any]:
    """Store (or replace) an observer's split and kick off a fresh aggregation."""
    split = _split(body)
    store = _store_or_503()
    doc = store.put(observer_id, split)
    store.save()
    get_scheduler().request(store.ring_pairs())
    return {"observer_id": observer_id, **doc.to_dict()}


@app.get("/api/heatmap")
def get_heatmap() -> Dict[str, Any]:
    """Per-cell counts, legend and unanimous region labels for all submissions."""
    _boundary_or_503()
    grid = get_grid()
    scheduler = get_scheduler()
    if scheduler.latest is None and not scheduler.busy:
        scheduler.request(_store_or_503().ring_pairs())
    try:
        result = scheduler.wait(timeout=AGGREGATION_TIMEOUT)
    except TimeoutError:
        raise HTTPException(status_code=503, detail="Aggregation still running, try again")
    if result is None:
        raise HTTPException(status_code=500, detail="Aggregation failed")

    labels = label(grid, result.east_counts, result.west_counts)
    cells = []
    for i in grid.inside_indices():
        east, west = int(result.east_counts[i]), int(result.west_counts[i])
        if east + west:
            lng, lat = grid.centroids[i]
            cells.append({"cell": i, "lat": float(lat), "lng": float(lng), **cell_properties(east, west)})

    return {
        "cols": grid.cols,
        "rows": grid.rows,
        "bounds": list(grid.bounds),
        "submissions": result.submissions,
        "skipped_submissions": result.skipped_submissions,
        "skipped_points": result.skipped_points,
        "cells": cells,
        "legend": [
            {"east_share": float(b.share), "label": b.label, "cell_count": b.cell_count, "proportion": b.proportion}
            for b in labels.legend
        ],
        "regions": [
            {"side": r.side, "text": r.label, "lat": r.anchor[0], "lng": r.anchor[1], "cells": len(r.cells)}
            for r in labels.regions
        ],
    }


if __name__ == "__main__":
    # For local dev, allow overriding the port
    port = int(os.environ.get("PORT", 5174))
    print(f"Starting eastwest server on http://0.0.0.0:{port}")
    print(f"Using boundary={config.BOUNDARY_PATH} store={config.STORE_PATH}")
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True, app_dir="api/app")
