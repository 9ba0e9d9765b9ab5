"""
Heatmap layer

Turns aggregate counts into GeoJSON for whatever draws the map. The layer
holds a drawing-target handle, any callable that accepts a GeoJSON
FeatureCollection dict, and pushes a full collection on every update.
Styling is left to the renderer; each cell carries the numbers it needs:

- east, west: raw vote counts
- east_share: east / (east + west)
- confidence: 0 at a 50/50 split, 1 when unanimous
- leaning: "east" when east_share >= 0.5, else "west"
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from shapely.geometry import Point, mapping

from . import config
from .aggregator import AggregationResult
from .bands import LabelResult
from .grid import Grid

logger = logging.getLogger(__name__)

DrawTarget = Callable[[Dict[str, Any]], None]


def _collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": features}


def cell_properties(east: int, west: int) -> Dict[str, Any]:
    total = east + west
    share = east / total
    return {
        "east": east,
        "west": west,
        "east_share": share,
        "confidence": abs(share - 0.5) * 2,
        "leaning": config.SIDE_EAST if share >= 0.5 else config.SIDE_WEST,
    }


class HeatmapLayer:
    def __init__(self, grid: Grid, target: DrawTarget):
        self.grid = grid
        self._target: Optional[DrawTarget] = target

    @property
    def disposed(self) -> bool:
        return self._target is None

    def _draw(self, collection: Dict[str, Any]) -> None:
        if self._target is None:
            raise RuntimeError("HeatmapLayer has been disposed")
        self._target(collection)

    def update(self, result: AggregationResult, labels: Optional[LabelResult] = None) -> Dict[str, Any]:
        """Redraw from a full set of counts; nothing from the previous draw is kept."""
        features: List[Dict[str, Any]] = []
        for i in self.grid.inside_indices():
            east, west = int(result.east_counts[i]), int(result.west_counts[i])
            if east + west == 0:
                continue
            props = cell_properties(east, west)
            props.update({"kind": "cell", "cell": i})
            features.append({
                "type": "Feature",
                "geometry": mapping(self.grid.cell_polygon(i)),
                "properties": props,
            })

        if labels is not None:
            for region in labels.regions:
                lat, lng = region.anchor
                features.append({
                    "type": "Feature",
                    "geometry": mapping(Point(lng, lat)),
                    "properties": {
                        "kind": "label",
                        "side": region.side,
                        "text": region.label,
                        "cells": len(region.cells),
                    },
                })

        collection = _collection(features)
        self._draw(collection)
        logger.debug(f"Heatmap layer drew {len(features)} features")
        return collection

    def clear(self) -> None:
        self._draw(_collection([]))

    def dispose(self) -> None:
        if self._target is None:
            return
        self.clear()
        self._target = None
