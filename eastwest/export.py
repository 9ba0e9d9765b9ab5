"""
Tabular and GeoJSON outputs.

- cells_frame / write_cells: one row per grid cell (parquet)
- legend_frame: one row per legend band
- regions_geodataframe: label points of unanimous regions
- split_geodataframe: the two halves of a split
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Point

from . import config
from .aggregator import AggregationResult
from .bands import LabelResult
from .grid import Grid
from .splitter import SplitResult
from .validation import CELL_TABLE_DTYPES, enforce_cell_types, validate_cell_table

logger = logging.getLogger(__name__)


def cells_frame(grid: Grid, result: AggregationResult) -> pd.DataFrame:
    idx = np.arange(grid.size)
    east = result.east_counts.astype(np.uint32)
    west = result.west_counts.astype(np.uint32)
    total = east.astype(np.float64) + west.astype(np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        share = np.where(total > 0, east / total, np.nan)

    df = pd.DataFrame({
        "cell": idx,
        "row": idx // grid.cols,
        "col": idx % grid.cols,
        "lng": grid.centroids[:, 0],
        "lat": grid.centroids[:, 1],
        "in_boundary": grid.in_boundary,
        "east": east,
        "west": west,
        "east_share": share,
    })
    return enforce_cell_types(df)[list(CELL_TABLE_DTYPES)]


def write_cells(grid: Grid, result: AggregationResult, output_path: str) -> int:
    df = cells_frame(grid, result)
    validate_cell_table(df, grid_size=grid.size, submissions=result.submissions)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    tmp_path = output_path + ".tmp"
    df.to_parquet(tmp_path, index=False)
    os.replace(tmp_path, output_path)
    logger.info(f"Wrote {len(df)} cells to {output_path}")
    return len(df)


def legend_frame(labels: LabelResult) -> pd.DataFrame:
    return pd.DataFrame({
        "east_share": [float(b.share) for b in labels.legend],
        "share_num": [b.share.numerator for b in labels.legend],
        "share_den": [b.share.denominator for b in labels.legend],
        "label": [b.label for b in labels.legend],
        "cell_count": [b.cell_count for b in labels.legend],
        "proportion": [b.proportion for b in labels.legend],
    })


def regions_geodataframe(labels: LabelResult) -> gpd.GeoDataFrame:
    records = [
        {
            "side": r.side,
            "text": r.label,
            "cells": len(r.cells),
            "geometry": Point(r.anchor[1], r.anchor[0]),
        }
        for r in labels.regions
    ]
    if not records:
        return gpd.GeoDataFrame(columns=["side", "text", "cells", "geometry"], geometry="geometry", crs="EPSG:4326")
    return gpd.GeoDataFrame(records, geometry="geometry", crs="EPSG:4326")


def split_geodataframe(split: SplitResult) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "side": [config.SIDE_EAST, config.SIDE_WEST],
            "area": [split.east.area, split.west.area],
        },
        geometry=[split.east, split.west],
        crs="EPSG:4326",
    )


def write_geojson(gdf: gpd.GeoDataFrame, output_path: str, what: Optional[str] = None) -> str:
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    gdf.to_file(output_path, driver="GeoJSON")
    logger.info(f"Wrote {len(gdf)} {what or 'features'} to {output_path}")
    return output_path
