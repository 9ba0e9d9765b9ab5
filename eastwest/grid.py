"""
Sampling Grid

A fixed cols x rows lattice over the boundary's bounding box. Cell i sits
at row i // cols, column i % cols; row 0 is the southern (min latitude)
edge. Centroids and the in-boundary mask are computed once and never
change; a different resolution means a different grid and invalidates
every count computed on the old one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

import numpy as np
import shapely
from shapely.geometry import Polygon, box

from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridIndex:
    """Row/column <-> linear index conversion with bounds-checked neighbours."""

    cols: int
    rows: int

    @property
    def size(self) -> int:
        return self.cols * self.rows

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def to_linear(self, row: int, col: int) -> int:
        if not self.contains(row, col):
            raise IndexError(f"cell ({row}, {col}) outside {self.rows}x{self.cols} grid")
        return row * self.cols + col

    def to_row_col(self, index: int) -> Tuple[int, int]:
        if not 0 <= index < self.size:
            raise IndexError(f"cell {index} outside grid of {self.size} cells")
        return divmod(index, self.cols)

    def neighbors(self, index: int) -> Iterator[int]:
        """Edge-adjacent (4-connected) neighbours of a cell."""
        row, col = self.to_row_col(index)
        for dr, dc in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            r, c = row + dr, col + dc
            if self.contains(r, c):
                yield r * self.cols + c


@dataclass(frozen=True, eq=False)
class Grid:
    """
    Immutable sampling grid.

    Attributes:
        cols, rows: grid dimensions
        bounds: (minx, miny, maxx, maxy) of the boundary in (lng, lat)
        centroids: (cols*rows, 2) float64 array of (lng, lat) cell centroids
        in_boundary: (cols*rows,) bool array, True where the centroid is
            inside the boundary
    """

    cols: int
    rows: int
    bounds: Tuple[float, float, float, float]
    centroids: np.ndarray
    in_boundary: np.ndarray
    index: GridIndex = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "index", GridIndex(self.cols, self.rows))
        self.centroids.flags.writeable = False
        self.in_boundary.flags.writeable = False

    @property
    def size(self) -> int:
        return self.cols * self.rows

    @property
    def cell_size(self) -> Tuple[float, float]:
        minx, miny, maxx, maxy = self.bounds
        return (maxx - minx) / self.cols, (maxy - miny) / self.rows

    @property
    def inside_count(self) -> int:
        return int(self.in_boundary.sum())

    def flat_centroids(self) -> np.ndarray:
        """Centroids as a flat [lng0, lat0, lng1, lat1, ...] copy."""
        return self.centroids.reshape(-1).copy()

    def cell_polygon(self, index: int) -> Polygon:
        """Rectangle of one cell, for rendering."""
        row, col = self.index.to_row_col(index)
        minx, miny, _, _ = self.bounds
        w, h = self.cell_size
        return box(minx + col * w, miny + row * h, minx + (col + 1) * w, miny + (row + 1) * h)

    def inside_indices(self) -> List[int]:
        return np.flatnonzero(self.in_boundary).tolist()


def build_grid(boundary: Polygon, cols: int = config.GRID_COLS, rows: int = config.GRID_ROWS) -> Grid:
    """
    Lay a cols x rows grid over the boundary bbox and mark inside cells.

    Deterministic: the same boundary and dimensions always give the same
    centroids and mask.
    """
    if int(cols) != cols or int(rows) != rows or cols <= 0 or rows <= 0:
        raise ValueError(f"grid dimensions must be positive integers, got cols={cols} rows={rows}")
    cols, rows = int(cols), int(rows)

    minx, miny, maxx, maxy = boundary.bounds
    w = (maxx - minx) / cols
    h = (maxy - miny) / rows

    xs = minx + (np.arange(cols, dtype=np.float64) + 0.5) * w
    ys = miny + (np.arange(rows, dtype=np.float64) + 0.5) * h
    # Row-major: x varies fastest
    gx, gy = np.meshgrid(xs, ys)
    centroids = np.column_stack([gx.ravel(), gy.ravel()])

    in_boundary = np.asarray(shapely.contains_xy(boundary, centroids[:, 0], centroids[:, 1]), dtype=bool)

    grid = Grid(
        cols=cols,
        rows=rows,
        bounds=(float(minx), float(miny), float(maxx), float(maxy)),
        centroids=centroids,
        in_boundary=in_boundary,
    )
    logger.info(f"Built {cols}x{rows} grid, {grid.inside_count}/{grid.size} cells inside boundary")
    return grid
