"""
Band Labeler

Groups counted cells by their exact east share, ``Fraction(east, east + west)``.
Shares are compared as reduced fractions, never as rounded percentages, so
2:1 and 4:2 land together but 2:1 and 67:33 do not.

Three outputs:
- legend: one segment per distinct share, ascending, sized by cell count
- bands: 4-connected components of the share partition (all shares)
- regions: components of the two unanimous shares (all east, all west),
  each with a label anchor at the mean centroid of its cells
"""
from __future__ import annotations

import math
from collections import Counter, deque
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .grid import Grid

ALL_EAST = Fraction(1)
ALL_WEST = Fraction(0)


def share_label(share: Fraction) -> str:
    # Half-up: 62.5 -> 63
    pct = math.floor(share * 100 + Fraction(1, 2))
    return f"{pct}% East"


@dataclass(frozen=True)
class LegendBand:
    share: Fraction
    cell_count: int
    proportion: float

    @property
    def label(self) -> str:
        return share_label(self.share)


@dataclass(frozen=True)
class Band:
    share: Fraction
    cells: Tuple[int, ...]


@dataclass(frozen=True)
class LabeledRegion:
    side: str
    share: Fraction
    cells: Tuple[int, ...]
    anchor: Tuple[float, float]  # (lat, lng)

    @property
    def label(self) -> str:
        return self.side.title()


@dataclass(frozen=True)
class LabelResult:
    legend: List[LegendBand]
    bands: List[Band]
    regions: List[LabeledRegion]

    @property
    def counted_cells(self) -> int:
        return sum(b.cell_count for b in self.legend)


def cell_shares(grid: Grid, east_counts: Sequence[int], west_counts: Sequence[int]) -> Dict[int, Fraction]:
    """East share of every counted cell (in boundary, at least one vote)."""
    east = np.asarray(east_counts)
    west = np.asarray(west_counts)
    if east.shape != (grid.size,) or west.shape != (grid.size,):
        raise ValueError(
            f"count arrays must have {grid.size} entries, got {east.shape} and {west.shape}"
        )

    shares: Dict[int, Fraction] = {}
    for i in grid.inside_indices():
        e, w = int(east[i]), int(west[i])
        if e + w > 0:
            shares[i] = Fraction(e, e + w)
    return shares


def legend_bands(shares: Dict[int, Fraction]) -> List[LegendBand]:
    counts = Counter(shares.values())
    total = sum(counts.values())
    return [
        LegendBand(share=share, cell_count=n, proportion=n / total)
        for share, n in sorted(counts.items())
    ]


def _component(grid: Grid, seed: int, shares: Dict[int, Fraction], visited: np.ndarray) -> List[int]:
    target = shares[seed]
    visited[seed] = True
    queue = deque([seed])
    cells = []
    while queue:
        i = queue.popleft()
        cells.append(i)
        for j in grid.index.neighbors(i):
            if not visited[j] and shares.get(j) == target:
                visited[j] = True
                queue.append(j)
    return cells


def connected_bands(grid: Grid, shares: Dict[int, Fraction], only: Optional[Fraction] = None) -> List[Band]:
    """
    4-connected components of cells sharing the same east share.

    Args:
        only: restrict to cells with exactly this share
    """
    visited = np.zeros(grid.size, dtype=bool)
    bands: List[Band] = []
    for seed in sorted(shares):
        if visited[seed] or (only is not None and shares[seed] != only):
            continue
        cells = _component(grid, seed, shares, visited)
        bands.append(Band(share=shares[seed], cells=tuple(sorted(cells))))
    return bands


def _anchor(grid: Grid, cells: Sequence[int]) -> Tuple[float, float]:
    lng, lat = grid.centroids[list(cells)].mean(axis=0)
    return float(lat), float(lng)


def label_regions(grid: Grid, shares: Dict[int, Fraction]) -> List[LabeledRegion]:
    """Label points for unanimous components only; contested cells get none."""
    regions: List[LabeledRegion] = []
    for side, share in ((config.SIDE_EAST, ALL_EAST), (config.SIDE_WEST, ALL_WEST)):
        for band in connected_bands(grid, shares, only=share):
            regions.append(
                LabeledRegion(side=side, share=share, cells=band.cells, anchor=_anchor(grid, band.cells))
            )
    return regions


def label(grid: Grid, east_counts: Sequence[int], west_counts: Sequence[int]) -> LabelResult:
    """Legend, connected bands and unanimous label regions for one set of counts."""
    shares = cell_shares(grid, east_counts, west_counts)
    return LabelResult(
        legend=legend_bands(shares),
        bands=connected_bands(grid, shares),
        regions=label_regions(grid, shares),
    )
