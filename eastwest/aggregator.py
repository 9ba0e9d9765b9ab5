"""
Aggregator

Sweeps every in-boundary grid centroid against every stored split and
tallies east/west votes per cell.

Per submission and cell: the east polygon is tested first (edges count as
inside), then the west polygon. A cell that lands in neither, or whose test
fails, is left uncounted for that submission and tallied in
``skipped_points``. A submission whose rings are malformed is skipped whole
and tallied in ``skipped_submissions``. Cells outside the boundary are
never touched.

The sweep is O(cells x submissions). It can be split across worker
processes by submission or by cell range; partial counts combine by
element-wise summation, so the partition never changes the result.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import shapely
from tqdm import tqdm

from . import config
from .errors import InvalidPolygon
from .geometry_utils import Ring, points_in_polygon, ring_to_polygon
from .grid import Grid
from .splitter import SplitResult

logger = logging.getLogger(__name__)

RingPair = Dict[str, Ring]
Submission = Union[SplitResult, Mapping[str, Sequence[Sequence[float]]]]

COUNT_DTYPE = np.uint32


@dataclass
class AggregationRequest:
    """
    Everything a background worker needs for one aggregation pass.

    The sender gives up the centroid and mask buffers when it builds the
    request; they come back on the response.
    """

    submissions: List[RingPair]
    centroids: np.ndarray          # flat float64 [lng0, lat0, lng1, lat1, ...]
    in_boundary_mask: np.ndarray   # flat bool, one per cell
    cols: int
    rows: int
    generation: int = 0


@dataclass
class AggregationResponse:
    east_counts: np.ndarray
    west_counts: np.ndarray
    centroids: np.ndarray
    in_boundary_mask: np.ndarray
    skipped_submissions: int = 0
    skipped_points: int = 0
    generation: int = 0


@dataclass
class AggregationResult:
    """Per-cell vote tallies for one full aggregation pass."""

    east_counts: np.ndarray
    west_counts: np.ndarray
    submissions: int
    skipped_submissions: int = 0
    skipped_points: int = 0

    @property
    def totals(self) -> np.ndarray:
        return self.east_counts.astype(np.int64) + self.west_counts.astype(np.int64)

    def counted_mask(self) -> np.ndarray:
        """Cells with at least one vote."""
        return self.totals > 0


@dataclass
class _Partial:
    east: np.ndarray
    west: np.ndarray
    skipped_submissions: int = 0
    skipped_points: int = 0
    start: int = 0
    invalid: List[int] = field(default_factory=list)


def as_ring_pair(sub: Submission) -> RingPair:
    """
    Normalise a submission to a picklable {"east": ring, "west": ring} dict.

    An unreadable submission becomes an empty dict; the sweep then skips it
    and counts it in skipped_submissions, as it would any malformed ring.
    """
    if isinstance(sub, SplitResult):
        return sub.to_rings()
    try:
        return {
            config.SIDE_EAST: [tuple(p) for p in sub[config.SIDE_EAST]],
            config.SIDE_WEST: [tuple(p) for p in sub[config.SIDE_WEST]],
        }
    except (KeyError, TypeError, ValueError, IndexError) as exc:
        logger.debug(f"Unreadable submission passed on as empty: {exc}")
        return {}


def _submission_polygons(sub: Submission):
    if isinstance(sub, SplitResult):
        return sub.east, sub.west
    try:
        east_ring = sub[config.SIDE_EAST]
        west_ring = sub[config.SIDE_WEST]
    except (KeyError, TypeError) as exc:
        raise InvalidPolygon(f"submission missing ring: {exc}") from exc
    return ring_to_polygon(east_ring), ring_to_polygon(west_ring)


def _sweep(
    xs: np.ndarray,
    ys: np.ndarray,
    submissions: Sequence[Submission],
    first_index: int = 0,
    progress: bool = False,
) -> _Partial:
    """Count votes for the given points over the given submissions."""
    n = xs.shape[0]
    east = np.zeros(n, dtype=COUNT_DTYPE)
    west = np.zeros(n, dtype=COUNT_DTYPE)
    partial = _Partial(east=east, west=west)

    iterable = tqdm(submissions, desc="aggregate", unit="sub", disable=not progress)
    for offset, sub in enumerate(iterable):
        try:
            east_poly, west_poly = _submission_polygons(sub)
        except InvalidPolygon as exc:
            partial.skipped_submissions += 1
            partial.invalid.append(first_index + offset)
            logger.debug(f"Skipping submission {first_index + offset}: {exc}")
            continue
        if n == 0:
            continue

        shapely.prepare(east_poly)
        shapely.prepare(west_poly)

        in_east, failed = points_in_polygon(east_poly, xs, ys)
        rest = ~(in_east | failed)
        in_west = np.zeros(n, dtype=bool)
        if rest.any():
            west_hits, _ = points_in_polygon(west_poly, xs[rest], ys[rest])
            in_west[rest] = west_hits

        east += in_east
        west += in_west
        partial.skipped_points += int(n - in_east.sum() - in_west.sum())

    return partial


def _scatter(size: int, inside: np.ndarray, partial: _Partial) -> Tuple[np.ndarray, np.ndarray]:
    east = np.zeros(size, dtype=COUNT_DTYPE)
    west = np.zeros(size, dtype=COUNT_DTYPE)
    east[inside] = partial.east
    west[inside] = partial.west
    return east, west


def _log_quality(partial: _Partial, submissions: int) -> None:
    if partial.skipped_submissions:
        logger.warning(
            f"Skipped {partial.skipped_submissions}/{submissions} submissions with malformed polygons"
        )
    if partial.skipped_points:
        logger.warning(f"{partial.skipped_points} cell tests left unclassified (in neither polygon)")


def aggregate(grid: Grid, submissions: Sequence[Submission], progress: bool = False) -> AggregationResult:
    """
    Tally east/west votes per grid cell over all submissions.

    Args:
        grid: sampling grid
        submissions: SplitResult objects or {"east": ring, "west": ring} dicts
        progress: show a tqdm progress bar

    Returns:
        AggregationResult with uint32 count arrays of length cols*rows
    """
    start = time.perf_counter()
    inside = np.flatnonzero(grid.in_boundary)
    xs = grid.centroids[inside, 0]
    ys = grid.centroids[inside, 1]

    partial = _sweep(xs, ys, submissions, progress=progress)
    east, west = _scatter(grid.size, inside, partial)
    _log_quality(partial, len(submissions))

    logger.info(
        f"Aggregated {len(submissions)} submissions over {inside.size} cells "
        f"in {time.perf_counter() - start:.2f}s"
    )
    return AggregationResult(
        east_counts=east,
        west_counts=west,
        submissions=len(submissions),
        skipped_submissions=partial.skipped_submissions,
        skipped_points=partial.skipped_points,
    )


def build_request(grid: Grid, submissions: Sequence[Submission], generation: int = 0) -> AggregationRequest:
    return AggregationRequest(
        submissions=[as_ring_pair(s) for s in submissions],
        centroids=grid.flat_centroids(),
        in_boundary_mask=grid.in_boundary.copy(),
        cols=grid.cols,
        rows=grid.rows,
        generation=generation,
    )


def run_request(request: AggregationRequest) -> AggregationResponse:
    """
    Worker-side entrypoint: one full aggregation pass over a request.

    The centroid and mask buffers are handed back on the response unchanged.
    """
    size = request.cols * request.rows
    centroids = np.asarray(request.centroids, dtype=np.float64)
    mask = np.asarray(request.in_boundary_mask, dtype=bool)
    if centroids.size != 2 * size or mask.size != size:
        raise ValueError(
            f"request buffers do not match a {request.cols}x{request.rows} grid: "
            f"centroids={centroids.size} mask={mask.size}"
        )

    inside = np.flatnonzero(mask)
    pts = centroids.reshape(-1, 2)
    partial = _sweep(pts[inside, 0], pts[inside, 1], request.submissions)
    east, west = _scatter(size, inside, partial)
    _log_quality(partial, len(request.submissions))

    return AggregationResponse(
        east_counts=east,
        west_counts=west,
        centroids=centroids,
        in_boundary_mask=mask,
        skipped_submissions=partial.skipped_submissions,
        skipped_points=partial.skipped_points,
        generation=request.generation,
    )


# ---------------------------------------------------------------------------
# Process pool
# ---------------------------------------------------------------------------

def _count_task(task: Dict[str, Any]) -> _Partial:
    partial = _sweep(task["xs"], task["ys"], task["submissions"], first_index=task["first_index"])
    partial.start = task["start"]
    return partial


def _chunks(n: int, parts: int) -> List[Tuple[int, int]]:
    parts = max(1, min(parts, n))
    bounds = np.linspace(0, n, parts + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


def _plan(
    xs: np.ndarray,
    ys: np.ndarray,
    pairs: List[RingPair],
    workers: int,
    partition: str,
) -> List[Dict[str, Any]]:
    if partition == "submission":
        return [
            {"xs": xs, "ys": ys, "submissions": pairs[a:b], "first_index": a, "start": 0}
            for a, b in _chunks(len(pairs), workers)
        ]
    if partition == "cells":
        return [
            {"xs": xs[a:b], "ys": ys[a:b], "submissions": pairs, "first_index": 0, "start": a}
            for a, b in _chunks(xs.shape[0], workers)
        ]
    raise ValueError(f"partition must be 'submission' or 'cells', got {partition!r}")


def aggregate_parallel(
    grid: Grid,
    submissions: Sequence[Submission],
    max_workers: Optional[int] = None,
    partition: str = config.DEFAULT_PARTITION,
) -> AggregationResult:
    """
    Same result as aggregate(), computed on a process pool.

    Work is split by submission (each worker sees every cell) or by cell
    range (each worker sees every submission). Partials are summed.
    """
    workers = config.MAX_WORKERS if max_workers is None else int(max_workers)
    if partition not in ("submission", "cells"):
        raise ValueError(f"partition must be 'submission' or 'cells', got {partition!r}")
    if workers <= 1 or len(submissions) == 0:
        return aggregate(grid, submissions)

    import multiprocessing as mp
    from concurrent.futures import ProcessPoolExecutor, as_completed

    start = time.perf_counter()
    inside = np.flatnonzero(grid.in_boundary)
    xs = np.ascontiguousarray(grid.centroids[inside, 0])
    ys = np.ascontiguousarray(grid.centroids[inside, 1])
    pairs = [as_ring_pair(s) for s in submissions]

    work = _plan(xs, ys, pairs, workers, partition)
    if not work:
        return aggregate(grid, submissions)

    effective_workers = min(workers, len(work))
    logger.debug(f"Launching ProcessPool with max_workers={effective_workers} pending_tasks={len(work)}")

    try:
        ctx = mp.get_context("spawn")
    except ValueError:
        ctx = mp.get_context()

    combined = _Partial(
        east=np.zeros(inside.size, dtype=COUNT_DTYPE),
        west=np.zeros(inside.size, dtype=COUNT_DTYPE),
    )
    invalid: set = set()
    with ProcessPoolExecutor(max_workers=effective_workers, mp_context=ctx) as ex:
        futures = [ex.submit(_count_task, task) for task in work]
        for fut in as_completed(futures):
            part = fut.result()
            stop = part.start + part.east.shape[0]
            combined.east[part.start:stop] += part.east
            combined.west[part.start:stop] += part.west
            combined.skipped_points += part.skipped_points
            invalid.update(part.invalid)

    # With a cell partition every worker sees the same bad submissions.
    combined.skipped_submissions = len(invalid)

    east, west = _scatter(grid.size, inside, combined)
    _log_quality(combined, len(submissions))
    logger.info(
        f"Aggregated {len(submissions)} submissions over {inside.size} cells "
        f"on {effective_workers} workers ({partition}) in {time.perf_counter() - start:.2f}s"
    )
    return AggregationResult(
        east_counts=east,
        west_counts=west,
        submissions=len(submissions),
        skipped_submissions=combined.skipped_submissions,
        skipped_points=combined.skipped_points,
    )


def result_from_response(response: AggregationResponse, submissions: int) -> AggregationResult:
    return AggregationResult(
        east_counts=response.east_counts,
        west_counts=response.west_counts,
        submissions=submissions,
        skipped_submissions=response.skipped_submissions,
        skipped_points=response.skipped_points,
    )

