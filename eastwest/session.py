"""
Session controller

Holds the state of one observer's drawing session and drives the split ->
submit -> aggregate cycle:

    IDLE -> DRAWING -> PREVIEW_READY  (split ok)
                    -> IDLE           (split failed; last_error is set)
    PREVIEW_READY -> AGGREGATING -> IDLE   (submit)
    PREVIEW_READY -> IDLE                  (redraw)

Starting a new stroke while a preview is pending discards the preview.

Aggregation runs on a single background worker. AggregationScheduler keeps
at most one request in flight; the centroid/mask buffers move into the
request and come back on the response. Each request carries a generation
id and a response is applied only if its generation is still the latest.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from shapely.geometry import Polygon

from . import config
from .aggregator import (
    AggregationRequest,
    AggregationResponse,
    AggregationResult,
    Submission,
    as_ring_pair,
    result_from_response,
    run_request,
)
from .bands import LabelResult, label
from .errors import NoValidSplit, SessionStateError
from .grid import Grid, build_grid
from .layer import HeatmapLayer
from .splitter import SplitResult, split_boundary, thin_stroke
from .store import SubmissionDocument, SubmissionStore, new_observer_id

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    PREVIEW_READY = "preview_ready"
    AGGREGATING = "aggregating"


class AggregationScheduler:
    """
    Single-slot background aggregation.

    request() while a pass is in flight does not start a second pass; the
    newest submission list is parked and sent once the in-flight response
    has been observed. The in-flight response is then stale and discarded.
    """

    def __init__(
        self,
        grid: Grid,
        executor: Optional[Executor] = None,
        runner: Callable[[AggregationRequest], AggregationResponse] = run_request,
    ):
        self.grid = grid
        self._runner = runner
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="eastwest-aggregate")
        self._lock = threading.Lock()

        self._centroids = grid.flat_centroids()
        self._mask = grid.in_boundary.copy()

        self._generation = 0
        self._future: Optional[Future] = None
        self._inflight_submissions = 0
        self._pending: Optional[List] = None

        self.latest: Optional[AggregationResult] = None
        self.last_error: Optional[BaseException] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._future is not None

    def _dispatch(self, submissions: List) -> None:
        request = AggregationRequest(
            submissions=submissions,
            centroids=self._centroids,
            in_boundary_mask=self._mask,
            cols=self.grid.cols,
            rows=self.grid.rows,
            generation=self._generation,
        )
        # Buffers now belong to the request
        self._centroids = None
        self._mask = None
        self._inflight_submissions = len(submissions)
        self._future = self._executor.submit(self._runner, request)
        logger.debug(f"Dispatched aggregation generation={self._generation} submissions={len(submissions)}")

    def request(self, submissions: Sequence[Submission]) -> int:
        """Ask for a pass over the given submissions. Returns its generation id."""
        pairs = [as_ring_pair(s) for s in submissions]
        with self._lock:
            self._generation += 1
            if self._future is not None:
                self._pending = pairs
                logger.debug(f"Aggregation in flight; parked generation={self._generation}")
            else:
                self._dispatch(pairs)
            return self._generation

    def cancel(self) -> None:
        """Supersede whatever is in flight or parked; its result will be dropped."""
        with self._lock:
            self._generation += 1
            self._pending = None

    def _observe(self, fut: Future) -> Optional[AggregationResult]:
        self._future = None
        result: Optional[AggregationResult] = None
        try:
            response = fut.result()
        except Exception as exc:
            logger.error(f"Aggregation pass failed: {exc}")
            self.last_error = exc
            self._centroids = self.grid.flat_centroids()
            self._mask = self.grid.in_boundary.copy()
        else:
            self._centroids = response.centroids
            self._mask = response.in_boundary_mask
            if response.generation == self._generation:
                result = result_from_response(response, self._inflight_submissions)
                self.latest = result
                self.last_error = None
            else:
                logger.debug(
                    f"Discarding stale aggregation generation={response.generation} "
                    f"(latest={self._generation})"
                )

        if self._pending is not None:
            pending, self._pending = self._pending, None
            self._dispatch(pending)
        return result

    def poll(self) -> Optional[AggregationResult]:
        """Observe a finished pass, if any. Returns its result only if it is current."""
        with self._lock:
            fut = self._future
            if fut is None or not fut.done():
                return None
            return self._observe(fut)

    def wait(self, timeout: Optional[float] = None) -> Optional[AggregationResult]:
        """Block until nothing is in flight or parked; returns the latest current result."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                fut = self._future
            if fut is None:
                return self.latest
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            wait_futures([fut], timeout=remaining)
            if not fut.done():
                raise TimeoutError("aggregation did not finish in time")
            self.poll()

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)


class SplitSession:
    """One observer's drawing session over a fixed boundary."""

    def __init__(
        self,
        boundary: Polygon,
        store: SubmissionStore,
        observer_id: Optional[str] = None,
        grid: Optional[Grid] = None,
        scheduler: Optional[AggregationScheduler] = None,
        layer: Optional[HeatmapLayer] = None,
        thin_tolerance: float = config.STROKE_THIN_TOLERANCE,
    ):
        self.boundary = boundary
        self.store = store
        self.observer_id = observer_id or new_observer_id()
        self.grid = grid or build_grid(boundary)
        self.scheduler = scheduler or AggregationScheduler(self.grid)
        self.layer = layer
        self.thin_tolerance = thin_tolerance

        self.state = SessionState.IDLE
        self.preview: Optional[SplitResult] = None
        self.last_error: Optional[NoValidSplit] = None
        self.result: Optional[AggregationResult] = None
        self.labels: Optional[LabelResult] = None
        self._stroke: List[Tuple[float, float]] = []

    def _require(self, action: str, *states: SessionState) -> None:
        if self.state not in states:
            raise SessionStateError(f"cannot {action} while {self.state.value}")

    @property
    def stroke(self) -> List[Tuple[float, float]]:
        return list(self._stroke)

    def begin_stroke(self, lat: Optional[float] = None, lng: Optional[float] = None) -> None:
        self._require("start a stroke", SessionState.IDLE, SessionState.DRAWING, SessionState.PREVIEW_READY)
        if self.preview is not None:
            logger.debug("Discarding pending preview for a new stroke")
        self.preview = None
        self.last_error = None
        self._stroke = []
        self.state = SessionState.DRAWING
        if lat is not None and lng is not None:
            self.add_point(lat, lng)

    def add_point(self, lat: float, lng: float) -> None:
        self._require("add a point", SessionState.DRAWING)
        self._stroke.append((float(lat), float(lng)))

    def finish_stroke(self) -> Optional[SplitResult]:
        """
        Split the boundary with the current stroke.

        Returns the preview, or None if the stroke was rejected; the reason
        is then in last_error and the caller should ask for a redraw.
        """
        self._require("finish a stroke", SessionState.DRAWING)
        stroke = thin_stroke(self._stroke, self.thin_tolerance) if self.thin_tolerance > 0 else self._stroke
        self._stroke = []
        try:
            self.preview = split_boundary(self.boundary, stroke)
        except NoValidSplit as exc:
            logger.info(f"Stroke rejected: {exc.reason}")
            self.last_error = exc
            self.preview = None
            self.state = SessionState.IDLE
            return None
        self.state = SessionState.PREVIEW_READY
        return self.preview

    def redraw(self) -> None:
        self._require("redraw", SessionState.PREVIEW_READY)
        self.preview = None
        self.state = SessionState.IDLE

    def submit(self) -> SubmissionDocument:
        """Store the preview under this observer's id and start a fresh aggregation."""
        self._require("submit", SessionState.PREVIEW_READY)
        doc = self.store.put(self.observer_id, self.preview)
        self._start_aggregation()
        self.preview = None
        return doc

    def refresh(self) -> None:
        """Recompute the heatmap from whatever is in the store."""
        self._require("refresh", SessionState.IDLE)
        self._start_aggregation()

    def _start_aggregation(self) -> None:
        # State only moves once the request is in
        self.scheduler.request(self.store.ring_pairs())
        self.state = SessionState.AGGREGATING

    def _apply(self, result: AggregationResult) -> None:
        self.result = result
        self.labels = label(self.grid, result.east_counts, result.west_counts)
        if self.layer is not None:
            self.layer.update(result, self.labels)

    def _settle(self, result: Optional[AggregationResult]) -> Optional[AggregationResult]:
        if result is not None:
            self._apply(result)
            self.state = SessionState.IDLE
        elif not self.scheduler.busy:
            # Failed or superseded with nothing left to run
            self.state = SessionState.IDLE
        return result

    def poll(self) -> Optional[AggregationResult]:
        if self.state is not SessionState.AGGREGATING:
            return None
        return self._settle(self.scheduler.poll())

    def wait(self, timeout: Optional[float] = None) -> Optional[AggregationResult]:
        if self.state is not SessionState.AGGREGATING:
            return self.result
        before = self.scheduler.latest
        latest = self.scheduler.wait(timeout)
        return self._settle(latest if latest is not before else None)

    def cancel_aggregation(self) -> None:
        self._require("cancel aggregation", SessionState.AGGREGATING)
        self.scheduler.cancel()
        self.state = SessionState.IDLE

    def close(self) -> None:
        self.scheduler.shutdown()
        if self.layer is not None:
            self.layer.dispose()
