from .aggregator import AggregationResult, aggregate, aggregate_parallel
from .bands import LabelResult, label
from .boundary import load_boundary
from .errors import NoValidSplit
from .grid import Grid, build_grid
from .session import SessionState, SplitSession
from .splitter import SplitResult, split_boundary
from .store import SubmissionStore

__all__ = [
    "AggregationResult",
    "Grid",
    "LabelResult",
    "NoValidSplit",
    "SessionState",
    "SplitResult",
    "SplitSession",
    "SubmissionStore",
    "aggregate",
    "aggregate_parallel",
    "build_grid",
    "label",
    "load_boundary",
    "split_boundary",
]

# -------------------------
# eastwest file structure
# -------------------------
# config.py: constants & defaults (grid resolution, split tolerances, env overrides).
# errors.py: exception taxonomy.
# geometry_utils.py: shapely seam: rings, validation, point-in-polygon.
# boundary.py: load the reference boundary (file / URL / GeoJSON).
# splitter.py: stroke -> east/west polygons.
# grid.py: sampling grid and its 2D index.
# aggregator.py: per-cell vote tallies; worker request/response; process pool.
# bands.py: legend bands, connected bands, unanimous region labels.
# store.py: submission documents, last-write-wins store.
# session.py: session state machine + single-slot aggregation scheduler.
# layer.py: heatmap layer over a drawing target.
# export.py / validation.py: parquet + GeoJSON outputs and their checks.
# cli.py: argparse entrypoint.

__version__ = "0.1.0"
