import argparse
import json
import logging
import os
import sys
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from . import config
from .aggregator import aggregate_parallel
from .bands import label
from .boundary import load_boundary
from .errors import BoundaryLoadError, NoValidSplit
from .export import legend_frame, regions_geodataframe, split_geodataframe, write_cells, write_geojson
from .grid import build_grid
from .splitter import split_boundary, thin_stroke
from .store import SubmissionStore, new_observer_id
from .validation import validate_cell_table

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FATAL = 2
EXIT_NO_SPLIT = 3


def _read_stroke(path: str) -> List[Tuple[float, float]]:
    """Stroke file: JSON list of [lat, lng] pairs."""
    with open(path, "r", encoding="utf-8") as fh:
        return [(float(p[0]), float(p[1])) for p in json.load(fh)]


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Split a boundary into east/west and aggregate the votes")
    ap.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    ap.add_argument(
        "--boundary",
        default=config.BOUNDARY_PATH,
        help=f"Boundary GeoJSON path or URL (default: {config.BOUNDARY_PATH})",
    )
    sub = ap.add_subparsers(dest="command", required=True)

    p_split = sub.add_parser("split", help="Preview the east/west split for one stroke")
    p_split.add_argument("--stroke", required=True, help="JSON file with [[lat, lng], ...]")
    p_split.add_argument("--out", help="Optional GeoJSON output for the two halves")

    p_submit = sub.add_parser("submit", help="Split a stroke and store it for an observer")
    p_submit.add_argument("--stroke", required=True, help="JSON file with [[lat, lng], ...]")
    p_submit.add_argument("--store", default=config.STORE_PATH, help="Submission store JSON")
    p_submit.add_argument("--observer", help="Observer id (a new one is generated if omitted)")

    p_agg = sub.add_parser("aggregate", help="Aggregate all stored submissions over the grid")
    p_agg.add_argument("--store", default=config.STORE_PATH, help="Submission store JSON")
    p_agg.add_argument("--out", required=True, help="Output parquet for per-cell counts")
    p_agg.add_argument("--regions", help="Optional GeoJSON output for unanimous region labels")
    p_agg.add_argument("--legend", help="Optional CSV output for legend bands")
    p_agg.add_argument("--workers", type=int, default=config.MAX_WORKERS, help="Worker processes")
    p_agg.add_argument(
        "--partition",
        choices=("submission", "cells"),
        default=config.DEFAULT_PARTITION,
        help="How to split work across workers",
    )

    p_label = sub.add_parser("label", help="Legend and region labels from an aggregated cell table")
    p_label.add_argument("--cells", required=True, help="Parquet written by 'aggregate'")
    p_label.add_argument("--regions", help="Optional GeoJSON output for unanimous region labels")
    p_label.add_argument("--legend", help="Optional CSV output for legend bands")
    return ap


def _split(boundary, stroke_path: str):
    stroke = thin_stroke(_read_stroke(stroke_path))
    return split_boundary(boundary, stroke)


def cmd_split(args, boundary) -> int:
    split = _split(boundary, args.stroke)
    print(f"[split] east area={split.east.area:.6g} west area={split.west.area:.6g}")
    if args.out:
        write_geojson(split_geodataframe(split), args.out, "halves")
    return EXIT_OK


def cmd_submit(args, boundary) -> int:
    split = _split(boundary, args.stroke)
    store = SubmissionStore.load(args.store)
    observer = args.observer or new_observer_id()
    store.put(observer, split)
    store.save()
    print(f"[submit] stored submission for observer {observer} ({len(store)} total)")
    return EXIT_OK


def _write_labels(labels, args) -> None:
    if args.regions:
        write_geojson(regions_geodataframe(labels), args.regions, "region labels")
    if args.legend:
        os.makedirs(os.path.dirname(args.legend) or ".", exist_ok=True)
        legend_frame(labels).to_csv(args.legend, index=False)


def cmd_aggregate(args, boundary) -> int:
    store = SubmissionStore.load(args.store)
    grid = build_grid(boundary)
    result = aggregate_parallel(grid, store.ring_pairs(), max_workers=args.workers, partition=args.partition)
    write_cells(grid, result, args.out)

    labels = label(grid, result.east_counts, result.west_counts)
    _write_labels(labels, args)

    print(
        f"[aggregate] {result.submissions} submissions, {labels.counted_cells} counted cells, "
        f"{len(labels.legend)} legend bands, {len(labels.regions)} labeled regions"
    )
    if result.skipped_submissions or result.skipped_points:
        print(
            f"[aggregate] skipped {result.skipped_submissions} submissions, "
            f"{result.skipped_points} cell tests"
        )
    return EXIT_OK


def cmd_label(args, boundary) -> int:
    df = pd.read_parquet(args.cells)
    validate_cell_table(df)
    df = df.sort_values("cell")

    # The table carries its own resolution
    grid = build_grid(boundary, cols=int(df["col"].max()) + 1, rows=int(df["row"].max()) + 1)
    if len(df) != grid.size:
        raise ValueError(f"{args.cells} has {len(df)} cells, expected {grid.size} for a {grid.cols}x{grid.rows} grid")

    labels = label(grid, df["east"].to_numpy(), df["west"].to_numpy())
    _write_labels(labels, args)
    print(
        f"[label] {labels.counted_cells} counted cells, {len(labels.legend)} legend bands, "
        f"{len(labels.regions)} labeled regions"
    )
    return EXIT_OK


COMMANDS = {
    "split": cmd_split,
    "submit": cmd_submit,
    "aggregate": cmd_aggregate,
    "label": cmd_label,
}


def run_cli(args) -> int:
    try:
        boundary = load_boundary(args.boundary)
    except BoundaryLoadError as e:
        print(f"[cli] Fatal error: {e}")
        return EXIT_FATAL

    try:
        return COMMANDS[args.command](args, boundary)
    except NoValidSplit as e:
        print(f"[cli] {e}. Draw the line again.")
        return EXIT_NO_SPLIT
    except (OSError, ValueError) as e:
        print(f"[cli] Error: {e}")
        return EXIT_USAGE
    except KeyboardInterrupt:
        print("\n[cli] Interrupted.")
        return 130  # 128 + SIGINT


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    return run_cli(args)


if __name__ == "__main__":
    sys.exit(main())
