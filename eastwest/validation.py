"""
Validation for exported cell tables.

Every cell table must carry the grid index and both vote columns with
fixed dtypes, one row per cell, and zero votes outside the boundary.
"""
from __future__ import annotations

from typing import Dict, Optional, Set

import pandas as pd

CELL_TABLE_DTYPES: Dict[str, str] = {
    "cell": "int32",
    "row": "int32",
    "col": "int32",
    "lng": "float64",
    "lat": "float64",
    "in_boundary": "bool",
    "east": "uint32",
    "west": "uint32",
    "east_share": "float32",
}


def validate_frame_schema(
    df: pd.DataFrame,
    required_columns: Set[str],
    source_path: Optional[str] = None
) -> None:
    """
    Validate that a DataFrame has all required columns.

    Raises:
        ValueError: if any required columns are missing
    """
    missing = required_columns - set(df.columns)
    if missing:
        source = f" from {source_path}" if source_path else ""
        raise ValueError(
            f"Missing required columns{source}: {missing}. "
            f"Found columns: {set(df.columns)}"
        )


def validate_cell_table(
    df: pd.DataFrame,
    grid_size: Optional[int] = None,
    submissions: Optional[int] = None,
) -> None:
    """
    Validate a per-cell vote table.

    Args:
        df: table built by export.cells_frame (or read back from parquet)
        grid_size: expected number of rows, if known
        submissions: number of submissions aggregated, if known; no cell
            may hold more votes than that

    Raises:
        ValueError: if validation fails
    """
    validate_frame_schema(df, set(CELL_TABLE_DTYPES))

    for col, dtype in CELL_TABLE_DTYPES.items():
        if str(df[col].dtype) != dtype:
            raise ValueError(f"Column '{col}' must be {dtype}, got {df[col].dtype}")

    dup_count = df.duplicated(subset=["cell"]).sum()
    if dup_count > 0:
        raise ValueError(f"Found {dup_count} duplicate 'cell' values")

    if grid_size is not None and len(df) != grid_size:
        raise ValueError(f"Expected {grid_size} cells, got {len(df)}")

    outside = df[~df["in_boundary"]]
    stray = int(((outside["east"] > 0) | (outside["west"] > 0)).sum())
    if stray:
        raise ValueError(f"Found {stray} cells outside the boundary with votes")

    if submissions is not None:
        totals = df["east"].astype("int64") + df["west"].astype("int64")
        over = int((totals > submissions).sum())
        if over:
            raise ValueError(f"Found {over} cells with more than {submissions} votes")


def enforce_cell_types(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy with the standard cell table dtypes."""
    result = df.copy()
    for col, dtype in CELL_TABLE_DTYPES.items():
        if col in result.columns and str(result[col].dtype) != dtype:
            result[col] = result[col].astype(dtype, copy=False)
    return result
