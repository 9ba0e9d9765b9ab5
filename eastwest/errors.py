"""
Error taxonomy for splitting, aggregation and boundary loading.

Geometry-level failures are meant to be caught at the smallest scope
(one submission, one cell). Only BoundaryLoadError is fatal.
"""
from __future__ import annotations


class EastWestError(Exception):
    """Base class for all eastwest errors."""


class SplitError(EastWestError):
    """A stroke could not be turned into an east/west split."""


class NoValidSplit(SplitError):
    """
    The stroke does not cleanly bisect the boundary.

    Raised for strokes that are too short, do not cross the boundary,
    self-intersect, or leave one side empty or degenerate. The caller
    should prompt for a redraw.
    """

    def __init__(self, reason: str):
        super().__init__(f"No valid split: {reason}")
        self.reason = reason


class GeometryError(EastWestError):
    """Base class for stored-geometry problems found during aggregation."""


class InvalidPolygon(GeometryError):
    """A stored ring is self-intersecting, too short or otherwise malformed."""


class PointTestFailure(GeometryError):
    """A single point-in-polygon test raised or was undefined."""


class BoundaryLoadError(EastWestError):
    """The reference boundary could not be fetched or parsed."""


class SessionStateError(EastWestError):
    """An operation was attempted in a session state that does not allow it."""
