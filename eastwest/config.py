# Sampling grid resolution. Changing either value invalidates every
# aggregate computed so far, so it is fixed here rather than negotiated.
import os

GRID_COLS = 80
GRID_ROWS = 80

# Line splitting
MASK_EXTENT_FACTOR = 3.0       # mask reach, as a multiple of the boundary bbox diagonal
PROBE_EPSILON = 1e-6           # offset used to decide which side of the stroke is east
MIN_PART_AREA_RATIO = 1e-6     # a side smaller than this share of the boundary is degenerate
AREA_REL_TOLERANCE = 1e-3      # east + west must match the boundary area within 0.1%
STROKE_THIN_TOLERANCE = 1e-4   # degrees; used when thinning strokes before storage

# Aggregation
MAX_WORKERS = int(os.environ.get("EW_MAX_WORKERS", max(1, (os.cpu_count() or 2) - 1)))
DEFAULT_PARTITION = "submission"  # or "cells"

# Boundary + store locations
BOUNDARY_PATH = os.environ.get("EW_BOUNDARY_PATH", os.path.join("data", "boundary.geojson"))
STORE_PATH = os.environ.get("EW_STORE_PATH", os.path.join("data", "submissions.json"))

# Toronto, the region the first deployment bisects
DEFAULT_CENTER = (43.7181, -79.3762)   # (lat, lng)
DEFAULT_ZOOM = 11

SIDE_EAST = "east"
SIDE_WEST = "west"
