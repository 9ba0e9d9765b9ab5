"""
Test Line Splitter

Validates that a stroke turns the boundary into two polygons that
- together cover the boundary (area within 0.1%)
- overlap only along the stroke
- are oriented east/west by longitude
and that bad strokes raise NoValidSplit instead of anything else.
"""
import logging

import pytest
from shapely.geometry import GeometryCollection, LineString, MultiPolygon, box

from eastwest.errors import NoValidSplit
from eastwest.geometry_utils import largest_polygon
from eastwest.splitter import SplitResult, right_side_is_east, split_boundary, thin_stroke

from conftest import vertical_stroke


CROSSING_STROKES = [
    vertical_stroke(0.5),
    vertical_stroke(0.3),
    [(2.0, 0.8), (-1.0, 0.2)],                              # diagonal, drawn north to south
    [(-0.5, 0.2), (0.3, 0.4), (0.6, 0.35), (1.5, 0.7)],     # freehand wiggle
    [(0.5, -1.0), (0.5, 2.0)],                              # horizontal
    [(0.3, 0.5), (0.7, 0.5)],                               # starts and ends inside
]


class TestSplitBoundary:
    """Geometry of successful splits."""

    def test_vertical_line_halves_unit_square(self, unit_square):
        split = split_boundary(unit_square, vertical_stroke(0.5))

        assert split.east.area == pytest.approx(0.5, rel=1e-9)
        assert split.west.area == pytest.approx(0.5, rel=1e-9)
        assert split.east.bounds == pytest.approx((0.5, 0.0, 1.0, 1.0))
        assert split.west.bounds == pytest.approx((0.0, 0.0, 0.5, 1.0))

    def test_orientation_independent_of_draw_direction(self, unit_square):
        """Drawing north-to-south must still put the right half in east."""
        split = split_boundary(unit_square, [(2.0, 0.5), (-1.0, 0.5)])

        assert split.east.centroid.x > 0.5
        assert split.west.centroid.x < 0.5

    @pytest.mark.parametrize("stroke", CROSSING_STROKES)
    def test_area_conserved(self, unit_square, stroke):
        split = split_boundary(unit_square, stroke)
        total = split.east.area + split.west.area

        assert abs(total - unit_square.area) <= 1e-3 * unit_square.area, (
            f"east+west={total} differs from boundary area {unit_square.area}"
        )

    @pytest.mark.parametrize("stroke", CROSSING_STROKES)
    def test_halves_do_not_overlap(self, unit_square, stroke):
        split = split_boundary(unit_square, stroke)

        assert split.east.intersection(split.west).area < 1e-9

    def test_east_has_larger_longitudes(self, city):
        stroke = [(43.55, -79.40), (43.70, -79.42), (43.90, -79.38)]
        split = split_boundary(city, stroke)

        assert split.east.centroid.x > split.west.centroid.x
        assert split.east.area + split.west.area == pytest.approx(city.area, rel=1e-3)

    def test_rings_are_closed(self, split_at):
        split = split_at(0.3)

        for ring in (split.east_ring, split.west_ring):
            assert ring[0] == ring[-1]
            assert len(ring) >= 4

    def test_from_rings_rebuilds_polygons(self, split_at):
        split = split_at(0.3)
        rebuilt = SplitResult.from_rings(split.east_ring, split.west_ring)

        assert rebuilt.east.area == pytest.approx(0.7)
        assert rebuilt.west.area == pytest.approx(0.3)


class TestSideTieBreak:
    """Strokes running exactly east-west: the north side is east either way."""

    def test_heading_west_puts_north_in_east(self, unit_square):
        split = split_boundary(unit_square, [(0.5, 2.0), (0.5, -1.0)])

        assert split.east.centroid.y > 0.5

    def test_heading_east_puts_north_in_east(self, unit_square):
        split = split_boundary(unit_square, [(0.5, -1.0), (0.5, 2.0)])

        assert split.east.centroid.y > 0.5

    def test_right_side_orientation(self):
        # heading north: right is east
        assert right_side_is_east((0.0, 0.0), (0.0, 1.0), 0.0, 1.0)
        # heading south: right is west
        assert not right_side_is_east((0.0, 1.0), (0.0, 0.0), 0.0, -1.0)


class TestMultiPartSplit:
    """Cuts through a concave notch give several parts on one side."""

    def test_keeps_largest_part(self, wide_l, caplog):
        # Line x + y = 2.5 cuts off the end of the long arm and the tip of the short one
        stroke = [(-1.0, 3.5), (3.5, -1.0)]
        with caplog.at_level(logging.WARNING, logger="eastwest.splitter"):
            split = split_boundary(wide_l, stroke)

        assert split.east.area == pytest.approx(1.0, rel=1e-6)
        assert split.west.area == pytest.approx(2.875, rel=1e-6)
        assert any("keeping the largest" in r.message for r in caplog.records)

    def test_largest_part_from_mixed_collection(self):
        small = box(0, 0, 1, 1)
        big = box(2, 0, 4, 2)
        mixed = GeometryCollection([small, LineString([(0, 0), (5, 5)]), MultiPolygon([big])])

        assert largest_polygon(mixed).equals(big)
        assert largest_polygon(GeometryCollection()) is None


class TestNoValidSplit:
    """Bad strokes are reported, never raised as anything else."""

    @pytest.mark.parametrize("stroke", [[], [(0.5, 0.5)], None])
    def test_fewer_than_two_points(self, unit_square, stroke):
        with pytest.raises(NoValidSplit):
            split_boundary(unit_square, stroke)

    def test_same_start_and_end(self, unit_square):
        with pytest.raises(NoValidSplit):
            split_boundary(unit_square, [(0.5, 0.5), (0.9, 0.9), (0.5, 0.5)])

    def test_stroke_misses_boundary(self, unit_square):
        with pytest.raises(NoValidSplit, match="does not cross"):
            split_boundary(unit_square, [(5.0, 5.0), (6.0, 6.0)])

    def test_self_intersecting_stroke(self, unit_square):
        loop = [(-1.0, 0.5), (0.6, 0.5), (0.6, 0.8), (0.4, 0.8), (0.4, 0.3), (2.0, 0.3)]
        with pytest.raises(NoValidSplit):
            split_boundary(unit_square, loop)

    def test_non_finite_points(self, unit_square):
        with pytest.raises(NoValidSplit):
            split_boundary(unit_square, [(-1.0, float("nan")), (2.0, 0.5)])

    def test_unreadable_points(self, unit_square):
        with pytest.raises(NoValidSplit):
            split_boundary(unit_square, [("a", "b"), (2.0, 0.5)])

    def test_no_valid_split_carries_reason(self, unit_square):
        with pytest.raises(NoValidSplit) as info:
            split_boundary(unit_square, [(0.5, 0.5)])

        assert "at least 2 points" in info.value.reason


class TestThinStroke:
    def test_drops_collinear_points_keeps_endpoints(self):
        stroke = [(0.0, 0.0), (0.25, 0.0), (0.5, 0.0), (0.75, 0.0), (1.0, 0.0)]
        thinned = thin_stroke(stroke, tolerance=1e-6)

        assert thinned == [(0.0, 0.0), (1.0, 0.0)]

    def test_keeps_real_corners(self):
        stroke = [(0.0, 0.0), (0.5, 0.5), (1.0, 0.0)]

        assert thin_stroke(stroke, tolerance=0.01) == stroke

    def test_short_strokes_untouched(self):
        assert thin_stroke([(1.0, 2.0)], tolerance=1.0) == [(1.0, 2.0)]
