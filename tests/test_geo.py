#!/usr/bin/env python3
"""
test_geo.py - Tests for the planar distance sanity check

Run with:
    pytest tests/test_geo.py -v
"""

import math

import pytest

from follow_me.geo import (
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
    GeoPoint,
    axis_offsets_m,
    is_within_follow_distance,
    offset_point,
)

VEHICLE = GeoPoint(47.3977419, 8.5455938)


class TestGeoPoint:
    """Tests for GeoPoint."""

    def test_valid_point(self):
        assert VEHICLE.is_valid

    @pytest.mark.parametrize(
        "lat,lon",
        [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (math.nan, 8.0), (47.0, math.inf)],
    )
    def test_invalid_points(self, lat, lon):
        assert not GeoPoint(lat, lon).is_valid

    def test_string_representation(self):
        assert str(GeoPoint(1.5, -2.25)) == "1.5, -2.25"


class TestAxisOffsets:
    """Tests for axis_offsets_m."""

    def test_same_point_is_zero(self):
        assert axis_offsets_m(VEHICLE, VEHICLE) == (0.0, 0.0)

    def test_offsets_are_absolute(self):
        north = GeoPoint(VEHICLE.latitude_deg + 3 * LATITUDE_DEG_PER_METER, VEHICLE.longitude_deg)
        south = GeoPoint(VEHICLE.latitude_deg - 3 * LATITUDE_DEG_PER_METER, VEHICLE.longitude_deg)

        assert axis_offsets_m(VEHICLE, north)[0] == pytest.approx(3.0)
        assert axis_offsets_m(VEHICLE, south)[0] == pytest.approx(3.0)

    def test_east_offset_uses_longitude_factor(self):
        east = GeoPoint(VEHICLE.latitude_deg, VEHICLE.longitude_deg + 2 * LONGITUDE_DEG_PER_METER)
        north_m, east_m = axis_offsets_m(VEHICLE, east)
        assert north_m == 0.0
        assert east_m == pytest.approx(2.0)


class TestFollowDistance:
    """Tests for is_within_follow_distance."""

    def test_close_target_accepted(self):
        target = offset_point(VEHICLE, 1.0, -1.0)
        assert is_within_follow_distance(VEHICLE, target, 5.0)

    def test_far_north_rejected(self):
        target = offset_point(VEHICLE, 6.0, 0.0)
        assert not is_within_follow_distance(VEHICLE, target, 5.0)

    def test_far_east_rejected(self):
        target = offset_point(VEHICLE, 0.0, -6.0)
        assert not is_within_follow_distance(VEHICLE, target, 5.0)

    def test_box_not_radius(self):
        # 4.5m on both axes is ~6.4m away, but passes the per-axis check
        target = offset_point(VEHICLE, 4.5, 4.5)
        assert is_within_follow_distance(VEHICLE, target, 5.0)

    def test_bound_is_exclusive(self):
        target = GeoPoint(VEHICLE.latitude_deg + 10 * LATITUDE_DEG_PER_METER, VEHICLE.longitude_deg)
        north_m, _ = axis_offsets_m(VEHICLE, target)
        assert not is_within_follow_distance(VEHICLE, target, north_m)
        assert is_within_follow_distance(VEHICLE, target, north_m + 1e-6)

    def test_nan_target_rejected(self):
        assert not is_within_follow_distance(VEHICLE, GeoPoint(math.nan, math.nan), 5.0)


class TestOffsetPoint:
    """Tests for offset_point."""

    def test_offset_round_trip(self):
        moved = offset_point(VEHICLE, 3.0, -2.0)
        north_m, east_m = axis_offsets_m(VEHICLE, moved)
        assert north_m == pytest.approx(3.0)
        assert east_m == pytest.approx(2.0)
        assert moved.latitude_deg > VEHICLE.latitude_deg
        assert moved.longitude_deg < VEHICLE.longitude_deg
