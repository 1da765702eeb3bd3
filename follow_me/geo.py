#!/usr/bin/env python3
"""
geo.py - Planar Distance Sanity Check for Follow Targets

Converts latitude/longitude differences into approximate metric offsets
using fixed degrees-per-meter factors. Good enough to reject wild fixes
a few meters from the vehicle; not a geodesic distance.

Usage:
    from follow_me.geo import GeoPoint, is_within_follow_distance

    vehicle = GeoPoint(47.3977419, 8.5455938)
    target = GeoPoint(47.3977500, 8.5456000)
    if is_within_follow_distance(vehicle, target, max_distance_m=5.0):
        ...
"""

import math
from dataclasses import dataclass
from typing import Tuple

# Degrees of latitude/longitude per meter around mid latitudes
LATITUDE_DEG_PER_METER = 0.000009044
LONGITUDE_DEG_PER_METER = 0.000008985


@dataclass(frozen=True)
class GeoPoint:
    """
    A horizontal position in WGS84 degrees.

    Attributes:
        latitude_deg: Latitude in degrees (-90 to 90).
        longitude_deg: Longitude in degrees (-180 to 180).
    """

    latitude_deg: float
    longitude_deg: float

    @property
    def is_valid(self) -> bool:
        """Check that both coordinates are finite and in range."""
        return (
            math.isfinite(self.latitude_deg)
            and math.isfinite(self.longitude_deg)
            and -90.0 <= self.latitude_deg <= 90.0
            and -180.0 <= self.longitude_deg <= 180.0
        )

    def __str__(self) -> str:
        return f"{self.latitude_deg}, {self.longitude_deg}"


def axis_offsets_m(vehicle: GeoPoint, target: GeoPoint) -> Tuple[float, float]:
    """
    Approximate absolute north/east offsets between two points.

    Args:
        vehicle: Current vehicle position.
        target: Candidate follow target.

    Returns:
        Tuple[float, float]: (north_m, east_m), both non-negative.
    """
    lat_diff = abs(vehicle.latitude_deg - target.latitude_deg)
    lon_diff = abs(vehicle.longitude_deg - target.longitude_deg)
    return (lat_diff / LATITUDE_DEG_PER_METER, lon_diff / LONGITUDE_DEG_PER_METER)


def is_within_follow_distance(
    vehicle: GeoPoint,
    target: GeoPoint,
    max_distance_m: float,
) -> bool:
    """
    Check whether a target is roughly within max_distance_m of the vehicle.

    The check is per axis: the target is rejected if it is max_distance_m
    or more away in either the north or the east direction.

    Args:
        vehicle: Current vehicle position.
        target: Candidate follow target.
        max_distance_m: Exclusive bound on each axis offset.

    Returns:
        bool: True if the target passes the check.
    """
    north_m, east_m = axis_offsets_m(vehicle, target)
    # NaN offsets compare False, so bad coordinates are rejected here
    return north_m < max_distance_m and east_m < max_distance_m


def offset_point(origin: GeoPoint, north_m: float, east_m: float) -> GeoPoint:
    """
    Move a point by a metric offset using the same fixed factors.

    Args:
        origin: Starting point.
        north_m: Meters to move north (negative = south).
        east_m: Meters to move east (negative = west).

    Returns:
        GeoPoint: The shifted point.
    """
    return GeoPoint(
        latitude_deg=origin.latitude_deg + north_m * LATITUDE_DEG_PER_METER,
        longitude_deg=origin.longitude_deg + east_m * LONGITUDE_DEG_PER_METER,
    )
