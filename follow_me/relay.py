#!/usr/bin/env python3
"""
relay.py - Forward External Location Fixes to Follow Me

Each fix from a location provider is compared with the vehicle's current
position. Fixes roughly within max_follow_distance_m (per axis) are sent
to the autopilot as the new follow target; anything farther is skipped,
since a jump of several meters usually means a bad fix.

Usage:
    relay = FollowTargetRelay(drone, telemetry, max_follow_distance_m=5.0)
    await provider.request_location_updates(relay.handle_fix)
"""

import logging
import math
import time
from typing import Any, Dict, Optional

from mavsdk.follow_me import FollowMeError, TargetLocation

from follow_me.common.telemetry_manager import TelemetryManager
from follow_me.geo import GeoPoint, axis_offsets_m, is_within_follow_distance

logger = logging.getLogger(__name__)


class FollowTargetRelay:
    """
    Sanity-checks location fixes and forwards them to the Follow Me plugin.

    Attributes:
        max_follow_distance_m: Per-axis bound for accepting a fix.
        received: Fixes handled.
        forwarded: Fixes sent to the autopilot.
        skipped: Fixes rejected by the distance check or for lack of position.
        errors: Fixes the autopilot refused.
        last_forwarded: Most recent fix sent to the autopilot.
    """

    def __init__(
        self,
        drone: "System",
        telemetry: TelemetryManager,
        max_follow_distance_m: float = 5.0,
    ):
        """
        Initialize the relay.

        Args:
            drone: Connected MAVSDK System.
            telemetry: Running telemetry cache for the vehicle position.
            max_follow_distance_m: Fixes this far or farther on either axis
                are skipped.
        """
        self._drone = drone
        self._telemetry = telemetry
        self.max_follow_distance_m = max_follow_distance_m

        self.received = 0
        self.forwarded = 0
        self.skipped = 0
        self.errors = 0
        self.last_forwarded: Optional[GeoPoint] = None
        self.last_forwarded_time = 0.0

    async def handle_fix(self, latitude_deg: float, longitude_deg: float) -> bool:
        """
        Handle one location fix.

        Args:
            latitude_deg: Target latitude.
            longitude_deg: Target longitude.

        Returns:
            bool: True if the fix was forwarded to the autopilot.
        """
        self.received += 1
        target = GeoPoint(latitude_deg, longitude_deg)

        if not self._telemetry.has_position:
            self.skipped += 1
            logger.warning(f"No vehicle position yet, skipped position {target}")
            return False

        vehicle = self._telemetry.position.to_geo_point()
        if not is_within_follow_distance(vehicle, target, self.max_follow_distance_m):
            self.skipped += 1
            north_m, east_m = axis_offsets_m(vehicle, target)
            logger.warning(f"Warning: skipped position {target}")
            logger.debug(f"  offset from vehicle: {north_m:.1f}m N/S, {east_m:.1f}m E/W")
            return False

        target_location = TargetLocation(
            latitude_deg=latitude_deg,
            longitude_deg=longitude_deg,
            absolute_altitude_m=math.nan,
            velocity_x_m_s=0.0,
            velocity_y_m_s=0.0,
            velocity_z_m_s=0.0,
        )
        try:
            await self._drone.follow_me.set_target_location(target_location)
        except FollowMeError as e:
            self.errors += 1
            logger.error(f"Failed to set target location: {e}")
            return False

        self.forwarded += 1
        self.last_forwarded = target
        self.last_forwarded_time = time.time()
        logger.debug(f"Target location set: {target}")
        return True

    def get_status(self) -> Dict[str, Any]:
        """
        Get relay status.

        Returns:
            dict: Counters and last forwarded fix.
        """
        return {
            "max_follow_distance_m": self.max_follow_distance_m,
            "received": self.received,
            "forwarded": self.forwarded,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_forwarded": (
                {
                    "lat": self.last_forwarded.latitude_deg,
                    "lon": self.last_forwarded.longitude_deg,
                    "age_s": time.time() - self.last_forwarded_time,
                }
                if self.last_forwarded
                else None
            ),
        }
