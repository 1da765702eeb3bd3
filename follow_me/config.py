#!/usr/bin/env python3
"""
config.py - Follow Me Configuration Parameters

Centralized configuration for the follow-me relay: how the autopilot's
Follow Me mode is set up, where location fixes come from, and the
limits applied while following.

Settings can be overridden from the environment (FOLLOW_* variables) and
then from the command line, the same layering the connection config uses.

Usage:
    from follow_me.config import APP_CONFIG, FOLLOW_ME_SETTINGS

    config = AppConfig.from_args(max_seconds_to_follow=120)
"""

import logging
import os
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict

logger = logging.getLogger(__name__)


class FollowDirection(Enum):
    """Where the vehicle positions itself relative to the target."""

    FRONT = "front"
    FRONT_RIGHT = "front_right"
    FRONT_LEFT = "front_left"
    BEHIND = "behind"


# Follow angle (deg) for each direction, clockwise with 0 = in front of target
FOLLOW_ANGLE_DEG = {
    FollowDirection.FRONT: 0.0,
    FollowDirection.FRONT_RIGHT: 45.0,
    FollowDirection.BEHIND: 180.0,
    FollowDirection.FRONT_LEFT: -45.0,
}


class LocationSource(Enum):
    """Where target location fixes come from."""

    UDP = "udp"
    HTTP = "http"
    FAKE = "fake"


@dataclass
class FollowMeSettings:
    """
    Configuration pushed to the autopilot's Follow Me plugin.

    Attributes:
        follow_height_m: Minimum height above the target (m).
        follow_distance_m: Horizontal distance kept from the target (m).
        follow_direction: Side of the target to follow from.
        responsiveness: 0.0 (fast) to 1.0 (smooth) filtering of target motion.
        max_tangential_vel_m_s: Speed limit while orbiting to the follow angle.
        altitude_mode: "constant", "terrain" or "target_gps".
    """

    follow_height_m: float = 8.0
    follow_distance_m: float = 1.0
    follow_direction: FollowDirection = FollowDirection.FRONT
    responsiveness: float = 0.1
    max_tangential_vel_m_s: float = 8.0
    altitude_mode: str = "constant"

    @property
    def follow_angle_deg(self) -> float:
        """Follow angle for the configured direction."""
        return FOLLOW_ANGLE_DEG[self.follow_direction]

    def to_mavsdk(self):
        """
        Build the MAVSDK follow_me.Config for these settings.

        Returns:
            mavsdk.follow_me.Config: Config ready for set_config().
        """
        from mavsdk.follow_me import Config

        altitude_mode = Config.FollowAltitudeMode[self.altitude_mode.upper()]
        return Config(
            follow_height_m=self.follow_height_m,
            follow_distance_m=self.follow_distance_m,
            responsiveness=self.responsiveness,
            altitude_mode=altitude_mode,
            max_tangential_vel_m_s=self.max_tangential_vel_m_s,
            follow_angle_deg=self.follow_angle_deg,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "follow_height_m": self.follow_height_m,
            "follow_distance_m": self.follow_distance_m,
            "follow_direction": self.follow_direction.value,
            "follow_angle_deg": self.follow_angle_deg,
            "responsiveness": self.responsiveness,
            "max_tangential_vel_m_s": self.max_tangential_vel_m_s,
            "altitude_mode": self.altitude_mode,
        }


@dataclass
class AppConfig:
    """
    Configuration for the follow-me run itself.

    Attributes:
        max_follow_distance_m: Fixes this far or farther from the vehicle
            on either axis are skipped.
        max_seconds_to_follow: Follow loop iterations before landing.
        takeoff_altitude_threshold_m: Relative altitude that counts as airborne.
        location_source: Where fixes come from (udp, http or fake).
        location_host: Bind address for the udp/http sources.
        location_port: Bind port for the udp/http sources.
        location_timeout_s: Stop the source after this long without a fix
            (0 = never).
        poll_interval_s: Sleep between follow loop iterations.
        connection_timeout_s: Discovery timeout (0 = wait forever).
    """

    max_follow_distance_m: float = 5.0
    max_seconds_to_follow: int = 60
    takeoff_altitude_threshold_m: float = 2.4
    location_source: LocationSource = LocationSource.UDP
    location_host: str = "localhost"
    location_port: int = 65191
    location_timeout_s: float = 0.0
    poll_interval_s: float = 1.0
    connection_timeout_s: float = 0.0

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Create configuration from FOLLOW_* environment variables.

        Unset variables keep the dataclass defaults.

        Returns:
            AppConfig: Configuration populated from environment.
        """
        config = cls()
        for f in fields(cls):
            raw = os.environ.get(f"FOLLOW_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                setattr(config, f.name, _coerce(getattr(config, f.name), raw))
            except ValueError:
                logger.warning(f"Ignoring invalid FOLLOW_{f.name.upper()}={raw!r}")
        return config

    @classmethod
    def from_args(cls, **overrides) -> "AppConfig":
        """
        Create configuration from environment with argument overrides.

        Args:
            **overrides: Field values; None means "not given".

        Returns:
            AppConfig: Configuration with overrides applied.

        Raises:
            TypeError: If an override names an unknown field.
        """
        config = cls.from_env()
        names = {f.name for f in fields(cls)}
        for name, value in overrides.items():
            if name not in names:
                raise TypeError(f"Unknown AppConfig field: {name}")
            if value is None:
                continue
            if name == "location_source" and not isinstance(value, LocationSource):
                value = LocationSource(value.lower())
            setattr(config, name, value)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "max_follow_distance_m": self.max_follow_distance_m,
            "max_seconds_to_follow": self.max_seconds_to_follow,
            "takeoff_altitude_threshold_m": self.takeoff_altitude_threshold_m,
            "location_source": self.location_source.value,
            "location_host": self.location_host,
            "location_port": self.location_port,
            "location_timeout_s": self.location_timeout_s,
            "poll_interval_s": self.poll_interval_s,
            "connection_timeout_s": self.connection_timeout_s,
        }


def _coerce(current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, LocationSource):
        return LocationSource(raw.lower())
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


# Default configuration instances
APP_CONFIG = AppConfig()
FOLLOW_ME_SETTINGS = FollowMeSettings()


def get_config_summary(
    config: AppConfig = APP_CONFIG,
    settings: FollowMeSettings = FOLLOW_ME_SETTINGS,
) -> str:
    """
    Get a human-readable summary of the configuration.

    Returns:
        str: Formatted configuration summary.
    """
    if config.location_source == LocationSource.FAKE:
        source = "fake (simulated walk around the vehicle)"
    else:
        source = (
            f"{config.location_source.value} on "
            f"{config.location_host}:{config.location_port}"
        )
    timeout = (
        f"{config.location_timeout_s:.0f}s" if config.location_timeout_s > 0 else "none"
    )
    lines = [
        "=" * 50,
        "Follow Me Configuration",
        "=" * 50,
        "",
        "Follow Me mode:",
        f"  Height: {settings.follow_height_m:.1f}m",
        f"  Distance: {settings.follow_distance_m:.1f}m",
        f"  Direction: {settings.follow_direction.value} ({settings.follow_angle_deg:.0f} deg)",
        f"  Responsiveness: {settings.responsiveness:.2f}",
        f"  Altitude mode: {settings.altitude_mode}",
        "",
        "Relay:",
        f"  Location source: {source}",
        f"  Source timeout: {timeout}",
        f"  Max target offset: {config.max_follow_distance_m:.1f}m per axis",
        f"  Follow duration: {config.max_seconds_to_follow} iterations "
        f"x {config.poll_interval_s:.1f}s",
        "=" * 50,
    ]
    return "\n".join(lines)
