"""
follow_me - Follow an External Location Source with PX4 Follow Me

Connects to a PX4 vehicle over MAVLink using MAVSDK, takes off, switches to
Follow Me mode and relays location fixes from an external source (UDP
datagrams, HTTP requests or a simulated walk) as the follow target.

Main components:
- config: Follow Me settings and run configuration
- geo: Planar distance sanity check
- location_provider: External location sources
- relay: Forward fixes that pass the sanity check
- watchdog: Abort when the pilot leaves Follow Me
- follow_app: The full connect / follow / land sequence

Usage:
    follow-me udp://:14540
    python -m follow_me.follow_app udpin://0.0.0.0:14540 --location-source fake
"""

from follow_me.config import (
    APP_CONFIG,
    FOLLOW_ME_SETTINGS,
    AppConfig,
    FollowDirection,
    FollowMeSettings,
    LocationSource,
    get_config_summary,
)

from follow_me.geo import (
    LATITUDE_DEG_PER_METER,
    LONGITUDE_DEG_PER_METER,
    GeoPoint,
    axis_offsets_m,
    is_within_follow_distance,
    offset_point,
)

from follow_me.location_provider import (
    LocationParseError,
    LocationProvider,
    UdpLocationProvider,
    HttpLocationProvider,
    FakeLocationProvider,
    parse_location,
    square_walk,
)

from follow_me.relay import FollowTargetRelay
from follow_me.watchdog import FlightModeWatchdog
from follow_me.follow_app import FollowMeApp

__version__ = "0.1.0"

__all__ = [
    # Config
    "APP_CONFIG",
    "FOLLOW_ME_SETTINGS",
    "AppConfig",
    "FollowDirection",
    "FollowMeSettings",
    "LocationSource",
    "get_config_summary",
    # Geometry
    "LATITUDE_DEG_PER_METER",
    "LONGITUDE_DEG_PER_METER",
    "GeoPoint",
    "axis_offsets_m",
    "is_within_follow_distance",
    "offset_point",
    # Location sources
    "LocationParseError",
    "LocationProvider",
    "UdpLocationProvider",
    "HttpLocationProvider",
    "FakeLocationProvider",
    "parse_location",
    "square_walk",
    # Relay and app
    "FollowTargetRelay",
    "FlightModeWatchdog",
    "FollowMeApp",
]
