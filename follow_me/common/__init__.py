"""
Common utilities for the follow-me app.

Modules:
    mavlink_connection: Connection URL building and validation.
    drone_helpers: Common drone operations (connect, preflight, land, etc.)
    telemetry_manager: Cached telemetry for MAVSDK.
"""

from .mavlink_connection import (
    ConnectionConfig,
    ConnectionType,
    is_valid_connection_url,
    validate_config,
)

from .drone_helpers import (
    connect_drone,
    read_once,
    wait_until_ready,
    arm_if_needed,
    takeoff_if_needed,
    land_and_wait,
    setup_logging,
    create_argument_parser,
    get_connection_config_from_args,
    is_shutdown_requested,
    reset_shutdown_request,
    setup_signal_handlers,
)

from .telemetry_manager import (
    TelemetryManager,
    PositionData,
    FlightStateData,
)

__all__ = [
    # mavlink_connection
    "ConnectionConfig",
    "ConnectionType",
    "is_valid_connection_url",
    "validate_config",
    # drone_helpers
    "connect_drone",
    "read_once",
    "wait_until_ready",
    "arm_if_needed",
    "takeoff_if_needed",
    "land_and_wait",
    "setup_logging",
    "create_argument_parser",
    "get_connection_config_from_args",
    "is_shutdown_requested",
    "reset_shutdown_request",
    "setup_signal_handlers",
    # telemetry_manager
    "TelemetryManager",
    "PositionData",
    "FlightStateData",
]
