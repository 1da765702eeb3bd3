#!/usr/bin/env python3
"""
drone_helpers.py - Vehicle Bring-up and Landing

The steps of a follow-me flight that do not involve Follow Me itself:
discovery, health wait, arm, takeoff and landing. Each step returns a bool
so the caller can turn a refused command into an exit code. Also holds the
process plumbing shared by the command line (logging, parser, Ctrl+C flag).

Usage:
    drone = await connect_drone("udpin://0.0.0.0:14540")
    await wait_until_ready(drone)
    if await arm_if_needed(drone) and await takeoff_if_needed(drone):
        # ... follow ...
        await land_and_wait(drone)
"""

import argparse
import asyncio
import logging
import signal
import time
from typing import Any, AsyncIterator, Optional

from mavsdk.action import ActionError

from follow_me.common.mavlink_connection import (
    CONNECTION_URL_USAGE,
    ConnectionConfig,
    add_connection_arguments,
)

logger = logging.getLogger(__name__)

# Set by SIGINT/SIGTERM; long waits poll it and give up
_shutdown_requested = False

# Argument names handed to ConnectionConfig.from_args
_CONNECTION_ARGS = (
    "connection_url",
    "connection_type",
    "uart_device",
    "uart_baud",
    "udp_host",
    "udp_port",
    "tcp_host",
    "tcp_port",
)


def _signal_handler(signum, frame):
    global _shutdown_requested
    logger.warning(f"Shutdown requested ({signal.Signals(signum).name})")
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """True after SIGINT or SIGTERM."""
    return _shutdown_requested


def reset_shutdown_request() -> None:
    """Clear the shutdown flag (used between runs and in tests)."""
    global _shutdown_requested
    _shutdown_requested = False


def setup_signal_handlers(signals=(signal.SIGINT, signal.SIGTERM)) -> None:
    """Route the given signals to the shutdown flag instead of killing the process."""
    for signum in signals:
        signal.signal(signum, _signal_handler)


def setup_logging(
    level: int = logging.INFO,
    format_string: str = "%(asctime)s [%(levelname)s] %(message)s",
    datefmt: str = "%H:%M:%S",
) -> logging.Logger:
    """
    Configure the root logger.

    aiohttp's per-request access log is only shown at DEBUG, since the
    location server can receive several requests a second.

    Args:
        level: Root logging level.
        format_string: Record format.
        datefmt: Timestamp format.

    Returns:
        logging.Logger: The root logger.
    """
    logging.basicConfig(level=level, format=format_string, datefmt=datefmt)
    if level > logging.DEBUG:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return logging.getLogger()


def create_argument_parser(
    description: str,
    add_verbose: bool = True,
) -> argparse.ArgumentParser:
    """
    Create a parser with the connection URL and connection options.

    The URL format help is shown as the parser epilog.

    Args:
        description: Program description.
        add_verbose: Add --verbose/-v.

    Returns:
        argparse.ArgumentParser: Parser ready for more argument groups.
    """
    parser = argparse.ArgumentParser(
        description=description,
        epilog=CONNECTION_URL_USAGE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    if add_verbose:
        parser.add_argument(
            "--verbose", "-v",
            action="store_true",
            help="Log at DEBUG level",
        )
    add_connection_arguments(parser)
    return parser


def get_connection_config_from_args(args: argparse.Namespace) -> ConnectionConfig:
    """Build the connection config, letting CLI values override FOLLOW_* env."""
    return ConnectionConfig.from_args(
        **{name: getattr(args, name, None) for name in _CONNECTION_ARGS}
    )


async def read_once(stream: AsyncIterator[Any]) -> Any:
    """
    Read the current value of a telemetry stream.

    Args:
        stream: A MAVSDK telemetry async iterator.

    Returns:
        The first value produced, or None if the stream ended.
    """
    async for value in stream:
        return value
    return None


async def connect_drone(
    connection_string: str,
    timeout: float = 0.0,
) -> Optional["System"]:
    """
    Connect to a drone and wait until its system is discovered.

    Args:
        connection_string: MAVSDK connection string.
        timeout: Discovery timeout in seconds (0 = wait forever).

    Returns:
        System: Connected MAVSDK System, or None if failed.
    """
    from mavsdk import System

    logger.info(f"Connecting to drone: {connection_string}")

    drone = System()
    try:
        await drone.connect(system_address=connection_string)
    except Exception as e:
        logger.error(f"Connection failed: {e}")
        return None

    logger.info("Waiting to discover system...")
    start_time = time.time()
    async for state in drone.core.connection_state():
        if state.is_connected:
            uuid = await _get_system_uuid(drone)
            logger.info(f"Discovered system with UUID: {uuid}")
            return drone

        elapsed = time.time() - start_time
        if timeout > 0 and elapsed > timeout:
            logger.error(f"Discovery timeout after {timeout}s")
            return None

        if is_shutdown_requested():
            logger.warning("Connection cancelled by user")
            return None

        await asyncio.sleep(0.5)

    return None


async def _get_system_uuid(drone: "System") -> str:
    """Hardware UID of the connected system, or "unknown"."""
    try:
        identification = await asyncio.wait_for(
            drone.info.get_identification(), timeout=5.0
        )
        return identification.hardware_uid or "unknown"
    except Exception as e:
        logger.debug(f"Could not read system identification: {e}")
        return "unknown"


async def wait_until_ready(
    drone: "System",
    poll_interval: float = 1.0,
) -> bool:
    """
    Wait until all health checks pass.

    Args:
        drone: Connected MAVSDK System.
        poll_interval: Seconds between checks.

    Returns:
        bool: True once healthy, False if shutdown was requested.
    """
    while not await read_once(drone.telemetry.health_all_ok()):
        if is_shutdown_requested():
            logger.warning("Preflight cancelled by user")
            return False
        logger.info("Waiting for system to be ready")
        await asyncio.sleep(poll_interval)

    logger.info("System is ready")
    return True


async def arm_if_needed(drone: "System") -> bool:
    """
    Arm the drone unless it is already armed.

    Args:
        drone: Connected MAVSDK System.

    Returns:
        bool: True if the drone is armed afterwards.
    """
    if not await read_once(drone.telemetry.armed()):
        try:
            await drone.action.arm()
        except ActionError as e:
            logger.error(f"Arming failed: {e}")
            return False

    logger.info("Armed")
    return True


async def takeoff_if_needed(
    drone: "System",
    altitude_threshold: float = 2.4,
    poll_interval: float = 1.0,
) -> bool:
    """
    Take off unless already in the air, then wait to climb.

    Args:
        drone: Connected MAVSDK System.
        altitude_threshold: Relative altitude (m) that counts as airborne.
        poll_interval: Seconds between altitude checks.

    Returns:
        bool: True once in the air, False if takeoff failed or was cancelled.
    """
    if not await read_once(drone.telemetry.in_air()):
        try:
            await drone.action.takeoff()
        except ActionError as e:
            logger.error(f"Takeoff failed: {e}")
            return False

        # Wait for drone to reach takeoff altitude
        while True:
            position = await read_once(drone.telemetry.position())
            if position is not None and position.relative_altitude_m >= altitude_threshold:
                break
            if is_shutdown_requested():
                logger.warning("Takeoff cancelled by user")
                return False
            await asyncio.sleep(poll_interval)

    logger.info("In Air...")
    return True


async def land_and_wait(
    drone: "System",
    poll_interval: float = 1.0,
) -> bool:
    """
    Land the drone and wait until it reports being on the ground.

    Args:
        drone: Connected MAVSDK System.
        poll_interval: Seconds between in-air checks.

    Returns:
        bool: True if landing succeeded.
    """
    try:
        await drone.action.land()
    except ActionError as e:
        logger.error(f"Landing failed: {e}")
        return False

    while await read_once(drone.telemetry.in_air()):
        logger.info("waiting until landed")
        await asyncio.sleep(poll_interval)

    logger.info("Landed...")
    return True
