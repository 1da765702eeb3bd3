#!/usr/bin/env python3
"""
follow_app.py - Follow an External Location Source with Follow Me

Connects to the vehicle, takes off, puts the autopilot in Follow Me mode
and forwards location fixes from an external source as the follow target.
Fixes that are implausibly far from the vehicle are skipped.

Sequence:
1. Connect and wait for the vehicle to be discovered
2. Wait for health checks, arm, take off
3. Configure and start Follow Me
4. Relay location fixes for up to --max-seconds (or until the source stops)
5. Stop Follow Me and land

If the flight mode is switched away from Follow Me while following (e.g.
the pilot takes over on the RC), the app exits without further commands.

Usage:
    # Simulator, fixes sent to udp://localhost:65191
    follow-me udp://:14540

    # Simulated target walking around the vehicle
    follow-me udpin://0.0.0.0:14540 --location-source fake

    # Fixes posted over HTTP
    follow-me -c tcp --tcp-host px4-sitl --location-source http --location-port 8080
    curl -X POST http://localhost:8080/location -d '{"lat": 47.39774, "lon": 8.54559}'
"""

import asyncio
import logging
import sys
from typing import Optional

from mavsdk.follow_me import FollowMeError

from follow_me.common.drone_helpers import (
    arm_if_needed,
    connect_drone,
    create_argument_parser,
    get_connection_config_from_args,
    is_shutdown_requested,
    land_and_wait,
    setup_logging,
    setup_signal_handlers,
    takeoff_if_needed,
    wait_until_ready,
)
from follow_me.common.mavlink_connection import (
    is_valid_connection_url,
    print_connection_info,
    print_usage,
    validate_config,
)
from follow_me.common.telemetry_manager import TelemetryManager
from follow_me.config import (
    AppConfig,
    FollowDirection,
    FollowMeSettings,
    LocationSource,
    get_config_summary,
)
from follow_me.location_provider import (
    FakeLocationProvider,
    HttpLocationProvider,
    LocationProvider,
    UdpLocationProvider,
)
from follow_me.relay import FollowTargetRelay
from follow_me.watchdog import FlightModeWatchdog

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class FollowMeApp:
    """
    Runs one follow-me flight from connect to landing.

    Attributes:
        connection_string: MAVSDK connection string.
        config: Run configuration.
        settings: Follow Me plugin settings.
        drone: Connected MAVSDK System (set by run(), or injected).
        telemetry: Telemetry cache for the vehicle position.
        relay: Relay forwarding fixes to the autopilot.
        watchdog: Flight mode watchdog.
        provider: Active location source.
    """

    def __init__(
        self,
        connection_string: str,
        config: Optional[AppConfig] = None,
        settings: Optional[FollowMeSettings] = None,
        drone: Optional["System"] = None,
    ):
        """
        Initialize the app.

        Args:
            connection_string: MAVSDK connection string.
            config: Run configuration. Uses defaults if None.
            settings: Follow Me settings. Uses defaults if None.
            drone: Already connected System; skips connecting when given.
        """
        self.connection_string = connection_string
        self.config = config or AppConfig()
        self.settings = settings or FollowMeSettings()
        self.drone = drone

        self.telemetry: Optional[TelemetryManager] = None
        self.relay: Optional[FollowTargetRelay] = None
        self.watchdog: Optional[FlightModeWatchdog] = None
        self.provider: Optional[LocationProvider] = None
        self.follow_iterations = 0
        self.position_timeout_s = 5.0

    async def run(self) -> int:
        """
        Execute the full follow-me sequence.

        Returns:
            int: Process exit code (0 on success).
        """
        if self.drone is None:
            self.drone = await connect_drone(
                self.connection_string,
                timeout=self.config.connection_timeout_s,
            )
            if self.drone is None:
                logger.error("Connection failed")
                return EXIT_FAILURE

        self.telemetry = TelemetryManager(self.drone)
        await self.telemetry.start()
        try:
            return await self._fly()
        finally:
            if self.provider is not None:
                await self.provider.stop()
            if self.watchdog is not None:
                await self.watchdog.stop()
            await self.telemetry.stop()

    async def _fly(self) -> int:
        poll = self.config.poll_interval_s

        if not await wait_until_ready(self.drone, poll_interval=poll):
            return EXIT_FAILURE
        if not await arm_if_needed(self.drone):
            return EXIT_FAILURE
        if not await takeoff_if_needed(
            self.drone,
            altitude_threshold=self.config.takeoff_altitude_threshold_m,
            poll_interval=poll,
        ):
            if is_shutdown_requested():
                # Interrupted mid-climb, the vehicle may already be airborne
                await land_and_wait(self.drone, poll_interval=poll)
            return EXIT_FAILURE

        if not await self._start_follow_me():
            return EXIT_FAILURE

        self.watchdog = FlightModeWatchdog(self.drone)
        await self.watchdog.start()

        self.relay = FollowTargetRelay(
            self.drone,
            self.telemetry,
            max_follow_distance_m=self.config.max_follow_distance_m,
        )
        if not await self._start_location_source():
            return await self._abandon_follow()

        await self._follow_loop()

        await self.provider.stop()
        logger.info(
            f"Relay summary: {self.relay.forwarded} forwarded, "
            f"{self.relay.skipped} skipped, {self.relay.errors} errors"
        )

        if self.watchdog.aborted:
            # Pilot has taken over, leave the vehicle alone
            return EXIT_SUCCESS

        # Stop flight mode updates before leaving Follow Me ourselves
        await self.watchdog.stop()

        try:
            await self.drone.follow_me.stop()
        except FollowMeError as e:
            logger.error(f"Failed to stop FollowMe mode: {e}")
            return EXIT_FAILURE

        if not await land_and_wait(self.drone, poll_interval=poll):
            return EXIT_FAILURE
        return EXIT_SUCCESS

    async def _start_follow_me(self) -> bool:
        try:
            await self.drone.follow_me.set_config(self.settings.to_mavsdk())
        except FollowMeError as e:
            logger.warning(f"Failed to set FollowMe config: {e}")

        try:
            await self.drone.follow_me.start()
        except FollowMeError as e:
            logger.error(f"Failed to start FollowMe mode: {e}")
            return False

        logger.info("FollowMe mode started")
        return True

    async def _start_location_source(self) -> bool:
        provider = await self._create_provider()
        if provider is None:
            return False

        try:
            await provider.request_location_updates(self.relay.handle_fix)
        except OSError as e:
            logger.error(
                f"Could not start {self.config.location_source.value} location source: {e}"
            )
            return False

        self.provider = provider
        return True

    async def _abandon_follow(self) -> int:
        """Leave Follow Me and land after the run could not get going."""
        await self.watchdog.stop()
        try:
            await self.drone.follow_me.stop()
        except FollowMeError as e:
            logger.error(f"Failed to stop FollowMe mode: {e}")
        await land_and_wait(self.drone, poll_interval=self.config.poll_interval_s)
        return EXIT_FAILURE

    async def _create_provider(self) -> Optional[LocationProvider]:
        source = self.config.location_source
        if source == LocationSource.FAKE:
            if not await self.telemetry.wait_for_position(timeout=self.position_timeout_s):
                logger.error("No vehicle position to start the simulated target from")
                return None
            return FakeLocationProvider(
                start=self.telemetry.position.to_geo_point(),
                interval_s=self.config.poll_interval_s,
                timeout_s=self.config.location_timeout_s,
            )
        if source == LocationSource.HTTP:
            return HttpLocationProvider(
                host=self.config.location_host,
                port=self.config.location_port,
                timeout_s=self.config.location_timeout_s,
                status_callback=self.get_status,
            )
        return UdpLocationProvider(
            host=self.config.location_host,
            port=self.config.location_port,
            timeout_s=self.config.location_timeout_s,
        )

    async def _follow_loop(self) -> None:
        count = 0
        while self.provider.is_running:
            await asyncio.sleep(self.config.poll_interval_s)
            count += 1
            self.follow_iterations = count

            if self.watchdog.aborted:
                break
            if is_shutdown_requested():
                logger.warning("Follow interrupted by user")
                break
            if count >= self.config.max_seconds_to_follow:
                break

        if not self.provider.is_running:
            logger.info("Location source stopped")

    def get_status(self) -> dict:
        """
        Get app status for the HTTP status endpoint.

        Returns:
            dict: Relay, watchdog and telemetry state.
        """
        status = {
            "follow_iterations": self.follow_iterations,
            "max_seconds_to_follow": self.config.max_seconds_to_follow,
        }
        if self.relay is not None:
            status["relay"] = self.relay.get_status()
        if self.watchdog is not None:
            status["watchdog"] = {
                "armed": self.watchdog.armed,
                "aborted": self.watchdog.aborted,
            }
        if self.telemetry is not None:
            status["telemetry"] = self.telemetry.get_summary()
        return status


def build_parser():
    """
    Create the command line parser.

    Returns:
        argparse.ArgumentParser: Parser with connection and follow options.
    """
    parser = create_argument_parser(
        description="Follow an external location source using the autopilot's Follow Me mode"
    )

    follow_group = parser.add_argument_group("Follow Options")
    follow_group.add_argument(
        "--location-source",
        choices=[s.value for s in LocationSource],
        default=None,
        help="Where target fixes come from (default: FOLLOW_LOCATION_SOURCE env or 'udp')",
    )
    follow_group.add_argument(
        "--location-host",
        default=None,
        help="Bind address for the udp/http location source (default: localhost)",
    )
    follow_group.add_argument(
        "--location-port",
        type=int,
        default=None,
        help="Bind port for the udp/http location source (default: 65191)",
    )
    follow_group.add_argument(
        "--location-timeout",
        type=float,
        default=None,
        help="Stop following after this many seconds without a fix (default: 0 = never)",
    )
    follow_group.add_argument(
        "--max-seconds",
        type=int,
        default=None,
        help="Seconds to follow before landing (default: 60)",
    )
    follow_group.add_argument(
        "--max-distance",
        type=float,
        default=None,
        help="Skip fixes at least this many meters from the vehicle on either axis (default: 5.0)",
    )
    follow_group.add_argument(
        "--follow-height",
        type=float,
        default=8.0,
        help="Follow Me minimum height in meters (default: 8.0)",
    )
    follow_group.add_argument(
        "--follow-distance",
        type=float,
        default=1.0,
        help="Follow Me distance to the target in meters (default: 1.0)",
    )
    follow_group.add_argument(
        "--follow-direction",
        choices=[d.value for d in FollowDirection],
        default=FollowDirection.FRONT.value,
        help="Side of the target to follow from (default: front)",
    )
    return parser


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    setup_signal_handlers()

    if args.connection_url is not None and not is_valid_connection_url(args.connection_url):
        print_usage(parser.prog)
        sys.exit(EXIT_FAILURE)

    connection = get_connection_config_from_args(args)
    validation = validate_config(connection)
    for warning in validation["warnings"]:
        logger.warning(warning)
    if not validation["valid"]:
        for error in validation["errors"]:
            logger.error(error)
        sys.exit(EXIT_FAILURE)
    print_connection_info(connection)

    config = AppConfig.from_args(
        location_source=args.location_source,
        location_host=args.location_host,
        location_port=args.location_port,
        location_timeout_s=args.location_timeout,
        max_seconds_to_follow=args.max_seconds,
        max_follow_distance_m=args.max_distance,
    )
    settings = FollowMeSettings(
        follow_height_m=args.follow_height,
        follow_distance_m=args.follow_distance,
        follow_direction=FollowDirection(args.follow_direction),
    )
    print(get_config_summary(config, settings))

    app = FollowMeApp(connection.get_connection_string(), config, settings)
    try:
        exit_code = asyncio.run(app.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        exit_code = EXIT_FAILURE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
