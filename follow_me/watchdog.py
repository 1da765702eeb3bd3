#!/usr/bin/env python3
"""
watchdog.py - Flight Mode Watchdog

Watches the flight mode while Follow Me is active. If the pilot (or a
failsafe) switches the vehicle out of Follow Me, the watchdog flags an
abort so the app stops commanding the vehicle.

While the vehicle stays in Follow Me, every mode update logs the last
target location the autopilot is following.

Usage:
    watchdog = FlightModeWatchdog(drone)
    watchdog.on_abort(lambda mode: print(f"left follow me: {mode}"))
    await watchdog.start()

    if watchdog.aborted:
        ...

    await watchdog.stop()
"""

import asyncio
import logging
from typing import Callable, List, Optional

from mavsdk.follow_me import FollowMeError
from mavsdk.telemetry import FlightMode

logger = logging.getLogger(__name__)


class FlightModeWatchdog:
    """
    Flags an abort when the flight mode leaves FOLLOW_ME.

    The first updates after starting Follow Me may still report the previous
    mode, so the watchdog only arms itself once FOLLOW_ME has been seen.

    Attributes:
        armed: True once FOLLOW_ME has been observed.
        aborted: True after the mode changed away from FOLLOW_ME.
        abort_mode: The mode that triggered the abort.
    """

    def __init__(self, drone: "System"):
        """
        Initialize the watchdog.

        Args:
            drone: Connected MAVSDK System.
        """
        self._drone = drone
        self._task: Optional[asyncio.Task] = None
        self._abort_event = asyncio.Event()
        self._on_abort_callbacks: List[Callable] = []

        self.armed = False
        self.abort_mode: Optional[FlightMode] = None

    @property
    def aborted(self) -> bool:
        """True once the flight mode changed away from Follow Me."""
        return self._abort_event.is_set()

    @property
    def is_running(self) -> bool:
        """True while the flight mode subscription is active."""
        return self._task is not None and not self._task.done()

    def on_abort(self, callback: Callable) -> None:
        """Register callback(mode) for when the mode leaves Follow Me."""
        self._on_abort_callbacks.append(callback)

    async def start(self) -> None:
        """Subscribe to flight mode updates."""
        if self.is_running:
            logger.warning("FlightModeWatchdog already running")
            return
        self._task = asyncio.create_task(self._watch())
        logger.debug("FlightModeWatchdog started")

    async def stop(self) -> None:
        """Unsubscribe from flight mode updates."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("FlightModeWatchdog stopped")

    async def wait_aborted(self) -> FlightMode:
        """
        Wait until the watchdog aborts.

        Returns:
            FlightMode: The mode that triggered the abort.
        """
        await self._abort_event.wait()
        return self.abort_mode

    async def _watch(self) -> None:
        try:
            async for flight_mode in self._drone.telemetry.flight_mode():
                await self._handle_mode(flight_mode)
                if self.aborted:
                    break
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Flight mode telemetry error: {e}")

    async def _handle_mode(self, flight_mode: FlightMode) -> None:
        if flight_mode != FlightMode.FOLLOW_ME:
            if self.armed:
                await self._abort(flight_mode)
            else:
                logger.debug(f"Waiting for FOLLOW_ME, flight mode is {flight_mode}")
            return

        if not self.armed:
            self.armed = True
            logger.info("Follow Me is active")

        try:
            last_location = await self._drone.follow_me.get_last_location()
        except FollowMeError as e:
            logger.warning(f"Could not read last follow location: {e}")
            return

        logger.info(
            f"[FlightMode: {flight_mode}] Vehicle is at: "
            f"{last_location.latitude_deg}, {last_location.longitude_deg} degrees."
        )

    async def _abort(self, flight_mode: FlightMode) -> None:
        logger.warning("Flight mode was changed externally! Exiting.")
        logger.info(f"  New flight mode: {flight_mode}")
        self.abort_mode = flight_mode
        self._abort_event.set()

        for callback in self._on_abort_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(flight_mode)
                else:
                    callback(flight_mode)
            except Exception as e:
                logger.error(f"Abort callback error: {e}")
