#!/usr/bin/env python3
"""
telemetry_manager.py - Cached Telemetry for MAVSDK

Keeps the latest position and flight state in memory so that code reacting
to external events (location fixes, HTTP requests) can read them without
opening its own telemetry stream.

Usage:
    from follow_me.common.telemetry_manager import TelemetryManager

    telemetry = TelemetryManager(drone)
    await telemetry.start()

    if telemetry.has_position:
        print(telemetry.position.latitude_deg)

    await telemetry.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from follow_me.geo import GeoPoint

logger = logging.getLogger(__name__)


@dataclass
class PositionData:
    """Latest position telemetry data."""
    latitude_deg: float = 0.0
    longitude_deg: float = 0.0
    absolute_altitude_m: float = 0.0
    relative_altitude_m: float = 0.0
    timestamp: float = 0.0

    def to_geo_point(self) -> GeoPoint:
        """Horizontal part of this position."""
        return GeoPoint(self.latitude_deg, self.longitude_deg)


@dataclass
class FlightStateData:
    """Latest flight state data."""
    armed: bool = False
    in_air: bool = False
    flight_mode: str = "UNKNOWN"
    timestamp: float = 0.0


class TelemetryManager:
    """
    Caches the vehicle position and flight state from background tasks.

    One task per MAVSDK stream (position, armed, in_air, flight_mode); each
    task stores the newest value and notifies callbacks.

    Attributes:
        position: Latest position data.
        flight_state: Latest flight state data.
    """

    def __init__(self, drone: "System"):
        """
        Initialize the telemetry cache.

        Args:
            drone: MAVSDK System instance.
        """
        self._drone = drone
        self._tasks: List[asyncio.Task] = []
        self._callbacks: List[Callable[[str, Any], None]] = []

        self.position = PositionData()
        self.flight_state = FlightStateData()

    @property
    def has_position(self) -> bool:
        """True once at least one position update has arrived."""
        return self.position.timestamp > 0.0

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def add_callback(self, callback: Callable[[str, Any], None]) -> None:
        """
        Register callback(kind, data), kind being "position" or "flight_state".
        """
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[str, Any], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def start(self) -> None:
        """Subscribe to the telemetry streams."""
        if self._tasks:
            logger.warning("TelemetryManager already started")
            return

        telemetry = self._drone.telemetry
        readers = {
            "position": (telemetry.position, self._store_position),
            "armed": (telemetry.armed, self._store_armed),
            "in_air": (telemetry.in_air, self._store_in_air),
            "flight_mode": (telemetry.flight_mode, self._store_flight_mode),
        }
        self._tasks = [
            asyncio.create_task(self._read(name, stream, store))
            for name, (stream, store) in readers.items()
        ]
        logger.debug("TelemetryManager started")

    async def stop(self) -> None:
        """Cancel the stream tasks."""
        if not self._tasks:
            return
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.debug("TelemetryManager stopped")

    async def wait_for_position(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the first position update has been cached.

        Args:
            timeout: Maximum wait time in seconds (None = forever).

        Returns:
            bool: True if a position is available.
        """
        start = time.time()
        while not self.has_position:
            if timeout is not None and time.time() - start > timeout:
                return False
            await asyncio.sleep(0.05)
        return True

    async def _read(self, name: str, stream: Callable, store: Callable[[Any], str]) -> None:
        try:
            async for value in stream():
                kind = store(value)
                for callback in list(self._callbacks):
                    try:
                        callback(kind, getattr(self, kind))
                    except Exception as e:
                        logger.warning(f"Telemetry callback error: {e}")
                # Let pending commands run between updates
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"{name} telemetry error: {e}")

    def _store_position(self, pos) -> str:
        self.position = PositionData(
            latitude_deg=pos.latitude_deg,
            longitude_deg=pos.longitude_deg,
            absolute_altitude_m=pos.absolute_altitude_m,
            relative_altitude_m=pos.relative_altitude_m,
            timestamp=time.time(),
        )
        return "position"

    def _store_armed(self, armed: bool) -> str:
        self.flight_state.armed = armed
        self.flight_state.timestamp = time.time()
        return "flight_state"

    def _store_in_air(self, in_air: bool) -> str:
        self.flight_state.in_air = in_air
        self.flight_state.timestamp = time.time()
        return "flight_state"

    def _store_flight_mode(self, mode) -> str:
        self.flight_state.flight_mode = getattr(mode, "name", str(mode))
        self.flight_state.timestamp = time.time()
        return "flight_state"

    def get_summary(self) -> dict:
        """
        Get the cached state for status reports.

        Returns:
            dict: Position and flight state.
        """
        return {
            "position": {
                "lat": self.position.latitude_deg,
                "lon": self.position.longitude_deg,
                "alt_m": self.position.relative_altitude_m,
                "valid": self.has_position,
            },
            "flight_state": {
                "armed": self.flight_state.armed,
                "in_air": self.flight_state.in_air,
                "mode": self.flight_state.flight_mode,
            },
        }
