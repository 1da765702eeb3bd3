"""
Pytest configuration and shared fixtures for follow-me tests.

This module provides:
- Async test support via pytest-asyncio
- A scriptable stand-in for mavsdk.System (FakeDrone)
- Test markers configuration
- SITL connection settings for flight tests
"""

import asyncio
import math
import os
from types import SimpleNamespace

import pytest
import pytest_asyncio

from mavsdk.action import ActionError, ActionResult
from mavsdk.follow_me import FollowMeError, FollowMeResult
from mavsdk.telemetry import FlightMode

from follow_me.common.drone_helpers import reset_shutdown_request
from follow_me.common.telemetry_manager import TelemetryManager

# SITL configuration from environment
MAVLINK_PORT = int(os.environ.get("MAVLINK_PORT", "14540"))
SITL_ENABLED = os.environ.get("MAVLINK_SITL", "") == "1"

# PX4 SITL default home
HOME_LAT = 47.3977419
HOME_LON = 8.5455938


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "asyncio: mark test as async"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers",
        "flight: mark test as requiring actual flight"
    )


def action_error(origin: str = "arm()") -> ActionError:
    """Build the ActionError MAVSDK raises for a denied command."""
    return ActionError(
        ActionResult(ActionResult.Result.COMMAND_DENIED, "Command denied"),
        origin,
    )


def follow_me_error(origin: str = "start()") -> FollowMeError:
    """Build the FollowMeError MAVSDK raises for a denied command."""
    return FollowMeError(
        FollowMeResult(FollowMeResult.Result.COMMAND_DENIED, "Command denied"),
        origin,
    )


async def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll predicate until it is true or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class FakeCore:
    def __init__(self, drone):
        self._drone = drone

    async def connection_state(self):
        while True:
            yield SimpleNamespace(is_connected=self._drone.discoverable)
            await asyncio.sleep(0.01)


class FakeInfo:
    async def get_identification(self):
        return SimpleNamespace(hardware_uid="0000000000000001", legacy_uid=1)


class FakeTelemetry:
    """
    Telemetry streams backed by the FakeDrone state.

    Each stream yields the current state value on every iteration, except
    flight_mode(), which yields the current mode and then every pushed change.
    """

    def __init__(self, drone):
        self._drone = drone
        self._mode_subscribers = []

    async def health_all_ok(self):
        while True:
            drone = self._drone
            if drone.health_sequence:
                yield drone.health_sequence.pop(0)
            else:
                yield True
            await asyncio.sleep(0.01)

    async def armed(self):
        while True:
            yield self._drone.is_armed
            await asyncio.sleep(0.01)

    async def in_air(self):
        while True:
            drone = self._drone
            if drone.landing_polls > 0:
                drone.landing_polls -= 1
                if drone.landing_polls == 0:
                    drone.is_in_air = False
            yield drone.is_in_air
            await asyncio.sleep(0.01)

    async def position(self):
        while True:
            drone = self._drone
            if not drone.has_gps:
                await asyncio.sleep(0.01)
                continue
            yield SimpleNamespace(
                latitude_deg=drone.latitude_deg,
                longitude_deg=drone.longitude_deg,
                absolute_altitude_m=488.0 + drone.relative_altitude_m,
                relative_altitude_m=drone.relative_altitude_m,
            )
            await asyncio.sleep(0.01)

    async def flight_mode(self):
        queue = asyncio.Queue()
        self._mode_subscribers.append(queue)
        try:
            yield self._drone.mode
            while True:
                yield await queue.get()
        finally:
            self._mode_subscribers.remove(queue)

    def push_flight_mode(self, mode):
        for queue in self._mode_subscribers:
            queue.put_nowait(mode)


class FakeAction:
    def __init__(self, drone):
        self._drone = drone

    async def _call(self, name):
        drone = self._drone
        drone.calls.append(f"action.{name}")
        if name in drone.failures:
            raise drone.failures[name]

    async def arm(self):
        await self._call("arm")
        self._drone.is_armed = True

    async def takeoff(self):
        await self._call("takeoff")
        self._drone.is_in_air = True
        self._drone.relative_altitude_m = self._drone.takeoff_altitude_m

    async def land(self):
        await self._call("land")
        self._drone.landing_polls = 2


class FakeFollowMe:
    def __init__(self, drone):
        self._drone = drone
        self.config = None
        self.targets = []

    async def _call(self, name):
        drone = self._drone
        drone.calls.append(f"follow_me.{name}")
        if name in drone.failures:
            raise drone.failures[name]

    async def set_config(self, config):
        await self._call("set_config")
        self.config = config

    async def start(self):
        await self._call("start")
        self._drone.set_flight_mode(FlightMode.FOLLOW_ME)

    async def stop(self):
        await self._call("stop")
        self._drone.set_flight_mode(FlightMode.HOLD)

    async def set_target_location(self, target):
        await self._call("set_target_location")
        self.targets.append(target)

    async def get_last_location(self):
        if self.targets:
            return self.targets[-1]
        return SimpleNamespace(latitude_deg=math.nan, longitude_deg=math.nan)


class FakeDrone:
    """
    Scriptable stand-in for mavsdk.System.

    Attributes:
        calls: Commands received, e.g. "action.arm", "follow_me.start".
        failures: Command name -> exception to raise instead of succeeding.
        health_sequence: health_all_ok values to report before True.
        discoverable: Whether core.connection_state() reports a connection.
        has_gps: Whether telemetry.position() produces any fixes.
        takeoff_altitude_m: Relative altitude reached by action.takeoff().
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.health_sequence = []
        self.discoverable = True
        self.has_gps = True
        self.takeoff_altitude_m = 2.5

        self.is_armed = False
        self.is_in_air = False
        self.landing_polls = 0
        self.relative_altitude_m = 0.0
        self.latitude_deg = HOME_LAT
        self.longitude_deg = HOME_LON
        self.mode = FlightMode.HOLD
        self.system_address = None

        self.core = FakeCore(self)
        self.info = FakeInfo()
        self.telemetry = FakeTelemetry(self)
        self.action = FakeAction(self)
        self.follow_me = FakeFollowMe(self)

    async def connect(self, system_address=None):
        self.calls.append("connect")
        self.system_address = system_address
        if "connect" in self.failures:
            raise self.failures["connect"]

    def set_flight_mode(self, mode):
        self.mode = mode
        self.telemetry.push_flight_mode(mode)


@pytest.fixture(autouse=True)
def clear_shutdown_flag():
    """Make sure a signal flag from one test does not leak into the next."""
    reset_shutdown_request()
    yield
    reset_shutdown_request()


@pytest.fixture
def fake_drone():
    """
    Fixture providing a disarmed, landed FakeDrone at the SITL home.

    Returns:
        FakeDrone: Fresh fake vehicle.
    """
    return FakeDrone()


@pytest_asyncio.fixture
async def telemetry(fake_drone):
    """
    Fixture providing a running TelemetryManager with a cached position.

    Yields:
        TelemetryManager: Started telemetry cache for fake_drone.
    """
    manager = TelemetryManager(fake_drone)
    await manager.start()
    assert await manager.wait_for_position(timeout=2.0)
    yield manager
    await manager.stop()


@pytest.fixture
def mavlink_config():
    """
    Fixture providing SITL MAVLink configuration.

    Returns:
        dict: MAVLink port and connection address.
    """
    return {
        "port": MAVLINK_PORT,
        "address": f"udpin://0.0.0.0:{MAVLINK_PORT}",
    }
