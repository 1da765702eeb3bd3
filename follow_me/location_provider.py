#!/usr/bin/env python3
"""
location_provider.py - External Location Sources for the Follow Target

A location provider receives position fixes of the thing the drone should
follow (a ground station, a phone, a simulator) and hands each fix to a
callback. The callback is typically FollowTargetRelay.handle_fix.

Providers:
    UdpLocationProvider  - one fix per UDP datagram (default localhost:65191)
    HttpLocationProvider - POST /location on a small aiohttp server
    FakeLocationProvider - synthetic square walk for SITL runs

Datagram / request body formats:
    47.3977419,8.5455938
    47.3977419 8.5455938
    {"lat": 47.3977419, "lon": 8.5455938}
    {"latitude_deg": 47.3977419, "longitude_deg": 8.5455938}

Usage:
    provider = UdpLocationProvider(host="localhost", port=65191)
    await provider.request_location_updates(relay.handle_fix)

    while provider.is_running:
        await asyncio.sleep(1)

    await provider.stop()

Send a fix from a shell:
    echo -n "47.3977419,8.5455938" | nc -u -w0 localhost 65191
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Union

from aiohttp import web

from follow_me.geo import GeoPoint, offset_point

logger = logging.getLogger(__name__)

LocationCallback = Callable[[float, float], Union[None, Awaitable[None]]]

# Payload keys accepted for latitude / longitude in JSON bodies
_LAT_KEYS = ("lat", "latitude", "latitude_deg")
_LON_KEYS = ("lon", "lng", "longitude", "longitude_deg")


class LocationParseError(ValueError):
    """Raised when a location payload cannot be turned into a fix."""


def parse_location(payload: Union[bytes, str, Dict[str, Any]]) -> GeoPoint:
    """
    Parse a location fix from a datagram or request body.

    Args:
        payload: Raw bytes, text ("lat,lon" or "lat lon" or JSON) or a
            decoded JSON object.

    Returns:
        GeoPoint: The parsed, range-checked fix.

    Raises:
        LocationParseError: If the payload is malformed or out of range.
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise LocationParseError(f"payload is not UTF-8: {e}") from e

    if isinstance(payload, str):
        text = payload.strip()
        if not text:
            raise LocationParseError("empty payload")
        if text.startswith("{"):
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as e:
                raise LocationParseError(f"invalid JSON: {e}") from e
        else:
            parts = text.replace(",", " ").split()
            if len(parts) != 2:
                raise LocationParseError(f"expected 'lat,lon', got {text!r}")
            point = GeoPoint(_to_float(parts[0]), _to_float(parts[1]))
            return _check_range(point)

    if not isinstance(payload, dict):
        raise LocationParseError(f"unsupported payload type: {type(payload).__name__}")

    lat = _lookup(payload, _LAT_KEYS)
    lon = _lookup(payload, _LON_KEYS)
    if lat is None or lon is None:
        raise LocationParseError("payload needs 'lat' and 'lon' fields")
    return _check_range(GeoPoint(_to_float(lat), _to_float(lon)))


def _lookup(data: Dict[str, Any], keys) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _to_float(value: Any) -> float:
    # bool is an int subclass; "true" is not a coordinate
    if isinstance(value, bool):
        raise LocationParseError(f"not a number: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise LocationParseError(f"not a number: {value!r}") from e


def _check_range(point: GeoPoint) -> GeoPoint:
    if not point.is_valid:
        raise LocationParseError(f"coordinates out of range: {point}")
    return point


class LocationProvider:
    """
    Base class for location sources.

    Subclasses implement _open() and _close() and call submit_payload() or
    submit() for every fix they receive. Fixes are queued and delivered to
    the callback one at a time, in arrival order, from a single task. A slow
    callback sees the newest fixes, not a growing backlog.

    Attributes:
        timeout_s: Stop automatically after this long without a fix (0 = never).
        max_pending: Fixes held while the callback is busy; the oldest
            pending fix is dropped when a newer one arrives.
        fix_count: Fixes accepted so far.
        rejected_count: Payloads dropped as malformed.
        dropped_count: Fixes superseded before they were delivered.
        last_fix: Most recent accepted fix.
    """

    name = "base"

    def __init__(self, timeout_s: float = 0.0, max_pending: int = 1):
        self.timeout_s = timeout_s
        self.max_pending = max_pending
        self.fix_count = 0
        self.rejected_count = 0
        self.dropped_count = 0
        self.callback_errors = 0
        self.last_fix: Optional[GeoPoint] = None
        self.last_fix_time = 0.0

        self._callback: Optional[LocationCallback] = None
        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._started_at = 0.0
        self._dispatch_task: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True from start until stopped or timed out."""
        return self._running

    async def request_location_updates(self, callback: LocationCallback) -> None:
        """
        Start the source and deliver every fix to callback.

        Args:
            callback: Called with (latitude_deg, longitude_deg). May be a
                plain function or a coroutine function.

        Raises:
            OSError: If the socket or server cannot be bound.
        """
        if self._running:
            logger.warning("%s location provider already running", self.name)
            return

        self._callback = callback
        self._queue = asyncio.Queue(maxsize=max(1, self.max_pending))
        try:
            await self._open()
        except OSError:
            await self._close()
            raise

        self._running = True
        self._started_at = time.time()
        self._dispatch_task = asyncio.create_task(self._dispatch())
        if self.timeout_s > 0:
            self._timeout_task = asyncio.create_task(self._monitor_timeout())

        logger.info("%s location provider started", self.name)

    async def stop(self) -> None:
        """Stop delivering fixes. Safe to call more than once."""
        was_running = self._running
        self._running = False

        current = asyncio.current_task()
        for task in (self._timeout_task, self._dispatch_task):
            if task is not None and task is not current:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._timeout_task = None
        self._dispatch_task = None

        await self._close()

        if was_running:
            logger.info(
                "%s location provider stopped (%d fixes, %d rejected)",
                self.name,
                self.fix_count,
                self.rejected_count,
            )

    def submit(self, point: GeoPoint) -> bool:
        """
        Queue a parsed fix for delivery.

        Returns:
            bool: True if queued, False if the provider is not running.
        """
        if not self._running or self._queue is None:
            return False
        self.fix_count += 1
        self.last_fix = point
        self.last_fix_time = time.time()
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_count += 1
        self._queue.put_nowait(point)
        return True

    def submit_payload(self, payload: Union[bytes, str, Dict[str, Any]], origin: Any = None) -> bool:
        """
        Parse a raw payload and queue it.

        Args:
            payload: Datagram or request body.
            origin: Sender description, for logging only.

        Returns:
            bool: True if the payload was accepted.
        """
        try:
            point = parse_location(payload)
        except LocationParseError as e:
            self.rejected_count += 1
            logger.warning("Rejected location from %s: %s", origin or "unknown", e)
            return False
        return self.submit(point)

    def get_status(self) -> Dict[str, Any]:
        """
        Get provider status.

        Returns:
            dict: Counters and last fix.
        """
        return {
            "source": self.name,
            "running": self._running,
            "fix_count": self.fix_count,
            "rejected_count": self.rejected_count,
            "dropped_count": self.dropped_count,
            "callback_errors": self.callback_errors,
            "last_fix": (
                {
                    "lat": self.last_fix.latitude_deg,
                    "lon": self.last_fix.longitude_deg,
                    "age_s": time.time() - self.last_fix_time,
                }
                if self.last_fix
                else None
            ),
        }

    async def _open(self) -> None:
        """Start receiving (subclass hook)."""

    async def _close(self) -> None:
        """Stop receiving (subclass hook)."""

    async def _dispatch(self) -> None:
        try:
            while True:
                point = await self._queue.get()
                try:
                    result = self._callback(point.latitude_deg, point.longitude_deg)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    self.callback_errors += 1
                    logger.error("Location callback error: %s", e)
        except asyncio.CancelledError:
            logger.debug("%s dispatch cancelled", self.name)

    async def _monitor_timeout(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(min(0.5, self.timeout_s))
                last = self.last_fix_time or self._started_at
                if time.time() - last > self.timeout_s:
                    logger.warning(
                        "No location fix for %.1fs, stopping %s location provider",
                        self.timeout_s,
                        self.name,
                    )
                    await self.stop()
                    return
        except asyncio.CancelledError:
            pass


class _LocationDatagramProtocol(asyncio.DatagramProtocol):
    """Feeds each received datagram to the provider."""

    def __init__(self, provider: "UdpLocationProvider"):
        self._provider = provider

    def datagram_received(self, data: bytes, addr) -> None:
        self._provider.submit_payload(data, origin=addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning("UDP location socket error: %s", exc)


class UdpLocationProvider(LocationProvider):
    """
    Receives one location fix per UDP datagram.

    Attributes:
        host: Bind address.
        port: Bind port (0 picks a free port, see bound_port).
    """

    name = "udp"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 65191,
        timeout_s: float = 0.0,
        max_pending: int = 1,
    ):
        super().__init__(timeout_s, max_pending)
        self.host = host
        self.port = port
        self._transport: Optional[asyncio.DatagramTransport] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port the socket is bound to, once open."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[1]

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _LocationDatagramProtocol(self),
            local_addr=(self.host, self.port),
        )
        logger.info("Listening for location fixes on udp://%s:%d", self.host, self.bound_port)

    async def _close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class HttpLocationProvider(LocationProvider):
    """
    Receives location fixes over HTTP.

    Endpoints:
        GET  /          - Usage text
        GET  /status    - Provider status plus anything from status_callback
        POST /location  - JSON body {"lat": .., "lon": ..}

    Attributes:
        host: Bind address.
        port: Bind port (0 picks a free port, see bound_port).
    """

    name = "http"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 65191,
        timeout_s: float = 0.0,
        status_callback: Optional[Callable[[], Dict[str, Any]]] = None,
        max_pending: int = 1,
    ):
        super().__init__(timeout_s, max_pending)
        self.host = host
        self.port = port
        self._status_callback = status_callback
        self._runner: Optional[web.AppRunner] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port the server listens on, once open."""
        if self._runner is None or not self._runner.addresses:
            return None
        return self._runner.addresses[0][1]

    def make_app(self) -> web.Application:
        """
        Build the aiohttp application.

        Returns:
            web.Application: App with the location routes.
        """
        app = web.Application()
        app.router.add_get("/", self._handle_root)
        app.router.add_get("/status", self._handle_status)
        app.router.add_post("/location", self._handle_location)
        return app

    async def _open(self) -> None:
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info("HTTP location server started on http://%s:%d", self.host, self.bound_port)

    async def _close(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP location server stopped")

    async def _handle_root(self, request: web.Request) -> web.Response:
        text = (
            "Follow Me location server\n\n"
            "GET  /status    - provider and relay status\n"
            "POST /location  - {\"lat\": <deg>, \"lon\": <deg>}\n\n"
            f"curl -X POST http://{self.host}:{self.bound_port}/location "
            "-d '{\"lat\": 47.3977419, \"lon\": 8.5455938}'\n"
        )
        return web.Response(text=text)

    async def _handle_status(self, request: web.Request) -> web.Response:
        status = {"provider": self.get_status()}
        if self._status_callback is not None:
            status.update(self._status_callback())
        return web.json_response(status)

    async def _handle_location(self, request: web.Request) -> web.Response:
        body = await request.text()
        try:
            point = parse_location(body)
        except LocationParseError as e:
            self.rejected_count += 1
            logger.warning("Rejected location from %s: %s", request.remote, e)
            return web.json_response({"accepted": False, "error": str(e)}, status=400)

        if not self.submit(point):
            return web.json_response(
                {"accepted": False, "error": "provider not running"}, status=503
            )
        return web.json_response({"accepted": True})


def square_walk(
    start: GeoPoint,
    side_m: float = 4.0,
    step_m: float = 1.0,
) -> Iterator[GeoPoint]:
    """
    Endless walk around a square whose south-west corner is start.

    Goes north, east, south, then west, step_m at a time.

    Args:
        start: First corner, and the first point produced.
        side_m: Side length of the square in meters.
        step_m: Distance between consecutive points in meters.

    Yields:
        GeoPoint: Successive positions on the square.
    """
    if step_m <= 0 or side_m <= 0:
        raise ValueError("side_m and step_m must be positive")

    steps_per_side = max(1, int(round(side_m / step_m)))
    step = side_m / steps_per_side
    directions = [(1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0)]

    north, east = 0.0, 0.0
    while True:
        for d_north, d_east in directions:
            for _ in range(steps_per_side):
                yield offset_point(start, north, east)
                north += d_north * step
                east += d_east * step
        # Snap back to the corner so float error does not accumulate
        north, east = 0.0, 0.0


class FakeLocationProvider(LocationProvider):
    """
    Generates a square walk for testing against a simulator.

    Attributes:
        start: Corner of the square (usually the vehicle position).
        side_m: Square side length in meters.
        step_m: Distance moved per fix in meters.
        interval_s: Seconds between fixes.
    """

    name = "fake"

    def __init__(
        self,
        start: GeoPoint,
        side_m: float = 4.0,
        step_m: float = 1.0,
        interval_s: float = 1.0,
        timeout_s: float = 0.0,
        max_pending: int = 1,
    ):
        super().__init__(timeout_s, max_pending)
        self.start = start
        self.side_m = side_m
        self.step_m = step_m
        self.interval_s = interval_s
        self._generator_task: Optional[asyncio.Task] = None

    async def _open(self) -> None:
        self._generator_task = asyncio.create_task(self._generate())

    async def _close(self) -> None:
        if self._generator_task is not None:
            self._generator_task.cancel()
            try:
                await self._generator_task
            except asyncio.CancelledError:
                pass
            self._generator_task = None

    async def _generate(self) -> None:
        try:
            for point in square_walk(self.start, self.side_m, self.step_m):
                self.submit(point)
                await asyncio.sleep(self.interval_s)
        except asyncio.CancelledError:
            pass
