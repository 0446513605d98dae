"""Async gpsd position source with structured failure reporting."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
import time
from datetime import datetime
from typing import Any, Optional

from ...domain.models import ErrorKind, Fix, PositionError
from .source import ErrorCallback, FixCallback, PositionSource, Subscription, WatchOptions

logger = logging.getLogger(__name__)

WATCH_ENABLE = b'?WATCH={"enable":true,"json":true}\n'
WATCH_DISABLE = b'?WATCH={"enable":false}\n'


class GpsdPositionSource(PositionSource):
    """
    Position source backed by a gpsd daemon.

    Features:
    - Non-blocking async connection per request
    - One TCP connection per watch, closed on cancel
    - TPV filtering by fix mode and fix age
    - Failures mapped to PositionError kinds

    Usage:
        source = GpsdPositionSource("localhost", 2947)
        fix = await source.get_once(WatchOptions(timeout_ms=5000))
    """

    def __init__(self, host: str = "localhost", port: int = 2947) -> None:
        self.host = host
        self.port = port
        self._tasks: set[asyncio.Task] = set()

    async def _open(
        self, timeout: float
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Connect to gpsd and enable JSON streaming."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("GPS connection timeout to %s:%d", self.host, self.port)
            raise PositionError(ErrorKind.TIMEOUT, "gpsd connection timed out") from exc
        except PermissionError as exc:
            logger.warning("GPS connection not permitted: %s", exc)
            raise PositionError(ErrorKind.PERMISSION_DENIED, str(exc)) from exc
        except OSError as exc:
            logger.warning("GPS connection failed - is gpsd running? %s", exc)
            raise PositionError(ErrorKind.UNAVAILABLE, str(exc)) from exc

        writer.write(WATCH_ENABLE)
        await writer.drain()
        logger.info("Connected to gpsd at %s:%d", self.host, self.port)
        return reader, writer

    async def _close(self, writer: asyncio.StreamWriter) -> None:
        """Disconnect from gpsd gracefully."""
        with contextlib.suppress(OSError):
            writer.write(WATCH_DISABLE)
            await writer.drain()
            writer.close()
            await writer.wait_closed()

    async def _next_fix(self, reader: asyncio.StreamReader, options: WatchOptions) -> Fix:
        """Read reports until one yields an acceptable fix."""
        while True:
            try:
                line = await reader.readline()
            except OSError as exc:
                raise PositionError(ErrorKind.UNAVAILABLE, str(exc)) from exc

            if not line:
                raise PositionError(ErrorKind.UNAVAILABLE, "gpsd closed the connection")

            try:
                data = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                logger.warning("GPS JSON parse error: %s", exc)
                continue

            fix = self._parse_tpv(data, options)
            if fix is not None:
                return fix

    def _parse_tpv(self, data: Any, options: WatchOptions) -> Optional[Fix]:
        """
        Parse TPV (Time-Position-Velocity) message from gpsd.

        Args:
            data: JSON dict from gpsd
            options: Accuracy and age filters

        Returns:
            Fix if the report is an acceptable position, None otherwise
        """
        if not isinstance(data, dict) or data.get("class") != "TPV":
            return None
        if "lat" not in data or "lon" not in data:
            return None

        # Mode: 0=unknown, 1=no fix, 2=2D, 3=3D
        mode = data.get("mode", 0)
        if not isinstance(mode, int) or mode < (3 if options.high_accuracy else 2):
            return None

        captured_at = _parse_time_ms(data.get("time"))
        if options.max_fix_age_ms > 0:
            age_ms = int(time.time() * 1000) - captured_at
            if age_ms > options.max_fix_age_ms:
                logger.debug("Skipping stale TPV (%d ms old)", age_ms)
                return None

        try:
            return Fix(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                captured_at=captured_at,
            )
        except (TypeError, ValueError) as e:
            logger.error("TPV parse error: %s - data: %s", e, data)
            return None

    async def get_once(self, options: WatchOptions) -> Fix:
        """Get a single fix and disconnect."""
        timeout = options.timeout_ms / 1000.0
        try:
            async with asyncio.timeout(timeout):
                reader, writer = await self._open(timeout)
                try:
                    return await self._next_fix(reader, options)
                finally:
                    await self._close(writer)
        except TimeoutError as exc:
            logger.warning("GPS single position timeout after %.1fs", timeout)
            raise PositionError(ErrorKind.TIMEOUT, f"no fix within {options.timeout_ms} ms") from exc

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> Subscription:
        """Stream fixes on a background task until the handle is cancelled."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise PositionError(ErrorKind.UNAVAILABLE, "watch requires a running event loop") from exc

        subscription = Subscription(on_fix, on_error)
        task = loop.create_task(self._stream(subscription, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        subscription.bind_release(task.cancel)
        return subscription

    async def _stream(self, subscription: Subscription, options: WatchOptions) -> None:
        writer: Optional[asyncio.StreamWriter] = None
        try:
            reader, writer = await self._open(options.timeout_ms / 1000.0)
            while subscription.active:
                fix = await self._next_fix(reader, options)
                subscription.deliver_fix(fix)
        except PositionError as exc:
            logger.warning("GPS stream error: %s", exc)
            subscription.deliver_error(exc)
        except Exception as exc:
            logger.error("GPS stream failed: %s", exc)
            subscription.deliver_error(PositionError(ErrorKind.UNAVAILABLE, str(exc)))
        finally:
            if writer is not None:
                await self._close(writer)


def _parse_time_ms(value: Any) -> int:
    """Convert a gpsd ISO-8601 timestamp to epoch ms, defaulting to now."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return int(parsed.timestamp() * 1000)
        except ValueError:
            logger.debug("Unparsable TPV time: %s", value)
    return int(time.time() * 1000)


class MockPositionSource(PositionSource):
    """
    Mock position source for testing and simulation.

    Generates fake fixes walking in a circle around the start point.
    """

    def __init__(
        self,
        start_lat: float = 19.0760,  # Mumbai
        start_lon: float = 72.8777,
        interval: float = 1.0,
        radius_deg: float = 0.001,  # ~111 meters
    ) -> None:
        self._start_lat = start_lat
        self._start_lon = start_lon
        self._interval = interval
        self._radius = radius_deg
        self._tasks: set[asyncio.Task] = set()

    async def get_once(self, options: WatchOptions) -> Fix:
        """Mock always has a fix at the start point."""
        await asyncio.sleep(0)
        return Fix.now(self._start_lat, self._start_lon)

    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions,
    ) -> Subscription:
        subscription = Subscription(on_fix, on_error)
        task = asyncio.get_running_loop().create_task(self._walk(subscription))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        subscription.bind_release(task.cancel)
        logger.info("Mock GPS streaming (simulated)")
        return subscription

    async def _walk(self, subscription: Subscription) -> None:
        step = 0
        while subscription.active:
            await asyncio.sleep(self._interval)
            angle = math.radians(step * 5)
            lat = self._start_lat + self._radius * math.sin(angle)
            lon = self._start_lon + self._radius * math.cos(angle)
            step += 1
            subscription.deliver_fix(Fix.now(lat, lon))
