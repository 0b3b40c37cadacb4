"""Device positions reported by browser and driver clients."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from ...config import settings
from ...errors import LOCATION_ERRORS, LocationError, PositionTimeout
from ...models.domain import Coordinate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PositionFix:
    coordinate: Coordinate
    timestamp: float


class ReportedPositionSource:
    """Latest position fix per device, fed by the devices themselves.

    Clients run the platform geolocation API and post each fix (or the typed
    failure the platform gave them). ``resolve_current_position`` answers from
    a cached fix younger than ``maximum_age`` or waits up to ``timeout`` for
    a new one.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        maximum_age: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.geolocation_timeout_seconds
        self.maximum_age = maximum_age if maximum_age is not None else settings.geolocation_maximum_age_seconds
        self._clock = clock
        self._fixes: dict[str, PositionFix] = {}
        self._failures: dict[str, tuple[LocationError, float]] = {}
        self._waiters: dict[str, set[asyncio.Future]] = {}
        self._watchers: dict[str, set[asyncio.Queue]] = {}

    def report_position(self, device_id: str, coordinate: Coordinate) -> PositionFix:
        fix = PositionFix(coordinate=coordinate, timestamp=self._clock())
        self._prune(fix.timestamp)
        self._fixes[device_id] = fix
        self._failures.pop(device_id, None)
        for waiter in self._waiters.get(device_id, ()):
            if not waiter.done():
                waiter.set_result(fix.coordinate)
        for queue in self._watchers.get(device_id, ()):
            queue.put_nowait(fix)
        return fix

    def report_failure(self, device_id: str, code: str, message: str | None = None) -> LocationError:
        """Record a failure from the device.

        Requests already waiting on the device all receive it. Otherwise it is
        kept for the next request, which raises it once.
        """
        try:
            error_type = LOCATION_ERRORS[code]
        except KeyError:
            raise ValueError(f"Unknown geolocation failure code '{code}'.") from None
        error = error_type(message) if message else error_type()
        now = self._clock()
        self._prune(now)

        pending = [waiter for waiter in self._waiters.get(device_id, ()) if not waiter.done()]
        if pending:
            for waiter in pending:
                waiter.set_exception(error)
        else:
            self._failures[device_id] = (error, now)
        logger.info(f"Device {device_id} reported geolocation failure: {error.code}")
        return error

    def _prune(self, now: float) -> None:
        """Forget fixes and failures older than ``maximum_age``."""
        for device_id in [key for key, fix in self._fixes.items() if now - fix.timestamp > self.maximum_age]:
            del self._fixes[device_id]
        for device_id in [key for key, (_, at) in self._failures.items() if now - at > self.maximum_age]:
            del self._failures[device_id]

    def cached_position(self, device_id: str) -> PositionFix | None:
        fix = self._fixes.get(device_id)
        if fix is None or self._clock() - fix.timestamp > self.maximum_age:
            return None
        return fix

    async def resolve_current_position(self, device_id: str) -> Coordinate:
        """Current coordinate for a device.

        Raises the failure the device reported (PermissionDenied,
        PositionUnavailable) or PositionTimeout when no fix arrives in time.
        A reported failure is raised once; the user has to trigger a new
        request after fixing it.
        """
        stored = self._failures.pop(device_id, None)
        if stored is not None:
            raise stored[0]
        fix = self.cached_position(device_id)
        if fix is not None:
            return fix.coordinate

        waiter: asyncio.Future[Coordinate] = asyncio.get_running_loop().create_future()
        waiters = self._waiters.setdefault(device_id, set())
        waiters.add(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise PositionTimeout() from None
        finally:
            waiters.discard(waiter)
            if not waiters and self._waiters.get(device_id) is waiters:
                del self._waiters[device_id]

    async def watch(self, device_id: str) -> AsyncIterator[PositionFix]:
        """Yield every fix reported for the device until the consumer stops iterating."""
        queue: asyncio.Queue[PositionFix] = asyncio.Queue()
        watchers = self._watchers.setdefault(device_id, set())
        watchers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            watchers.discard(queue)
            if not watchers and self._watchers.get(device_id) is watchers:
                del self._watchers[device_id]
