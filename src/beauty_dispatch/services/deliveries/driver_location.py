"""Driver position reporting for dispatch views."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ...data.deliveries_repository import DriverStatusRepository
from ...errors import NotConfigured, PersistenceError
from ...models.domain import Coordinate, DriverLocationPing
from ..maps.geolocation import ReportedPositionSource

logger = logging.getLogger(__name__)


class DriverLocationReporter:
    """Upserts the latest position of one driver; independent of delivery status."""

    def __init__(
        self,
        driver_id: str,
        repository: DriverStatusRepository,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.driver_id = driver_id
        self._repository = repository
        self._now = now
        self.last_ping: DriverLocationPing | None = None

    async def report(self, coordinate: Coordinate) -> DriverLocationPing:
        ping = DriverLocationPing(driver_id=self.driver_id, coordinate=coordinate, timestamp=self._now())
        await self._repository.upsert_ping(ping)
        self.last_ping = ping
        return ping

    async def follow(self, source: ReportedPositionSource, device_id: str | None = None) -> None:
        """Report every fix the driver's device posts until cancelled."""
        async for fix in source.watch(device_id or self.driver_id):
            try:
                await self.report(fix.coordinate)
            except PersistenceError as e:
                # The next fix supersedes this one, so a failed write is not retried.
                logger.warning(f"Dropped position update for driver {self.driver_id}: {e}")


async def build_reporter(driver_id: str) -> DriverLocationReporter:
    from ...db.supabase import get_supabase_client

    client = await get_supabase_client()
    if client is None:
        raise NotConfigured("Supabase is not configured. Set BD_SUPABASE_URL and BD_SUPABASE_KEY.")
    return DriverLocationReporter(driver_id, DriverStatusRepository(client))


ReporterFactory = Callable[[str], Awaitable[DriverLocationReporter]]


class DriverPositionFeeds:
    """One ``follow`` task per active driver session.

    The driver's device posts its watch fixes to the position source under the
    driver id; the feed forwards each one to ``driver_status``.
    """

    def __init__(self, source: ReportedPositionSource, factory: ReporterFactory = build_reporter) -> None:
        self._source = source
        self._factory = factory
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def running(self, driver_id: str) -> bool:
        task = self._tasks.get(driver_id)
        return task is not None and not task.done()

    async def start(self, driver_id: str) -> None:
        async with self._lock:
            if self.running(driver_id):
                return
            reporter = await self._factory(driver_id)
            self._tasks[driver_id] = asyncio.get_running_loop().create_task(reporter.follow(self._source))
            # Let the task register its watch before any fix is posted.
            await asyncio.sleep(0)
            logger.info(f"Following reported positions for driver {driver_id}")

    async def stop(self, driver_id: str) -> None:
        async with self._lock:
            task = self._tasks.pop(driver_id, None)
        await _cancel(task)

    async def close(self) -> None:
        async with self._lock:
            tasks, self._tasks = list(self._tasks.values()), {}
        for task in tasks:
            await _cancel(task)


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None:
        return
    if task.done():
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Driver position feed had stopped: {task.exception()}")
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
