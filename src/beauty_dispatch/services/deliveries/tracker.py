"""Per-driver delivery tracking and status transitions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ...data.deliveries_repository import DeliveryRepository
from ...errors import DeliveryNotFound, InvalidTransition, NoNextState, NotConfigured, PersistenceError
from ...models.domain import DeliveryRecord, DeliveryStatus
from .change_feed import ChangeSubscription, SupabaseChangeFeed
from .lifecycle import can_transition, is_terminal, next_status

logger = logging.getLogger(__name__)

Listener = Callable[[list[DeliveryRecord]], None]
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryTracker:
    """Committed view of one driver's deliveries.

    The local view only changes after a write succeeds or after a reload
    triggered by a pushed change; other writers (dispatchers reassigning
    work) are expected. Transitions on the same delivery are serialized.
    """

    def __init__(
        self,
        driver_id: str,
        repository: DeliveryRepository,
        feed: SupabaseChangeFeed | None = None,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.driver_id = driver_id
        self._repository = repository
        self._feed = feed
        self._now = now
        self._deliveries: dict[str, DeliveryRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[Listener] = []
        self._subscription: ChangeSubscription | None = None
        self._listener_task: asyncio.Task | None = None

    @property
    def deliveries(self) -> list[DeliveryRecord]:
        return sorted(
            self._deliveries.values(),
            key=lambda record: record.assigned_at or _EPOCH,
            reverse=True,
        )

    @property
    def active(self) -> list[DeliveryRecord]:
        return [record for record in self.deliveries if not is_terminal(record.status)]

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def get(self, delivery_id: str) -> DeliveryRecord | None:
        return self._deliveries.get(delivery_id)

    async def start(self) -> None:
        if self._subscription is not None:
            return
        await self.refresh()
        if self._feed is not None:
            self._subscription = await self._feed.subscribe("deliveries", "driver_id", self.driver_id)
            self._listener_task = asyncio.get_running_loop().create_task(self._listen(self._subscription))

    async def stop(self) -> None:
        task, self._listener_task = self._listener_task, None
        subscription, self._subscription = self._subscription, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if subscription is not None:
            await subscription.close()
        self._listeners.clear()

    async def _listen(self, subscription: ChangeSubscription) -> None:
        while True:
            payload = await subscription.queue.get()
            # Collapse a burst of pushed changes into a single reload.
            while not subscription.queue.empty():
                subscription.queue.get_nowait()
            logger.debug(f"Delivery change pushed for driver {self.driver_id}: {payload.get('eventType', payload.get('type'))}")
            try:
                await self.refresh()
            except PersistenceError as e:
                logger.warning(f"Reload after pushed change failed for driver {self.driver_id}: {e}")

    async def refresh(self) -> list[DeliveryRecord]:
        records = await self._repository.list_for_driver(self.driver_id)
        self._deliveries = {record.id: record for record in records}
        self._notify()
        return self.deliveries

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.deliveries
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Delivery listener failed")

    def _lock_for(self, delivery_id: str) -> asyncio.Lock:
        lock = self._locks.get(delivery_id)
        if lock is None:
            lock = self._locks[delivery_id] = asyncio.Lock()
        return lock

    async def _load(self, delivery_id: str) -> DeliveryRecord:
        record = await self._repository.get(delivery_id)
        if record is None or record.driver_id != self.driver_id:
            raise DeliveryNotFound(delivery_id)
        return record

    async def _commit(self, record: DeliveryRecord, target: DeliveryStatus) -> DeliveryRecord:
        delivered_at = self._now() if target is DeliveryStatus.DELIVERED else None
        updated = await self._repository.update_status(
            record.id,
            expected=record.status,
            status=target,
            actual_delivery_time=delivered_at,
        )
        self._deliveries[updated.id] = updated
        logger.info(f"Delivery {record.id}: {record.status.label} -> {updated.status.label}")
        self._notify()
        return updated

    async def advance(self, delivery_id: str) -> DeliveryStatus:
        """Move the delivery one step along assigned -> picked up -> in transit -> delivered."""
        async with self._lock_for(delivery_id):
            record = await self._load(delivery_id)
            target = next_status(record.status)
            if target is None:
                logger.error(f"advance() called on delivery {delivery_id} in terminal state {record.status.value}")
                raise NoNextState(delivery_id, record.status.value)
            updated = await self._commit(record, target)
            return updated.status

    async def mark_failed(self, delivery_id: str) -> DeliveryStatus:
        async with self._lock_for(delivery_id):
            record = await self._load(delivery_id)
            if not can_transition(record.status, DeliveryStatus.FAILED):
                logger.error(f"mark_failed() called on delivery {delivery_id} in terminal state {record.status.value}")
                raise InvalidTransition(delivery_id, record.status.value, DeliveryStatus.FAILED.value)
            updated = await self._commit(record, DeliveryStatus.FAILED)
            return updated.status


TrackerFactory = Callable[[str], Awaitable[DeliveryTracker]]


class TrackerRegistry:
    """Started trackers keyed by driver id; each is stopped on close."""

    def __init__(self, factory: TrackerFactory) -> None:
        self._factory = factory
        self._trackers: dict[str, DeliveryTracker] = {}
        self._lock = asyncio.Lock()

    async def get(self, driver_id: str) -> DeliveryTracker:
        async with self._lock:
            tracker = self._trackers.get(driver_id)
            if tracker is None:
                tracker = await self._factory(driver_id)
                await tracker.start()
                self._trackers[driver_id] = tracker
            return tracker

    async def release(self, driver_id: str) -> None:
        async with self._lock:
            tracker = self._trackers.pop(driver_id, None)
        if tracker is not None:
            await tracker.stop()

    async def close(self) -> None:
        async with self._lock:
            trackers, self._trackers = list(self._trackers.values()), {}
        for tracker in trackers:
            await tracker.stop()


async def build_tracker(driver_id: str) -> DeliveryTracker:
    """Tracker wired to the configured Supabase project."""
    from ...db.supabase import get_supabase_client

    client = await get_supabase_client()
    if client is None:
        raise NotConfigured("Supabase is not configured. Set BD_SUPABASE_URL and BD_SUPABASE_KEY.")
    return DeliveryTracker(driver_id, DeliveryRepository(client), SupabaseChangeFeed(client))
