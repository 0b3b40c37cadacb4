"""Location session: the user's resolved location and the stores near it."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Callable, Optional

from ..config import settings
from ..data.stores_repository import StoreCatalog
from ..models.domain import Coordinate, ResolvedLocation, StoreProximity
from ..persistence.filesystem import KeyValueStore
from .maps.distance import DistanceMatrixProvider, DistancePath
from .pricing import calculate_fee
from .proximity import RankedStores, rank

logger = logging.getLogger(__name__)

LOCATION_KEY = "userLocation"
SEEN_PROMPT_KEY = "hasSeenLocationModal"

Listener = Callable[["LocationSession"], None]


class LocationSession:
    """Shared location state with an init/close lifecycle.

    Readers use the properties; only ``set_location`` and ``clear_location``
    change the location. Expiry is checked lazily whenever the location is
    read. Listeners are called after every state change.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        catalog: StoreCatalog,
        *,
        provider: DistanceMatrixProvider | None = None,
        radius_miles: float | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._catalog = catalog
        self._provider = provider
        self.radius_miles = settings.default_radius_miles if radius_miles is None else radius_miles
        self.ttl_seconds = settings.location_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._location: ResolvedLocation | None = None
        self._nearby: RankedStores = RankedStores()
        self._needs_location = False
        self._refresh_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    # lifecycle

    async def init(self) -> None:
        restored = self._load_persisted()
        if restored is not None:
            self._location = restored
            self._schedule_refresh(restored)
        elif self._storage.get(SEEN_PROMPT_KEY) is None:
            self._needs_location = True
        self._notify()

    async def close(self) -> None:
        await self._cancel_refresh()
        self._listeners.clear()

    def _load_persisted(self) -> ResolvedLocation | None:
        saved = self._storage.get(LOCATION_KEY)
        if saved is None:
            return None
        try:
            location = ResolvedLocation.from_storage(json.loads(saved))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable saved location: {e}")
            location = None
        if location is not None and self._is_fresh(location):
            return location
        self._storage.remove(LOCATION_KEY)
        return None

    def _is_fresh(self, location: ResolvedLocation) -> bool:
        return location.age(self._clock()) < self.ttl_seconds

    # queries

    @property
    def location(self) -> ResolvedLocation | None:
        if self._location is not None and not self._is_fresh(self._location):
            logger.info("Saved location expired; clearing it")
            self._location = None
            self._nearby = RankedStores()
            self._storage.remove(LOCATION_KEY)
        return self._location

    @property
    def nearby_stores(self) -> list[StoreProximity]:
        if self.location is None:
            return []
        return list(self._nearby)

    @property
    def distance_path(self) -> DistancePath | None:
        return self._nearby.path if self._nearby else None

    @property
    def needs_location(self) -> bool:
        return self._needs_location

    def get_delivery_fee(self, distance_miles: Optional[float] = None) -> float:
        """Fee for the given distance, else for the nearest cached store, else the base fee."""
        if distance_miles is None:
            stores = self.nearby_stores
            if not stores:
                return settings.base_delivery_fee
            distance_miles = stores[0].distance_miles
        return calculate_fee(distance_miles)

    def get_distance_to_store(self, store_id: str) -> float | None:
        for store in self.nearby_stores:
            if store.store_id == store_id:
                return store.distance_miles
        return None

    # mutations

    async def set_location(self, coordinate: Coordinate, address: str | None = None) -> ResolvedLocation:
        location = ResolvedLocation(coordinate=coordinate, timestamp=self._clock(), address=address)
        self._location = location
        self._storage.set(LOCATION_KEY, json.dumps(location.to_storage()))
        self._storage.set(SEEN_PROMPT_KEY, "true")
        self._needs_location = False
        self._schedule_refresh(location)
        self._notify()
        return location

    async def clear_location(self) -> None:
        self._location = None
        self._nearby = RankedStores()
        await self._cancel_refresh()
        self._storage.remove(LOCATION_KEY)
        self._storage.remove(SEEN_PROMPT_KEY)
        self._notify()

    def dismiss_location_prompt(self) -> None:
        self._needs_location = False
        self._storage.set(SEEN_PROMPT_KEY, "true")
        self._notify()

    async def refresh_nearby_stores(self) -> list[StoreProximity]:
        location = self.location
        if location is None:
            return []
        self._schedule_refresh(location)
        await self.wait_for_refresh()
        return self.nearby_stores

    async def wait_for_refresh(self) -> None:
        task = self._refresh_task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    # observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Location listener failed")

    # proximity refresh

    def _schedule_refresh(self, location: ResolvedLocation) -> None:
        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh(location))

    async def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _refresh(self, location: ResolvedLocation) -> None:
        try:
            stores = await self._catalog.load()
            ranked = await rank(location.coordinate, stores, self.radius_miles, self._provider)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to update nearby stores: {e}")
            ranked = RankedStores()

        # A newer set_location or clear_location superseded this refresh.
        if self._location is not location:
            logger.debug("Discarding nearby stores computed for a superseded location")
            return
        self._nearby = ranked
        self._notify()
