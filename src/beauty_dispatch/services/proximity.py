"""Rank catalog stores by distance from a user location."""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import settings
from ..models.domain import Coordinate, Store, StoreProximity
from .maps.distance import DistanceMatrixProvider, DistancePath, batch_distance

logger = logging.getLogger(__name__)


class RankedStores(list):
    """Stores sorted nearest first, tagged with the distance path that produced them."""

    path: DistancePath

    def __init__(self, stores=(), path: DistancePath = DistancePath.PROVIDER, error: str | None = None):
        super().__init__(stores)
        self.path = path
        self.error = error


async def rank(
    user_location: Coordinate,
    stores: Sequence[Store],
    radius_miles: float | None = None,
    provider: DistanceMatrixProvider | None = None,
) -> RankedStores:
    radius = settings.default_radius_miles if radius_miles is None else radius_miles
    if radius < 0:
        raise ValueError(f"Radius must be non-negative, got {radius}.")

    rankable: list[tuple[Store, Coordinate]] = []
    for store in stores:
        try:
            rankable.append((store, store.coordinate))
        except ValueError as e:
            logger.warning(f"Skipping store {store.store_id}: {e}")

    result = await batch_distance(user_location, [coordinate for _, coordinate in rankable], provider)

    annotated = [
        StoreProximity(
            store_id=store.store_id,
            name=store.name,
            coordinate=coordinate,
            distance_miles=estimate.distance_miles,
            duration_minutes=estimate.duration_minutes,
            address=store.address,
        )
        for (store, coordinate), estimate in zip(rankable, result.estimates)
    ]
    nearby = [entry for entry in annotated if entry.distance_miles <= radius]
    nearby.sort(key=lambda entry: (entry.distance_miles, entry.store_id))

    logger.debug(
        f"Ranked {len(nearby)}/{len(stores)} stores within {radius} mi via {result.path.value}"
    )
    return RankedStores(nearby, path=result.path, error=result.error)
