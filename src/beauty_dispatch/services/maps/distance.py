"""Batched distance lookups with a straight-line fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

import httpx

from ...config import settings
from ...errors import DistanceMatrixFailed
from ...models.domain import Coordinate, TravelEstimate
from ..geospatial import distance, estimate_minutes, haversine_estimates

logger = logging.getLogger(__name__)

PROVIDER_ERRORS = (DistanceMatrixFailed, ConnectionError, ValueError, httpx.HTTPError)


class DistancePath(str, Enum):
    PROVIDER = "provider"
    HAVERSINE = "haversine"


class DistanceMatrixProvider(Protocol):
    async def distance_matrix(
        self, origin: Coordinate, destinations: Sequence[Coordinate]
    ) -> list[TravelEstimate | None]:
        ...


@dataclass(slots=True)
class BatchDistanceResult:
    estimates: list[TravelEstimate]
    path: DistancePath
    error: str | None = None
    # Count of provider entries that were unroutable and filled from haversine.
    filled: int = field(default=0)


def get_distance_provider() -> DistanceMatrixProvider | None:
    """Build the configured road-network provider, or None when it is not configured."""
    try:
        if settings.distance_provider == "osrm":
            from .osrm_client import OSRMClient

            return OSRMClient()
        from .google_client import GoogleMapsClient

        return GoogleMapsClient()
    except ValueError as e:
        logger.warning(f"Distance provider '{settings.distance_provider}' unavailable: {e}")
        return None


def _haversine_result(origin: Coordinate, destinations: Sequence[Coordinate], error: str | None) -> BatchDistanceResult:
    return BatchDistanceResult(
        estimates=haversine_estimates(origin, destinations),
        path=DistancePath.HAVERSINE,
        error=error,
    )


async def batch_distance(
    origin: Coordinate,
    destinations: Sequence[Coordinate],
    provider: DistanceMatrixProvider | None = None,
) -> BatchDistanceResult:
    """Distance and duration from origin to every destination in one provider call.

    Falls back to haversine distances (duration estimated per mile) when the
    provider is missing or fails. The result always has one estimate per
    destination, in input order.
    """
    if not destinations:
        return BatchDistanceResult(estimates=[], path=DistancePath.PROVIDER)
    if provider is None:
        return _haversine_result(origin, destinations, "no distance provider configured")

    try:
        raw = await provider.distance_matrix(origin, destinations)
        if len(raw) != len(destinations):
            raise DistanceMatrixFailed(f"LENGTH_MISMATCH_{len(raw)}_FOR_{len(destinations)}")
    except PROVIDER_ERRORS as e:
        logger.warning(f"Distance matrix lookup failed, using haversine fallback: {e}")
        return _haversine_result(origin, destinations, str(e))

    estimates: list[TravelEstimate] = []
    filled = 0
    for destination, estimate in zip(destinations, raw):
        if estimate is None:
            miles = distance(origin, destination)
            estimate = TravelEstimate(distance_miles=miles, duration_minutes=estimate_minutes(miles))
            filled += 1
        estimates.append(estimate)
    if filled:
        logger.info(f"Filled {filled}/{len(destinations)} unroutable destinations with haversine distances")
    return BatchDistanceResult(estimates=estimates, path=DistancePath.PROVIDER, filled=filled)
