"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import httpx

from ...config import settings
from ...models.domain import Coordinate, TravelEstimate
from ..geospatial import meters_to_miles

# OSRM table endpoint has URL length limits; one origin plus this many destinations per request.
DEFAULT_MAX_DESTINATIONS_PER_REQUEST = 80

logger = logging.getLogger(__name__)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_destinations_per_request: int = DEFAULT_MAX_DESTINATIONS_PER_REQUEST,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = self.base_url.rstrip("/")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.maps_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.maps_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.maps_backoff_seconds
        self.max_destinations_per_request = max_destinations_per_request
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self._transport,
        )

    async def _table_single_request(
        self, origin: Coordinate, destinations: Sequence[Coordinate]
    ) -> dict:
        """Make a single OSRM table request from the origin to a subset of destinations."""
        coordinates = [origin, *destinations]
        coordinate_str = ";".join(f"{c.longitude},{c.latitude}" for c in coordinates)
        params = {
            "annotations": "duration,distance",
            "sources": "0",
            "destinations": ";".join(str(i) for i in range(1, len(coordinates))),
        }
        url = f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}"

        async with self._get_client() as client:
            attempt = 0
            while True:
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise ValueError(f"OSRM table request failed: {data.get('message', data.get('code'))}")
                    if "durations" not in data or "distances" not in data:
                        raise ValueError("OSRM response missing durations/distances.")
                    return data
                except httpx.HTTPStatusError as e:
                    if e.response.status_code == 414:
                        raise ValueError(
                            f"OSRM request URL too large ({len(coordinates)} coordinates). "
                            f"Try reducing max_destinations_per_request (current: {self.max_destinations_per_request})"
                        ) from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    await asyncio.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request timed out after {self.max_retries} retries: {e}")
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    await asyncio.sleep(wait_time)
                except httpx.TransportError as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(f"Failed to connect to OSRM service at {self.base_url}: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    await asyncio.sleep(wait_time)

    async def distance_matrix(
        self, origin: Coordinate, destinations: Sequence[Coordinate]
    ) -> list[TravelEstimate | None]:
        """Road distance (miles) and duration (minutes) to each destination, in input order.

        Pairs OSRM reports as unreachable (null) come back as None.
        """
        estimates: list[TravelEstimate | None] = []
        chunk_size = self.max_destinations_per_request
        for start in range(0, len(destinations), chunk_size):
            chunk = destinations[start : start + chunk_size]
            data = await self._table_single_request(origin, chunk)
            try:
                durations = list(data["durations"][0])
                distances = list(data["distances"][0])
            except (IndexError, KeyError, TypeError) as e:
                raise ValueError(f"OSRM returned a malformed table: {e}") from e
            if len(durations) != len(chunk) or len(distances) != len(chunk):
                raise ValueError(f"OSRM returned {len(durations)} entries for {len(chunk)} destinations.")
            for seconds, meters in zip(durations, distances):
                if seconds is None or meters is None:
                    estimates.append(None)
                    continue
                estimates.append(
                    TravelEstimate(distance_miles=meters_to_miles(meters), duration_minutes=seconds / 60.0)
                )
        return estimates


async def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by making a minimal table request.

    Public OSRM endpoints may not have a /health endpoint, so we test
    connectivity with two nearby coordinates.
    """
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        client = OSRMClient(base_url=base, max_retries=0)
        data = await client._table_single_request(
            Coordinate(52.517037, 13.388860), [Coordinate(52.496891, 13.385983)]
        )
        return isinstance(data.get("durations"), list)
    except (ValueError, ConnectionError, httpx.HTTPError):
        return False
