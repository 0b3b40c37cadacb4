"""HTTP client for the Google Maps geocoding and distance-matrix web services."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Sequence

import httpx

from ...config import settings
from ...errors import DistanceMatrixFailed, GeocodingFailed
from ...models.domain import Coordinate, TravelEstimate

logger = logging.getLogger(__name__)

# Google caps a single distance-matrix request at 25 destinations per origin.
MAX_DESTINATIONS_PER_REQUEST = 25

_DISTANCE_TEXT = re.compile(r"^\s*([\d,.]+)\s*(mi|ft|km|m)\s*$")


def parse_distance_text(text: str) -> float:
    """Convert a human distance such as '1.2 mi' or '850 ft' to miles."""

    match = _DISTANCE_TEXT.match(text or "")
    if not match:
        raise ValueError(f"Unrecognised distance text '{text}'")
    value = float(match.group(1).replace(",", ""))
    unit = match.group(2)
    if unit == "ft":
        value = value / 5280.0
    elif unit == "km":
        value = value / 1.609344
    elif unit == "m":
        value = value / 1609.344
    return round(value, 1)


class GoogleMapsClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.google_maps_api_key
        if not self.api_key:
            raise ValueError("Google Maps API key is not configured.")
        self.base_url = (base_url or settings.google_maps_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.maps_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.maps_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.maps_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self._transport,
        )

    async def _get_json(self, path: str, params: dict) -> dict:
        url = f"{self.base_url}/{path}/json"
        params = {**params, "key": self.api_key}
        async with self._get_client() as client:
            attempt = 0
            while True:
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    # 4xx other than rate limiting will not improve on retry
                    if e.response.status_code < 500 and e.response.status_code != 429:
                        raise
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    await asyncio.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Google Maps {path} request timed out after {self.max_retries} retries: {e}")
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Google Maps timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    await asyncio.sleep(wait_time)
                except httpx.TransportError as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(f"Failed to connect to Google Maps at {self.base_url}: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Google Maps network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    await asyncio.sleep(wait_time)

    async def geocode(self, address: str) -> Coordinate:
        """Resolve a free-text address to the first matching coordinate."""
        if not address or not address.strip():
            raise GeocodingFailed("INVALID_REQUEST", address)

        data = await self._get_json("geocode", {"address": address.strip()})
        status = data.get("status", "UNKNOWN_ERROR")
        results = data.get("results") or []
        if status != "OK" or not results:
            raise GeocodingFailed(status if status != "OK" else "ZERO_RESULTS", address)

        location = results[0]["geometry"]["location"]
        return Coordinate(latitude=float(location["lat"]), longitude=float(location["lng"]))

    async def distance_matrix(
        self, origin: Coordinate, destinations: Sequence[Coordinate]
    ) -> list[TravelEstimate | None]:
        """Driving distance and duration from one origin to each destination, in input order.

        Destinations the provider could not route come back as None.
        """
        estimates: list[TravelEstimate | None] = []
        for start in range(0, len(destinations), MAX_DESTINATIONS_PER_REQUEST):
            chunk = destinations[start : start + MAX_DESTINATIONS_PER_REQUEST]
            estimates.extend(await self._distance_matrix_chunk(origin, chunk))
        return estimates

    async def _distance_matrix_chunk(
        self, origin: Coordinate, destinations: Sequence[Coordinate]
    ) -> list[TravelEstimate | None]:
        params = {
            "origins": f"{origin.latitude},{origin.longitude}",
            "destinations": "|".join(f"{d.latitude},{d.longitude}" for d in destinations),
            "mode": "driving",
            "units": "imperial",
        }
        data = await self._get_json("distancematrix", params)
        status = data.get("status", "UNKNOWN_ERROR")
        rows = data.get("rows") or []
        if status != "OK" or not rows:
            raise DistanceMatrixFailed(status)

        try:
            elements = rows[0].get("elements") or []
        except AttributeError:
            raise DistanceMatrixFailed("MALFORMED_RESPONSE") from None
        if len(elements) != len(destinations):
            raise DistanceMatrixFailed(f"EXPECTED_{len(destinations)}_ELEMENTS_GOT_{len(elements)}")

        estimates = []
        for element in elements:
            try:
                if element.get("status") != "OK":
                    estimates.append(None)
                    continue
                estimate = TravelEstimate(
                    distance_miles=parse_distance_text(element["distance"]["text"]),
                    duration_minutes=float(element["duration"]["value"]) / 60.0,
                )
            except (AttributeError, KeyError, TypeError) as e:
                raise DistanceMatrixFailed("MALFORMED_RESPONSE") from e
            estimates.append(estimate)
        return estimates


async def check_health(api_key: str | None = None) -> bool:
    """Check the geocoding service answers a simple request with status OK."""
    try:
        client = GoogleMapsClient(api_key=api_key, max_retries=0)
        data = await client._get_json("geocode", {"address": "New York, NY"})
        return data.get("status") == "OK"
    except (ValueError, ConnectionError, httpx.HTTPError):
        return False
