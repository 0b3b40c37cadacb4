"""Supabase access for deliveries and driver position pings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from postgrest.exceptions import APIError

from ..errors import PersistenceError, StaleStatusError
from ..models.domain import DeliveryRecord, DeliveryStatus, DriverLocationPing

logger = logging.getLogger(__name__)

DELIVERY_COLUMNS = (
    "id, order_id, driver_id, status, pickup_address, delivery_address, "
    "assigned_at, estimated_delivery_time, actual_delivery_time"
)
DATA_ERRORS = (APIError, httpx.HTTPError)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def row_to_record(row: dict) -> DeliveryRecord:
    return DeliveryRecord(
        id=str(row["id"]),
        order_id=str(row["order_id"]),
        driver_id=str(row["driver_id"]),
        status=DeliveryStatus(row["status"]),
        pickup_address=row.get("pickup_address") or "",
        delivery_address=row.get("delivery_address") or "",
        assigned_at=_parse_timestamp(row.get("assigned_at")),
        estimated_delivery_time=_parse_timestamp(row.get("estimated_delivery_time")),
        actual_delivery_time=_parse_timestamp(row.get("actual_delivery_time")),
        raw=row,
    )


class DeliveryRepository:
    """Reads and compare-and-set status writes on the ``deliveries`` table."""

    def __init__(self, client) -> None:
        self._client = client

    async def list_for_driver(self, driver_id: str) -> list[DeliveryRecord]:
        try:
            response = (
                await self._client.table("deliveries")
                .select(DELIVERY_COLUMNS)
                .eq("driver_id", driver_id)
                .order("assigned_at", desc=True)
                .execute()
            )
        except DATA_ERRORS as e:
            raise PersistenceError(f"Failed to load deliveries for driver {driver_id}: {e}") from e

        records = []
        for row in response.data or []:
            try:
                records.append(row_to_record(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid delivery row {row.get('id')}: {e}")
        return records

    async def get(self, delivery_id: str) -> DeliveryRecord | None:
        try:
            response = (
                await self._client.table("deliveries")
                .select(DELIVERY_COLUMNS)
                .eq("id", delivery_id)
                .limit(1)
                .execute()
            )
        except DATA_ERRORS as e:
            raise PersistenceError(f"Failed to load delivery {delivery_id}: {e}") from e
        rows = response.data or []
        return row_to_record(rows[0]) if rows else None

    async def update_status(
        self,
        delivery_id: str,
        *,
        expected: DeliveryStatus,
        status: DeliveryStatus,
        actual_delivery_time: datetime | None = None,
    ) -> DeliveryRecord:
        """Write ``status`` only if the row is still at ``expected``."""
        payload: dict[str, Any] = {"status": status.value}
        if actual_delivery_time is not None:
            payload["actual_delivery_time"] = actual_delivery_time.isoformat()

        try:
            response = (
                await self._client.table("deliveries")
                .update(payload)
                .eq("id", delivery_id)
                .eq("status", expected.value)
                .execute()
            )
        except DATA_ERRORS as e:
            raise PersistenceError(f"Failed to update delivery {delivery_id}: {e}") from e

        rows = response.data or []
        if not rows:
            raise StaleStatusError(delivery_id, expected.value)
        return row_to_record(rows[0])


class DriverStatusRepository:
    """Last-write-wins driver positions in the ``driver_status`` table."""

    def __init__(self, client) -> None:
        self._client = client

    async def upsert_ping(self, ping: DriverLocationPing) -> None:
        payload = {
            "driver_id": ping.driver_id,
            "latitude": ping.coordinate.latitude,
            "longitude": ping.coordinate.longitude,
            "updated_at": ping.timestamp.isoformat(),
        }
        try:
            await self._client.table("driver_status").upsert(payload, on_conflict="driver_id").execute()
        except DATA_ERRORS as e:
            raise PersistenceError(f"Failed to record position for driver {ping.driver_id}: {e}") from e
