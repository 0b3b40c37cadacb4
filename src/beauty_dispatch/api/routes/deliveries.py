"""Driver delivery lifecycle and position endpoints."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request, status

from ...errors import (
    DeliveryNotFound,
    DeliveryStateError,
    NotConfigured,
    PersistenceError,
    StaleStatusError,
)
from ...models.domain import Coordinate, DeliveryRecord
from ...schemas.deliveries import DeliveryModel, DriverPingRequest, DriverPingResponse, TransitionResponse
from ...services.deliveries import DeliveryTracker, build_reporter

router = APIRouter(tags=["deliveries"])


def _to_model(record: DeliveryRecord) -> DeliveryModel:
    return DeliveryModel(
        id=record.id,
        order_id=record.order_id,
        driver_id=record.driver_id,
        status=record.status.value,
        status_label=record.status.label,
        pickup_address=record.pickup_address,
        delivery_address=record.delivery_address,
        assigned_at=record.assigned_at,
        estimated_delivery_time=record.estimated_delivery_time,
        actual_delivery_time=record.actual_delivery_time,
    )


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DeliveryNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (DeliveryStateError, StaleStatusError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotConfigured):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    logging.exception(f"Delivery persistence failure: {exc}")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to save delivery: {exc}")


async def _tracker(request: Request, driver_id: str) -> DeliveryTracker:
    """Tracker for the driver session; also starts forwarding the driver's reported positions."""
    try:
        tracker = await request.app.state.trackers.get(driver_id)
        await request.app.state.driver_feeds.start(driver_id)
    except PersistenceError as exc:
        raise _to_http_error(exc) from exc
    return tracker


@router.get("/deliveries", response_model=List[DeliveryModel], status_code=status.HTTP_200_OK)
async def list_deliveries(
    request: Request,
    driver_id: str = Query(..., description="Authenticated driver id"),
    active_only: bool = Query(default=False),
) -> List[DeliveryModel]:
    tracker = await _tracker(request, driver_id)
    records = tracker.active if active_only else tracker.deliveries
    return [_to_model(record) for record in records]


@router.post("/deliveries/{delivery_id}/advance", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
async def advance_delivery(
    delivery_id: str,
    request: Request,
    driver_id: str = Query(..., description="Authenticated driver id"),
) -> TransitionResponse:
    tracker = await _tracker(request, driver_id)
    try:
        new_status = await tracker.advance(delivery_id)
    except (DeliveryNotFound, DeliveryStateError, PersistenceError) as exc:
        raise _to_http_error(exc) from exc
    record = tracker.get(delivery_id)
    return TransitionResponse(
        delivery_id=delivery_id,
        status=new_status.value,
        delivery=_to_model(record) if record else None,
    )


@router.post("/deliveries/{delivery_id}/fail", response_model=TransitionResponse, status_code=status.HTTP_200_OK)
async def fail_delivery(
    delivery_id: str,
    request: Request,
    driver_id: str = Query(..., description="Authenticated driver id"),
) -> TransitionResponse:
    tracker = await _tracker(request, driver_id)
    try:
        new_status = await tracker.mark_failed(delivery_id)
    except (DeliveryNotFound, DeliveryStateError, PersistenceError) as exc:
        raise _to_http_error(exc) from exc
    record = tracker.get(delivery_id)
    return TransitionResponse(
        delivery_id=delivery_id,
        status=new_status.value,
        delivery=_to_model(record) if record else None,
    )


@router.delete("/drivers/{driver_id}/session", status_code=status.HTTP_200_OK)
async def end_driver_session(driver_id: str, request: Request) -> dict:
    """Release the driver's tracker, its change subscription and its position feed."""
    await request.app.state.driver_feeds.stop(driver_id)
    await request.app.state.trackers.release(driver_id)
    return {"driver_id": driver_id, "released": True}


@router.post("/drivers/{driver_id}/location", response_model=DriverPingResponse, status_code=status.HTTP_200_OK)
async def report_driver_location(driver_id: str, payload: DriverPingRequest) -> DriverPingResponse:
    try:
        reporter = await build_reporter(driver_id)
        ping = await reporter.report(Coordinate(payload.latitude, payload.longitude))
    except PersistenceError as exc:
        raise _to_http_error(exc) from exc
    return DriverPingResponse(
        driver_id=ping.driver_id,
        latitude=ping.coordinate.latitude,
        longitude=ping.coordinate.longitude,
        timestamp=ping.timestamp,
    )
