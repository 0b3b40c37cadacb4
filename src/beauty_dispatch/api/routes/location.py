"""Customer location, nearby store and delivery fee endpoints."""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, HTTPException, Query, Request, status

from ...errors import GeocodingFailed, LocationError, PermissionDenied, PositionTimeout
from ...models.domain import Coordinate
from ...schemas.location import (
    DeliveryFeeResponse,
    GeocodeRequest,
    LocationStateResponse,
    PositionReport,
    ResolvedLocationModel,
    ResolvePositionRequest,
    SetLocationRequest,
    StoreDistanceResponse,
    StoreProximityModel,
)
from ...services.location_session import LocationSession
from ...services.maps.geolocation import ReportedPositionSource
from ...services.maps.google_client import GoogleMapsClient

router = APIRouter(prefix="/location", tags=["location"])


def get_geocoder() -> GoogleMapsClient:
    return GoogleMapsClient()


def _session(request: Request) -> LocationSession:
    return request.app.state.location_session


def _positions(request: Request) -> ReportedPositionSource:
    return request.app.state.position_source


def _state(session: LocationSession) -> LocationStateResponse:
    location = session.location
    return LocationStateResponse(
        location=ResolvedLocationModel(
            latitude=location.coordinate.latitude,
            longitude=location.coordinate.longitude,
            address=location.address,
            timestamp=location.timestamp,
        )
        if location
        else None,
        needs_location=session.needs_location,
        nearby_stores=[
            StoreProximityModel(
                store_id=store.store_id,
                name=store.name,
                address=store.address,
                latitude=store.coordinate.latitude,
                longitude=store.coordinate.longitude,
                distance_miles=store.distance_miles,
                duration_minutes=store.duration_minutes,
            )
            for store in session.nearby_stores
        ],
        distance_path=session.distance_path.value if session.distance_path else None,
    )


@router.get("", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def get_location(request: Request) -> LocationStateResponse:
    return _state(_session(request))


@router.put("", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def set_location(payload: SetLocationRequest, request: Request) -> LocationStateResponse:
    session = _session(request)
    await session.set_location(Coordinate(payload.latitude, payload.longitude), payload.address)
    return _state(session)


@router.delete("", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def clear_location(request: Request) -> LocationStateResponse:
    session = _session(request)
    await session.clear_location()
    return _state(session)


@router.post("/dismiss-prompt", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def dismiss_prompt(request: Request) -> LocationStateResponse:
    session = _session(request)
    session.dismiss_location_prompt()
    return _state(session)


@router.post("/position", status_code=status.HTTP_202_ACCEPTED)
async def report_position(payload: PositionReport, request: Request) -> dict:
    """Accept a fix or failure from the device geolocation API."""
    source = _positions(request)
    if payload.error:
        error = source.report_failure(payload.device_id, payload.error, payload.message)
        return {"device_id": payload.device_id, "accepted": True, "error": error.code}
    source.report_position(payload.device_id, Coordinate(payload.latitude, payload.longitude))
    return {"device_id": payload.device_id, "accepted": True}


@router.post("/resolve", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def resolve_current_position(payload: ResolvePositionRequest, request: Request) -> LocationStateResponse:
    session = _session(request)
    try:
        coordinate = await _positions(request).resolve_current_position(payload.device_id)
    except PermissionDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except PositionTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    except LocationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    await session.set_location(coordinate)
    return _state(session)


@router.post("/geocode", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def geocode_address(payload: GeocodeRequest, request: Request) -> LocationStateResponse:
    session = _session(request)
    try:
        coordinate = await get_geocoder().geocode(payload.address)
    except GeocodingFailed as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except (ConnectionError, httpx.HTTPError) as exc:
        logging.warning(f"Geocoding provider unreachable: {exc}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to geocode address: {exc}",
        ) from exc
    await session.set_location(coordinate, payload.address)
    return _state(session)


@router.get("/stores", response_model=LocationStateResponse, status_code=status.HTTP_200_OK)
async def nearby_stores(
    request: Request,
    refresh: bool = Query(default=False, description="Recompute distances before answering"),
) -> LocationStateResponse:
    session = _session(request)
    if refresh:
        await session.refresh_nearby_stores()
    else:
        await session.wait_for_refresh()
    return _state(session)


@router.get("/fee", response_model=DeliveryFeeResponse, status_code=status.HTTP_200_OK)
async def delivery_fee(
    request: Request,
    distance_miles: float | None = Query(default=None, ge=0, description="Trip distance; defaults to the nearest store"),
) -> DeliveryFeeResponse:
    session = _session(request)
    if distance_miles is None:
        await session.wait_for_refresh()
        stores = session.nearby_stores
        distance_miles_used = stores[0].distance_miles if stores else None
    else:
        distance_miles_used = distance_miles
    try:
        fee = session.get_delivery_fee(distance_miles)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return DeliveryFeeResponse(distance_miles=distance_miles_used, fee=fee)


@router.get("/stores/{store_id}/distance", response_model=StoreDistanceResponse, status_code=status.HTTP_200_OK)
async def distance_to_store(store_id: str, request: Request) -> StoreDistanceResponse:
    session = _session(request)
    await session.wait_for_refresh()
    return StoreDistanceResponse(store_id=store_id, distance_miles=session.get_distance_to_store(store_id))
