"""Location, proximity and fee schemas."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class CoordinateModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PositionReport(BaseModel):
    """A fix or failure from the device's geolocation API."""

    device_id: str = Field(default="browser")
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    error: Optional[Literal["permission_denied", "position_unavailable", "timeout"]] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def _fix_or_error(self) -> "PositionReport":
        has_fix = self.latitude is not None and self.longitude is not None
        if has_fix == (self.error is not None):
            raise ValueError("Provide either latitude/longitude or an error code.")
        return self


class ResolvePositionRequest(BaseModel):
    device_id: str = Field(default="browser")


class GeocodeRequest(BaseModel):
    address: str = Field(..., min_length=1)


class SetLocationRequest(CoordinateModel):
    address: Optional[str] = None


class ResolvedLocationModel(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None
    timestamp: float


class StoreProximityModel(BaseModel):
    store_id: str
    name: str
    address: Optional[str] = None
    latitude: float
    longitude: float
    distance_miles: float
    duration_minutes: float


class LocationStateResponse(BaseModel):
    location: Optional[ResolvedLocationModel]
    needs_location: bool
    nearby_stores: List[StoreProximityModel]
    distance_path: Optional[str] = None


class DeliveryFeeResponse(BaseModel):
    distance_miles: Optional[float]
    fee: float


class StoreDistanceResponse(BaseModel):
    store_id: str
    distance_miles: Optional[float]
