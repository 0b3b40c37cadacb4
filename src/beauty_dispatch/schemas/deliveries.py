"""Delivery and driver schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DeliveryModel(BaseModel):
    id: str
    order_id: str
    driver_id: str
    status: str
    status_label: str
    pickup_address: str
    delivery_address: str
    assigned_at: Optional[datetime] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None


class TransitionResponse(BaseModel):
    delivery_id: str
    status: str
    delivery: Optional[DeliveryModel] = None


class DriverPingRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class DriverPingResponse(BaseModel):
    driver_id: str
    latitude: float
    longitude: float
    timestamp: datetime
