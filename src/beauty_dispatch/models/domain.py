"""Domain models for locations, stores and deliveries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class Coordinate:
    """Latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude {self.latitude} is outside [-90, 90].")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude {self.longitude} is outside [-180, 180].")

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class ResolvedLocation:
    """A user location with the epoch time (seconds) it was resolved."""

    coordinate: Coordinate
    timestamp: float
    address: Optional[str] = None

    def age(self, now: float) -> float:
        return now - self.timestamp

    def to_storage(self) -> dict[str, Any]:
        # Stored shape matches what browser clients persist: flat coordinates, millisecond timestamp.
        return {
            "latitude": self.coordinate.latitude,
            "longitude": self.coordinate.longitude,
            "address": self.address,
            "timestamp": int(round(self.timestamp * 1000)),
        }

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "ResolvedLocation":
        return cls(
            coordinate=Coordinate(float(data["latitude"]), float(data["longitude"])),
            timestamp=float(data["timestamp"]) / 1000.0,
            address=data.get("address"),
        )


@dataclass(frozen=True, slots=True)
class TravelEstimate:
    distance_miles: float
    duration_minutes: float


@dataclass(slots=True)
class Store:
    """A storefront from the catalog."""

    store_id: str
    name: str
    latitude: float
    longitude: float
    address: Optional[str] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class StoreProximity:
    store_id: str
    name: str
    coordinate: Coordinate
    distance_miles: float
    duration_minutes: float
    address: Optional[str] = None


class DeliveryStatus(str, Enum):
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass(slots=True)
class DeliveryRecord:
    id: str
    order_id: str
    driver_id: str
    status: DeliveryStatus
    pickup_address: str
    delivery_address: str
    assigned_at: datetime
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    raw: dict = field(default_factory=dict, repr=False)


@dataclass(frozen=True, slots=True)
class DriverLocationPing:
    driver_id: str
    coordinate: Coordinate
    timestamp: datetime
