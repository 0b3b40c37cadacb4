"""Typed failures raised by the location, pricing and delivery services."""

from __future__ import annotations


class LocationError(Exception):
    """Base class for device geolocation failures."""

    code = "location_error"


class PermissionDenied(LocationError):
    code = "permission_denied"

    def __init__(self, message: str = "Location access denied by user") -> None:
        super().__init__(message)


class PositionUnavailable(LocationError):
    code = "position_unavailable"

    def __init__(self, message: str = "Location information unavailable") -> None:
        super().__init__(message)


class PositionTimeout(LocationError):
    code = "timeout"

    def __init__(self, message: str = "Location request timed out") -> None:
        super().__init__(message)


class GeocodingFailed(Exception):
    def __init__(self, status: str, address: str | None = None) -> None:
        self.status = status
        self.address = address
        super().__init__(f"Geocoding failed: {status}")


class DistanceMatrixFailed(Exception):
    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Distance Matrix failed: {status}")


class DeliveryStateError(Exception):
    """A transition was requested that the delivery lifecycle does not allow."""


class NoNextState(DeliveryStateError):
    def __init__(self, delivery_id: str, status: str) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(f"Delivery {delivery_id} is already {status}; there is no next state.")


class InvalidTransition(DeliveryStateError):
    def __init__(self, delivery_id: str, current: str, target: str) -> None:
        self.delivery_id = delivery_id
        self.current = current
        self.target = target
        super().__init__(f"Delivery {delivery_id} cannot move from {current} to {target}.")


class DeliveryNotFound(LookupError):
    def __init__(self, delivery_id: str) -> None:
        self.delivery_id = delivery_id
        super().__init__(f"Delivery {delivery_id} not found.")


class PersistenceError(Exception):
    """The data layer rejected or failed a read or write."""


class StaleStatusError(PersistenceError):
    """The stored status changed between read and compare-and-set write."""

    def __init__(self, delivery_id: str, expected: str) -> None:
        self.delivery_id = delivery_id
        self.expected = expected
        super().__init__(f"Delivery {delivery_id} is no longer {expected}; reload and retry.")


class NotConfigured(PersistenceError):
    """The data layer credentials are missing."""


LOCATION_ERRORS: dict[str, type[LocationError]] = {
    PermissionDenied.code: PermissionDenied,
    PositionUnavailable.code: PositionUnavailable,
    PositionTimeout.code: PositionTimeout,
}
