"""Delivery status transition table."""

from __future__ import annotations

from ...models.domain import DeliveryStatus

HAPPY_PATH: dict[DeliveryStatus, DeliveryStatus] = {
    DeliveryStatus.ASSIGNED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.DELIVERED,
}

TERMINAL: frozenset[DeliveryStatus] = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED})


def is_terminal(status: DeliveryStatus) -> bool:
    return status in TERMINAL


def next_status(status: DeliveryStatus) -> DeliveryStatus | None:
    """The single forward step from ``status``, or None when it is terminal."""
    return HAPPY_PATH.get(status)


def can_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    if is_terminal(current):
        return False
    if target is DeliveryStatus.FAILED:
        return True
    return HAPPY_PATH[current] is target
