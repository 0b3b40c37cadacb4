"""Delivery lifecycle tracking and driver position reporting."""

from .driver_location import DriverLocationReporter, DriverPositionFeeds, build_reporter
from .lifecycle import can_transition, is_terminal, next_status
from .tracker import DeliveryTracker, TrackerRegistry, build_tracker

__all__ = [
    "DeliveryTracker",
    "DriverLocationReporter",
    "DriverPositionFeeds",
    "TrackerRegistry",
    "build_reporter",
    "build_tracker",
    "can_transition",
    "is_terminal",
    "next_status",
]
