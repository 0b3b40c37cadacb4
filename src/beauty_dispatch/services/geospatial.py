"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from ..config import settings
from ..models.domain import Coordinate, TravelEstimate

EARTH_RADIUS_MILES = 3959.0
METERS_PER_MILE = 1609.344


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute the unrounded great-circle distance in miles using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def distance(a: Coordinate, b: Coordinate) -> float:
    """Straight-line distance between two coordinates in miles, rounded to one decimal."""

    return round(haversine_miles(a.latitude, a.longitude, b.latitude, b.longitude), 1)


def estimate_minutes(distance_miles: float) -> float:
    return distance_miles * settings.minutes_per_mile_estimate


def haversine_estimates(origin: Coordinate, destinations: Sequence[Coordinate]) -> list[TravelEstimate]:
    """Per-destination straight-line estimates, in input order."""

    estimates = []
    for destination in destinations:
        miles = distance(origin, destination)
        estimates.append(TravelEstimate(distance_miles=miles, duration_minutes=estimate_minutes(miles)))
    return estimates


def meters_to_miles(meters: float) -> float:
    return round(meters / METERS_PER_MILE, 1)
