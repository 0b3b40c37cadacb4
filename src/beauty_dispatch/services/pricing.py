"""Distance-based delivery pricing."""

from __future__ import annotations

from ..config import settings


def calculate_fee(
    distance_miles: float,
    *,
    base_fee: float | None = None,
    base_miles: float | None = None,
    per_mile_rate: float | None = None,
) -> float:
    """Delivery fee in dollars for a trip of ``distance_miles``.

    The base fee covers the first ``base_miles``; every mile beyond that is
    charged at ``per_mile_rate``. There is no cap.
    """
    if distance_miles < 0:
        raise ValueError(f"Distance must be non-negative, got {distance_miles}.")

    base_fee = settings.base_delivery_fee if base_fee is None else base_fee
    base_miles = settings.base_fee_miles if base_miles is None else base_miles
    per_mile_rate = settings.per_mile_rate if per_mile_rate is None else per_mile_rate

    if distance_miles <= base_miles:
        return base_fee
    return round(base_fee + (distance_miles - base_miles) * per_mile_rate, 2)
