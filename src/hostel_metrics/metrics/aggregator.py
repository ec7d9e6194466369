"""Reduce a week's bookings for one property into :class:`WeeklyMetrics`."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from hostel_metrics.bookings.models import Booking, WeeklyMetrics


@dataclass(slots=True, frozen=True)
class MetricChange:
    change: float
    percentage: int
    is_new: bool


def _pct(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return part * 100.0 / whole


def aggregate(bookings: Iterable[Booking]) -> WeeklyMetrics:
    """Summarise bookings; everything but the counts uses valid bookings only."""
    bookings = list(bookings)
    valid = [booking for booking in bookings if not booking.is_cancelled]
    cancelled_count = len(bookings) - len(valid)

    revenue = sum((booking.price for booking in valid), Decimal("0"))
    total_nights = sum(booking.nights for booking in valid)
    adr = revenue / max(1, total_nights)

    extended = sum(1 for booking in valid if booking.is_extended_stay)
    long_term = sum(1 for booking in valid if booking.is_long_term)
    avg_lead_time = sum(booking.lead_time for booking in valid) / len(valid) if valid else 0.0

    enriched = [booking for booking in valid if booking.is_enriched]
    net_revenue = sum((booking.net_price for booking in enriched), Decimal("0"))
    total_taxes = sum((booking.taxes for booking in enriched), Decimal("0"))

    return WeeklyMetrics(
        count=len(bookings),
        cancelled_count=cancelled_count,
        valid_count=len(valid),
        revenue=revenue,
        adr=adr,
        extended_stay_count=extended,
        long_term_count=long_term,
        extended_stay_pct=_pct(extended, len(valid)),
        long_term_pct=_pct(long_term, len(valid)),
        avg_lead_time=float(avg_lead_time),
        net_revenue=net_revenue,
        total_taxes=total_taxes,
    )


def metric_change(current: float | Decimal, previous: Optional[float | Decimal]) -> MetricChange:
    """Week-over-week delta; a missing or zero baseline is reported as new."""
    current_value = float(current or 0)
    if not previous:
        return MetricChange(change=current_value, percentage=100 if current_value > 0 else 0, is_new=True)
    previous_value = float(previous)
    change = current_value - previous_value
    return MetricChange(change=change, percentage=round(change / previous_value * 100), is_new=False)
