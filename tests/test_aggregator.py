from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from hostel_metrics.bookings import Booking, DataOrigin
from hostel_metrics.metrics import aggregate, metric_change


def _booking(
    external_id: str,
    *,
    nights: int = 2,
    price: str = "100",
    status: str = "confirmed",
    lead_time: int = 10,
    net_price: str | None = None,
    taxes: str | None = None,
) -> Booking:
    checkin = date(2024, 12, 16)
    return Booking(
        external_id=external_id,
        property_id="6733",
        booking_date=checkin - timedelta(days=lead_time),
        checkin=checkin,
        checkout=checkin + timedelta(days=nights),
        nights=nights,
        lead_time=lead_time,
        price=Decimal(price),
        status=status,
        channel="Website",
        data_origin=DataOrigin.API,
        net_price=Decimal(net_price) if net_price is not None else None,
        taxes=Decimal(taxes) if taxes is not None else None,
    )


def test_empty_input_yields_zero_metrics() -> None:
    metrics = aggregate([])

    assert metrics.count == 0
    assert metrics.valid_count == 0
    assert metrics.revenue == Decimal("0")
    assert metrics.adr == Decimal("0")
    assert metrics.avg_lead_time == 0.0
    assert metrics.extended_stay_pct == 0.0


def test_cancelled_bookings_only_count_towards_totals() -> None:
    bookings = [
        _booking("A", nights=2, price="100", lead_time=4),
        _booking("B", nights=3, price="200", lead_time=8),
        _booking("C", nights=5, price="999", status="Cancelled", lead_time=60),
        _booking("D", nights=5, price="999", status="canceled", lead_time=60),
    ]

    metrics = aggregate(bookings)

    assert metrics.count == 4
    assert metrics.cancelled_count == 2
    assert metrics.valid_count == 2
    assert metrics.count == metrics.cancelled_count + metrics.valid_count
    assert metrics.revenue == Decimal("300")
    assert metrics.adr == Decimal("60")
    assert metrics.avg_lead_time == pytest.approx(6.0)


def test_extended_and_long_term_thresholds() -> None:
    bookings = [
        _booking("A", nights=6),
        _booking("B", nights=7),
        _booking("C", nights=27),
        _booking("D", nights=28),
    ]

    metrics = aggregate(bookings)

    assert metrics.extended_stay_count == 3
    assert metrics.long_term_count == 1
    assert metrics.long_term_count <= metrics.extended_stay_count <= metrics.valid_count
    assert metrics.extended_stay_pct == pytest.approx(75.0)
    assert metrics.long_term_pct == pytest.approx(25.0)


def test_adr_divides_by_at_least_one_night() -> None:
    metrics = aggregate([_booking("A", nights=0, price="80")])

    assert metrics.adr == Decimal("80")


def test_revenue_is_order_independent() -> None:
    bookings = [_booking(str(index), price=f"{index}.10") for index in range(1, 20)]

    forward = aggregate(bookings)
    backward = aggregate(list(reversed(bookings)))

    assert forward.revenue == backward.revenue
    assert forward == backward


def test_enriched_totals_only_use_enriched_valid_bookings() -> None:
    bookings = [
        _booking("A", net_price="90", taxes="10"),
        _booking("B"),
        _booking("C", status="cancelled", net_price="50", taxes="5"),
    ]

    metrics = aggregate(bookings)

    assert metrics.net_revenue == Decimal("90")
    assert metrics.total_taxes == Decimal("10")


def test_metric_change_against_previous_week() -> None:
    change = metric_change(150, 100)
    assert change.change == pytest.approx(50.0)
    assert change.percentage == 50
    assert change.is_new is False

    first = metric_change(10, None)
    assert first.is_new is True
    assert first.percentage == 100

    assert metric_change(0, 0).percentage == 0
