from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from hostel_metrics.bookings import DataOrigin, SourceContext, filter_direct, normalize, normalize_all
from hostel_metrics.bookings.normalizer import (
    compute_lead_time,
    compute_nights,
    parse_moment,
    parse_price,
)

CONTEXT = SourceContext(property_id="6733")


def _raw(**overrides):
    payload = {
        "reservationID": "R-1",
        "dateCreated": "2024-12-01 10:15:00",
        "startDate": "2024-12-16",
        "endDate": "2024-12-19",
        "balance": 120.5,
        "status": "confirmed",
        "sourceName": "Website / Booking Engine",
    }
    payload.update(overrides)
    return payload


def test_normalize_builds_canonical_booking() -> None:
    booking = normalize(_raw(), CONTEXT)

    assert booking is not None
    assert booking.external_id == "R-1"
    assert booking.property_id == "6733"
    assert booking.booking_date == date(2024, 12, 1)
    assert booking.checkin == date(2024, 12, 16)
    assert booking.checkout == date(2024, 12, 19)
    assert booking.nights == 3
    assert booking.lead_time == 15
    assert booking.price == Decimal("120.5")
    assert booking.data_origin is DataOrigin.API
    assert booking.raw["reservationID"] == "R-1"


def test_lead_time_ignores_time_of_day() -> None:
    booking = normalize(_raw(dateCreated="2024-12-15 23:59:00", startDate="2024-12-16"), CONTEXT)

    assert booking is not None
    assert booking.lead_time == 1


def test_lead_time_can_be_negative_for_late_entries() -> None:
    assert compute_lead_time(date(2024, 12, 20), date(2024, 12, 16)) == -4


def test_nights_round_up_partial_days_and_never_go_negative() -> None:
    assert compute_nights(datetime(2024, 12, 16, 14), datetime(2024, 12, 17, 11)) == 1
    assert compute_nights(date(2024, 12, 16), date(2024, 12, 16)) == 0
    assert compute_nights(date(2024, 12, 18), date(2024, 12, 16)) == 0


def test_missing_required_field_is_skipped_without_raising() -> None:
    errors: list[Exception] = []
    raw = _raw()
    raw.pop("startDate")

    booking = normalize(raw, CONTEXT, on_error=lambda _raw, exc: errors.append(exc))

    assert booking is None
    assert len(errors) == 1
    assert "startDate" in str(errors[0])


def test_unparseable_date_is_skipped() -> None:
    assert normalize(_raw(dateCreated="not a date"), CONTEXT) is None


def test_non_mapping_payload_is_skipped() -> None:
    assert normalize(["R-1"], CONTEXT) is None  # type: ignore[arg-type]


def test_normalize_all_collects_skips() -> None:
    raws = [_raw(), _raw(reservationID=None), _raw(reservationID="R-2")]

    result = normalize_all(raws, CONTEXT)

    assert [booking.external_id for booking in result.bookings] == ["R-1", "R-2"]
    assert len(result.skipped) == 1
    assert result.skipped[0].external_id is None


def test_price_falls_back_to_zero() -> None:
    assert parse_price(None) == Decimal("0")
    assert parse_price("abc") == Decimal("0")
    assert parse_price(float("nan")) == Decimal("0")
    assert parse_price(-12) == Decimal("0")
    assert parse_price("€1,234.50") == Decimal("1234.50")
    assert parse_price("89,90") == Decimal("89.90")

    booking = normalize(_raw(balance=None), CONTEXT)
    assert booking is not None
    assert booking.price == Decimal("0")


def test_price_ignores_total_when_balance_is_null() -> None:
    booking = normalize(_raw(balance=None, total="250"), CONTEXT)
    assert booking is not None
    assert booking.price == Decimal("0")

    missing = dict(_raw(total="250"))
    del missing["balance"]
    booking = normalize(missing, CONTEXT)
    assert booking is not None
    assert booking.price == Decimal("0")


def test_parse_moment_accepts_spreadsheet_formats() -> None:
    assert parse_moment("16/12/2024") == datetime(2024, 12, 16)
    assert parse_moment(45642) == datetime(2024, 12, 16)
    assert parse_moment("2024-12-16T08:30:00Z") == datetime(2024, 12, 16, 8, 30)


def test_filter_direct_matches_channel_case_insensitively() -> None:
    result = normalize_all(
        [
            _raw(reservationID="A", sourceName="Website"),
            _raw(reservationID="B", sourceName="Booking.com"),
            _raw(reservationID="C", sourceName="website - mobile"),
        ],
        CONTEXT,
    )

    kept = filter_direct(result.bookings, "website")
    assert [booking.external_id for booking in kept] == ["A", "C"]
    assert len(filter_direct(result.bookings, None)) == 3
