"""Monday-based calendar week helpers."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from .models import Booking, DateRange

WEEK_LENGTH_DAYS = 7


def week_start_for(value: date | datetime) -> date:
    """Return the Monday of the week containing ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    return value - timedelta(days=value.weekday())


def week_range(value: date | datetime) -> DateRange:
    start = week_start_for(value)
    return DateRange(start=start, end=start + timedelta(days=WEEK_LENGTH_DAYS - 1))


def _format_day(value: date) -> str:
    return f"{value.day} {value.strftime('%b')} {value.year}"


def format_week_label(value: date | datetime) -> str:
    """Render a week as ``16 Dec 2024 - 22 Dec 2024``."""
    period = week_range(value)
    return f"{_format_day(period.start)} - {_format_day(period.end)}"


def detect_week_start(bookings: Iterable[Booking]) -> Optional[date]:
    """Week of the earliest booking-creation date, or ``None`` for no bookings."""
    dates = [booking.booking_date for booking in bookings]
    if not dates:
        return None
    return week_start_for(min(dates))


def validate_week_match(bookings: Iterable[Booking], expected_week_start: date) -> List[str]:
    """Return warnings when the bookings appear to belong to a different week."""
    detected = detect_week_start(bookings)
    expected = week_start_for(expected_week_start)
    if detected is None or detected == expected:
        return []
    return [
        f"Data appears to be from {format_week_label(detected)} "
        f"but {format_week_label(expected)} was selected"
    ]
