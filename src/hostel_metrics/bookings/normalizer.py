"""Utilities to transform raw reservation payloads into canonical bookings."""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, List, Mapping, Optional

from .models import Booking, SourceContext

logger = logging.getLogger(__name__)

SPREADSHEET_EPOCH = datetime(1899, 12, 30)
_SECONDS_PER_DAY = 86400
_PRICE_NOISE = re.compile(r"[^\d,.\-]")

ID_FIELD = "reservationID"
CREATED_FIELD = "dateCreated"
CHECKIN_FIELD = "startDate"
CHECKOUT_FIELD = "endDate"
PRICE_FIELD = "balance"
STATUS_FIELD = "status"
CHANNEL_FIELD = "sourceName"

ErrorCallback = Callable[[Mapping[str, Any], Exception], None]


class MissingFieldError(ValueError):
    """Raised when a raw payload lacks a required field."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Missing required field '{field_name}'")
        self.field_name = field_name


@dataclass(slots=True, frozen=True)
class SkippedRecord:
    external_id: Optional[str]
    reason: str


@dataclass(slots=True)
class NormalizationResult:
    bookings: List[Booking] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)


def _require(raw: Mapping[str, Any], key: str) -> Any:
    value = raw.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldError(key)
    return value


def parse_moment(value: Any) -> datetime:
    """Parse a date-ish value into a naive ``datetime``.

    Accepts ``date``/``datetime`` objects, ISO strings with an optional time
    component (``2026-01-11 13:09:20`` or ``2026-01-11T13:09:20``),
    ``DD/MM/YYYY`` strings and spreadsheet serial numbers.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Unsupported date value {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Unsupported date value {value!r}")
        return SPREADSHEET_EPOCH + timedelta(days=float(value))
    if isinstance(value, str):
        text = value.strip()
        if "/" in text:
            parts = text.split("/")
            if len(parts) != 3:
                raise ValueError(f"Unrecognised date '{value}'")
            day, month, year = (int(part) for part in parts)
            return datetime(year, month, day)
        parsed = datetime.fromisoformat(text.replace("T", " ").rstrip("Z"))
        return parsed.replace(tzinfo=None)
    raise ValueError(f"Unsupported date value {value!r}")


def parse_date(value: Any) -> date:
    """Date portion of :func:`parse_moment`."""
    return parse_moment(value).date()


def parse_price(value: Any) -> Decimal:
    """Parse a price defensively; anything unusable becomes ``Decimal('0')``."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return Decimal("0")
        amount = Decimal(str(value))
    else:
        text = _PRICE_NOISE.sub("", str(value))
        if "," in text and "." in text:
            text = text.replace(",", "")
        elif "," in text:
            text = text.replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return Decimal("0")
    if not amount.is_finite() or amount < 0:
        return Decimal("0")
    return amount


def parse_optional_price(value: Any) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_price(value)


def compute_nights(checkin: date | datetime, checkout: date | datetime) -> int:
    """Whole nights between check-in and check-out, rounded up and floored at 0."""
    delta = parse_moment(checkout) - parse_moment(checkin)
    return max(0, math.ceil(delta.total_seconds() / _SECONDS_PER_DAY))


def compute_lead_time(booked: date | datetime, checkin: date | datetime) -> int:
    """Days from booking creation to check-in; negative for late entries."""
    return (parse_moment(checkin).date() - parse_moment(booked).date()).days


def _build_booking(raw: Mapping[str, Any], context: SourceContext) -> Booking:
    external_id = str(_require(raw, ID_FIELD)).strip()
    created = parse_moment(_require(raw, CREATED_FIELD))
    checkin = parse_moment(_require(raw, CHECKIN_FIELD))
    checkout = parse_moment(_require(raw, CHECKOUT_FIELD))
    return Booking(
        external_id=external_id,
        property_id=context.property_id,
        booking_date=created.date(),
        checkin=checkin.date(),
        checkout=checkout.date(),
        nights=compute_nights(checkin, checkout),
        lead_time=compute_lead_time(created, checkin),
        price=parse_price(raw.get(PRICE_FIELD)),
        status=str(raw.get(STATUS_FIELD) or "").strip(),
        channel=str(raw.get(CHANNEL_FIELD) or "").strip(),
        data_origin=context.origin,
        raw=dict(raw),
    )


def normalize(
    raw: Mapping[str, Any],
    context: SourceContext,
    *,
    on_error: Optional[ErrorCallback] = None,
) -> Optional[Booking]:
    """Convert one raw payload into a :class:`Booking`.

    Returns ``None`` when the record cannot be interpreted; the failure is
    handed to ``on_error`` and never raised.
    """
    try:
        if not isinstance(raw, Mapping):
            raise TypeError(f"Expected a mapping, got {type(raw).__name__}")
        return _build_booking(raw, context)
    except Exception as exc:
        logger.debug("Skipping malformed reservation payload: %r", raw, exc_info=True)
        if on_error is not None:
            on_error(raw, exc)
        return None


def normalize_all(raws: Iterable[Mapping[str, Any]], context: SourceContext) -> NormalizationResult:
    result = NormalizationResult()

    def _record_skip(raw: Mapping[str, Any], exc: Exception) -> None:
        external_id = raw.get(ID_FIELD) if isinstance(raw, Mapping) else None
        skipped = SkippedRecord(
            external_id=str(external_id) if external_id is not None else None,
            reason=str(exc),
        )
        result.skipped.append(skipped)
        logger.warning(
            "Skipped reservation %s for property %s: %s",
            skipped.external_id or "<unknown>",
            context.property_id,
            skipped.reason,
        )

    for raw in raws:
        booking = normalize(raw, context, on_error=_record_skip)
        if booking is not None:
            result.bookings.append(booking)
    return result


def filter_direct(bookings: Iterable[Booking], keyword: Optional[str]) -> List[Booking]:
    """Keep bookings whose channel contains ``keyword`` (case-insensitive)."""
    needle = (keyword or "").strip().lower()
    if not needle:
        return list(bookings)
    return [booking for booking in bookings if needle in (booking.channel or "").lower()]
