"""Dataclasses for canonical bookings, weekly metrics and import audits."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

CANCELLED_KEYWORD = "cancel"
EXTENDED_STAY_NIGHTS = 7
LONG_TERM_NIGHTS = 28


class DataOrigin(str, Enum):
    """Ingestion path that produced a booking."""

    API = "api"
    SPREADSHEET = "spreadsheet"
    PASTE = "paste"


@dataclass(slots=True, frozen=True)
class SourceContext:
    """Describes where a batch of raw reservation payloads came from."""

    property_id: str
    origin: DataOrigin = DataOrigin.API


@dataclass(slots=True, frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Date range end {self.end} precedes start {self.start}")

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(slots=True)
class Booking:
    """Normalised, source-agnostic reservation."""

    external_id: str
    property_id: str
    booking_date: date
    checkin: date
    checkout: date
    nights: int
    lead_time: int
    price: Decimal
    status: str
    channel: str
    data_origin: DataOrigin
    net_price: Optional[Decimal] = None
    taxes: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return self.property_id, self.external_id

    @property
    def is_cancelled(self) -> bool:
        return CANCELLED_KEYWORD in (self.status or "").lower()

    @property
    def is_extended_stay(self) -> bool:
        return self.nights >= EXTENDED_STAY_NIGHTS

    @property
    def is_long_term(self) -> bool:
        return self.nights >= LONG_TERM_NIGHTS

    @property
    def is_enriched(self) -> bool:
        return self.net_price is not None and self.taxes is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "external_id": self.external_id,
            "property_id": self.property_id,
            "booking_date": self.booking_date.isoformat(),
            "checkin": self.checkin.isoformat(),
            "checkout": self.checkout.isoformat(),
            "nights": self.nights,
            "lead_time": self.lead_time,
            "price": str(self.price),
            "status": self.status,
            "channel": self.channel,
            "data_origin": self.data_origin.value,
            "net_price": str(self.net_price) if self.net_price is not None else None,
            "taxes": str(self.taxes) if self.taxes is not None else None,
        }

    @classmethod
    def from_iterable(cls, records: Iterable["Booking"]) -> List[dict[str, object]]:
        return [record.to_dict() for record in records]


@dataclass(slots=True, frozen=True)
class WeeklyMetrics:
    """Immutable per-property summary for one calendar week."""

    count: int = 0
    cancelled_count: int = 0
    valid_count: int = 0
    revenue: Decimal = Decimal("0")
    adr: Decimal = Decimal("0")
    extended_stay_count: int = 0
    long_term_count: int = 0
    extended_stay_pct: float = 0.0
    long_term_pct: float = 0.0
    avg_lead_time: float = 0.0
    net_revenue: Decimal = Decimal("0")
    total_taxes: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, object]:
        return {
            "count": self.count,
            "cancelled_count": self.cancelled_count,
            "valid_count": self.valid_count,
            "revenue": str(self.revenue),
            "adr": str(self.adr),
            "extended_stay_count": self.extended_stay_count,
            "long_term_count": self.long_term_count,
            "extended_stay_pct": self.extended_stay_pct,
            "long_term_pct": self.long_term_pct,
            "avg_lead_time": self.avg_lead_time,
            "net_revenue": str(self.net_revenue),
            "total_taxes": str(self.total_taxes),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WeeklyMetrics":
        return cls(
            count=int(payload.get("count") or 0),
            cancelled_count=int(payload.get("cancelled_count") or 0),
            valid_count=int(payload.get("valid_count") or 0),
            revenue=Decimal(str(payload.get("revenue") or "0")),
            adr=Decimal(str(payload.get("adr") or "0")),
            extended_stay_count=int(payload.get("extended_stay_count") or 0),
            long_term_count=int(payload.get("long_term_count") or 0),
            extended_stay_pct=float(payload.get("extended_stay_pct") or 0.0),
            long_term_pct=float(payload.get("long_term_pct") or 0.0),
            avg_lead_time=float(payload.get("avg_lead_time") or 0.0),
            net_revenue=Decimal(str(payload.get("net_revenue") or "0")),
            total_taxes=Decimal(str(payload.get("total_taxes") or "0")),
        )


@dataclass(slots=True, frozen=True)
class WeekRecord:
    """All property metrics known for one Monday-based week."""

    week_label: str
    week_start: date
    properties: Mapping[str, WeeklyMetrics] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def week_end(self) -> date:
        return self.week_start + timedelta(days=6)

    def get(self, property_id: str) -> Optional[WeeklyMetrics]:
        return self.properties.get(property_id)


@dataclass(slots=True, frozen=True)
class ImportAudit:
    """Append-only record of one ingestion run."""

    origin: DataOrigin
    property_ids: Tuple[str, ...]
    date_from: Optional[date]
    date_to: Optional[date]
    record_count: int
    status: str
    created_at: datetime
    source_label: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "origin": self.origin.value,
            "property_ids": list(self.property_ids),
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "record_count": self.record_count,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "source_label": self.source_label,
            "error_message": self.error_message,
        }
