"""Booking domain models and normalization helpers."""

from .models import (
    Booking,
    DataOrigin,
    DateRange,
    ImportAudit,
    SourceContext,
    WeeklyMetrics,
    WeekRecord,
)
from .normalizer import (
    NormalizationResult,
    SkippedRecord,
    filter_direct,
    normalize,
    normalize_all,
    parse_price,
)
from .periods import format_week_label, week_range, week_start_for

__all__ = [
    "Booking",
    "DataOrigin",
    "DateRange",
    "ImportAudit",
    "NormalizationResult",
    "SkippedRecord",
    "SourceContext",
    "WeekRecord",
    "WeeklyMetrics",
    "filter_direct",
    "format_week_label",
    "normalize",
    "normalize_all",
    "parse_price",
    "week_range",
    "week_start_for",
]
