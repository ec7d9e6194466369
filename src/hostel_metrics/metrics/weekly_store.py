"""Ordered weekly metrics store and the smart-merge reconciliation rule."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

from hostel_metrics.bookings.models import WeeklyMetrics, WeekRecord
from hostel_metrics.bookings.periods import format_week_label, week_start_for

from .aggregator import MetricChange, metric_change

logger = logging.getLogger(__name__)


def merge_week(
    records: Sequence[WeekRecord],
    week_start: date | datetime,
    week_label: Optional[str],
    updates: Mapping[str, WeeklyMetrics],
) -> List[WeekRecord]:
    """Return a new record list with ``updates`` merged into the matching week.

    Properties present in ``updates`` are overwritten or added; every other
    property of that week is carried over untouched. A missing week is created
    holding exactly ``updates``. The result is sorted by ``week_start``.
    """
    monday = week_start_for(week_start)
    merged: List[WeekRecord] = []
    found = False
    for record in records:
        if record.week_start != monday:
            merged.append(record)
            continue
        found = True
        properties = dict(record.properties)
        properties.update(updates)
        merged.append(
            WeekRecord(
                week_label=record.week_label,
                week_start=monday,
                properties=properties,
            )
        )
    if not found:
        merged.append(
            WeekRecord(
                week_label=week_label or format_week_label(monday),
                week_start=monday,
                properties=dict(updates),
            )
        )
    merged.sort(key=lambda item: item.week_start)
    return merged


class WeeklyStore:
    """In-memory view of weekly metrics, one record per Monday, sorted ascending."""

    def __init__(self, records: Sequence[WeekRecord] = ()) -> None:
        self._records: List[WeekRecord] = []
        for record in records:
            self.merge_in(record.week_start, record.week_label, record.properties)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[WeekRecord]:
        return iter(tuple(self._records))

    @property
    def records(self) -> Tuple[WeekRecord, ...]:
        return tuple(self._records)

    def find(self, week_start: date | datetime) -> Optional[WeekRecord]:
        monday = week_start_for(week_start)
        for record in self._records:
            if record.week_start == monday:
                return record
        return None

    def latest(self) -> Optional[WeekRecord]:
        return self._records[-1] if self._records else None

    def merge_in(
        self,
        week_start: date | datetime,
        week_label: Optional[str],
        updates: Mapping[str, WeeklyMetrics],
    ) -> WeekRecord:
        self._records = merge_week(self._records, week_start, week_label, updates)
        record = self.find(week_start)
        if record is None:
            raise RuntimeError(f"Week {week_start} missing after merge")
        logger.debug(
            "Merged %s properties into week %s (%s properties total)",
            len(updates),
            record.week_start,
            len(record.properties),
        )
        return record

    def week_over_week(
        self,
        week_start: date | datetime,
        property_id: str,
        metric: str,
    ) -> MetricChange:
        """Change of ``metric`` for ``property_id`` against the preceding stored week."""
        monday = week_start_for(week_start)
        index = next(
            (position for position, record in enumerate(self._records) if record.week_start == monday),
            None,
        )
        if index is None:
            raise KeyError(f"Week starting {monday} is not in the store")
        current_metrics = self._records[index].get(property_id)
        current = getattr(current_metrics, metric) if current_metrics else 0
        if index == 0:
            return MetricChange(change=0.0, percentage=0, is_new=True)
        previous_metrics = self._records[index - 1].get(property_id)
        previous = getattr(previous_metrics, metric) if previous_metrics else 0
        return metric_change(current, previous)
