from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from hostel_metrics.bookings import WeeklyMetrics, WeekRecord
from hostel_metrics.metrics import WeeklyStore, merge_week

WEEK = date(2024, 12, 16)
NEXT_WEEK = date(2024, 12, 23)


def _metrics(count: int, revenue: str = "0") -> WeeklyMetrics:
    return WeeklyMetrics(count=count, valid_count=count, revenue=Decimal(revenue))


def test_merge_preserves_untouched_properties() -> None:
    flamingo = _metrics(3)
    puerto = _metrics(5)
    records = [WeekRecord(week_label="16 Dec 2024 - 22 Dec 2024", week_start=WEEK, properties={"A": flamingo, "B": puerto})]

    merged = merge_week(records, WEEK, None, {"A": _metrics(7)})

    assert len(merged) == 1
    assert merged[0].get("A").count == 7
    assert merged[0].get("B") is puerto
    assert merged[0].week_label == "16 Dec 2024 - 22 Dec 2024"
    # input list is left untouched
    assert records[0].get("A") is flamingo


def test_merge_creates_missing_week_with_label() -> None:
    merged = merge_week([], WEEK, None, {"A": _metrics(1)})

    assert [record.week_start for record in merged] == [WEEK]
    assert merged[0].week_label == "16 Dec 2024 - 22 Dec 2024"
    assert set(merged[0].properties) == {"A"}


def test_merge_is_idempotent() -> None:
    updates = {"A": _metrics(2), "B": _metrics(4)}

    once = merge_week([], WEEK, None, updates)
    twice = merge_week(once, WEEK, None, updates)

    assert [(record.week_start, record.week_label, dict(record.properties)) for record in once] == [
        (record.week_start, record.week_label, dict(record.properties)) for record in twice
    ]


def test_merge_order_of_disjoint_updates_does_not_matter() -> None:
    first = merge_week(merge_week([], WEEK, None, {"A": _metrics(1)}), WEEK, None, {"B": _metrics(2)})
    second = merge_week(merge_week([], WEEK, None, {"B": _metrics(2)}), WEEK, None, {"A": _metrics(1)})

    assert dict(first[0].properties) == dict(second[0].properties)


def test_store_keeps_one_record_per_week_sorted() -> None:
    store = WeeklyStore()
    store.merge_in(NEXT_WEEK, None, {"A": _metrics(1)})
    store.merge_in(date(2024, 12, 18), None, {"B": _metrics(2)})
    store.merge_in(WEEK, None, {"A": _metrics(3)})

    assert len(store) == 2
    assert [record.week_start for record in store] == [WEEK, NEXT_WEEK]
    assert set(store.find(WEEK).properties) == {"A", "B"}
    assert store.latest().week_start == NEXT_WEEK


def test_week_record_properties_are_read_only() -> None:
    record = WeekRecord(week_label="x", week_start=WEEK, properties={"A": _metrics(1)})

    with pytest.raises(TypeError):
        record.properties["B"] = _metrics(2)  # type: ignore[index]


def test_week_over_week_uses_previous_stored_week() -> None:
    store = WeeklyStore()
    store.merge_in(WEEK, None, {"A": _metrics(4, revenue="200")})
    store.merge_in(NEXT_WEEK, None, {"A": _metrics(6, revenue="300")})

    change = store.week_over_week(NEXT_WEEK, "A", "revenue")
    assert change.change == pytest.approx(100.0)
    assert change.percentage == 50

    assert store.week_over_week(WEEK, "A", "count").is_new is True
    with pytest.raises(KeyError):
        store.week_over_week(date(2025, 1, 6), "A", "count")
