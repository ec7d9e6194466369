from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hostel_metrics.bookings import Booking, DataOrigin, DateRange, ImportAudit, WeeklyMetrics
from hostel_metrics.metrics import aggregate
from hostel_metrics.storage import BookingFilters, SqliteStore

WEEK = DateRange(date(2024, 12, 16), date(2024, 12, 22))


def _booking(external_id: str, *, booked: date = date(2024, 12, 17), **overrides) -> Booking:
    values = dict(
        external_id=external_id,
        property_id="6733",
        booking_date=booked,
        checkin=booked + timedelta(days=5),
        checkout=booked + timedelta(days=7),
        nights=2,
        lead_time=5,
        price=Decimal("99.90"),
        status="confirmed",
        channel="Website",
        data_origin=DataOrigin.API,
        raw={"reservationID": external_id},
    )
    values.update(overrides)
    return Booking(**values)


@pytest.mark.asyncio
async def test_sqlite_store_round_trips_bookings(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()

    saved = await store.upsert_bookings(
        [
            _booking("A"),
            _booking("B", status="Cancelled"),
            _booking("C", booked=date(2024, 12, 30)),
            _booking("D", property_id="316328", data_origin=DataOrigin.PASTE),
        ]
    )
    assert saved == 4

    loaded = await store.load_bookings(WEEK)
    assert [(booking.property_id, booking.external_id) for booking in loaded] == [
        ("316328", "D"),
        ("6733", "A"),
        ("6733", "B"),
    ]
    assert loaded[1].price == Decimal("99.90")
    assert loaded[1].raw == {"reservationID": "A"}
    assert loaded[0].data_origin is DataOrigin.PASTE

    filtered = await store.load_bookings(
        WEEK, BookingFilters(property_ids=("6733",), include_cancelled=False)
    )
    assert [booking.external_id for booking in filtered] == ["A"]
    by_origin = await store.load_bookings(WEEK, BookingFilters(origin=DataOrigin.PASTE))
    assert [booking.external_id for booking in by_origin] == ["D"]

    await store.close()


@pytest.mark.asyncio
async def test_load_bookings_selects_by_booking_date(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()

    await store.upsert_bookings(
        [
            _booking("future-stay", booked=date(2024, 12, 18), checkin=date(2025, 3, 1), checkout=date(2025, 3, 4)),
            _booking("early-booking", booked=date(2024, 11, 26), checkin=date(2024, 12, 18)),
        ]
    )

    loaded = await store.load_bookings(WEEK)
    assert [booking.external_id for booking in loaded] == ["future-stay"]
    earlier = await store.load_bookings(DateRange(date(2024, 11, 25), date(2024, 12, 1)))
    assert [booking.external_id for booking in earlier] == ["early-booking"]

    await store.close()


@pytest.mark.asyncio
async def test_repeated_upsert_leaves_weekly_totals_unchanged(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()
    bookings = [_booking("A"), _booking("B", price=Decimal("45.10")), _booking("C", status="Cancelled")]

    await store.upsert_bookings(bookings)
    first = aggregate(await store.load_bookings(WEEK))
    await store.upsert_bookings(bookings)
    second = aggregate(await store.load_bookings(WEEK))

    assert first.valid_count == second.valid_count == 2
    assert first.revenue == second.revenue == Decimal("145.00")
    assert first.count == second.count == 3

    await store.close()


@pytest.mark.asyncio
async def test_upsert_is_idempotent_and_keeps_enrichment(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()

    await store.upsert_bookings([_booking("A")])
    assert await store.update_enrichment("6733", "A", {"net_price": "80", "taxes": "19.90", "total": "99.90"})
    await store.upsert_bookings([_booking("A", status="checked_out")])
    await store.upsert_bookings([_booking("A", status="checked_out")])

    loaded = await store.load_bookings(WEEK)
    assert len(loaded) == 1
    assert loaded[0].status == "checked_out"
    assert loaded[0].net_price == Decimal("80")
    assert loaded[0].taxes == Decimal("19.90")

    enrichment = await store.fetch_enrichment("6733", "A")
    assert enrichment is not None
    assert enrichment["total"] == "99.90"
    assert enrichment["enriched_at"]

    await store.close()


@pytest.mark.asyncio
async def test_update_enrichment_merges_partial_fields(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()
    await store.upsert_bookings([_booking("A")])

    assert await store.update_enrichment("6733", "A", {"net_price": Decimal("80")})
    assert await store.update_enrichment("6733", "A", {"taxes": Decimal("19.90"), "note": "late"})

    booking = (await store.load_bookings(WEEK))[0]
    assert booking.net_price == Decimal("80")
    assert booking.taxes == Decimal("19.90")
    assert booking.price == Decimal("99.90")
    assert booking.status == "confirmed"
    enrichment = await store.fetch_enrichment("6733", "A")
    assert enrichment["note"] == "late"
    assert enrichment["net_price"] == "80"

    assert await store.update_enrichment("6733", "missing", {"taxes": 1}) is False

    await store.close()


@pytest.mark.asyncio
async def test_weekly_metrics_keep_latest_snapshot(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()

    await store.upsert_weekly_metrics(
        "6733", date(2024, 12, 18), WeeklyMetrics(count=3, valid_count=3, revenue=Decimal("300"))
    )
    await store.upsert_weekly_metrics(
        "6733", date(2024, 12, 16), WeeklyMetrics(count=5, valid_count=4, cancelled_count=1, revenue=Decimal("410.5"))
    )
    await store.upsert_weekly_metrics("316328", date(2024, 12, 16), WeeklyMetrics(count=1, valid_count=1))
    await store.upsert_weekly_metrics("6733", date(2024, 12, 23), WeeklyMetrics(count=2, valid_count=2))

    records = await store.load_weekly_metrics(WEEK)

    assert len(records) == 1
    record = records[0]
    assert record.week_start == date(2024, 12, 16)
    assert record.week_label == "16 Dec 2024 - 22 Dec 2024"
    assert set(record.properties) == {"6733", "316328"}
    assert record.get("6733").count == 5
    assert record.get("6733").revenue == Decimal("410.5")

    everything = await store.load_weekly_metrics(DateRange(date(2024, 12, 1), date(2024, 12, 31)))
    assert [item.week_start for item in everything] == [date(2024, 12, 16), date(2024, 12, 23)]

    await store.close()


@pytest.mark.asyncio
async def test_import_audits_are_append_only(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")
    await store.initialize()

    for index, status in enumerate(["completed", "partial"]):
        await store.record_import(
            ImportAudit(
                origin=DataOrigin.API,
                property_ids=("6733", "316328"),
                date_from=WEEK.start,
                date_to=WEEK.end,
                record_count=10 + index,
                status=status,
                created_at=datetime(2024, 12, 23, 8, index, tzinfo=timezone.utc),
            )
        )

    recent = await store.recent_imports(limit=5)
    assert [record.audit.status for record in recent] == ["partial", "completed"]
    assert recent[0].audit.property_ids == ("6733", "316328")
    assert recent[0].audit.date_from == WEEK.start
    assert len(await store.recent_imports(limit=1)) == 1

    await store.close()


@pytest.mark.asyncio
async def test_sqlite_store_applies_pragmas(tmp_path) -> None:
    db_path = tmp_path / "pragmas.sqlite"
    store = SqliteStore(db_path, busy_timeout_ms=1234, journal_mode="delete", synchronous="full")
    await store.initialize()
    await store.close()

    conn = sqlite3.connect(db_path)
    try:
        journal_mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
        version = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()[0]
    finally:
        conn.close()

    assert journal_mode.lower() == "delete"
    assert version == "3"


def test_sqlite_store_rejects_unknown_pragmas(tmp_path) -> None:
    with pytest.raises(ValueError):
        SqliteStore(tmp_path / "x.sqlite", journal_mode="sideways")
    with pytest.raises(ValueError):
        SqliteStore(tmp_path / "x.sqlite", synchronous="sometimes")


@pytest.mark.asyncio
async def test_store_requires_initialisation(tmp_path) -> None:
    store = SqliteStore(tmp_path / "store.sqlite")

    with pytest.raises(RuntimeError):
        await store.load_bookings(WEEK)
