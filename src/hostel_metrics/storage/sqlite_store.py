"""SQLite-backed persistence for bookings, weekly metrics and import audits."""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from hostel_metrics.bookings.models import (
    Booking,
    DataOrigin,
    DateRange,
    ImportAudit,
    WeeklyMetrics,
    WeekRecord,
)
from hostel_metrics.bookings.periods import format_week_label, week_start_for

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
SCHEMA_VERSION = 3

VALID_JOURNAL_MODES = frozenset({"delete", "truncate", "persist", "memory", "wal", "off"})
VALID_SYNCHRONOUS_MODES = frozenset({"off", "normal", "full", "extra"})

ENRICHMENT_COLUMNS = frozenset({"price", "net_price", "taxes"})

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def _maybe_json(value: Any) -> str | None:
    return _json_dumps(value) if value else None


def _decimal_text(value: Any) -> str | None:
    if value is None:
        return None
    try:
        return str(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def _decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


@dataclass(frozen=True)
class BookingFilters:
    """Optional narrowing applied by :meth:`SqliteStore.load_bookings`."""

    property_ids: tuple[str, ...] = ()
    origin: Optional[DataOrigin] = None
    include_cancelled: bool = True


@dataclass(frozen=True)
class ImportAuditRecord:
    """Stored view of an import audit row."""

    id: int
    audit: ImportAudit


class SqliteStore:
    """Thin async wrapper over sqlite3 for structured persistence."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 2000,
        journal_mode: str | None = "wal",
        synchronous: str | None = "normal",
    ) -> None:
        self._path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._journal_mode = self._normalize_journal_mode(journal_mode)
        self._synchronous = self._normalize_synchronous(synchronous)
        self._connection: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # lifecycle

    async def initialize(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is None:
                conn = await asyncio.to_thread(self._open_connection)
                self._connection = conn

    async def close(self) -> None:
        if self._connection is None:
            return
        conn = self._connection
        self._connection = None
        await asyncio.to_thread(conn.close)

    def _open_connection(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(max(self._busy_timeout_ms, 0))};")
        if self._journal_mode:
            conn.execute(f"PRAGMA journal_mode = {self._journal_mode.upper()};")
        if self._synchronous:
            conn.execute(f"PRAGMA synchronous = {self._synchronous.upper()};")
        try:
            self._apply_migrations(conn)
        except sqlite3.OperationalError as exc:
            conn.close()
            logger.error(
                "SQLite migration failed (path=%s, timeout_ms=%s): %s",
                self._path,
                self._busy_timeout_ms,
                exc,
            )
            raise
        return conn

    @staticmethod
    def _normalize_journal_mode(value: str | None) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in VALID_JOURNAL_MODES:
            raise ValueError(
                f"Unsupported SQLite journal_mode '{value}'. Expected one of: {sorted(VALID_JOURNAL_MODES)}"
            )
        return mode

    @staticmethod
    def _normalize_synchronous(value: str | None) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in VALID_SYNCHRONOUS_MODES:
            raise ValueError(
                f"Unsupported SQLite synchronous mode '{value}'. Expected one of: {sorted(VALID_SYNCHRONOUS_MODES)}"
            )
        return mode

    def _apply_migrations(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        current = self._get_schema_version(conn)
        if current >= SCHEMA_VERSION:
            return
        for version in range(current + 1, SCHEMA_VERSION + 1):
            script = MIGRATIONS.get(version)
            if not script:
                raise RuntimeError(f"Missing migration script for version {version}")
            conn.executescript(script)
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('schema_version', ?)\n"
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (str(version),),
            )
        conn.commit()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("SELECT value FROM meta WHERE key='schema_version'")
        row = cursor.fetchone()
        if not row:
            return 0
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return 0

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise RuntimeError("SQLite store has not been initialised")
        return self._connection

    # ------------------------------------------------------------------
    # bookings

    async def upsert_bookings(self, bookings: Iterable[Booking]) -> int:
        """Insert or refresh bookings keyed by ``(property_id, external_id)``.

        Source columns are overwritten. Enrichment columns are only replaced
        when the incoming booking carries a value, so a bulk refresh never
        erases a precise price breakdown recorded earlier.
        """
        rows = [self._booking_row(booking) for booking in bookings]

        def _op() -> int:
            conn = self._require_connection()
            if not rows:
                return 0
            now = _utc_now()
            with conn:
                conn.executemany(
                    """
                    INSERT INTO bookings(
                        property_id,
                        external_id,
                        booking_date,
                        checkin,
                        checkout,
                        nights,
                        lead_time,
                        price,
                        status,
                        channel,
                        data_origin,
                        net_price,
                        taxes,
                        raw_json,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(property_id, external_id) DO UPDATE SET
                        booking_date=excluded.booking_date,
                        checkin=excluded.checkin,
                        checkout=excluded.checkout,
                        nights=excluded.nights,
                        lead_time=excluded.lead_time,
                        price=excluded.price,
                        status=excluded.status,
                        channel=excluded.channel,
                        data_origin=excluded.data_origin,
                        net_price=COALESCE(excluded.net_price, bookings.net_price),
                        taxes=COALESCE(excluded.taxes, bookings.taxes),
                        raw_json=COALESCE(excluded.raw_json, bookings.raw_json),
                        updated_at=excluded.updated_at
                    """,
                    [(*row, now, now) for row in rows],
                )
            return len(rows)

        async with self._lock:
            return await asyncio.to_thread(_op)

    def _booking_row(self, booking: Booking) -> tuple[Any, ...]:
        return (
            booking.property_id,
            booking.external_id,
            booking.booking_date.isoformat(),
            booking.checkin.isoformat(),
            booking.checkout.isoformat(),
            booking.nights,
            booking.lead_time,
            str(booking.price),
            booking.status,
            booking.channel,
            booking.data_origin.value,
            _decimal_text(booking.net_price),
            _decimal_text(booking.taxes),
            _maybe_json(booking.raw),
        )

    async def load_bookings(
        self,
        date_range: DateRange,
        filters: Optional[BookingFilters] = None,
    ) -> list[Booking]:
        """Bookings created inside ``date_range``; a week holds the bookings made in it."""
        filters = filters or BookingFilters()
        clauses = ["booking_date BETWEEN ? AND ?"]
        params: list[Any] = [date_range.start.isoformat(), date_range.end.isoformat()]
        if filters.property_ids:
            placeholders = ",".join("?" for _ in filters.property_ids)
            clauses.append(f"property_id IN ({placeholders})")
            params.extend(filters.property_ids)
        if filters.origin is not None:
            clauses.append("data_origin = ?")
            params.append(filters.origin.value)
        if not filters.include_cancelled:
            clauses.append("LOWER(status) NOT LIKE '%cancel%'")

        def _op() -> list[Booking]:
            conn = self._require_connection()
            cursor = conn.execute(
                f"""
                SELECT property_id, external_id, booking_date, checkin, checkout, nights,
                       lead_time, price, status, channel, data_origin, net_price, taxes, raw_json
                FROM bookings
                WHERE {' AND '.join(clauses)}
                ORDER BY booking_date, property_id, external_id
                """,
                params,
            )
            return [self._row_to_booking(row) for row in cursor.fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_op)

    def _row_to_booking(self, row: Sequence[Any]) -> Booking:
        return Booking(
            property_id=row[0],
            external_id=row[1],
            booking_date=date.fromisoformat(row[2]),
            checkin=date.fromisoformat(row[3]),
            checkout=date.fromisoformat(row[4]),
            nights=int(row[5] or 0),
            lead_time=int(row[6] or 0),
            price=_decimal(row[7], Decimal("0")),
            status=row[8] or "",
            channel=row[9] or "",
            data_origin=DataOrigin(row[10]),
            net_price=_decimal(row[11]),
            taxes=_decimal(row[12]),
            raw=json.loads(row[13]) if row[13] else {},
        )

    async def update_enrichment(
        self,
        property_id: str,
        external_id: str,
        fields: Mapping[str, Any],
    ) -> bool:
        """Merge a partial price breakdown onto an existing booking.

        ``price``, ``net_price`` and ``taxes`` update their columns; any other
        key is merged into the stored enrichment JSON. Returns ``False`` when
        no booking exists for the key.
        """
        columns = {key: _decimal_text(value) for key, value in fields.items() if key in ENRICHMENT_COLUMNS}
        extras = {key: value for key, value in fields.items() if key not in ENRICHMENT_COLUMNS}

        def _op() -> bool:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT enrichment_json FROM bookings WHERE property_id=? AND external_id=?",
                (property_id, external_id),
            ).fetchone()
            if row is None:
                return False
            enrichment = json.loads(row[0]) if row[0] else {}
            enrichment.update(extras)
            enrichment.update({key: value for key, value in columns.items() if value is not None})
            assignments = [f"{column}=COALESCE(?, {column})" for column in sorted(columns)]
            params: list[Any] = [columns[column] for column in sorted(columns)]
            now = _utc_now()
            assignments.extend(["enrichment_json=?", "enriched_at=?", "updated_at=?"])
            params.extend([_json_dumps(enrichment), now, now, property_id, external_id])
            with conn:
                conn.execute(
                    f"UPDATE bookings SET {', '.join(assignments)} WHERE property_id=? AND external_id=?",
                    params,
                )
            return True

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def fetch_enrichment(self, property_id: str, external_id: str) -> Optional[dict[str, Any]]:
        def _op() -> Optional[dict[str, Any]]:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT enrichment_json, enriched_at FROM bookings WHERE property_id=? AND external_id=?",
                (property_id, external_id),
            ).fetchone()
            if row is None or not row[0]:
                return None
            payload = json.loads(row[0])
            payload["enriched_at"] = row[1]
            return payload

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # weekly metrics

    async def upsert_weekly_metrics(
        self,
        property_id: str,
        week_start: date,
        metrics: WeeklyMetrics,
        *,
        week_label: Optional[str] = None,
    ) -> None:
        """Store the latest snapshot for ``(property_id, week_start)``; no history is kept."""
        monday = week_start_for(week_start)
        label = week_label or format_week_label(monday)

        def _op() -> None:
            conn = self._require_connection()
            now = _utc_now()
            with conn:
                conn.execute(
                    """
                    INSERT INTO weekly_metrics(
                        property_id,
                        week_start,
                        week_label,
                        booking_count,
                        cancelled_count,
                        valid_count,
                        revenue,
                        adr,
                        extended_stay_count,
                        long_term_count,
                        extended_stay_pct,
                        long_term_pct,
                        avg_lead_time,
                        net_revenue,
                        total_taxes,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(property_id, week_start) DO UPDATE SET
                        week_label=excluded.week_label,
                        booking_count=excluded.booking_count,
                        cancelled_count=excluded.cancelled_count,
                        valid_count=excluded.valid_count,
                        revenue=excluded.revenue,
                        adr=excluded.adr,
                        extended_stay_count=excluded.extended_stay_count,
                        long_term_count=excluded.long_term_count,
                        extended_stay_pct=excluded.extended_stay_pct,
                        long_term_pct=excluded.long_term_pct,
                        avg_lead_time=excluded.avg_lead_time,
                        net_revenue=excluded.net_revenue,
                        total_taxes=excluded.total_taxes,
                        updated_at=excluded.updated_at
                    """,
                    (
                        property_id,
                        monday.isoformat(),
                        label,
                        metrics.count,
                        metrics.cancelled_count,
                        metrics.valid_count,
                        str(metrics.revenue),
                        str(metrics.adr),
                        metrics.extended_stay_count,
                        metrics.long_term_count,
                        metrics.extended_stay_pct,
                        metrics.long_term_pct,
                        metrics.avg_lead_time,
                        str(metrics.net_revenue),
                        str(metrics.total_taxes),
                        now,
                        now,
                    ),
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    async def load_weekly_metrics(self, date_range: DateRange) -> list[WeekRecord]:
        """Week records whose Monday falls inside ``date_range``, oldest first."""

        def _op() -> list[WeekRecord]:
            conn = self._require_connection()
            cursor = conn.execute(
                """
                SELECT property_id, week_start, week_label, booking_count, cancelled_count,
                       valid_count, revenue, adr, extended_stay_count, long_term_count,
                       extended_stay_pct, long_term_pct, avg_lead_time, net_revenue, total_taxes
                FROM weekly_metrics
                WHERE week_start BETWEEN ? AND ?
                ORDER BY week_start, property_id
                """,
                (date_range.start.isoformat(), date_range.end.isoformat()),
            )
            grouped: dict[str, tuple[str, dict[str, WeeklyMetrics]]] = {}
            for row in cursor.fetchall():
                label, properties = grouped.setdefault(row[1], (row[2], {}))
                properties[row[0]] = WeeklyMetrics(
                    count=int(row[3] or 0),
                    cancelled_count=int(row[4] or 0),
                    valid_count=int(row[5] or 0),
                    revenue=_decimal(row[6], Decimal("0")),
                    adr=_decimal(row[7], Decimal("0")),
                    extended_stay_count=int(row[8] or 0),
                    long_term_count=int(row[9] or 0),
                    extended_stay_pct=float(row[10] or 0.0),
                    long_term_pct=float(row[11] or 0.0),
                    avg_lead_time=float(row[12] or 0.0),
                    net_revenue=_decimal(row[13], Decimal("0")),
                    total_taxes=_decimal(row[14], Decimal("0")),
                )
            return [
                WeekRecord(week_label=label, week_start=date.fromisoformat(week), properties=properties)
                for week, (label, properties) in grouped.items()
            ]

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # import audits

    async def record_import(self, audit: ImportAudit) -> int:
        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO import_audits(
                        origin,
                        property_ids_json,
                        date_from,
                        date_to,
                        record_count,
                        status,
                        source_label,
                        error_message,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        audit.origin.value,
                        _json_dumps(list(audit.property_ids)),
                        audit.date_from.isoformat() if audit.date_from else None,
                        audit.date_to.isoformat() if audit.date_to else None,
                        audit.record_count,
                        audit.status,
                        audit.source_label,
                        audit.error_message[:512] if audit.error_message else None,
                        audit.created_at.isoformat(),
                    ),
                )
                return int(cursor.lastrowid)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def recent_imports(self, limit: int = 10) -> list[ImportAuditRecord]:
        def _op() -> list[ImportAuditRecord]:
            conn = self._require_connection()
            cursor = conn.execute(
                """
                SELECT id, origin, property_ids_json, date_from, date_to, record_count, status,
                       source_label, error_message, created_at
                FROM import_audits
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (max(int(limit), 0),),
            )
            return [self._row_to_import(row) for row in cursor.fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_op)

    def _row_to_import(self, row: Sequence[Any]) -> ImportAuditRecord:
        return ImportAuditRecord(
            id=int(row[0]),
            audit=ImportAudit(
                origin=DataOrigin(row[1]),
                property_ids=tuple(json.loads(row[2] or "[]")),
                date_from=date.fromisoformat(row[3]) if row[3] else None,
                date_to=date.fromisoformat(row[4]) if row[4] else None,
                record_count=int(row[5] or 0),
                status=row[6],
                source_label=row[7],
                error_message=row[8],
                created_at=datetime.fromisoformat(row[9]),
            ),
        )


MIGRATIONS: dict[int, str] = {
    1: """
        CREATE TABLE IF NOT EXISTS bookings (
            property_id TEXT NOT NULL,
            external_id TEXT NOT NULL,
            booking_date TEXT NOT NULL,
            checkin TEXT NOT NULL,
            checkout TEXT NOT NULL,
            nights INTEGER NOT NULL,
            lead_time INTEGER NOT NULL,
            price TEXT NOT NULL,
            status TEXT,
            channel TEXT,
            data_origin TEXT NOT NULL,
            raw_json TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (property_id, external_id)
        );
        CREATE INDEX IF NOT EXISTS idx_bookings_checkin ON bookings(checkin);

        CREATE TABLE IF NOT EXISTS weekly_metrics (
            property_id TEXT NOT NULL,
            week_start TEXT NOT NULL,
            week_label TEXT NOT NULL,
            booking_count INTEGER NOT NULL,
            cancelled_count INTEGER NOT NULL,
            valid_count INTEGER NOT NULL,
            revenue TEXT NOT NULL,
            adr TEXT NOT NULL,
            extended_stay_count INTEGER NOT NULL,
            long_term_count INTEGER NOT NULL,
            extended_stay_pct REAL NOT NULL,
            long_term_pct REAL NOT NULL,
            avg_lead_time REAL NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (property_id, week_start)
        );
        CREATE INDEX IF NOT EXISTS idx_weekly_metrics_week ON weekly_metrics(week_start);

        CREATE TABLE IF NOT EXISTS import_audits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            origin TEXT NOT NULL,
            property_ids_json TEXT NOT NULL,
            date_from TEXT,
            date_to TEXT,
            record_count INTEGER NOT NULL,
            status TEXT NOT NULL,
            source_label TEXT,
            error_message TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_import_audits_created ON import_audits(created_at);
    """,
    2: """
        ALTER TABLE bookings ADD COLUMN net_price TEXT;
        ALTER TABLE bookings ADD COLUMN taxes TEXT;
        ALTER TABLE bookings ADD COLUMN enrichment_json TEXT;
        ALTER TABLE bookings ADD COLUMN enriched_at TEXT;
        ALTER TABLE weekly_metrics ADD COLUMN net_revenue TEXT NOT NULL DEFAULT '0';
        ALTER TABLE weekly_metrics ADD COLUMN total_taxes TEXT NOT NULL DEFAULT '0';
    """,
    3: """
        CREATE INDEX IF NOT EXISTS idx_bookings_booking_date ON bookings(booking_date);
    """,
}
