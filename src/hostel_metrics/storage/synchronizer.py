"""Best-effort persistence of fetched data behind a single background writer.

Writes never raise into the fetch flow: failures are logged and surfaced via
:class:`SyncStatus`. Reads propagate their errors to the caller. Jobs queued
with :meth:`PersistenceSynchronizer.submit` run strictly in submission order,
so an enrichment queued after a bulk upsert always lands on top of it.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Tuple

from hostel_metrics.bookings.models import Booking, DataOrigin, DateRange, ImportAudit, WeeklyMetrics, WeekRecord
from hostel_metrics.metrics.weekly_store import WeeklyStore

from .sqlite_store import BookingFilters, ImportAuditRecord, SqliteStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UpsertResult:
    saved_count: int
    errors: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


@dataclass(slots=True)
class SyncStatus:
    state: SyncState = SyncState.IDLE
    pending: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)


StatusCallback = Callable[[SyncStatus], None]
WriteJob = Callable[[], Awaitable[Any]]


class PersistenceSynchronizer:
    """Durable write/read facade over :class:`SqliteStore`."""

    def __init__(self, store: SqliteStore, *, on_status: Optional[StatusCallback] = None) -> None:
        self._store = store
        self._on_status = on_status
        self._status = SyncStatus()
        self._queue: Optional[asyncio.Queue[WriteJob]] = None
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def status(self) -> SyncStatus:
        return self._status

    # ------------------------------------------------------------------
    # status channel

    def _publish(self) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(self._status)
        except Exception:
            logger.exception("Sync status callback failed")

    def _mark_syncing(self) -> None:
        self._status.state = SyncState.SYNCING
        self._publish()

    def _mark_synced(self) -> None:
        self._status.last_synced_at = datetime.now(timezone.utc)
        self._status.state = SyncState.SYNCED
        self._publish()

    def _mark_failed(self, action: str, exc: Exception) -> str:
        message = f"{action} failed: {exc}"
        logger.error("Persistence %s", message)
        self._status.state = SyncState.ERROR
        self._status.failures += 1
        self._status.last_error = message
        self._status.errors.append(message)
        self._publish()
        return message

    # ------------------------------------------------------------------
    # writes

    async def upsert_bookings(
        self,
        bookings: Iterable[Booking],
        property_id: Optional[str] = None,
        origin: Optional[DataOrigin] = None,
    ) -> UpsertResult:
        """Save ``bookings``; records not matching ``property_id``/``origin`` are rejected one by one."""
        items: List[Booking] = []
        errors: List[str] = []
        for booking in bookings:
            if property_id is not None and booking.property_id != property_id:
                errors.append(f"{booking.external_id}: property {booking.property_id} is not {property_id}")
            elif origin is not None and booking.data_origin is not origin:
                errors.append(f"{booking.external_id}: origin {booking.data_origin.value} is not {origin.value}")
            else:
                items.append(booking)
        for message in errors:
            logger.warning("Rejected booking %s", message)
        if not items:
            return UpsertResult(saved_count=0, errors=tuple(errors))
        self._mark_syncing()
        try:
            saved = await self._store.upsert_bookings(items)
        except Exception as exc:
            errors.append(self._mark_failed("booking upsert", exc))
            return UpsertResult(saved_count=0, errors=tuple(errors))
        logger.info("Saved %s bookings", saved)
        self._mark_synced()
        return UpsertResult(saved_count=saved, errors=tuple(errors))

    async def upsert_weekly_metrics(
        self,
        property_id: str,
        week_start: date,
        metrics: WeeklyMetrics,
        *,
        week_label: Optional[str] = None,
    ) -> bool:
        self._mark_syncing()
        try:
            await self._store.upsert_weekly_metrics(property_id, week_start, metrics, week_label=week_label)
        except Exception as exc:
            self._mark_failed(f"weekly metrics upsert for {property_id} {week_start}", exc)
            return False
        self._mark_synced()
        return True

    async def upsert_week(
        self,
        record: WeekRecord,
        property_ids: Optional[Iterable[str]] = None,
    ) -> UpsertResult:
        """Persist the metrics of ``record``, optionally limited to ``property_ids``."""
        selected = list(property_ids) if property_ids is not None else list(record.properties)
        saved = 0
        errors: List[str] = []
        for property_id in selected:
            metrics = record.get(property_id)
            if metrics is None:
                continue
            if await self.upsert_weekly_metrics(
                property_id, record.week_start, metrics, week_label=record.week_label
            ):
                saved += 1
            elif self._status.last_error:
                errors.append(self._status.last_error)
        return UpsertResult(saved_count=saved, errors=tuple(errors))

    async def record_import(self, audit: ImportAudit) -> bool:
        try:
            audit_id = await self._store.record_import(audit)
        except Exception as exc:
            self._mark_failed("import audit", exc)
            return False
        logger.debug("Recorded import audit %s (%s, %s records)", audit_id, audit.status, audit.record_count)
        return True

    async def update_enrichment(
        self,
        property_id: str,
        external_id: str,
        fields: Mapping[str, Any],
    ) -> bool:
        try:
            updated = await self._store.update_enrichment(property_id, external_id, fields)
        except Exception as exc:
            self._mark_failed(f"enrichment of {property_id}/{external_id}", exc)
            return False
        if not updated:
            logger.warning("No stored booking %s/%s to enrich", property_id, external_id)
        return updated

    # ------------------------------------------------------------------
    # reads

    async def load_bookings(
        self,
        date_range: DateRange,
        filters: Optional[BookingFilters] = None,
    ) -> list[Booking]:
        return await self._store.load_bookings(date_range, filters)

    async def load_weekly_metrics(self, date_range: DateRange) -> list[WeekRecord]:
        return await self._store.load_weekly_metrics(date_range)

    async def recent_imports(self, limit: int = 10) -> list[ImportAuditRecord]:
        return await self._store.recent_imports(limit)

    async def reload_into(self, weekly_store: WeeklyStore, date_range: DateRange) -> int:
        """Merge persisted weeks inside ``date_range`` into ``weekly_store``."""
        records = await self.load_weekly_metrics(date_range)
        for record in records:
            weekly_store.merge_in(record.week_start, record.week_label, record.properties)
        logger.info("Reloaded %s weeks between %s and %s", len(records), date_range.start, date_range.end)
        return len(records)

    # ------------------------------------------------------------------
    # background writer

    def submit(self, job: WriteJob) -> None:
        """Queue ``job`` on the FIFO writer; must be called from a running loop."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker(self._queue))
        self._status.pending += 1
        self._queue.put_nowait(job)

    async def _run_worker(self, queue: asyncio.Queue[WriteJob]) -> None:
        while True:
            job = await queue.get()
            try:
                await job()
            except Exception as exc:
                self._mark_failed("background write", exc)
            finally:
                self._status.pending -= 1
                queue.task_done()

    async def drain(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
