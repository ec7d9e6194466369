"""Ingestion facade tying the fetch flow, imports, enrichment and persistence together."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from hostel_metrics.bookings.models import (
    Booking,
    DataOrigin,
    DateRange,
    ImportAudit,
    SourceContext,
    WeeklyMetrics,
    WeekRecord,
)
from hostel_metrics.bookings.normalizer import SkippedRecord, filter_direct, normalize_all
from hostel_metrics.bookings.periods import (
    detect_week_start,
    format_week_label,
    validate_week_match,
    week_range,
    week_start_for,
)
from hostel_metrics.metrics.aggregator import aggregate
from hostel_metrics.metrics.weekly_store import WeeklyStore
from hostel_metrics.properties.catalog import PropertyCatalog
from hostel_metrics.storage.sqlite_store import BookingFilters
from hostel_metrics.storage.synchronizer import PersistenceSynchronizer

from .enrich import Enricher, EnrichmentReport
from .fetch import BatchResult, CancellationToken, FetchItem, FetchOrchestrator

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


def batch_status(result: BatchResult) -> str:
    summary = result.summary
    if summary.cancelled:
        return STATUS_CANCELLED
    if summary.error_count and summary.success_count:
        return STATUS_PARTIAL
    if summary.error_count:
        return STATUS_FAILED
    return STATUS_COMPLETED


@dataclass(slots=True)
class ImportOutcome:
    property_id: str
    week_start: date
    week_label: str
    metrics: WeeklyMetrics
    record: WeekRecord
    bookings: List[Booking] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class IngestService:
    """Updates the weekly store first, then queues durable writes in the background."""

    def __init__(
        self,
        *,
        catalog: PropertyCatalog,
        weekly_store: WeeklyStore,
        orchestrator: FetchOrchestrator,
        synchronizer: Optional[PersistenceSynchronizer] = None,
        enricher: Optional[Enricher] = None,
        direct_channel_keyword: Optional[str] = "website",
    ) -> None:
        self._catalog = catalog
        self._weekly_store = weekly_store
        self._orchestrator = orchestrator
        self._synchronizer = synchronizer
        self._enricher = enricher
        self._keyword = direct_channel_keyword

    @property
    def weekly_store(self) -> WeeklyStore:
        return self._weekly_store

    def items_for(self, property_keys: Optional[Sequence[str]] = None) -> List[FetchItem]:
        if property_keys:
            properties = [self._catalog.get(key) for key in property_keys]
        else:
            properties = [item for item in self._catalog.values() if item.is_ready()]
        for item in properties:
            if not item.is_ready():
                raise ValueError(f"Property '{item.key}' is missing: {', '.join(item.missing_fields())}")
        return [FetchItem(property_id=item.property_id, label=item.name) for item in properties]

    # ------------------------------------------------------------------
    # API fetches

    async def fetch_week(
        self,
        week_start: date | datetime,
        property_keys: Optional[Sequence[str]] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        items = self.items_for(property_keys)
        result = await self._orchestrator.run(items, week_start, cancel_token=cancel_token)
        self._persist_batch(result)
        return result

    async def retry_failed(
        self,
        previous: BatchResult,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[BatchResult]:
        result = await self._orchestrator.retry_failed(previous, cancel_token=cancel_token)
        if result is not None:
            self._persist_batch(result)
        return result

    def _persist_batch(self, result: BatchResult) -> None:
        if self._synchronizer is None:
            return
        synchronizer = self._synchronizer
        bookings = [booking for outcome in result.outcomes.values() for booking in outcome.bookings]
        period = week_range(result.week_start)
        audit = ImportAudit(
            origin=DataOrigin.API,
            property_ids=tuple(item.property_id for item in result.items),
            date_from=period.start,
            date_to=period.end,
            record_count=len(bookings),
            status=batch_status(result),
            created_at=datetime.now(timezone.utc),
            source_label=result.week_label,
            error_message="; ".join(
                f"{item.label}: {item.error}" for item in result.items if item.error
            )
            or None,
        )
        committed = result.committed
        succeeded = list(result.outcomes)

        async def _job() -> None:
            await synchronizer.upsert_bookings(bookings, origin=DataOrigin.API)
            if committed is not None:
                await synchronizer.upsert_week(committed, succeeded)
            await synchronizer.record_import(audit)

        synchronizer.submit(_job)

    # ------------------------------------------------------------------
    # spreadsheet / paste imports

    async def import_rows(
        self,
        raws: Iterable[Mapping[str, Any]],
        property_id: str,
        origin: DataOrigin,
        *,
        week_start: Optional[date] = None,
        source_label: Optional[str] = None,
    ) -> ImportOutcome:
        """Normalize already-mapped rows for one property and merge their week.

        The week is detected from the earliest booking date when
        ``week_start`` is not given; a mismatch with an explicit week is
        reported through ``warnings`` rather than rejected.
        """
        result = normalize_all(raws, SourceContext(property_id=property_id, origin=origin))
        bookings = filter_direct(result.bookings, self._keyword)
        warnings: List[str] = []
        if week_start is None:
            detected = detect_week_start(bookings)
            if detected is None:
                raise ValueError(f"No valid bookings found in {origin.value} import for {property_id}")
            monday = detected
        else:
            monday = week_start_for(week_start)
            warnings.extend(validate_week_match(bookings, monday))
        for warning in warnings:
            logger.warning(warning)

        label = format_week_label(monday)
        metrics = aggregate(bookings)
        record = self._weekly_store.merge_in(monday, label, {property_id: metrics})
        logger.info(
            "Imported %s %s bookings for %s into %s (%s skipped)",
            len(bookings),
            origin.value,
            property_id,
            label,
            len(result.skipped),
        )

        if self._synchronizer is not None:
            synchronizer = self._synchronizer
            period = week_range(monday)
            audit = ImportAudit(
                origin=origin,
                property_ids=(property_id,),
                date_from=period.start,
                date_to=period.end,
                record_count=len(bookings),
                status=STATUS_PARTIAL if result.skipped else STATUS_COMPLETED,
                created_at=datetime.now(timezone.utc),
                source_label=source_label,
                error_message=f"{len(result.skipped)} rows skipped" if result.skipped else None,
            )

            async def _job() -> None:
                await synchronizer.upsert_bookings(bookings, property_id=property_id, origin=origin)
                await synchronizer.upsert_weekly_metrics(property_id, monday, metrics, week_label=label)
                await synchronizer.record_import(audit)

            synchronizer.submit(_job)

        return ImportOutcome(
            property_id=property_id,
            week_start=monday,
            week_label=label,
            metrics=metrics,
            record=record,
            bookings=bookings,
            skipped=result.skipped,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # enrichment and reload

    async def enrich_week(
        self,
        week_start: date | datetime,
        property_keys: Optional[Sequence[str]] = None,
        *,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, EnrichmentReport]:
        """Enrich stored bookings of a week and refresh that week's metrics."""
        if self._synchronizer is None or self._enricher is None:
            raise RuntimeError("Enrichment requires persistence and an enrichment source")
        await self._synchronizer.drain()
        period = week_range(week_start)
        property_ids = tuple(item.property_id for item in self.items_for(property_keys))
        stored = await self._synchronizer.load_bookings(period, BookingFilters(property_ids=property_ids))
        grouped: Dict[str, List[Booking]] = defaultdict(list)
        for booking in stored:
            grouped[booking.property_id].append(booking)

        reports: Dict[str, EnrichmentReport] = {}
        updates: Dict[str, WeeklyMetrics] = {}
        for property_id in property_ids:
            if cancel_token is not None and cancel_token.cancelled:
                break
            bookings = grouped.get(property_id)
            if not bookings:
                continue
            report = await self._enricher.run(bookings, force=force, cancel_token=cancel_token)
            reports[property_id] = report
            if report.enriched:
                updates[property_id] = aggregate(report.bookings)

        if updates:
            label = format_week_label(period.start)
            record = self._weekly_store.merge_in(period.start, label, updates)
            synchronizer = self._synchronizer
            enriched_ids = list(updates)

            async def _job() -> None:
                await synchronizer.upsert_week(record, enriched_ids)

            synchronizer.submit(_job)
        return reports

    async def reload(self, date_range: DateRange) -> int:
        if self._synchronizer is None:
            return 0
        return await self._synchronizer.reload_into(self._weekly_store, date_range)
