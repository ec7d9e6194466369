"""Sequential multi-property fetch orchestration.

A batch walks its properties one at a time: each item moves from ``pending``
to ``loading`` and ends in ``success`` or ``error``. Failures stay with their
item, cancellation is checked before every item, and all successful metrics
are merged into the weekly store in a single step once the loop ends.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from hostel_metrics.bookings.models import (
    Booking,
    DataOrigin,
    SourceContext,
    WeeklyMetrics,
    WeekRecord,
)
from hostel_metrics.bookings.normalizer import SkippedRecord, filter_direct, normalize_all
from hostel_metrics.bookings.periods import format_week_label, week_range, week_start_for
from hostel_metrics.metrics.aggregator import aggregate
from hostel_metrics.metrics.weekly_store import WeeklyStore
from hostel_metrics.services.reservations_client import ReservationApiError, RequestTimeoutError

logger = logging.getLogger(__name__)


class ReservationSource(Protocol):
    async def fetch_reservations(self, property_id: str, start: date, end: date) -> list[dict]:
        ...


class ItemStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class FetchItem:
    property_id: str
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.label or self.property_id


@dataclass(slots=True, frozen=True)
class ItemProgress:
    property_id: str
    label: str
    status: ItemStatus = ItemStatus.PENDING
    booking_count: int = 0
    elapsed_ms: int = 0
    error: Optional[str] = None
    error_category: Optional[str] = None
    retryable: bool = False


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    current: int
    total: int
    items: Tuple[ItemProgress, ...]
    elapsed_ms: int

    @property
    def percent(self) -> int:
        return round(self.current * 100 / self.total) if self.total else 0


@dataclass(slots=True, frozen=True)
class BatchSummary:
    success_count: int
    error_count: int
    cancelled: bool
    failed_property_ids: Tuple[str, ...] = ()

    def describe(self) -> str:
        text = f"{self.success_count} succeeded, {self.error_count} failed"
        if self.cancelled:
            text += " (cancelled)"
        return text


@dataclass(slots=True)
class PropertyOutcome:
    property_id: str
    metrics: WeeklyMetrics
    bookings: List[Booking] = field(default_factory=list)
    skipped: List[SkippedRecord] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    week_start: date
    week_label: str
    summary: BatchSummary
    items: Tuple[ItemProgress, ...]
    outcomes: Dict[str, PropertyOutcome]
    committed: Optional[WeekRecord] = None

    def failed_items(self) -> List[FetchItem]:
        return [
            FetchItem(property_id=item.property_id, label=item.label)
            for item in self.items
            if item.status is ItemStatus.ERROR
        ]


class CancellationToken:
    """Cooperative cancellation flag consulted between items."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


ProgressCallback = Callable[[ProgressSnapshot], None]


class _BatchState:
    def __init__(self, items: Sequence[FetchItem], clock: Callable[[], float]) -> None:
        self._clock = clock
        self.started_at = clock()
        self.current = 0
        self.items: List[ItemProgress] = [
            ItemProgress(property_id=item.property_id, label=item.display_name) for item in items
        ]

    def _elapsed_ms(self, since: float) -> int:
        return int((self._clock() - since) * 1000)

    def start(self, index: int) -> float:
        self.current = index + 1
        self.items[index] = replace(self.items[index], status=ItemStatus.LOADING)
        return self._clock()

    def succeed(self, index: int, booking_count: int, started: float) -> None:
        self.items[index] = replace(
            self.items[index],
            status=ItemStatus.SUCCESS,
            booking_count=booking_count,
            elapsed_ms=self._elapsed_ms(started),
        )

    def fail(self, index: int, error: Exception, started: float) -> None:
        category = getattr(error, "category", "unknown")
        self.items[index] = replace(
            self.items[index],
            status=ItemStatus.ERROR,
            elapsed_ms=self._elapsed_ms(started),
            error=str(error) or type(error).__name__,
            error_category=category,
            retryable=bool(getattr(error, "retryable", False)),
        )

    def count(self, status: ItemStatus) -> int:
        return sum(1 for item in self.items if item.status is status)

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            current=self.current,
            total=len(self.items),
            items=tuple(self.items),
            elapsed_ms=self._elapsed_ms(self.started_at),
        )


class FetchOrchestrator:
    """Drives per-property fetches against a :class:`ReservationSource`."""

    def __init__(
        self,
        source: ReservationSource,
        store: WeeklyStore,
        *,
        direct_channel_keyword: Optional[str] = "website",
        inter_call_delay_s: float = 0.5,
        item_timeout_s: Optional[float] = 30.0,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._store = store
        self._keyword = direct_channel_keyword
        self._delay_s = max(0.0, inter_call_delay_s)
        self._timeout_s = item_timeout_s
        self._on_progress = on_progress
        self._clock = clock

    def _validate(self, items: Sequence[FetchItem]) -> None:
        if not items:
            raise ValueError("At least one property is required to start a fetch")
        seen: set[str] = set()
        for item in items:
            if not item.property_id:
                raise ValueError("Fetch items require a property id")
            if item.property_id in seen:
                raise ValueError(f"Property {item.property_id} listed more than once")
            seen.add(item.property_id)
        ensure_configured = getattr(self._source, "ensure_configured", None)
        if callable(ensure_configured):
            ensure_configured()

    def _emit(self, state: _BatchState) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(state.snapshot())
        except Exception:
            logger.exception("Progress callback failed")

    async def _fetch_one(self, item: FetchItem, start: date, end: date) -> PropertyOutcome:
        raws = await self._source.fetch_reservations(item.property_id, start, end)
        result = normalize_all(raws or [], SourceContext(property_id=item.property_id, origin=DataOrigin.API))
        bookings = filter_direct(result.bookings, self._keyword)
        if self._keyword:
            logger.debug(
                "Kept %s of %s bookings for %s matching channel '%s'",
                len(bookings),
                len(result.bookings),
                item.display_name,
                self._keyword,
            )
        return PropertyOutcome(
            property_id=item.property_id,
            metrics=aggregate(bookings),
            bookings=bookings,
            skipped=result.skipped,
        )

    async def _fetch_with_timeout(self, item: FetchItem, start: date, end: date) -> PropertyOutcome:
        if self._timeout_s is None:
            return await self._fetch_one(item, start, end)
        try:
            return await asyncio.wait_for(self._fetch_one(item, start, end), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(
                f"Fetch for {item.display_name} exceeded {self._timeout_s}s"
            ) from exc

    async def run(
        self,
        items: Sequence[FetchItem],
        week_start: date | datetime,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Fetch every item for the week containing ``week_start``."""
        self._validate(items)
        period = week_range(week_start)
        label = format_week_label(period.start)
        state = _BatchState(items, self._clock)
        outcomes: Dict[str, PropertyOutcome] = {}
        cancelled = False
        logger.info("Starting fetch of %s properties for %s", len(items), label)
        self._emit(state)

        for index, item in enumerate(items):
            if cancel_token is not None and cancel_token.cancelled:
                cancelled = True
                logger.info("Fetch cancelled before %s (%s/%s)", item.display_name, index + 1, len(items))
                break
            started = state.start(index)
            self._emit(state)
            try:
                outcome = await self._fetch_with_timeout(item, period.start, period.end)
            except ReservationApiError as exc:
                state.fail(index, exc, started)
                logger.warning(
                    "[%s/%s] %s failed (%s): %s",
                    index + 1,
                    len(items),
                    item.display_name,
                    exc.category,
                    exc,
                )
                self._emit(state)
                continue
            except Exception as exc:
                state.fail(index, exc, started)
                logger.warning(
                    "[%s/%s] %s failed: %s", index + 1, len(items), item.display_name, exc
                )
                self._emit(state)
                continue
            outcomes[item.property_id] = outcome
            state.succeed(index, outcome.metrics.count, started)
            logger.info(
                "[%s/%s] %s: %s bookings",
                index + 1,
                len(items),
                item.display_name,
                outcome.metrics.count,
            )
            self._emit(state)
            if index < len(items) - 1 and self._delay_s:
                await asyncio.sleep(self._delay_s)

        committed: Optional[WeekRecord] = None
        if outcomes:
            committed = self._store.merge_in(
                period.start,
                label,
                {property_id: outcome.metrics for property_id, outcome in outcomes.items()},
            )

        failed = tuple(item.property_id for item in state.items if item.status is ItemStatus.ERROR)
        summary = BatchSummary(
            success_count=state.count(ItemStatus.SUCCESS),
            error_count=state.count(ItemStatus.ERROR),
            cancelled=cancelled,
            failed_property_ids=failed,
        )
        logger.info("Fetch for %s finished: %s", label, summary.describe())
        return BatchResult(
            week_start=week_start_for(week_start),
            week_label=label,
            summary=summary,
            items=tuple(state.items),
            outcomes=outcomes,
            committed=committed,
        )

    async def run_single(
        self,
        item: FetchItem,
        week_start: date | datetime,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        return await self.run([item], week_start, cancel_token=cancel_token)

    async def retry_failed(
        self,
        previous: BatchResult,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[BatchResult]:
        """Re-run only the items that failed in ``previous``; ``None`` when nothing failed."""
        failed = previous.failed_items()
        if not failed:
            return None
        return await self.run(failed, previous.week_start, cancel_token=cancel_token)
