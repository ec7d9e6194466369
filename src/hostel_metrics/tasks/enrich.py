"""Per-reservation price enrichment layered on top of a bulk fetch."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Protocol, Sequence

from hostel_metrics.bookings.models import Booking
from hostel_metrics.services.reservations_client import EnrichmentDetails, ReservationApiError
from hostel_metrics.storage.synchronizer import PersistenceSynchronizer

from .fetch import CancellationToken

logger = logging.getLogger(__name__)


class EnrichmentSource(Protocol):
    async def fetch_reservation_detail(self, property_id: str, reservation_id: str) -> EnrichmentDetails:
        ...


@dataclass(slots=True)
class EnrichmentReport:
    bookings: List[Booking] = field(default_factory=list)
    enriched: int = 0
    skipped: int = 0
    missing: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed(self) -> int:
        return len(self.errors)


class Enricher:
    """Looks up the precise price breakdown of each booking, one call at a time."""

    def __init__(
        self,
        source: EnrichmentSource,
        synchronizer: Optional[PersistenceSynchronizer] = None,
        *,
        delay_s: float = 0.25,
    ) -> None:
        self._source = source
        self._synchronizer = synchronizer
        self._delay_s = max(0.0, delay_s)

    async def run(
        self,
        bookings: Sequence[Booking],
        *,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EnrichmentReport:
        report = EnrichmentReport()
        pending = [booking for booking in bookings if force or not booking.is_enriched]
        report.skipped = len(bookings) - len(pending)
        report.bookings = [booking for booking in bookings if not force and booking.is_enriched]

        for index, booking in enumerate(pending):
            if cancel_token is not None and cancel_token.cancelled:
                report.cancelled = True
                report.bookings.extend(pending[index:])
                break
            try:
                details = await self._source.fetch_reservation_detail(
                    booking.property_id, booking.external_id
                )
            except ReservationApiError as exc:
                logger.warning("Enrichment of %s/%s failed: %s", booking.property_id, booking.external_id, exc)
                report.errors.append(f"{booking.external_id}: {exc}")
                report.bookings.append(booking)
                continue

            enriched = replace(booking, net_price=details.net_price, taxes=details.taxes)
            report.bookings.append(enriched)
            report.enriched += 1
            if self._synchronizer is not None:
                stored = await self._synchronizer.update_enrichment(
                    booking.property_id, booking.external_id, details.to_fields()
                )
                if not stored:
                    report.missing += 1
            if index < len(pending) - 1 and self._delay_s:
                await asyncio.sleep(self._delay_s)

        logger.info(
            "Enriched %s bookings (%s skipped, %s failed, %s not stored)",
            report.enriched,
            report.skipped,
            report.failed,
            report.missing,
        )
        return report
