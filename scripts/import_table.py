"""Import a pasted reservation table or spreadsheet export for one property."""
from __future__ import annotations

import argparse
import asyncio
import csv
import logging
from datetime import date
from pathlib import Path
from typing import Optional

from hostel_metrics.bookings.models import DataOrigin
from hostel_metrics.bookings.sources import paste_text_to_raw, spreadsheet_rows_to_raw
from hostel_metrics.config.settings import Settings
from hostel_metrics.core.logging import configure_logging
from hostel_metrics.metrics.weekly_store import WeeklyStore
from hostel_metrics.storage import PersistenceSynchronizer, SqliteStore
from hostel_metrics.tasks import FetchOrchestrator, ImportOutcome, IngestService

logger = logging.getLogger(__name__)


class _NoSource:
    async def fetch_reservations(self, property_id: str, start: date, end: date) -> list[dict]:
        raise RuntimeError("Imports do not fetch from the reservation API")


def _read_raws(path: Path, origin: DataOrigin) -> list[dict]:
    text = path.read_text(encoding="utf-8")
    if origin is DataOrigin.PASTE:
        return paste_text_to_raw(text)
    rows = list(csv.reader(text.splitlines(), delimiter="\t"))
    return spreadsheet_rows_to_raw(rows)


async def run(
    settings: Settings,
    path: Path,
    property_key: str,
    origin: DataOrigin,
    week_start: Optional[date],
) -> ImportOutcome:
    catalog = settings.property_catalog()
    target = catalog.get(property_key)
    weekly_store = WeeklyStore()

    db_store: SqliteStore | None = None
    synchronizer: PersistenceSynchronizer | None = None
    if settings.sqlite_storage_enabled:
        db_store = SqliteStore(
            settings.sqlite_storage_path,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            journal_mode=settings.sqlite_journal_mode,
            synchronous=settings.sqlite_synchronous,
        )
        await db_store.initialize()
        synchronizer = PersistenceSynchronizer(db_store)
    try:
        service = IngestService(
            catalog=catalog,
            weekly_store=weekly_store,
            orchestrator=FetchOrchestrator(_NoSource(), weekly_store),
            synchronizer=synchronizer,
            direct_channel_keyword=settings.direct_channel_keyword,
        )
        raws = _read_raws(path, origin)
        logger.info("Read %s rows from %s", len(raws), path)
        outcome = await service.import_rows(
            raws,
            target.property_id,
            origin,
            week_start=week_start,
            source_label=path.name,
        )
        metrics = outcome.metrics
        logger.info(
            "%s, %s: %s bookings (%s cancelled), revenue %s, ADR %s",
            target.name,
            outcome.week_label,
            metrics.count,
            metrics.cancelled_count,
            metrics.revenue,
            metrics.adr,
        )
        return outcome
    finally:
        if synchronizer:
            await synchronizer.close()
        if db_store:
            await db_store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import a tab-separated reservation export")
    parser.add_argument("path", type=Path, help="Tab-separated file to import")
    parser.add_argument("--property", required=True, metavar="KEY", help="Catalog key, name or property id")
    parser.add_argument(
        "--format",
        choices=[DataOrigin.PASTE.value, DataOrigin.SPREADSHEET.value],
        default=DataOrigin.PASTE.value,
        help="Layout of the export (default: paste)",
    )
    parser.add_argument(
        "--week",
        type=date.fromisoformat,
        default=None,
        help="Expected week (any date inside it); detected from booking dates when omitted",
    )
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if not args.path.exists():
        parser.error(f"File not found: {args.path}")
    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()
    asyncio.run(run(settings, args.path, args.property, DataOrigin(args.format), args.week))


if __name__ == "__main__":
    main()
