"""Fetch one week of reservations for all or selected properties."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

from hostel_metrics.bookings.periods import week_start_for
from hostel_metrics.config.settings import Settings
from hostel_metrics.core.logging import configure_logging
from hostel_metrics.metrics.weekly_store import WeeklyStore
from hostel_metrics.services.reservations_client import CloudbedsClient
from hostel_metrics.storage import PersistenceSynchronizer, SqliteStore
from hostel_metrics.tasks import (
    BatchResult,
    Enricher,
    FetchOrchestrator,
    IngestService,
    ItemStatus,
    ProgressSnapshot,
)

logger = logging.getLogger(__name__)


def _log_progress(snapshot: ProgressSnapshot) -> None:
    if not snapshot.current:
        return
    item = snapshot.items[snapshot.current - 1]
    if item.status is ItemStatus.LOADING:
        logger.info("[%s/%s] Fetching %s...", snapshot.current, snapshot.total, item.label)


def _write_report(path: Path, result: BatchResult) -> None:
    payload = {
        "week_label": result.week_label,
        "week_start": result.week_start.isoformat(),
        "summary": result.summary.describe(),
        "failed": list(result.summary.failed_property_ids),
        "properties": {
            property_id: metrics.to_dict()
            for property_id, metrics in (result.committed.properties.items() if result.committed else [])
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))
    logger.info("Wrote report to %s", path)


async def run(
    settings: Settings,
    week_start: date,
    property_keys: list[str],
    *,
    retry: bool,
    enrich: bool,
    report_path: Optional[Path],
) -> BatchResult:
    api_config = settings.api_config()
    catalog = settings.property_catalog()
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
        async with CloudbedsClient(api_config) as client:
            orchestrator = FetchOrchestrator(
                client,
                weekly_store,
                direct_channel_keyword=settings.direct_channel_keyword,
                inter_call_delay_s=settings.fetch_delay_s,
                item_timeout_s=settings.item_timeout_s,
                on_progress=_log_progress,
            )
            service = IngestService(
                catalog=catalog,
                weekly_store=weekly_store,
                orchestrator=orchestrator,
                synchronizer=synchronizer,
                enricher=Enricher(client, synchronizer, delay_s=settings.enrichment_delay_s),
                direct_channel_keyword=settings.direct_channel_keyword,
            )
            result = await service.fetch_week(week_start, property_keys or None)
            logger.info("Fetch %s: %s", result.week_label, result.summary.describe())
            if retry and result.summary.error_count:
                retried = await service.retry_failed(result)
                if retried is not None:
                    logger.info("Retry %s: %s", retried.week_label, retried.summary.describe())
            if enrich and synchronizer is not None:
                reports = await service.enrich_week(week_start, property_keys or None)
                for property_id, report in reports.items():
                    logger.info(
                        "Enrichment %s: %s enriched, %s failed", property_id, report.enriched, report.failed
                    )
            elif enrich:
                logger.warning("Enrichment skipped; SQLite storage is disabled")
            if report_path is not None:
                _write_report(report_path, result)
            return result
    finally:
        if synchronizer:
            await synchronizer.close()
            if synchronizer.status.failures:
                logger.warning("%s persistence writes failed", synchronizer.status.failures)
        if db_store:
            await db_store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fetch weekly reservation metrics")
    parser.add_argument(
        "--week",
        type=date.fromisoformat,
        default=None,
        help="Any date inside the target week (YYYY-MM-DD); defaults to last week",
    )
    parser.add_argument(
        "--property",
        dest="properties",
        action="append",
        default=[],
        metavar="KEY",
        help="Catalog key, name or property id to fetch (repeatable; defaults to all)",
    )
    parser.add_argument("--retry", action="store_true", help="Retry failed properties once")
    parser.add_argument(
        "--enrich",
        action="store_true",
        help="Look up the price breakdown of each stored booking after fetching",
    )
    parser.add_argument("--report", type=Path, default=None, help="Write the week's metrics as JSON")
    parser.add_argument(
        "--override",
        action="append",
        metavar="KEY=VALUE",
        help="Override a Settings attribute (repeatable). Values accept JSON literals.",
    )
    return parser


def _decode_override(value: str) -> object:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        pass
    lower = value.strip().lower()
    if lower in {"true", "false"}:
        return lower == "true"
    try:
        return float(value)
    except ValueError:
        return value


def _apply_overrides(settings: Settings, overrides: dict[str, object]) -> None:
    for key, raw in overrides.items():
        if not hasattr(settings, key):
            logger.warning("Ignoring unknown override '%s'", key)
            continue
        setattr(settings, key, raw)
        logger.info("Override: set %s=%r", key, raw)


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    settings = Settings()

    overrides: dict[str, object] = {}
    if args.override:
        for entry in args.override:
            if "=" not in entry:
                parser.error(f"Override must be in KEY=VALUE form (got '{entry}')")
            key, value = entry.split("=", 1)
            overrides[key.strip()] = _decode_override(value.strip())
    if overrides:
        _apply_overrides(settings, overrides)

    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    week_start = week_start_for(args.week or (date.today() - timedelta(days=7)))
    asyncio.run(
        run(
            settings,
            week_start,
            args.properties,
            retry=args.retry,
            enrich=args.enrich,
            report_path=args.report,
        )
    )


if __name__ == "__main__":
    main()
