"""Fetch orchestration, enrichment and ingestion tasks."""

from .enrich import Enricher, EnrichmentReport
from .fetch import (
    BatchResult,
    BatchSummary,
    CancellationToken,
    FetchItem,
    FetchOrchestrator,
    ItemProgress,
    ItemStatus,
    ProgressSnapshot,
    PropertyOutcome,
)
from .ingest import ImportOutcome, IngestService

__all__ = [
    "BatchResult",
    "BatchSummary",
    "CancellationToken",
    "Enricher",
    "EnrichmentReport",
    "FetchItem",
    "FetchOrchestrator",
    "ImportOutcome",
    "IngestService",
    "ItemProgress",
    "ItemStatus",
    "ProgressSnapshot",
    "PropertyOutcome",
]
