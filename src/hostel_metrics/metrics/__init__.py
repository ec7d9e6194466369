"""Weekly metrics aggregation and reconciliation."""

from .aggregator import MetricChange, aggregate, metric_change
from .weekly_store import WeeklyStore, merge_week

__all__ = [
    "MetricChange",
    "WeeklyStore",
    "aggregate",
    "merge_week",
    "metric_change",
]
