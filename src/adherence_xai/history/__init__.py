"""Prediction history and aggregate metrics."""

from .metrics import MetricsSnapshot, MetricsWindow, compute_snapshot
from .records import ClassLabel, ConfidenceBand, Prediction
from .sqlite_store import SQLiteHistoryStore
from .store import (
    HistoryFilters,
    HistoryPage,
    HistoryStore,
    InMemoryHistoryStore,
    format_prediction_id,
)

__all__ = [
    "ClassLabel",
    "ConfidenceBand",
    "Prediction",
    "HistoryStore",
    "InMemoryHistoryStore",
    "SQLiteHistoryStore",
    "HistoryFilters",
    "HistoryPage",
    "MetricsWindow",
    "MetricsSnapshot",
    "compute_snapshot",
    "format_prediction_id",
]
