"""Append-only prediction history with paginated, filtered retrieval.

Appends are serialized per store: the sequence number behind
``prediction_id`` and the timestamp are assigned inside the same critical
section that writes the entry, so ids sort in append order and a prediction
is either fully recorded or not recorded at all.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import InvalidQueryError, UnknownPredictionError
from .metrics import MetricsSnapshot, MetricsWindow, compute_snapshot
from .records import ClassLabel, ConfidenceBand, Prediction, as_utc

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_prediction_id(sequence: int) -> str:
    # zero padded so lexical order matches append order
    return f"pred_{sequence:012d}"


@dataclass(frozen=True)
class HistoryFilters:
    class_label: Optional[ClassLabel] = None
    model_id: Optional[str] = None
    confidence_band: Optional[ConfidenceBand] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "since", as_utc(self.since))
        object.__setattr__(self, "until", as_utc(self.until))

    def matches(self, prediction: Prediction) -> bool:
        if self.class_label is not None and prediction.class_label is not self.class_label:
            return False
        if self.model_id is not None and prediction.model_id != self.model_id:
            return False
        if self.confidence_band is not None and prediction.confidence_band is not self.confidence_band:
            return False
        if self.since is not None and prediction.timestamp < self.since:
            return False
        if self.until is not None and prediction.timestamp > self.until:
            return False
        return True


@dataclass(frozen=True)
class HistoryPage:
    items: List[Prediction]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return -(-self.total_count // self.page_size) if self.total_count else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": [item.to_dict() for item in self.items],
            "total_predictions": self.total_count,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


class HistoryStore(ABC):
    """Contract shared by every history backend."""

    def __init__(self,
                 max_page_size: int = MAX_PAGE_SIZE,
                 rolling_window: int = 50,
                 clock: Clock = utc_now):
        if max_page_size < 1:
            raise ValueError("max_page_size must be positive")
        self.max_page_size = max_page_size
        self.rolling_window = rolling_window
        self._clock = clock
        self._lock = threading.RLock()

    # -- backend hooks -------------------------------------------------
    @abstractmethod
    def _write(self, prediction: Prediction, sequence: int) -> None:
        """Persist a fully stamped prediction; called with the lock held."""

    @abstractmethod
    def _next_sequence(self) -> int:
        """Next sequence number; called with the lock held."""

    @abstractmethod
    def _all(self) -> List[Prediction]:
        """Every prediction in append order."""

    @abstractmethod
    def _ground_truth(self) -> Dict[str, ClassLabel]:
        ...

    @abstractmethod
    def _write_ground_truth(self, prediction_id: str, label: ClassLabel) -> None:
        ...

    def _select(self, filters: HistoryFilters, offset: int, limit: int) -> Tuple[List[Prediction], int]:
        """One slice of the matching predictions, newest first, plus the match count."""
        matching = [p for p in self._all() if filters.matches(p)]
        matching.sort(key=lambda p: (p.timestamp, p.prediction_id), reverse=True)
        return matching[offset:offset + limit], len(matching)

    @abstractmethod
    def get(self, prediction_id: str) -> Prediction:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    # -- public API ----------------------------------------------------
    def append(self, prediction: Prediction) -> Prediction:
        """Stamp ``prediction`` with an id and timestamp and record it."""
        with self._lock:
            sequence = self._next_sequence()
            stamped = replace(
                prediction,
                prediction_id=format_prediction_id(sequence),
                timestamp=as_utc(self._clock()),
            )
            self._write(stamped, sequence)
        return stamped

    def query(self,
              page: int = 1,
              page_size: int = DEFAULT_PAGE_SIZE,
              filters: Optional[HistoryFilters] = None) -> HistoryPage:
        """
        One page of predictions, most recent first.

        Ties on timestamp are broken by ``prediction_id`` (descending), so
        repeated queries with no intervening writes return identical pages.
        ``page_size`` is clamped to ``max_page_size``.
        """
        if page < 1:
            raise InvalidQueryError("page must be >= 1", detail={"page": page})
        if page_size < 1:
            raise InvalidQueryError("page_size must be >= 1", detail={"page_size": page_size})
        page_size = min(page_size, self.max_page_size)

        items, total = self._select(filters or HistoryFilters(), (page - 1) * page_size, page_size)
        return HistoryPage(
            items=items,
            total_count=total,
            page=page,
            page_size=page_size,
        )

    def record_ground_truth(self, prediction_id: str, label: Any) -> None:
        """Record the observed outcome for a logged prediction."""
        label = ClassLabel.parse(label)
        with self._lock:
            self.get(prediction_id)
            self._write_ground_truth(prediction_id, label)
        logger.info(f"Recorded ground truth {label.value} for {prediction_id}")

    def snapshot_metrics(self, window: Optional[MetricsWindow] = None) -> MetricsSnapshot:
        window = window or MetricsWindow()
        chronological = sorted(self._all(), key=lambda p: (p.timestamp, p.prediction_id))
        selected = window.select(chronological)
        return compute_snapshot(
            selected,
            self._ground_truth(),
            evaluated_at=self._clock(),
            rolling_window=self.rolling_window,
        )


class InMemoryHistoryStore(HistoryStore):
    """Process-local history store backed by a list."""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self._items: List[Prediction] = []
        self._by_id: Dict[str, Prediction] = {}
        self._labels: Dict[str, ClassLabel] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._items)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _write(self, prediction: Prediction, sequence: int) -> None:
        self._items.append(prediction)
        self._by_id[prediction.prediction_id] = prediction

    def _all(self) -> List[Prediction]:
        with self._lock:
            return list(self._items)

    def _ground_truth(self) -> Dict[str, ClassLabel]:
        with self._lock:
            return dict(self._labels)

    def _write_ground_truth(self, prediction_id: str, label: ClassLabel) -> None:
        self._labels[prediction_id] = label

    def get(self, prediction_id: str) -> Prediction:
        prediction = self._by_id.get(prediction_id)
        if prediction is None:
            raise UnknownPredictionError(f"Unknown prediction '{prediction_id}'",
                                         detail={"prediction_id": prediction_id})
        return prediction
