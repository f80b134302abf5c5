"""Aggregate performance metrics over a window of logged predictions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    precision_recall_fscore_support,
    roc_auc_score,
)

from .records import ClassLabel, Prediction, as_utc

logger = logging.getLogger(__name__)

AVAILABLE = "available"
UNAVAILABLE = "unavailable"

# 1 = positive ("Good Subject"), 0 = negative
_LABELS = [1, 0]


@dataclass(frozen=True)
class MetricsWindow:
    """Selects which predictions a snapshot covers.

    ``last_n`` keeps the most recent N predictions after the time bounds are
    applied; all fields ``None`` means the whole history.
    """

    last_n: Optional[int] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "since", as_utc(self.since))
        object.__setattr__(self, "until", as_utc(self.until))

    def select(self, predictions: Sequence[Prediction]) -> Sequence[Prediction]:
        """``predictions`` must be in chronological order."""
        selected = [
            p for p in predictions
            if (self.since is None or p.timestamp >= self.since)
            and (self.until is None or p.timestamp <= self.until)
        ]
        if self.last_n is not None:
            selected = selected[-self.last_n:] if self.last_n > 0 else []
        return selected


@dataclass(frozen=True)
class MetricsSnapshot:
    status: str
    window_size: int
    labelled_count: int
    last_evaluated: datetime
    accuracy: Optional[float] = None
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1_score: Optional[float] = None
    roc_auc: Optional[float] = None
    confusion_matrix: Optional[Dict[str, int]] = None
    per_class_metrics: Optional[Dict[str, Dict[str, float]]] = None
    class_counts: Dict[str, int] = field(default_factory=dict)
    average_probability: Optional[float] = None
    rolling_average_probability: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "window_size": self.window_size,
            "labelled_count": self.labelled_count,
            "last_evaluated": self.last_evaluated.isoformat(),
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "roc_auc": self.roc_auc,
            "confusion_matrix": self.confusion_matrix,
            "per_class_metrics": self.per_class_metrics,
            "class_counts": dict(self.class_counts),
            "average_probability": self.average_probability,
            "rolling_average_probability": self.rolling_average_probability,
        }


def _as_int(label: ClassLabel) -> int:
    return 1 if label is ClassLabel.POSITIVE else 0


def compute_snapshot(predictions: Sequence[Prediction],
                     ground_truth: Mapping[str, ClassLabel],
                     evaluated_at: datetime,
                     rolling_window: int = 50) -> MetricsSnapshot:
    """
    Compare ``predictions`` (chronological) against recorded ground truth.

    Classification metrics are reported only for predictions with a recorded
    outcome; without any, the snapshot is ``unavailable`` and those fields are
    ``None``. Volume statistics (class counts, probability averages) are
    always computed from the window itself.
    """
    class_counts = {label.value: 0 for label in ClassLabel}
    for prediction in predictions:
        class_counts[prediction.class_label.value] += 1

    average_probability = None
    rolling_average = None
    if predictions:
        probabilities = pd.Series([p.probability for p in predictions], dtype=float)
        average_probability = float(probabilities.mean())
        window = max(1, int(rolling_window))
        rolling_average = float(probabilities.rolling(window=window, min_periods=1).mean().iloc[-1])

    labelled = [p for p in predictions if p.prediction_id in ground_truth]
    base = dict(
        window_size=len(predictions),
        labelled_count=len(labelled),
        last_evaluated=evaluated_at,
        class_counts=class_counts,
        average_probability=average_probability,
        rolling_average_probability=rolling_average,
    )
    if not labelled:
        logger.debug("No ground truth recorded for a window of %d predictions", len(predictions))
        return MetricsSnapshot(status=UNAVAILABLE, **base)

    y_true = np.array([_as_int(ground_truth[p.prediction_id]) for p in labelled])
    y_pred = np.array([_as_int(p.class_label) for p in labelled])
    y_score = np.array([p.probability for p in labelled], dtype=float)

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    precision, recall, f1, support = precision_recall_fscore_support(
        y_true, y_pred, labels=_LABELS, zero_division=0
    )

    roc_auc = None
    if len(np.unique(y_true)) == 2:
        roc_auc = float(roc_auc_score(y_true, y_score))

    per_class = {}
    for idx, label in enumerate((ClassLabel.POSITIVE, ClassLabel.NEGATIVE)):
        per_class[label.value] = {
            "precision": float(precision[idx]),
            "recall": float(recall[idx]),
            "f1_score": float(f1[idx]),
            "support": int(support[idx]),
        }

    return MetricsSnapshot(
        status=AVAILABLE,
        accuracy=float(accuracy_score(y_true, y_pred)),
        precision=float(precision[0]),
        recall=float(recall[0]),
        f1_score=float(f1[0]),
        roc_auc=roc_auc,
        confusion_matrix={
            "true_positive": int(tp),
            "false_positive": int(fp),
            "true_negative": int(tn),
            "false_negative": int(fn),
        },
        per_class_metrics=per_class,
        **base,
    )
