"""Prediction engine: probability, class label and confidence band per record.

Every successful prediction is appended to the history store before it is
returned. Batches resolve the serving model once, run items on a thread pool
and report per-item outcomes as tagged results (:class:`PredictionOk` or
:class:`PredictionErr`), in input order.
"""

from __future__ import annotations

import json
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..data.preprocessor import FeatureVector
from ..exceptions import (
    AdherenceServiceError,
    ModelUnavailableError,
    NoActiveModelError,
    PredictionError,
)
from ..history.records import ClassLabel, ConfidenceBand, Prediction
from ..history.store import HistoryStore
from ..models.base_model import BasePredictor
from ..registry.model_registry import ModelRegistry, ModelVersion

logger = logging.getLogger(__name__)

NOT_ATTEMPTED = "not_attempted"
INTERNAL_ERROR = "internal_error"


def confidence_band(probability: float,
                    threshold: float = 0.5,
                    high_margin: float = 0.3,
                    medium_margin: float = 0.15) -> ConfidenceBand:
    """Band by distance of ``probability`` from the decision threshold."""
    distance = abs(probability - threshold)
    if distance >= high_margin:
        return ConfidenceBand.HIGH
    if distance >= medium_margin:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


@dataclass(frozen=True)
class PredictionOk:
    index: int
    prediction: Prediction
    ok = True

    def to_dict(self) -> Dict[str, Any]:
        payload = self.prediction.to_dict()
        payload["index"] = self.index
        return payload


@dataclass(frozen=True)
class PredictionErr:
    index: int
    kind: str
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)
    ok = False

    @classmethod
    def from_error(cls, index: int, error: AdherenceServiceError) -> "PredictionErr":
        return cls(index=index, kind=error.kind, message=error.message, detail=dict(error.detail))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "error": self.kind,
            "message": self.message,
            "detail": self.detail,
        }


BatchItem = Union[PredictionOk, PredictionErr]


@dataclass(frozen=True)
class BatchSummary:
    total_records: int
    positive_count: int
    negative_count: int
    failed_count: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_records": self.total_records,
            "good_subjects": self.positive_count,
            "bad_subjects": self.negative_count,
            "failed_records": self.failed_count,
        }


@dataclass(frozen=True)
class BatchResult:
    items: List[BatchItem]

    @property
    def predictions(self) -> List[Prediction]:
        return [item.prediction for item in self.items if isinstance(item, PredictionOk)]

    @property
    def failures(self) -> List[PredictionErr]:
        return [item for item in self.items if isinstance(item, PredictionErr)]

    @property
    def summary(self) -> BatchSummary:
        predictions = self.predictions
        positives = sum(1 for p in predictions if p.class_label is ClassLabel.POSITIVE)
        return BatchSummary(
            total_records=len(self.items),
            positive_count=positives,
            negative_count=len(predictions) - positives,
            failed_count=len(self.failures),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": [item.to_dict() for item in self.items if isinstance(item, PredictionOk)],
            "failed_items": [item.to_dict() for item in self.failures],
            "summary": self.summary.to_dict(),
        }


class PredictionEngine:
    """
    Scores feature vectors with a registry model and logs each outcome.

    Args:
        registry: Model registry owning the active model
        history: Store every successful prediction is appended to
        threshold: Decision threshold for the positive class
        high_margin: Distance from the threshold for the ``high`` band
        medium_margin: Distance from the threshold for the ``medium`` band
        max_workers: Thread pool size for batches
    """

    def __init__(self,
                 registry: ModelRegistry,
                 history: HistoryStore,
                 threshold: float = 0.5,
                 high_margin: float = 0.3,
                 medium_margin: float = 0.15,
                 max_workers: int = 4):
        if not 0.0 < threshold < 1.0:
            raise ValueError("threshold must lie strictly between 0 and 1")
        if not 0.0 <= medium_margin <= high_margin:
            raise ValueError("confidence margins must satisfy 0 <= medium <= high")
        self.registry = registry
        self.history = history
        self.threshold = threshold
        self.high_margin = high_margin
        self.medium_margin = medium_margin
        self.max_workers = max(1, int(max_workers))

    def resolve_model(self, model: Optional[str] = None) -> Tuple[ModelVersion, BasePredictor]:
        """The active model, or the registered model ``model`` when given."""
        if model is not None:
            return self.registry.get(model), self.registry.get_predictor(model)
        try:
            return self.registry.get_active_with_predictor()
        except NoActiveModelError as exc:
            logger.warning("Prediction requested with no deployed model")
            raise ModelUnavailableError("No deployed model is available to serve predictions") from exc

    def label_for(self, probability: float) -> ClassLabel:
        return ClassLabel.POSITIVE if probability >= self.threshold else ClassLabel.NEGATIVE

    def band_for(self, probability: float) -> ConfidenceBand:
        return confidence_band(probability, self.threshold, self.high_margin, self.medium_margin)

    def _score(self, predictor: BasePredictor, vector: FeatureVector) -> float:
        try:
            probability = predictor.predict(vector)
        except (ValueError, TypeError) as exc:
            raise PredictionError(
                f"Model '{predictor.model_name}' failed to score the record: {exc}",
            ) from exc
        if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
            raise PredictionError(
                f"Model '{predictor.model_name}' returned an invalid probability",
                detail={"probability": probability if math.isfinite(probability) else str(probability)},
            )
        return probability

    def _predict_with(self,
                      version: ModelVersion,
                      predictor: BasePredictor,
                      vector: FeatureVector,
                      record: Optional[Mapping[str, Any]] = None) -> Prediction:
        start_time = time.time()
        probability = self._score(predictor, vector)
        snapshot = dict(record) if record is not None else vector.to_dict()
        prediction = self.history.append(Prediction(
            model_id=version.model_id,
            model_name=version.model_name,
            class_label=self.label_for(probability),
            probability=probability,
            confidence_band=self.band_for(probability),
            input_snapshot=snapshot,
        ))
        logger.info(
            json.dumps({
                "event": "prediction",
                "prediction_id": prediction.prediction_id,
                "model_id": version.model_id,
                "probability": round(probability, 6),
                "latency_sec": round(time.time() - start_time, 4),
            })
        )
        return prediction

    def predict_one(self,
                    vector: FeatureVector,
                    model: Optional[str] = None,
                    record: Optional[Mapping[str, Any]] = None) -> Prediction:
        """
        Score a single vector and append the result to history.

        Args:
            vector: Preprocessed record
            model: Registered model id; the deployed model when omitted
            record: Raw record stored as the prediction's input snapshot

        Returns:
            The recorded prediction (id and timestamp assigned)
        """
        version, predictor = self.resolve_model(model)
        return self._predict_with(version, predictor, vector, record)

    def predict_many(self,
                     vectors: Sequence[FeatureVector],
                     model: Optional[str] = None,
                     timeout: Optional[float] = None,
                     records: Optional[Sequence[Mapping[str, Any]]] = None) -> BatchResult:
        """
        Score a batch; one failing item never aborts the others.

        ``timeout`` is a deadline in seconds checked before each item starts.
        Items already running complete and are logged; items not yet started
        when it passes are reported as ``not_attempted``. The timeout does not
        bound how long this call takes to return: a record that is already
        being scored when the deadline passes still runs to completion.
        """
        if records is not None and len(records) != len(vectors):
            raise ValueError("records must align one-to-one with vectors")
        version, predictor = self.resolve_model(model)
        deadline = time.monotonic() + timeout if timeout is not None else None

        def run(index: int) -> BatchItem:
            if deadline is not None and time.monotonic() >= deadline:
                return PredictionErr(
                    index=index,
                    kind=NOT_ATTEMPTED,
                    message="Batch deadline passed before this record was scored",
                )
            record = records[index] if records is not None else None
            try:
                return PredictionOk(index, self._predict_with(version, predictor, vectors[index], record))
            except AdherenceServiceError as exc:
                logger.warning(f"Batch item {index} failed: {exc.message}")
                return PredictionErr.from_error(index, exc)
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Unexpected failure scoring batch item {index}")
                return PredictionErr(index=index, kind=INTERNAL_ERROR, message=str(exc))

        if not vectors:
            return BatchResult(items=[])
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(vectors))) as pool:
            items = list(pool.map(run, range(len(vectors))))

        skipped = sum(1 for item in items if isinstance(item, PredictionErr) and item.kind == NOT_ATTEMPTED)
        if skipped:
            logger.warning(f"Batch deadline reached; {skipped} of {len(items)} record(s) not attempted")
        return BatchResult(items=items)
