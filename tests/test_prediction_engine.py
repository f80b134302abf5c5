"""Tests for single and batch prediction."""

import threading
import time

import numpy as np
import pytest

from adherence_xai.data.preprocessor import RecordPreprocessor
from adherence_xai.exceptions import ModelUnavailableError, PredictionError
from adherence_xai.history import ClassLabel, ConfidenceBand, InMemoryHistoryStore
from adherence_xai.models.base_model import BasePredictor
from adherence_xai.pipeline.prediction_engine import (
    NOT_ATTEMPTED,
    PredictionEngine,
    PredictionErr,
    PredictionOk,
    confidence_band,
)
from adherence_xai.registry import ModelRegistry

from conftest import make_records, register_validated


class ConstantModel(BasePredictor):
    kind = "constant"

    def __init__(self, probability, feature_names, delay: float = 0.0):
        super().__init__(model_name="constant", feature_names=feature_names)
        self.probability = probability
        self.delay = delay

    def predict_proba(self, X):
        if self.delay:
            time.sleep(self.delay)
        X_arr = self.validate_input(X)
        return np.full(X_arr.shape[0], self.probability, dtype=float)


def _engine_with(model: BasePredictor, history=None, **kwargs) -> PredictionEngine:
    registry = ModelRegistry()
    register_validated(registry, "model_const", model)
    registry.deploy("model_const")
    return PredictionEngine(registry, history if history is not None else InMemoryHistoryStore(), **kwargs)


@pytest.mark.parametrize(
    "probability, band",
    [
        (0.95, ConfidenceBand.HIGH),
        (0.85, ConfidenceBand.HIGH),
        (0.1, ConfidenceBand.HIGH),
        (0.7, ConfidenceBand.MEDIUM),
        (0.35, ConfidenceBand.MEDIUM),
        (0.6, ConfidenceBand.LOW),
        (0.5, ConfidenceBand.LOW),
    ],
)
def test_confidence_band(probability: float, band: ConfidenceBand) -> None:
    assert confidence_band(probability) is band


def test_confidence_band_follows_threshold() -> None:
    assert confidence_band(0.7, threshold=0.7) is ConfidenceBand.LOW
    assert confidence_band(0.95, threshold=0.7, high_margin=0.2, medium_margin=0.1) is ConfidenceBand.HIGH


def test_predict_one_labels_and_logs(schema, sample_record, registry, history) -> None:
    engine = PredictionEngine(registry, history)
    vector = RecordPreprocessor(schema).transform(sample_record)

    prediction = engine.predict_one(vector, record=sample_record)

    assert prediction.model_id == "model_v1"
    assert prediction.is_recorded
    assert 0.0 <= prediction.probability <= 1.0
    expected = ClassLabel.POSITIVE if prediction.probability >= 0.5 else ClassLabel.NEGATIVE
    assert prediction.class_label is expected
    assert prediction.input_snapshot == sample_record
    assert history.get(prediction.prediction_id) == prediction


def test_threshold_is_inclusive(schema, sample_record) -> None:
    engine = _engine_with(ConstantModel(0.5, schema.names))
    vector = RecordPreprocessor(schema).transform(sample_record)
    assert engine.predict_one(vector).class_label is ClassLabel.POSITIVE


def test_predict_one_can_target_a_registered_model(schema, sample_record, registry, history) -> None:
    engine = PredictionEngine(registry, history)
    vector = RecordPreprocessor(schema).transform(sample_record)
    assert engine.predict_one(vector, model="model_v2").model_id == "model_v2"


def test_no_deployed_model(schema, sample_record, linear_model) -> None:
    registry = ModelRegistry()
    register_validated(registry, "model_v1", linear_model)
    engine = PredictionEngine(registry, InMemoryHistoryStore())
    vector = RecordPreprocessor(schema).transform(sample_record)
    with pytest.raises(ModelUnavailableError):
        engine.predict_one(vector)


@pytest.mark.parametrize("bad", [1.5, -0.1, float("nan")])
def test_invalid_probability_is_not_logged(schema, sample_record, bad: float) -> None:
    history = InMemoryHistoryStore()
    engine = _engine_with(ConstantModel(bad, schema.names), history=history)
    vector = RecordPreprocessor(schema).transform(sample_record)
    with pytest.raises(PredictionError):
        engine.predict_one(vector)
    assert len(history) == 0


def test_batch_is_order_preserving_and_consistent(schema, registry, history) -> None:
    records = make_records(schema, rows=25, seed=11)
    preprocessor = RecordPreprocessor(schema)
    engine = PredictionEngine(registry, history, max_workers=4)

    batch = engine.predict_many(preprocessor.transform_many(records), records=records)

    assert [item.index for item in batch.items] == list(range(25))
    assert all(isinstance(item, PredictionOk) for item in batch.items)
    for item, record in zip(batch.items, records):
        assert item.prediction.input_snapshot == record
    summary = batch.summary
    assert summary.total_records == len(batch.predictions) + len(batch.failures)
    assert summary.positive_count + summary.negative_count == len(batch.predictions)
    assert len(history) == 25


def test_batch_isolates_item_failures(schema, sample_record) -> None:
    class FlakyModel(ConstantModel):
        def predict_proba(self, X):
            X_arr = self.validate_input(X)
            # T_stage column; 4 makes the model misbehave
            stage = X_arr[:, self.feature_names.index("T_stage")]
            return np.where(stage == 4, np.nan, 0.8)

    history = InMemoryHistoryStore()
    engine = _engine_with(FlakyModel(0.8, schema.names), history=history)
    preprocessor = RecordPreprocessor(schema)
    bad = dict(sample_record, T_stage=4)
    vectors = preprocessor.transform_many([sample_record, bad, sample_record])

    batch = engine.predict_many(vectors)

    assert isinstance(batch.items[0], PredictionOk)
    assert isinstance(batch.items[1], PredictionErr)
    assert batch.items[1].kind == "prediction_error"
    assert isinstance(batch.items[2], PredictionOk)
    assert batch.summary.failed_count == 1
    assert len(history) == 2


def test_batch_timeout_marks_remaining_not_attempted(schema, sample_record) -> None:
    history = InMemoryHistoryStore()
    engine = _engine_with(ConstantModel(0.9, schema.names, delay=0.05), history=history, max_workers=1)
    vectors = RecordPreprocessor(schema).transform_many([sample_record] * 20)

    batch = engine.predict_many(vectors, timeout=0.12)

    done = batch.predictions
    skipped = [item for item in batch.failures if item.kind == NOT_ATTEMPTED]
    assert done, "work finished before the deadline is kept"
    assert skipped, "records after the deadline are reported"
    assert len(done) + len(skipped) == 20
    # every returned prediction is fully logged, nothing else is
    assert len(history) == len(done)
    for prediction in done:
        assert history.get(prediction.prediction_id) == prediction


def test_concurrent_batches_get_unique_ordered_ids(schema, sample_record, registry) -> None:
    history = InMemoryHistoryStore()
    engine = PredictionEngine(registry, history, max_workers=4)
    vectors = RecordPreprocessor(schema).transform_many([sample_record] * 30)

    threads = [threading.Thread(target=engine.predict_many, args=(vectors,)) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    page = history.query(page=1, page_size=200)
    ids = [p.prediction_id for p in page.items]
    assert page.total_count == 120
    assert len(set(ids)) == 120


def test_empty_batch(registry, history) -> None:
    batch = PredictionEngine(registry, history).predict_many([])
    assert batch.items == []
    assert batch.summary.total_records == 0
