"""Tests for the predictor variants."""

from pathlib import Path

import numpy as np
import pytest
from sklearn.datasets import make_classification
from sklearn.linear_model import LogisticRegression

from adherence_xai.data.preprocessor import preprocess
from adherence_xai.models import BasePredictor, EnsembleModel, LinearModel, TreeModel
from adherence_xai.models.linear_model import logit, sigmoid


def test_sigmoid_and_logit_are_inverse() -> None:
    for p in (0.01, 0.3, 0.5, 0.78, 0.99):
        assert sigmoid(logit(p)) == pytest.approx(p)
    assert sigmoid(np.array([-1000.0, 1000.0])).tolist() == [0.0, 1.0]


def test_linear_model_matches_sklearn() -> None:
    X, y = make_classification(n_samples=120, n_features=5, n_informative=3, random_state=3)
    estimator = LogisticRegression(max_iter=1000).fit(X, y)
    model = LinearModel.from_estimator(estimator, feature_names=[f"f{i}" for i in range(5)])

    np.testing.assert_allclose(model.predict_proba(X), estimator.predict_proba(X)[:, 1], atol=1e-10)


def test_linear_model_flips_for_first_class_positive() -> None:
    X, y = make_classification(n_samples=120, n_features=4, n_informative=2, random_state=5)
    estimator = LogisticRegression(max_iter=1000).fit(X, y)
    model = LinearModel.from_estimator(estimator, feature_names=list("abcd"), positive_label=0)

    np.testing.assert_allclose(model.predict_proba(X), estimator.predict_proba(X)[:, 0], atol=1e-10)


def test_coefficient_count_must_match_features() -> None:
    with pytest.raises(ValueError):
        LinearModel(coef=[1.0, 2.0], intercept=0.0, feature_names=["a"])


def test_predict_returns_probability_for_vector(schema, sample_record, linear_model, tree_model,
                                                ensemble_model) -> None:
    vector = preprocess(sample_record, schema)
    for model in (linear_model, tree_model, ensemble_model):
        probability = model.predict(vector)
        assert isinstance(probability, float)
        assert 0.0 <= probability <= 1.0


def test_predict_rejects_misaligned_vector(schema, sample_record, linear_model) -> None:
    from adherence_xai.data.preprocessor import FeatureVector

    vector = preprocess(sample_record, schema)
    reordered = FeatureVector(names=tuple(reversed(vector.names)), values=vector.values[::-1])
    with pytest.raises(ValueError):
        linear_model.predict(reordered)


def test_tree_model_uses_positive_class_column(training_matrix, tree_model) -> None:
    X, _ = training_matrix
    expected = tree_model.estimator.predict_proba(X[:5])[:, tree_model.positive_index_]
    np.testing.assert_allclose(tree_model.predict_proba(X[:5]), expected)


def test_tree_model_requires_fitted_estimator(schema) -> None:
    from sklearn.ensemble import RandomForestClassifier

    with pytest.raises(ValueError):
        TreeModel(RandomForestClassifier(), feature_names=schema.names)


def test_ensemble_is_weighted_mean(training_matrix, linear_model, tree_model) -> None:
    X, _ = training_matrix
    ensemble = EnsembleModel({"lr": linear_model, "rf": tree_model}, weights=[3, 1])
    expected = 0.75 * linear_model.predict_proba(X) + 0.25 * tree_model.predict_proba(X)
    np.testing.assert_allclose(ensemble.predict_proba(X), expected)
    assert ensemble.kind == "ensemble"
    assert ensemble.background is not None


def test_ensemble_rejects_bad_weights(linear_model, tree_model) -> None:
    with pytest.raises(ValueError):
        EnsembleModel({"lr": linear_model, "rf": tree_model}, weights=[1.0])
    with pytest.raises(ValueError):
        EnsembleModel({"lr": linear_model, "rf": tree_model}, weights=[0.0, 0.0])


def test_reference_point_is_background_mean(linear_model) -> None:
    np.testing.assert_allclose(linear_model.reference_point(), linear_model.background.mean(axis=0))
    bare = LinearModel(coef=[1.0], intercept=0.0, feature_names=["a"])
    assert bare.reference_point().tolist() == [0.0]


def test_save_and_load_round_trip(tmp_path: Path, linear_model, training_matrix) -> None:
    X, _ = training_matrix
    path = tmp_path / "model.joblib"
    linear_model.save_model(str(path))
    loaded = BasePredictor.load_model(str(path))
    assert isinstance(loaded, LinearModel)
    np.testing.assert_allclose(loaded.predict_proba(X[:3]), linear_model.predict_proba(X[:3]))


def test_load_rejects_foreign_objects(tmp_path: Path) -> None:
    import joblib

    path = tmp_path / "other.joblib"
    joblib.dump({"not": "a model"}, path)
    with pytest.raises(TypeError):
        BasePredictor.load_model(str(path))
