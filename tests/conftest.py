"""Shared fixtures: the shipped feature schema and models fitted on synthetic subjects."""

import sys
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pytest
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from adherence_xai.data.preprocessor import RecordPreprocessor  # noqa: E402
from adherence_xai.data.schema import FeatureSchema  # noqa: E402
from adherence_xai.history.store import InMemoryHistoryStore  # noqa: E402
from adherence_xai.models.ensemble import EnsembleModel  # noqa: E402
from adherence_xai.models.linear_model import LinearModel  # noqa: E402
from adherence_xai.models.tree_model import TreeModel  # noqa: E402
from adherence_xai.registry.model_registry import ModelRegistry  # noqa: E402

SCHEMA_PATH = ROOT / "config" / "feature_schema.yaml"

SAMPLE_RECORD: Dict[str, Any] = {
    "PERFORMANCE_ID": 1,
    "Hx_oth_cancer": 1,
    "stable_weigh": 2,
    "examed_by_radiation_oncologist": 1,
    "bilateral_renal_function": 1,
    "No_cardiact_condition": 1,
    "prior_chemo": 0,
    "prior_radiation": 0,
    "Gastro_esophageal_junction": 0,
    "cardia": 0,
    "fundus": 0,
    "body_corpus": 1,
    "antrum": 0,
    "pylorus_pyloric_channel": 0,
    "greater_curvature": 0,
    "lesser_curvature": 0,
    "stomach_NOS": 0,
    "Histologic_grade": 3,
    "num_lymph_node_examined": 7,
    "num_pos_lymph_node": 0,
    "T_stage": 2,
    "N_stage": 0,
    "M_stage": 0,
    "T2N0M0_spec": 2,
    "PD_location": None,
    "ETHNIC_ID": 1,
    "SEX_ID": 1,
    "RACE_ID": 1,
    "TREAT_ASSIGNED": 2,
    "STRATUM_GRP_ID": 1,
    "agecat": 1,
}


def make_records(schema: FeatureSchema, rows: int = 120, seed: int = 7) -> List[Dict[str, Any]]:
    """Random records that satisfy ``schema``."""
    rng = np.random.default_rng(seed)
    records = []
    for _ in range(rows):
        record: Dict[str, Any] = {}
        for spec in schema:
            if not spec.required and rng.random() < 0.5:
                record[spec.name] = None
            elif spec.is_categorical:
                record[spec.name] = spec.allowed_values[int(rng.integers(len(spec.allowed_values)))]
            else:
                high = int(spec.max_value) if spec.max_value is not None else 10
                record[spec.name] = int(rng.integers(int(spec.min_value or 0), min(high, 30) + 1))
        records.append(record)
    return records


@pytest.fixture(scope="session")
def schema() -> FeatureSchema:
    return FeatureSchema.from_yaml(SCHEMA_PATH)


@pytest.fixture
def sample_record() -> Dict[str, Any]:
    return dict(SAMPLE_RECORD)


@pytest.fixture(scope="session")
def training_matrix(schema: FeatureSchema):
    preprocessor = RecordPreprocessor(schema)
    records = make_records(schema)
    X = preprocessor.to_frame(preprocessor.transform_many(records)).to_numpy()
    score = (
        1.2 * X[:, schema.names.index("PERFORMANCE_ID")]
        - 0.8 * X[:, schema.names.index("T_stage")]
        + 0.5 * X[:, schema.names.index("No_cardiact_condition")]
        + 1.0
    )
    y = (score > np.median(score)).astype(int)
    return X, y


@pytest.fixture(scope="session")
def linear_model(schema: FeatureSchema, training_matrix) -> LinearModel:
    X, y = training_matrix
    estimator = LogisticRegression(max_iter=1000).fit(X, y)
    return LinearModel.from_estimator(
        estimator,
        feature_names=schema.names,
        model_name="logistic_regression",
        background=X[:40],
    )


@pytest.fixture(scope="session")
def tree_model(schema: FeatureSchema, training_matrix) -> TreeModel:
    X, y = training_matrix
    estimator = RandomForestClassifier(n_estimators=15, max_depth=4, random_state=0).fit(X, y)
    return TreeModel(estimator, feature_names=schema.names, model_name="random_forest", background=X[:20])


@pytest.fixture(scope="session")
def ensemble_model(linear_model: LinearModel, tree_model: TreeModel) -> EnsembleModel:
    return EnsembleModel({"lr": linear_model, "rf": tree_model}, weights=[0.5, 0.5])


def register_validated(registry: ModelRegistry, model_id: str, predictor, **metadata: Any) -> None:
    payload = {
        "model_id": model_id,
        "version": metadata.pop("version", "1.0.0"),
        "algorithm": predictor.kind,
        "training_date": "2024-01-15",
        "metrics": {"accuracy": 0.82, "precision": 0.8, "recall": 0.85, "f1_score": 0.82, "roc_auc": 0.88},
    }
    payload.update(metadata)
    registry.register(payload, predictor=predictor)
    registry.mark_validated(model_id)


@pytest.fixture
def registry(linear_model: LinearModel, tree_model: TreeModel) -> ModelRegistry:
    """``model_v1`` (linear) deployed, ``model_v2`` (tree) validated."""
    registry = ModelRegistry()
    register_validated(registry, "model_v1", linear_model)
    register_validated(registry, "model_v2", tree_model, version="2.0.0")
    registry.deploy("model_v1")
    return registry


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()
