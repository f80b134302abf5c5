"""API tests: routes, response payloads and error status mapping."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from adherence_xai.api import create_app
from adherence_xai.pipeline import AdherenceService
from adherence_xai.registry import ModelRegistry


@pytest.fixture
def service(schema, registry, history, tmp_path: Path) -> AdherenceService:
    return AdherenceService(schema, registry, history=history, artifacts_dir=tmp_path)


@pytest.fixture
def client(service: AdherenceService) -> TestClient:
    return TestClient(create_app(service))


def _predict(client: TestClient, record: Dict[str, Any]) -> Dict[str, Any]:
    response = client.post("/predict/single", json={"features": record})
    assert response.status_code == 200, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_model_info_without_active_model(schema) -> None:
    client = TestClient(create_app(AdherenceService(schema, ModelRegistry())))
    response = client.get("/model-info")
    assert response.status_code == 503
    assert response.json()["error"] == "no_active_model"

    predict = client.post("/predict/single", json={"features": {}})
    assert predict.status_code in (400, 503)


def test_features(client: TestClient, schema) -> None:
    payload = client.get("/features").json()
    assert payload["total_features"] == len(schema)
    assert [f["name"] for f in payload["features"]] == schema.names


def test_validate_missing_field(client: TestClient, sample_record) -> None:
    del sample_record["agecat"]
    response = client.post("/validate", json={"features": sample_record})
    assert response.status_code == 200
    body = response.json()
    assert body["is_valid"] is False
    assert body["missing_fields"] == ["agecat"]


def test_preprocess(client: TestClient, sample_record, schema) -> None:
    response = client.post("/preprocess", json={"features": sample_record})
    assert response.status_code == 200
    assert list(response.json()) == schema.names


def test_predict_single(client: TestClient, sample_record) -> None:
    body = _predict(client, sample_record)
    assert body["prediction_id"].startswith("pred_")
    assert body["prediction"] in ("Good Subject", "Bad Subject")
    assert body["confidence"] in ("low", "medium", "high")
    assert body["model_id"] == "model_v1"


def test_predict_invalid_record_is_400(client: TestClient, sample_record) -> None:
    response = client.post("/predict/single", json={"features": dict(sample_record, T_stage=9)})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_failure"
    assert body["detail"]["invalid_fields"][0]["field"] == "T_stage"


def test_predict_batch(client: TestClient, sample_record) -> None:
    records = [sample_record, dict(sample_record, T_stage=9)]
    response = client.post("/predict/batch", json={"records": records})
    assert response.status_code == 200
    body = response.json()
    assert len(body["predictions"]) == 1
    assert body["failed_items"][0]["index"] == 1
    assert body["failed_items"][0]["detail"]["invalid_fields"][0]["reason"] == "out_of_range"
    assert body["summary"]["total_records"] == 2


def test_explain_record_and_logged_prediction(client: TestClient, sample_record) -> None:
    response = client.post("/explain", json={"features": sample_record})
    assert response.status_code == 200
    body = response.json()
    total = body["base_value"] + sum(body["contributions"].values())
    assert total == pytest.approx(body["probability"], abs=1e-6)
    assert len(body["top_positive_features"]) <= 5

    logged = _predict(client, sample_record)
    by_id = client.post("/explain", json={"prediction_id": logged["prediction_id"]}).json()
    assert by_id["prediction_id"] == logged["prediction_id"]
    assert by_id["probability"] == pytest.approx(logged["probability"])


def test_explain_needs_a_source(client: TestClient) -> None:
    assert client.post("/explain", json={}).status_code == 422
    missing = client.post("/explain", json={"prediction_id": "pred_000000000404"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "unknown_prediction"


def test_model_lifecycle(client: TestClient, tmp_path: Path, tree_model) -> None:
    listed = client.get("/models").json()["models"]
    assert {m["model_id"] for m in listed} == {"model_v1", "model_v2"}

    deployed = client.post("/models/model_v2/deploy")
    assert deployed.status_code == 200
    assert deployed.json()["previous_model"] == "model_v1"
    assert deployed.json()["new_model"] == "model_v2"
    assert client.get("/model-info").json()["model_id"] == "model_v2"

    artifact = tmp_path / "rf.joblib"
    tree_model.save_model(str(artifact))
    created = client.post("/models", json={
        "model_id": "model_v3", "algorithm": "random_forest", "artifact_path": "rf.joblib",
        "metrics": {"accuracy": 0.9},
    })
    assert created.status_code == 201
    assert created.json()["status"] == "testing"

    # testing models must be validated first
    assert client.post("/models/model_v3/deploy").status_code == 409
    assert client.post("/models/model_v3/validate").status_code == 200
    assert client.post("/models/model_v3/deploy").status_code == 200

    assert client.post("/models", json={"model_id": "model_v3"}).status_code == 409
    assert client.post("/models/model_v9/deploy").status_code == 404
    missing_artifact = client.post("/models", json={"model_id": "x", "artifact_path": str(tmp_path / "no.joblib")})
    assert missing_artifact.status_code == 400


def test_retire_active_model_degrades_health(client: TestClient) -> None:
    assert client.post("/models/model_v1/retire").json()["status"] == "retired"
    assert client.get("/health").json()["status"] == "degraded"


def test_history_and_ground_truth(client: TestClient, sample_record) -> None:
    empty = client.get("/history", params={"page": 1, "size": 10}).json()
    assert empty["predictions"] == []
    assert empty["total_predictions"] == 0

    logged = [_predict(client, sample_record) for _ in range(3)]
    page = client.get("/history", params={"page": 1, "size": 2}).json()
    assert page["total_predictions"] == 3
    assert page["total_pages"] == 2
    assert [p["prediction_id"] for p in page["predictions"]] == [
        logged[2]["prediction_id"], logged[1]["prediction_id"],
    ]

    filtered = client.get("/history", params={"model_id": "model_v2"}).json()
    assert filtered["total_predictions"] == 0

    item = client.get(f"/history/{logged[0]['prediction_id']}")
    assert item.status_code == 200
    assert client.get("/history/pred_000000000999").status_code == 404

    recorded = client.post(f"/history/{logged[0]['prediction_id']}/ground-truth", json={"outcome": 1})
    assert recorded.json()["status"] == "recorded"
    bad = client.post(f"/history/{logged[0]['prediction_id']}/ground-truth", json={"outcome": "unsure"})
    assert bad.status_code == 400


@pytest.mark.parametrize(
    "params",
    [{"page": 0}, {"size": 0}, {"confidence": "certain"}, {"since": "yesterday"}],
)
def test_invalid_history_query(client: TestClient, params: Dict[str, Any]) -> None:
    response = client.get("/history", params=params)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_query"


def test_metrics(client: TestClient, sample_record) -> None:
    unavailable = client.get("/metrics").json()
    assert unavailable["status"] == "unavailable"
    assert unavailable["accuracy"] is None

    logged = _predict(client, sample_record)
    client.post(f"/history/{logged['prediction_id']}/ground-truth", json={"outcome": logged["prediction"]})
    body = client.get("/metrics", params={"last_n": 10}).json()
    assert body["status"] == "available"
    assert body["accuracy"] == 1.0
    assert body["labelled_count"] == 1


def test_training_data_not_configured(client: TestClient) -> None:
    response = client.get("/training-data")
    assert response.status_code == 404
    assert response.json()["error"] == "data_unavailable"


def test_artifacts_outside_the_artifacts_directory_are_refused(client: TestClient, tmp_path: Path,
                                                               tree_model) -> None:
    outside = tmp_path.parent / f"{tmp_path.name}_elsewhere.joblib"
    tree_model.save_model(str(outside))
    try:
        for path in (str(outside), f"../{outside.name}"):
            response = client.post("/models", json={"model_id": "model_x", "artifact_path": path})
            assert response.status_code == 400
            assert response.json()["error"] == "invalid_query"
    finally:
        outside.unlink()
    assert "model_x" not in {m["model_id"] for m in client.get("/models").json()["models"]}


def test_unparseable_training_date_is_400(client: TestClient) -> None:
    response = client.post("/models", json={"model_id": "model_9", "training_date": "not-a-date"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_query"
    assert response.json()["detail"]["training_date"] == "not-a-date"


@pytest.mark.parametrize("since", ["2024-01-01T00:00:00", "2024-01-01"])
def test_timestamps_without_offset_are_read_as_utc(client: TestClient, sample_record, since: str) -> None:
    _predict(client, sample_record)

    history = client.get("/history", params={"since": since})
    assert history.status_code == 200, history.text
    assert history.json()["total_predictions"] == 1
    assert client.get("/history", params={"until": since}).json()["total_predictions"] == 0

    metrics = client.get("/metrics", params={"since": since})
    assert metrics.status_code == 200, metrics.text
    assert metrics.json()["window_size"] == 1
