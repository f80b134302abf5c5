"""FastAPI application exposing validation, prediction, explanation, registry,
history and training data endpoints.

The :class:`AdherenceService` is built lazily from the configuration directory
on the first request unless one is passed to :func:`create_app`.

Environment variables:
  ``ADHERENCE_CONFIG_DIR``
      Directory holding ``serving_config.yaml`` and ``feature_schema.yaml``.
      Defaults to ``config``.
  ``ADHERENCE_HISTORY_DB`` / ``ADHERENCE_MODEL_MANIFEST`` / ``LOG_LEVEL``
      See :class:`adherence_xai.config.ConfigManager`.
  ``APP_VERSION``
      Overrides the reported application version.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from ..config.config_manager import ConfigManager
from ..exceptions import AdherenceServiceError, InvalidQueryError
from ..history.metrics import MetricsWindow
from ..history.records import ClassLabel, ConfidenceBand, as_utc
from ..history.store import HistoryFilters
from ..pipeline.serving_pipeline import AdherenceService
from .schemas import (
    BatchPredictionRequest,
    BatchPredictionResponse,
    DeploymentResponse,
    ErrorResponse,
    ExplainRequest,
    ExplanationResponse,
    GroundTruthRequest,
    HealthResponse,
    HistoryResponse,
    MetricsResponse,
    ModelInfoResponse,
    ModelListResponse,
    ModelVersionResponse,
    PredictionResponse,
    RecordRequest,
    RegisterModelRequest,
    ValidationResponse,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "adherence-xai-api"
SERVICE_VERSION = os.getenv("APP_VERSION", "0.1.0")

STATUS_BY_KIND: Dict[str, int] = {
    "validation_failure": 400,
    "invalid_query": 400,
    "unknown_model": 404,
    "unknown_prediction": 404,
    "data_unavailable": 404,
    "invalid_transition": 409,
    "duplicate_model": 409,
    "registry_error": 503,
    "model_unavailable": 503,
    "no_active_model": 503,
    "explanation_unsupported": 501,
}

ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 404, 409, 500, 501, 503)
}


class ServiceHolder:
    """Lazily builds the service once, on first use."""

    def __init__(self, service: Optional[AdherenceService] = None) -> None:
        self._lock = threading.Lock()
        self._service = service

    def get(self) -> AdherenceService:
        with self._lock:
            if self._service is None:
                config_dir = os.getenv("ADHERENCE_CONFIG_DIR", "config")
                logger.info("Building adherence service from %s", config_dir)
                self._service = AdherenceService.from_config(ConfigManager(config_dir))
            return self._service


def get_service(request: Request) -> AdherenceService:
    return request.app.state.services.get()


async def service_error_handler(request: Request, exc: AdherenceServiceError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500 and status_code not in (501, 503):
        logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _parse_time(value: Optional[str], name: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise InvalidQueryError(f"'{name}' must be an ISO-8601 timestamp", detail={name: value}) from exc
    # timestamps without an offset are read as UTC
    return as_utc(parsed)


def _history_filters(class_label: Optional[str],
                     model_id: Optional[str],
                     confidence: Optional[str],
                     since: Optional[str],
                     until: Optional[str]) -> HistoryFilters:
    try:
        label = ClassLabel.parse(class_label) if class_label is not None else None
        band = ConfidenceBand(confidence) if confidence is not None else None
    except ValueError as exc:
        raise InvalidQueryError(str(exc)) from exc
    return HistoryFilters(
        class_label=label,
        model_id=model_id,
        confidence_band=band,
        since=_parse_time(since, "since"),
        until=_parse_time(until, "until"),
    )


def create_app(service: Optional[AdherenceService] = None) -> FastAPI:
    """Build the FastAPI application around ``service``."""
    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION)
    app.state.services = ServiceHolder(service)
    app.add_exception_handler(AdherenceServiceError, service_error_handler)

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse, tags=["meta"])
    def health(svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.health()

    @app.get("/model-info", response_model=ModelInfoResponse,
             responses=ERROR_RESPONSES, tags=["meta"])
    def model_info(svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.model_info()

    @app.get("/features", tags=["meta"])
    def features(svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.features()

    # ------------------------------------------------------------------
    # Records and inference
    # ------------------------------------------------------------------
    @app.post("/validate", response_model=ValidationResponse, tags=["inference"])
    def validate_record(req: RecordRequest, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.validate(req.features).to_dict()

    @app.post("/preprocess", responses=ERROR_RESPONSES, tags=["inference"])
    def preprocess_record(req: RecordRequest, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.preprocess(req.features).to_dict()

    @app.post("/predict/single", response_model=PredictionResponse,
              responses=ERROR_RESPONSES, tags=["inference"])
    def predict_single(req: RecordRequest, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        if req.request_id:
            logger.info("Prediction request %s received", req.request_id)
        return svc.predict_single(req.features).to_dict()

    @app.post("/predict/batch", response_model=BatchPredictionResponse,
              responses=ERROR_RESPONSES, tags=["inference"])
    def predict_batch(req: BatchPredictionRequest,
                      svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.predict_batch(req.records, timeout=req.timeout_seconds).to_dict()

    @app.post("/explain", response_model=ExplanationResponse,
              responses=ERROR_RESPONSES, tags=["inference"])
    def explain(req: ExplainRequest, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        explanation = svc.explain(record=req.features, prediction_id=req.prediction_id)
        return explanation.to_dict(top_k=svc.explainer.top_k)

    # ------------------------------------------------------------------
    # Model registry
    # ------------------------------------------------------------------
    @app.get("/models", response_model=ModelListResponse, tags=["models"])
    def list_models(svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return {"models": [version.to_dict() for version in svc.list_models()]}

    @app.post("/models", response_model=ModelVersionResponse, status_code=201,
              responses=ERROR_RESPONSES, tags=["models"])
    def register_model(req: RegisterModelRequest,
                       svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        predictor = svc.load_artifact(req.artifact_path) if req.artifact_path else None
        metadata = req.model_dump(exclude={"artifact_path"}, exclude_none=True)
        return svc.register_model(metadata, predictor=predictor).to_dict()

    @app.post("/models/{model_id}/validate", response_model=ModelVersionResponse,
              responses=ERROR_RESPONSES, tags=["models"])
    def validate_model(model_id: str, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.mark_validated(model_id).to_dict()

    @app.post("/models/{model_id}/deploy", response_model=DeploymentResponse,
              responses=ERROR_RESPONSES, tags=["models"])
    def deploy_model(model_id: str, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.deploy(model_id).to_dict()

    @app.post("/models/{model_id}/retire", response_model=ModelVersionResponse,
              responses=ERROR_RESPONSES, tags=["models"])
    def retire_model(model_id: str, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.retire(model_id).to_dict()

    # ------------------------------------------------------------------
    # History and metrics
    # ------------------------------------------------------------------
    @app.get("/metrics", response_model=MetricsResponse, responses=ERROR_RESPONSES, tags=["monitoring"])
    def metrics(last_n: Optional[int] = Query(None, ge=1),
                since: Optional[str] = None,
                until: Optional[str] = None,
                svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        window = MetricsWindow(
            last_n=last_n,
            since=_parse_time(since, "since"),
            until=_parse_time(until, "until"),
        )
        return svc.metrics(window).to_dict()

    @app.get("/history", response_model=HistoryResponse, responses=ERROR_RESPONSES, tags=["monitoring"])
    def history(page: int = 1,
                size: Optional[int] = None,
                class_label: Optional[str] = None,
                model_id: Optional[str] = None,
                confidence: Optional[str] = None,
                since: Optional[str] = None,
                until: Optional[str] = None,
                svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        filters = _history_filters(class_label, model_id, confidence, since, until)
        return svc.history_page(page=page, page_size=size, filters=filters).to_dict()

    @app.get("/history/{prediction_id}", response_model=PredictionResponse,
             responses=ERROR_RESPONSES, tags=["monitoring"])
    def history_item(prediction_id: str, svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.history.get(prediction_id).to_dict()

    @app.post("/history/{prediction_id}/ground-truth", responses=ERROR_RESPONSES, tags=["monitoring"])
    def record_ground_truth(prediction_id: str, req: GroundTruthRequest,
                            svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        svc.record_outcome(prediction_id, req.outcome)
        return {"prediction_id": prediction_id, "status": "recorded"}

    # ------------------------------------------------------------------
    # Training data
    # ------------------------------------------------------------------
    @app.get("/training-data", responses=ERROR_RESPONSES, tags=["data"])
    def training_data(page: int = 1,
                      size: Optional[int] = None,
                      svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.training_data_page(page=page, page_size=size)

    @app.get("/training-data/stats", responses=ERROR_RESPONSES, tags=["data"])
    def training_data_stats(svc: AdherenceService = Depends(get_service)) -> Dict[str, Any]:
        return svc.training_data_stats()

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:  # pragma: no cover - trivial
        return {"message": "Treatment adherence prediction API", "version": SERVICE_VERSION}

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    uvicorn.run(
        "adherence_xai.api.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
