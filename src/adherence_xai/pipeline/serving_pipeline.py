"""Serving façade: validation, preprocessing, prediction and explanation wiring."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..config.config_manager import ConfigManager, ServingConfig, configure_logging
from ..data.data_loader import TrainingDataCatalog
from ..data.preprocessor import FeatureVector, RecordPreprocessor
from ..data.schema import FeatureSchema
from ..data.validator import ValidationResult, validate
from ..exceptions import (
    DataUnavailableError,
    InvalidQueryError,
    ModelUnavailableError,
    NoActiveModelError,
    PreprocessingError,
    ValidationFailure,
)
from ..history.metrics import MetricsSnapshot, MetricsWindow
from ..history.records import ClassLabel, Prediction
from ..history.sqlite_store import SQLiteHistoryStore
from ..history.store import HistoryFilters, HistoryPage, HistoryStore, InMemoryHistoryStore
from ..models.base_model import BasePredictor
from ..registry.model_registry import DeploymentResult, ModelRegistry, ModelVersion
from .explainability import Explanation, ExplainabilityEngine
from .prediction_engine import BatchItem, BatchResult, PredictionEngine, PredictionErr, PredictionOk

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AdherenceService:
    """
    Control flow shared by every entry point:
    validate -> preprocess -> predict (logged) -> explain on demand.
    """

    def __init__(self,
                 schema: FeatureSchema,
                 registry: ModelRegistry,
                 history: Optional[HistoryStore] = None,
                 config: Optional[ServingConfig] = None,
                 training_data: Optional[TrainingDataCatalog] = None,
                 artifacts_dir: Optional[Path] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config or ServingConfig()
        self.schema = schema
        self.registry = registry
        if history is None:
            history = InMemoryHistoryStore(
                max_page_size=self.config.history.max_page_size,
                rolling_window=self.config.history.rolling_window,
            )
        self.history = history
        self.training_data = training_data
        self.artifacts_dir = Path(artifacts_dir if artifacts_dir is not None else self.config.registry.artifacts_dir)
        self._clock = clock

        self.preprocessor = RecordPreprocessor(
            schema,
            missing_strategy=self.config.preprocessing.missing_strategy,
            sentinel_value=self.config.preprocessing.sentinel_value,
        )
        prediction = self.config.prediction
        self.engine = PredictionEngine(
            registry,
            self.history,
            threshold=prediction.threshold,
            high_margin=prediction.high_confidence_margin,
            medium_margin=prediction.medium_confidence_margin,
            max_workers=prediction.max_workers,
        )
        explain_cfg = self.config.explainability
        self.explainer = ExplainabilityEngine(
            threshold=prediction.threshold,
            tolerance=explain_cfg.tolerance,
            top_k=explain_cfg.top_k,
            max_evals=explain_cfg.max_evals,
            background_samples=explain_cfg.background_samples,
            random_state=explain_cfg.random_state,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_config(cls, manager: ConfigManager) -> "AdherenceService":
        """Build the service from a configuration directory."""
        config = manager.get_serving_config()
        configure_logging(config.log_level)

        schema = FeatureSchema.from_dict(manager.get_schema_config())
        if len(schema) == 0:
            logger.warning("Feature schema is empty; every record will validate")

        manifest = manager.resolve_path(config.registry.manifest_path)
        if manifest is not None and manifest.exists():
            registry = ModelRegistry.from_manifest(manifest, demotion_target=config.registry.demotion_target)
        else:
            if manifest is not None:
                logger.warning(f"Model manifest not found: {manifest}")
            registry = ModelRegistry(demotion_target=config.registry.demotion_target)

        history_cfg = config.history
        store_kwargs = dict(max_page_size=history_cfg.max_page_size, rolling_window=history_cfg.rolling_window)
        if history_cfg.backend == "sqlite":
            history: HistoryStore = SQLiteHistoryStore(str(manager.resolve_path(history_cfg.db_path)), **store_kwargs)
        else:
            history = InMemoryHistoryStore(**store_kwargs)

        training_data = None
        data_path = manager.resolve_path(config.training_data.path)
        if data_path is not None:
            if data_path.exists():
                training_data = TrainingDataCatalog.from_file(
                    data_path,
                    schema=schema,
                    target_column=config.training_data.target_column,
                    positive_value=config.training_data.positive_value,
                    id_column=config.training_data.id_column,
                )
            else:
                logger.warning(f"Training data file not found: {data_path}")

        service = cls(schema, registry, history=history, config=config, training_data=training_data,
                      artifacts_dir=manager.resolve_path(config.registry.artifacts_dir))
        service.check_model_alignment()
        return service

    def check_model_alignment(self) -> List[str]:
        """Ids of registered models whose inputs differ from the schema order."""
        misaligned = []
        for version in self.registry.list_models():
            try:
                predictor = self.registry.get_predictor(version.model_id)
            except ModelUnavailableError:
                continue
            if predictor.feature_names != self.schema.names:
                misaligned.append(version.model_id)
                logger.warning(f"Model {version.model_id} was trained on a different feature order")
        return misaligned

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def health(self) -> Dict[str, Any]:
        try:
            self.registry.get_active_with_predictor()
            model_status = "ready"
        except (NoActiveModelError, ModelUnavailableError):
            model_status = "unavailable"
        return {
            "status": "ok" if model_status == "ready" else "degraded",
            "model_status": model_status,
            "timestamp": self._clock().isoformat(),
        }

    def model_info(self) -> Dict[str, Any]:
        version = self.registry.get_active()
        return {
            "model_id": version.model_id,
            "model_name": version.model_name or version.model_id,
            "version": version.version,
            "algorithm": version.algorithm,
            "training_date": version.training_date.isoformat(),
            "target": version.target,
            "description": version.description,
            "status": version.status.value,
            "performance_metrics": version.metrics.to_dict(),
        }

    def features(self) -> Dict[str, Any]:
        return self.schema.describe()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def validate(self, record: Any) -> ValidationResult:
        result = validate(record, self.schema)
        if not result.is_valid:
            logger.debug(result.message)
        return result

    def preprocess(self, record: Mapping[str, Any]) -> FeatureVector:
        """Validate then transform; invalid records raise ``ValidationFailure``."""
        result = self.validate(record)
        if not result.is_valid:
            raise ValidationFailure(result)
        return self.preprocessor.transform(record)

    def predict_single(self, record: Mapping[str, Any], model: Optional[str] = None) -> Prediction:
        vector = self.preprocess(record)
        return self.engine.predict_one(vector, model=model, record=record)

    def predict_batch(self,
                      records: Sequence[Any],
                      model: Optional[str] = None,
                      timeout: Optional[float] = None) -> BatchResult:
        """
        Predict every record; invalid records become failure entries at their
        original position while the rest are scored.
        """
        if timeout is None:
            timeout = self.config.prediction.batch_timeout_seconds

        items: List[Optional[BatchItem]] = [None] * len(records)
        valid_positions: List[int] = []
        vectors: List[FeatureVector] = []
        for position, record in enumerate(records):
            result = self.validate(record)
            if not result.is_valid:
                items[position] = PredictionErr.from_error(position, ValidationFailure(result))
                continue
            try:
                vector = self.preprocessor.transform(record)
            except PreprocessingError as exc:
                logger.error(f"Validated batch record {position} failed preprocessing: {exc.message}")
                items[position] = PredictionErr.from_error(position, exc)
                continue
            valid_positions.append(position)
            vectors.append(vector)

        if vectors:
            scored = self.engine.predict_many(
                vectors,
                model=model,
                timeout=timeout,
                records=[records[p] for p in valid_positions],
            )
            for item in scored.items:
                position = valid_positions[item.index]
                if isinstance(item, PredictionOk):
                    items[position] = PredictionOk(position, item.prediction)
                else:
                    items[position] = PredictionErr(position, item.kind, item.message, item.detail)

        batch = BatchResult(items=list(items))
        summary = batch.summary
        logger.info(
            f"Batch of {summary.total_records}: {summary.positive_count} good, "
            f"{summary.negative_count} bad, {summary.failed_count} failed"
        )
        return batch

    def explain(self,
                record: Optional[Mapping[str, Any]] = None,
                prediction_id: Optional[str] = None) -> Explanation:
        """
        Explain a record with the active model, or a logged prediction with
        the model and input that produced it.
        """
        if prediction_id is not None:
            logged = self.history.get(prediction_id)
            source = logged.input_snapshot
            predictor: BasePredictor = self.registry.get_predictor(logged.model_id)
            model_id = logged.model_id
        elif record is not None:
            source = record
            version, predictor = self.engine.resolve_model()
            model_id = version.model_id
        else:
            raise ValueError("explain needs a record or a prediction_id")

        vector = self.preprocess(source)
        return self.explainer.explain(
            vector,
            predictor,
            prediction_ref=prediction_id,
            model_id=model_id,
            feature_values=source,
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def list_models(self) -> List[ModelVersion]:
        return self.registry.list_models()

    def load_artifact(self, artifact_path: str) -> BasePredictor:
        """
        Load a serialized predictor from the artifacts directory.

        Relative paths resolve against ``artifacts_dir``; paths that end up
        outside it, or that do not exist, are rejected.
        """
        root = self.artifacts_dir.resolve()
        candidate = Path(artifact_path)
        if not candidate.is_absolute():
            candidate = root / candidate
        candidate = candidate.resolve()
        if not candidate.is_relative_to(root):
            raise InvalidQueryError("Model artifacts must live in the artifacts directory",
                                    detail={"artifact_path": artifact_path})
        if not candidate.is_file():
            raise InvalidQueryError("Model artifact not found", detail={"artifact_path": artifact_path})
        logger.info(f"Loading model artifact {candidate}")
        return BasePredictor.load_model(str(candidate))

    def register_model(self, metadata: Mapping[str, Any],
                       predictor: Optional[BasePredictor] = None) -> ModelVersion:
        return self.registry.register(metadata, predictor=predictor)

    def mark_validated(self, model_id: str) -> ModelVersion:
        return self.registry.mark_validated(model_id)

    def deploy(self, model_id: str) -> DeploymentResult:
        return self.registry.deploy(model_id)

    def retire(self, model_id: str) -> ModelVersion:
        return self.registry.retire(model_id)

    # ------------------------------------------------------------------
    # History and metrics
    # ------------------------------------------------------------------
    def history_page(self,
                     page: int = 1,
                     page_size: Optional[int] = None,
                     filters: Optional[HistoryFilters] = None) -> HistoryPage:
        if page_size is None:
            page_size = self.config.history.default_page_size
        return self.history.query(page=page, page_size=page_size, filters=filters)

    def record_outcome(self, prediction_id: str, label: Any) -> None:
        try:
            label = ClassLabel.parse(label)
        except ValueError as exc:
            raise InvalidQueryError(str(exc), detail={"outcome": label}) from exc
        self.history.record_ground_truth(prediction_id, label)

    def metrics(self, window: Optional[MetricsWindow] = None) -> MetricsSnapshot:
        return self.history.snapshot_metrics(window)

    # ------------------------------------------------------------------
    # Training data
    # ------------------------------------------------------------------
    def _catalog(self) -> TrainingDataCatalog:
        if self.training_data is None:
            raise DataUnavailableError("No training dataset is configured")
        return self.training_data

    def training_data_page(self, page: int = 1, page_size: Optional[int] = None) -> Dict[str, Any]:
        if page_size is None:
            page_size = self.config.history.default_page_size
        return self._catalog().page(page, page_size, max_page_size=self.config.history.max_page_size)

    def training_data_stats(self) -> Dict[str, Any]:
        return self._catalog().stats()
