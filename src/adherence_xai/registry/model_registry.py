"""Versioned catalog of trained models with exactly one deployed version.

Lifecycle per version::

    testing -> validated -> deployed -> retired
                        \\-> retired

``deploy`` swaps the active pointer under a lock: the previously deployed
version is demoted (to ``validated`` by default) and the target promoted in one
critical section, so concurrent deploys never leave two deployed versions.
Versions are never deleted; retired versions stay listed for audit.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from ..exceptions import (
    DuplicateModelError,
    InvalidQueryError,
    InvalidTransitionError,
    ModelUnavailableError,
    NoActiveModelError,
    UnknownModelError,
)
from ..models.base_model import BasePredictor

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ModelStatus(str, Enum):
    TESTING = "testing"
    VALIDATED = "validated"
    DEPLOYED = "deployed"
    RETIRED = "retired"


@dataclass(frozen=True)
class ModelMetrics:
    accuracy: Optional[float] = None
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1_score: Optional[float] = None
    roc_auc: Optional[float] = None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "roc_auc": self.roc_auc,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "ModelMetrics":
        payload = payload or {}
        return cls(**{
            key: (None if payload.get(key) is None else float(payload[key]))
            for key in ("accuracy", "precision", "recall", "f1_score", "roc_auc")
        })


@dataclass(frozen=True)
class ModelVersion:
    model_id: str
    version: str
    algorithm: str
    training_date: date
    metrics: ModelMetrics = field(default_factory=ModelMetrics)
    status: ModelStatus = ModelStatus.TESTING
    model_name: str = ""
    target: str = "offtrt_reason"
    description: str = ""
    registered_at: Optional[datetime] = None
    deployed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "model_name": self.model_name or self.model_id,
            "version": self.version,
            "algorithm": self.algorithm,
            "training_date": self.training_date.isoformat(),
            "metrics": self.metrics.to_dict(),
            "accuracy": self.metrics.accuracy,
            "status": self.status.value,
            "target": self.target,
            "description": self.description,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "deployed_at": self.deployed_at.isoformat() if self.deployed_at else None,
        }


@dataclass(frozen=True)
class DeploymentResult:
    previous_model: Optional[str]
    new_model: str
    status: str
    deployment_time: datetime
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_model": self.previous_model,
            "new_model": self.new_model,
            "status": self.status,
            "deployment_time": self.deployment_time.isoformat(),
            "message": self.message,
        }


def _parse_date(value: Union[str, date, datetime, None]) -> date:
    if value is None:
        return utc_now().date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class ModelRegistry:
    """Thread-safe model catalog owning the active-model pointer."""

    def __init__(self, demotion_target: Union[str, ModelStatus] = ModelStatus.VALIDATED,
                 clock: Clock = utc_now):
        demotion_target = ModelStatus(demotion_target)
        if demotion_target not in (ModelStatus.VALIDATED, ModelStatus.RETIRED):
            raise ValueError("demotion_target must be 'validated' or 'retired'")
        self.demotion_target = demotion_target
        self._clock = clock
        self._lock = threading.Lock()
        self._versions: Dict[str, ModelVersion] = {}
        self._predictors: Dict[str, BasePredictor] = {}
        self._active_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self._versions)

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------
    def register(self, metadata: Mapping[str, Any],
                 predictor: Optional[BasePredictor] = None) -> ModelVersion:
        """Add a trained model in ``testing`` status."""
        model_id = str(metadata["model_id"])
        try:
            training_date = _parse_date(metadata.get("training_date"))
        except ValueError as exc:
            raise InvalidQueryError(
                f"training_date for model '{model_id}' is not an ISO-8601 date",
                detail={"training_date": str(metadata.get("training_date"))},
            ) from exc
        version = ModelVersion(
            model_id=model_id,
            version=str(metadata.get("version", "1.0.0")),
            algorithm=str(metadata.get("algorithm", predictor.kind if predictor else "unknown")),
            training_date=training_date,
            metrics=ModelMetrics.from_dict(metadata.get("metrics")),
            status=ModelStatus.TESTING,
            model_name=str(metadata.get("model_name", model_id)),
            target=str(metadata.get("target", "offtrt_reason")),
            description=str(metadata.get("description", "")),
            registered_at=self._clock(),
        )
        with self._lock:
            if model_id in self._versions:
                raise DuplicateModelError(f"Model '{model_id}' is already registered",
                                          detail={"model_id": model_id})
            self._versions[model_id] = version
            if predictor is not None:
                self._predictors[model_id] = predictor
        logger.info(f"Registered model {model_id} (version {version.version}, {version.algorithm})")
        return version

    def attach_predictor(self, model_id: str, predictor: BasePredictor) -> None:
        with self._lock:
            self._require(model_id)
            self._predictors[model_id] = predictor

    def get(self, model_id: str) -> ModelVersion:
        with self._lock:
            return self._require(model_id)

    def get_predictor(self, model_id: str) -> BasePredictor:
        with self._lock:
            self._require(model_id)
            predictor = self._predictors.get(model_id)
        if predictor is None:
            raise ModelUnavailableError(f"No trained artifact loaded for model '{model_id}'",
                                        detail={"model_id": model_id})
        return predictor

    def list_models(self) -> List[ModelVersion]:
        with self._lock:
            return list(self._versions.values())

    def get_active(self) -> ModelVersion:
        with self._lock:
            if self._active_id is None:
                raise NoActiveModelError("No model is currently deployed")
            return self._versions[self._active_id]

    def get_active_with_predictor(self) -> Tuple[ModelVersion, BasePredictor]:
        """Active version and its predictor, read in one critical section."""
        with self._lock:
            if self._active_id is None:
                raise NoActiveModelError("No model is currently deployed")
            version = self._versions[self._active_id]
            predictor = self._predictors.get(self._active_id)
        if predictor is None:
            raise ModelUnavailableError(
                f"Active model '{version.model_id}' has no trained artifact loaded",
                detail={"model_id": version.model_id},
            )
        return version, predictor

    def deployed_count(self) -> int:
        with self._lock:
            return sum(1 for v in self._versions.values() if v.status is ModelStatus.DEPLOYED)

    def _require(self, model_id: str) -> ModelVersion:
        version = self._versions.get(model_id)
        if version is None:
            raise UnknownModelError(f"Unknown model '{model_id}'", detail={"model_id": model_id})
        return version

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------
    def mark_validated(self, model_id: str) -> ModelVersion:
        """testing -> validated."""
        with self._lock:
            version = self._require(model_id)
            if version.status is ModelStatus.VALIDATED:
                return version
            if version.status is not ModelStatus.TESTING:
                raise InvalidTransitionError(
                    f"Cannot validate model '{model_id}' in status '{version.status.value}'",
                    detail={"model_id": model_id, "status": version.status.value},
                )
            version = replace(version, status=ModelStatus.VALIDATED)
            self._versions[model_id] = version
        logger.info(f"Model {model_id} validated")
        return version

    def deploy(self, model_id: str) -> DeploymentResult:
        """Atomically promote ``model_id`` and demote the previous active model."""
        with self._lock:
            target = self._require(model_id)
            now = self._clock()

            if target.status is ModelStatus.DEPLOYED:
                return DeploymentResult(
                    previous_model=model_id,
                    new_model=model_id,
                    status=ModelStatus.DEPLOYED.value,
                    deployment_time=target.deployed_at or now,
                    message=f"Model {model_id} is already the active model",
                )
            if target.status is not ModelStatus.VALIDATED:
                raise InvalidTransitionError(
                    f"Cannot deploy model '{model_id}' in status '{target.status.value}'; "
                    "only validated models can be deployed",
                    detail={"model_id": model_id, "status": target.status.value},
                )

            previous_id = self._active_id
            if previous_id is not None:
                self._versions[previous_id] = replace(
                    self._versions[previous_id], status=self.demotion_target
                )
            self._versions[model_id] = replace(target, status=ModelStatus.DEPLOYED, deployed_at=now)
            self._active_id = model_id

        logger.info(f"Deployed model {model_id} (previous: {previous_id})")
        return DeploymentResult(
            previous_model=previous_id,
            new_model=model_id,
            status=ModelStatus.DEPLOYED.value,
            deployment_time=now,
            message=f"Model {model_id} successfully deployed as active model",
        )

    def retire(self, model_id: str) -> ModelVersion:
        """validated|deployed -> retired. Retiring the active model leaves none active."""
        with self._lock:
            version = self._require(model_id)
            if version.status is ModelStatus.RETIRED:
                return version
            if version.status is ModelStatus.TESTING:
                raise InvalidTransitionError(
                    f"Cannot retire model '{model_id}' before it is validated",
                    detail={"model_id": model_id, "status": version.status.value},
                )
            version = replace(version, status=ModelStatus.RETIRED)
            self._versions[model_id] = version
            if self._active_id == model_id:
                self._active_id = None
                logger.warning(f"Active model {model_id} retired; no model is deployed")
        logger.info(f"Model {model_id} retired")
        return version

    # ------------------------------------------------------------------
    # Manifest bootstrap
    # ------------------------------------------------------------------
    @classmethod
    def from_manifest(cls, path: Union[str, Path], **kwargs: Any) -> "ModelRegistry":
        """
        Rebuild a registry from a YAML manifest.

        Each entry under ``models`` carries the version metadata, an optional
        ``artifact`` path (joblib-serialized predictor, relative to the
        manifest) and the recorded ``status``.
        """
        path = Path(path)
        with open(path, "r") as handle:
            payload = yaml.safe_load(handle) or {}

        entries = payload.get("models", [])
        deployed = [e["model_id"] for e in entries if e.get("status") == ModelStatus.DEPLOYED.value]
        if len(deployed) > 1:
            raise ValueError(f"Manifest {path} marks more than one model deployed: {deployed}")

        registry = cls(**kwargs)
        for entry in entries:
            predictor = None
            artifact = entry.get("artifact")
            if artifact:
                artifact_path = Path(artifact)
                if not artifact_path.is_absolute():
                    artifact_path = path.parent / artifact_path
                predictor = BasePredictor.load_model(str(artifact_path))
            registry.register(entry, predictor=predictor)

            status = ModelStatus(entry.get("status", ModelStatus.TESTING.value))
            model_id = str(entry["model_id"])
            if status in (ModelStatus.VALIDATED, ModelStatus.DEPLOYED, ModelStatus.RETIRED):
                registry.mark_validated(model_id)
            if status is ModelStatus.DEPLOYED:
                registry.deploy(model_id)
            elif status is ModelStatus.RETIRED:
                registry.retire(model_id)

        logger.info(f"Loaded {len(registry)} model(s) from manifest {path}")
        return registry
