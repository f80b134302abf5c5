"""Error taxonomy for the adherence prediction service.

Every error carries a stable machine-readable ``kind`` plus a human-readable
message so callers (and the API layer) can report failures uniformly.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AdherenceServiceError(Exception):
    """Base class for all service errors."""

    kind = "internal_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationFailure(AdherenceServiceError):
    """A record failed schema validation; user-correctable."""

    kind = "validation_failure"

    def __init__(self, result: Any):
        self.result = result
        super().__init__(result.message, detail=result.to_dict())


class InvalidQueryError(AdherenceServiceError):
    """Bad request arguments: pagination, filters or model metadata."""

    kind = "invalid_query"


class RegistryError(AdherenceServiceError):
    kind = "registry_error"


class ModelUnavailableError(RegistryError):
    """No deployed model is available to serve predictions."""

    kind = "model_unavailable"


class NoActiveModelError(RegistryError):
    kind = "no_active_model"


class UnknownModelError(RegistryError):
    kind = "unknown_model"


class DuplicateModelError(RegistryError):
    kind = "duplicate_model"


class InvalidTransitionError(RegistryError):
    kind = "invalid_transition"


class PreprocessingError(AdherenceServiceError):
    """A validated value could not be coerced; validator/preprocessor mismatch."""

    kind = "preprocessing_error"


class PredictionError(AdherenceServiceError):
    kind = "prediction_error"


class ExplanationUnsupportedError(AdherenceServiceError):
    kind = "explanation_unsupported"


class ExplanationError(AdherenceServiceError):
    kind = "explanation_error"


class UnknownPredictionError(AdherenceServiceError):
    kind = "unknown_prediction"


class DataUnavailableError(AdherenceServiceError):
    """No training dataset is configured for browsing."""

    kind = "data_unavailable"
