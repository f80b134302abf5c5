"""Pydantic schemas for API requests and responses."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Schema(BaseModel):
    # fields such as ``model_id`` clash with pydantic's reserved prefix
    model_config = ConfigDict(protected_namespaces=())


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------
class RecordRequest(_Schema):
    features: Dict[str, Any] = Field(
        ..., description="Feature name to value mapping for one subject"
    )
    request_id: Optional[str] = Field(
        None, description="Client-provided id for tracing"
    )


class BatchPredictionRequest(_Schema):
    records: List[Dict[str, Any]] = Field(..., description="Records to score, in order")
    timeout_seconds: Optional[float] = Field(
        None, gt=0, description="Deadline after which unscored records are skipped"
    )


class ExplainRequest(_Schema):
    features: Optional[Dict[str, Any]] = Field(
        None, description="Record to explain with the active model"
    )
    prediction_id: Optional[str] = Field(
        None, description="Logged prediction to explain with its own model and input"
    )

    @model_validator(mode="after")
    def _one_source(self) -> "ExplainRequest":
        if self.features is None and self.prediction_id is None:
            raise ValueError("Provide either 'features' or 'prediction_id'")
        return self


class GroundTruthRequest(_Schema):
    outcome: Union[str, int] = Field(
        ..., description="Observed outcome: 'Good Subject'/'Bad Subject' or 1/0"
    )


class RegisterModelRequest(_Schema):
    model_id: str
    version: str = "1.0.0"
    algorithm: Optional[str] = None
    training_date: Optional[str] = None
    model_name: Optional[str] = None
    target: str = "offtrt_reason"
    description: str = ""
    metrics: Dict[str, Optional[float]] = Field(default_factory=dict)
    artifact_path: Optional[str] = Field(
        None, description="joblib-serialized predictor, relative to the artifacts directory"
    )


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------
class HealthResponse(_Schema):
    status: str = Field(..., description="ok or degraded")
    model_status: str = Field(..., description="ready or unavailable")
    timestamp: str


class PerformanceMetrics(_Schema):
    accuracy: Optional[float] = None
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1_score: Optional[float] = None
    roc_auc: Optional[float] = None


class ModelInfoResponse(_Schema):
    model_id: str
    model_name: str
    version: str
    algorithm: str
    training_date: str
    target: str
    description: str
    status: str
    performance_metrics: PerformanceMetrics


class InvalidFieldResponse(_Schema):
    field: str
    reason: str
    value: Any = None


class ValidationResponse(_Schema):
    is_valid: bool
    missing_fields: List[str]
    invalid_fields: List[InvalidFieldResponse]
    message: str


class PredictionResponse(_Schema):
    prediction_id: str
    timestamp: str
    model_id: str
    model_name: str
    prediction: str = Field(..., description="Good Subject or Bad Subject")
    class_label: str = Field(..., description="Treatment outcome wording of the prediction")
    probability: float
    confidence: str
    input_snapshot: Dict[str, Any]


class BatchPredictionItem(PredictionResponse):
    index: int


class FailedItem(_Schema):
    index: int
    error: str
    message: str
    detail: Dict[str, Any] = Field(default_factory=dict)


class BatchSummaryResponse(_Schema):
    total_records: int
    good_subjects: int
    bad_subjects: int
    failed_records: int


class BatchPredictionResponse(_Schema):
    predictions: List[BatchPredictionItem]
    failed_items: List[FailedItem]
    summary: BatchSummaryResponse


class FeatureImpact(_Schema):
    feature: str
    value: Any = None
    impact: float


class ShapValues(_Schema):
    base_value: float
    features: List[FeatureImpact]


class ExplanationResponse(_Schema):
    prediction_id: Optional[str] = None
    model_id: Optional[str] = None
    prediction: str
    class_label: str
    probability: float
    base_value: float
    method: str
    contributions: Dict[str, float]
    shap_values: ShapValues
    top_positive_features: List[FeatureImpact]
    top_negative_features: List[FeatureImpact]


class ModelVersionResponse(_Schema):
    model_id: str
    model_name: str
    version: str
    algorithm: str
    training_date: str
    metrics: PerformanceMetrics
    accuracy: Optional[float] = None
    status: str
    target: str
    description: str
    registered_at: Optional[str] = None
    deployed_at: Optional[str] = None


class ModelListResponse(_Schema):
    models: List[ModelVersionResponse]


class DeploymentResponse(_Schema):
    previous_model: Optional[str] = None
    new_model: str
    status: str
    deployment_time: str
    message: str


class HistoryResponse(_Schema):
    predictions: List[PredictionResponse]
    total_predictions: int
    page: int
    page_size: int
    total_pages: int


class ClassMetrics(_Schema):
    precision: float
    recall: float
    f1_score: float
    support: int


class ConfusionMatrix(_Schema):
    true_positive: int
    false_positive: int
    true_negative: int
    false_negative: int


class MetricsResponse(_Schema):
    status: str = Field(..., description="available, or unavailable without ground truth")
    window_size: int
    labelled_count: int
    last_evaluated: str
    accuracy: Optional[float] = None
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1_score: Optional[float] = None
    roc_auc: Optional[float] = None
    confusion_matrix: Optional[ConfusionMatrix] = None
    per_class_metrics: Optional[Dict[str, ClassMetrics]] = None
    class_counts: Dict[str, int]
    average_probability: Optional[float] = None
    rolling_average_probability: Optional[float] = None


class ErrorResponse(_Schema):
    error: str
    message: str
    detail: Optional[Dict[str, Any]] = None
