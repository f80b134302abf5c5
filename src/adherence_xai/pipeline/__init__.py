"""Prediction, explanation and serving pipeline."""

from .explainability import (
    AttributionMethod,
    ExplainabilityEngine,
    Explanation,
    LinearAttribution,
    PermutationAttribution,
)
from .prediction_engine import (
    BatchResult,
    BatchSummary,
    PredictionEngine,
    PredictionErr,
    PredictionOk,
    confidence_band,
)
from .serving_pipeline import AdherenceService

__all__ = [
    "AdherenceService",
    "PredictionEngine",
    "PredictionOk",
    "PredictionErr",
    "BatchResult",
    "BatchSummary",
    "confidence_band",
    "ExplainabilityEngine",
    "Explanation",
    "AttributionMethod",
    "LinearAttribution",
    "PermutationAttribution",
]
