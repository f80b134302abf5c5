"""
Treatment adherence prediction with explanations.

Validates subject records against the trained model's feature schema, scores
them with the deployed model, logs every prediction and explains individual
predictions as additive per-feature contributions.
"""

__version__ = "0.1.0"

from .exceptions import AdherenceServiceError
from .data import FeatureSchema, FeatureSpec, RecordPreprocessor, validate
from .models import BasePredictor, EnsembleModel, LinearModel, TreeModel
from .registry import ModelRegistry, ModelStatus
from .history import InMemoryHistoryStore, Prediction, SQLiteHistoryStore
from .pipeline import AdherenceService, ExplainabilityEngine, PredictionEngine

__all__ = [
    "AdherenceServiceError",
    "FeatureSchema",
    "FeatureSpec",
    "RecordPreprocessor",
    "validate",
    "BasePredictor",
    "LinearModel",
    "TreeModel",
    "EnsembleModel",
    "ModelRegistry",
    "ModelStatus",
    "Prediction",
    "InMemoryHistoryStore",
    "SQLiteHistoryStore",
    "AdherenceService",
    "PredictionEngine",
    "ExplainabilityEngine",
]
