"""Feature schema, validation, preprocessing and training data utilities."""

from .data_loader import TrainingDataCatalog
from .preprocessor import FeatureVector, RecordPreprocessor, preprocess
from .schema import FeatureKind, FeatureSchema, FeatureSpec
from .validator import InvalidField, ValidationResult, validate

__all__ = [
    "FeatureKind",
    "FeatureSpec",
    "FeatureSchema",
    "InvalidField",
    "ValidationResult",
    "validate",
    "FeatureVector",
    "RecordPreprocessor",
    "preprocess",
    "TrainingDataCatalog",
]
