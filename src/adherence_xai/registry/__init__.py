"""Model registry: versioned catalog with a single active model."""

from .model_registry import (
    DeploymentResult,
    ModelMetrics,
    ModelRegistry,
    ModelStatus,
    ModelVersion,
)

__all__ = [
    "ModelRegistry",
    "ModelVersion",
    "ModelMetrics",
    "ModelStatus",
    "DeploymentResult",
]
