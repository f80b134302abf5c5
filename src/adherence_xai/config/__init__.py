"""Configuration loading for the adherence service."""

from .config_manager import (
    ConfigManager,
    ExplainabilityConfig,
    HistoryConfig,
    PredictionConfig,
    PreprocessingConfig,
    RegistryConfig,
    ServingConfig,
    TrainingDataConfig,
    configure_logging,
)

__all__ = [
    "ConfigManager",
    "ServingConfig",
    "PredictionConfig",
    "PreprocessingConfig",
    "ExplainabilityConfig",
    "HistoryConfig",
    "RegistryConfig",
    "TrainingDataConfig",
    "configure_logging",
]
