"""
Configuration management for the adherence prediction service.
"""

import logging
import math
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

CONFIG_FILES = {
    "serving": "serving_config.yaml",
    "schema": "feature_schema.yaml",
}


@dataclass
class PredictionConfig:
    """Decision threshold and confidence band policy."""
    threshold: float = 0.5
    high_confidence_margin: float = 0.3
    medium_confidence_margin: float = 0.15
    max_workers: int = 4
    batch_timeout_seconds: Optional[float] = None


@dataclass
class PreprocessingConfig:
    """How missing optional fields reach the model."""
    missing_strategy: str = "impute"  # "impute" or "sentinel"
    sentinel_value: float = math.nan


@dataclass
class ExplainabilityConfig:
    """Configuration for attribution methods."""
    top_k: int = 5
    tolerance: float = 1e-6
    max_evals: int = 500
    background_samples: int = 100
    random_state: int = 42


@dataclass
class HistoryConfig:
    """Prediction history storage and pagination bounds."""
    backend: str = "memory"  # "memory" or "sqlite"
    db_path: str = "data/predictions.db"
    default_page_size: int = 10
    max_page_size: int = 200
    rolling_window: int = 50


@dataclass
class RegistryConfig:
    """Model registry bootstrap and deployment policy."""
    manifest_path: Optional[str] = None
    artifacts_dir: str = "models"
    demotion_target: str = "validated"


@dataclass
class TrainingDataConfig:
    """Location and layout of the training dataset exposed for browsing."""
    path: Optional[str] = None
    target_column: str = "offtrt_reason"
    positive_value: Any = 1
    id_column: str = "MASK_ID"


@dataclass
class ServingConfig:
    """Aggregated service configuration."""
    log_level: str = "INFO"
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    explainability: ExplainabilityConfig = field(default_factory=ExplainabilityConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    training_data: TrainingDataConfig = field(default_factory=TrainingDataConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_section(section_cls, values: Optional[Dict[str, Any]]):
    values = values or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**{k: v for k, v in values.items() if k in known})


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging; ``LOG_LEVEL`` overrides the configured level."""
    level_name = (os.getenv("LOG_LEVEL") or level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )


class ConfigManager:
    """
    Centralized configuration management for the adherence service.
    """

    def __init__(self, config_dir: str = "config"):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self) -> None:
        """Load all configuration files from the config directory."""
        for config_name, filename in CONFIG_FILES.items():
            config_path = self.config_dir / filename
            if config_path.exists():
                self.configs[config_name] = self._load_yaml(config_path) or {}
                logger.info(f"Loaded {config_name} configuration")
            else:
                logger.warning(f"Configuration file not found: {config_path}")

    def _load_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Load YAML configuration file."""
        try:
            with open(file_path, "r") as file:
                return yaml.safe_load(file)
        except Exception as e:
            logger.error(f"Error loading YAML file {file_path}: {e}")
            raise

    def resolve_path(self, raw: Optional[str]) -> Optional[Path]:
        """Resolve a configured path relative to the config directory's parent."""
        if not raw:
            return None
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = self.config_dir.parent / path
        return path

    def get_serving_config(self) -> ServingConfig:
        """Get the typed serving configuration with environment overrides applied."""
        raw = dict(self.configs.get("serving", {}))
        config = ServingConfig(
            log_level=str(raw.get("log_level", "INFO")),
            prediction=_build_section(PredictionConfig, raw.get("prediction")),
            preprocessing=_build_section(PreprocessingConfig, raw.get("preprocessing")),
            explainability=_build_section(ExplainabilityConfig, raw.get("explainability")),
            history=_build_section(HistoryConfig, raw.get("history")),
            registry=_build_section(RegistryConfig, raw.get("registry")),
            training_data=_build_section(TrainingDataConfig, raw.get("training_data")),
        )

        if os.getenv("LOG_LEVEL"):
            config.log_level = os.environ["LOG_LEVEL"].upper()
        if os.getenv("ADHERENCE_HISTORY_DB"):
            config.history.backend = "sqlite"
            config.history.db_path = os.environ["ADHERENCE_HISTORY_DB"]
        if os.getenv("ADHERENCE_MODEL_MANIFEST"):
            config.registry.manifest_path = os.environ["ADHERENCE_MODEL_MANIFEST"]
        return config

    def get_schema_config(self) -> Dict[str, Any]:
        """Get the raw feature schema declaration."""
        return dict(self.configs.get("schema", {}))

    def update_config(self,
                      config_type: str,
                      updates: Dict[str, Any]) -> None:
        """Update configuration with new values."""
        if config_type not in CONFIG_FILES:
            raise ValueError(f"Unknown config type: {config_type}")
        self.configs.setdefault(config_type, {}).update(updates)
        logger.info(f"Updated {config_type} configuration")

    def save_config(self, config_type: str) -> None:
        """Save configuration to file."""
        if config_type not in CONFIG_FILES:
            raise ValueError(f"Unknown config type: {config_type}")

        self.config_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.config_dir / CONFIG_FILES[config_type]
        with open(file_path, "w") as file:
            yaml.safe_dump(self.configs.get(config_type, {}), file, default_flow_style=False)
        logger.info(f"Saved {config_type} configuration to {file_path}")

    def validate_configs(self) -> Dict[str, Any]:
        """
        Validate the loaded configuration.

        Returns:
            Validation report
        """
        report: Dict[str, Any] = {"valid": True, "errors": [], "warnings": []}
        config = self.get_serving_config()

        prediction = config.prediction
        if not 0.0 < prediction.threshold < 1.0:
            report["errors"].append("prediction.threshold must lie strictly between 0 and 1")
        if not 0.0 <= prediction.medium_confidence_margin <= prediction.high_confidence_margin:
            report["errors"].append(
                "confidence margins must satisfy 0 <= medium_confidence_margin <= high_confidence_margin"
            )
        if prediction.max_workers < 1:
            report["errors"].append("prediction.max_workers must be at least 1")

        if config.preprocessing.missing_strategy not in ("impute", "sentinel"):
            report["errors"].append(
                f"Unknown preprocessing.missing_strategy: {config.preprocessing.missing_strategy}"
            )

        history = config.history
        if history.backend not in ("memory", "sqlite"):
            report["errors"].append(f"Unknown history.backend: {history.backend}")
        if history.max_page_size < 1 or history.default_page_size < 1:
            report["errors"].append("history page sizes must be positive")
        elif history.default_page_size > history.max_page_size:
            report["warnings"].append("history.default_page_size exceeds max_page_size and will be clamped")

        if config.registry.demotion_target not in ("validated", "retired"):
            report["errors"].append(
                f"registry.demotion_target must be 'validated' or 'retired', got {config.registry.demotion_target}"
            )
        if config.explainability.top_k < 1:
            report["errors"].append("explainability.top_k must be at least 1")

        if "schema" not in self.configs:
            report["warnings"].append("No feature schema configuration loaded")

        report["valid"] = len(report["errors"]) == 0
        return report
