"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from adherence_xai.config import ConfigManager

ROOT = Path(__file__).resolve().parents[1]


def _write_serving(config_dir: Path, payload) -> None:
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "serving_config.yaml").write_text(yaml.safe_dump(payload))


def test_shipped_configuration_is_valid() -> None:
    manager = ConfigManager(str(ROOT / "config"))
    report = manager.validate_configs()
    assert report["valid"], report["errors"]
    assert manager.get_schema_config()["features"]


def test_defaults_when_files_missing(tmp_path: Path) -> None:
    manager = ConfigManager(str(tmp_path / "nowhere"))
    config = manager.get_serving_config()
    assert config.prediction.threshold == 0.5
    assert config.history.backend == "memory"
    assert config.registry.demotion_target == "validated"
    assert "No feature schema configuration loaded" in manager.validate_configs()["warnings"]


def test_sections_are_read_and_unknown_keys_ignored(tmp_path: Path) -> None:
    _write_serving(tmp_path, {
        "prediction": {"threshold": 0.6, "unused": True},
        "history": {"max_page_size": 50},
    })
    config = ConfigManager(str(tmp_path)).get_serving_config()
    assert config.prediction.threshold == 0.6
    assert config.history.max_page_size == 50
    assert not hasattr(config.prediction, "unused")


def test_environment_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("ADHERENCE_HISTORY_DB", str(tmp_path / "h.db"))
    monkeypatch.setenv("ADHERENCE_MODEL_MANIFEST", "models/other.yaml")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = ConfigManager(str(tmp_path)).get_serving_config()

    assert config.history.backend == "sqlite"
    assert config.history.db_path == str(tmp_path / "h.db")
    assert config.registry.manifest_path == "models/other.yaml"
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "payload",
    [
        {"prediction": {"threshold": 1.0}},
        {"prediction": {"high_confidence_margin": 0.1, "medium_confidence_margin": 0.2}},
        {"history": {"backend": "redis"}},
        {"registry": {"demotion_target": "testing"}},
        {"preprocessing": {"missing_strategy": "drop"}},
    ],
)
def test_invalid_configuration_is_reported(tmp_path: Path, payload) -> None:
    _write_serving(tmp_path, payload)
    report = ConfigManager(str(tmp_path)).validate_configs()
    assert not report["valid"]
    assert report["errors"]


def test_update_and_save(tmp_path: Path) -> None:
    manager = ConfigManager(str(tmp_path))
    manager.update_config("serving", {"log_level": "WARNING"})
    manager.save_config("serving")

    reloaded = ConfigManager(str(tmp_path))
    assert reloaded.get_serving_config().log_level == "WARNING"
    with pytest.raises(ValueError):
        manager.update_config("training", {})


def test_resolve_path_is_relative_to_project_root(tmp_path: Path) -> None:
    manager = ConfigManager(str(tmp_path / "config"))
    assert manager.resolve_path("models/manifest.yaml") == tmp_path / "models" / "manifest.yaml"
    assert manager.resolve_path(None) is None
