"""
Tests for configuration loading, validation and updates.
"""

import json

import pytest

from semantic_routing.models import SystemConfig
from semantic_routing.utils import ConfigManager, ConfigurationError


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "semantic_routing.json"


def write_config(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def test_missing_file_creates_defaults(config_path):
    config = ConfigManager(str(config_path)).load_config()

    assert config == SystemConfig()
    assert config_path.exists()
    saved = json.loads(config_path.read_text(encoding="utf-8"))
    assert saved["routing_thresholds"]["semantic_confidence"] == 0.7
    assert saved["timeouts"]["query_timeout_ms"] == 30000


def test_values_are_read_from_file(config_path):
    write_config(config_path, {
        "routing_thresholds": {"semantic_confidence": 0.8},
        "retry": {"max_retries": 4, "backoff_ms": 250},
        "llm_backend": "local",
    })

    config = ConfigManager(str(config_path)).load_config()

    assert config.routing_thresholds.semantic_confidence == 0.8
    assert config.routing_thresholds.low_confidence == 0.3
    assert config.retry.max_retries == 4
    assert config.llm_backend == "local"


def test_api_key_comes_from_environment_and_is_never_saved(config_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    manager = ConfigManager(str(config_path))

    config = manager.load_config()
    manager.save_config()

    assert config.openai_config.api_key == "sk-from-env"
    saved = json.loads(config_path.read_text(encoding="utf-8"))
    assert saved["openai_config"]["api_key"] == ""


@pytest.mark.parametrize("data, key", [
    ({"routing_thresholds": {"semantic_confidence": 1.5}}, "semantic_confidence"),
    ({"routing_thresholds": {"low_confidence": 0.9}}, "low_confidence"),
    ({"timeouts": {"chart_wait_ms": 0}}, "chart_wait_ms"),
    ({"retry": {"max_retries": -1}}, "retry"),
    ({"upload_limits": {"allowed_extensions": []}}, "allowed_extensions"),
    ({"llm_backend": "carrier-pigeon"}, "llm_backend"),
])
def test_invalid_values_are_rejected(config_path, data, key):
    write_config(config_path, data)

    with pytest.raises(ConfigurationError) as exc_info:
        ConfigManager(str(config_path)).load_config()

    assert exc_info.value.config_key == key
    assert exc_info.value.error_code == "CONFIG_ERROR"


def test_malformed_file_is_a_configuration_error(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Failed to load configuration"):
        ConfigManager(str(config_path)).load_config()


def test_unknown_setting_is_a_configuration_error(config_path):
    write_config(config_path, {"timeouts": {"coffee_break_ms": 5}})

    with pytest.raises(ConfigurationError):
        ConfigManager(str(config_path)).load_config()


def test_update_merges_nested_sections(config_path):
    manager = ConfigManager(str(config_path))
    manager.load_config()

    updated = manager.update_config({"retry": {"max_retries": 5}})

    assert updated.retry.max_retries == 5
    assert updated.retry.backoff_ms == 1000
    assert manager.get_config() is updated
    saved = json.loads(config_path.read_text(encoding="utf-8"))
    assert saved["retry"] == {"max_retries": 5, "backoff_ms": 1000}


def test_invalid_update_keeps_previous_config(config_path):
    manager = ConfigManager(str(config_path))
    original = manager.load_config()

    with pytest.raises(ConfigurationError):
        manager.update_config({"routing_thresholds": {"semantic_confidence": 2}})

    assert manager.get_config() is original


def test_save_without_config_raises(config_path):
    with pytest.raises(ConfigurationError, match="No configuration to save"):
        ConfigManager(str(config_path)).save_config()
