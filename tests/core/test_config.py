"""Tests for configuration loading."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from pilot_automation.core.config import EngineConfig, EngineSettings, LoggingConfig


def test_defaults() -> None:
    config = EngineConfig()
    assert config.engine.max_steps == 200
    assert config.engine.default_node_timeout == 10.0
    assert config.store.db_path is None
    assert config.server.enabled is False
    assert config.scheduler.timezone == "UTC"
    assert config.http.user_agent == "Pilot-Automation/1.0"


def test_yaml_with_env_expansion(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("AUTOMATION_DB", str(tmp_path / "runs.db"))
    path = tmp_path / "config.yaml"
    path.write_text(
        """
engine:
  max_steps: 50
  node_timeouts:
    action-http: 15
store:
  db_path: ${AUTOMATION_DB}
server:
  api_key: secret
automations:
  - id: hello
    name: Hello
    nodes: []
""",
        encoding="utf-8",
    )

    config = EngineConfig.load(path)

    assert config.engine.max_steps == 50
    assert config.engine.node_timeouts == {"action-http": 15.0}
    assert config.store.db_path == str(tmp_path / "runs.db")
    assert config.server.api_key == "secret"
    assert config.automations[0]["id"] == "hello"


def test_json_config(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scheduler": {"enabled": False}}), encoding="utf-8")
    assert EngineConfig.load(path).scheduler.enabled is False


def test_empty_yaml_uses_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert EngineConfig.load(path).engine.max_steps == 200


def test_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        EngineConfig.load(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("engine: [unclosed", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid YAML"):
        EngineConfig.load(path)


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("PILOT_AUTOMATION_ENGINE__MAX_STEPS", "25")
    monkeypatch.setenv("PILOT_AUTOMATION_SERVER__PORT", "9090")
    config = EngineConfig.load()
    assert config.engine.max_steps == 25
    assert config.server.port == 9090


class TestTimeouts:
    def test_type_defaults(self) -> None:
        settings = EngineSettings()
        assert settings.timeout_for("action-http") == 30.0
        assert settings.timeout_for("action-email") == 10.0

    def test_node_override_is_capped(self) -> None:
        settings = EngineSettings(max_node_timeout=20)
        assert settings.timeout_for("action-email", 5) == 5.0
        assert settings.timeout_for("action-email", "500") == 20.0

    @pytest.mark.parametrize("override", [0, -3, "soon", None])
    def test_unusable_override_falls_back(self, override) -> None:
        assert EngineSettings().timeout_for("logic-noop", override) == 10.0

    def test_non_positive_type_timeout(self) -> None:
        with pytest.raises(ValidationError):
            EngineSettings(node_timeouts={"action-http": 0})


def test_logging_level() -> None:
    assert LoggingConfig(level="debug").level == "DEBUG"
    with pytest.raises(ValidationError):
        LoggingConfig(level="chatty")
