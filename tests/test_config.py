"""Tests for agentrelay config models and parser."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest
import yaml
from pydantic import ValidationError

from agentrelay.config.models import AgentConfig, RelayConfig
from agentrelay.config.parser import BINARY_ENV, TIMEOUT_ENV, ConfigError, load_config

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(BINARY_ENV, raising=False)
    monkeypatch.delenv(TIMEOUT_ENV, raising=False)


def _write_yaml(path: Path, data: dict[str, Any]) -> Path:
    """Write *data* as YAML and return the file path."""
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ===================================================================
# Model validation tests
# ===================================================================


class TestDefaults:
    def test_defaults(self) -> None:
        cfg = RelayConfig()
        assert cfg.agent.binary == "claude"
        assert cfg.inactivity_timeout_minutes == 30
        assert cfg.inactivity_timeout_seconds == 1800.0
        assert cfg.flush_delay_seconds == 2.0
        assert cfg.progress_throttle_seconds == 5.0
        assert cfg.stderr_tail_chars == 1000

    def test_binary_stripped(self) -> None:
        assert AgentConfig(binary="  claude-dev ").binary == "claude-dev"

    def test_empty_binary_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AgentConfig(binary="   ")

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            RelayConfig(inactivity_timeout_minutes=0)


class TestExtraFieldsForbidden:
    def test_top_level(self) -> None:
        with pytest.raises(ValidationError, match="extra"):
            RelayConfig.model_validate({"bogus": 1})

    def test_agent_level(self) -> None:
        with pytest.raises(ValidationError, match="extra"):
            RelayConfig.model_validate({"agent": {"binary": "claude", "model": "x"}})


# ===================================================================
# Parser tests
# ===================================================================


class TestLoadConfig:
    def test_from_file(self, tmp_path: Path) -> None:
        cfg_file = _write_yaml(
            tmp_path / "agentrelay.yaml",
            {"agent": {"binary": "/opt/claude"}, "inactivity_timeout_minutes": 5},
        )
        cfg = load_config(cfg_file)
        assert cfg.agent.binary == "/opt/claude"
        assert cfg.inactivity_timeout_minutes == 5

    def test_default_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        _write_yaml(tmp_path / "agentrelay.yaml", {"flush_delay_seconds": 1.5})
        assert load_config().flush_delay_seconds == 1.5

    def test_missing_default_uses_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_config() == RelayConfig()

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "agentrelay.yaml"
        cfg_file.write_text("", encoding="utf-8")
        assert load_config(cfg_file) == RelayConfig()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "agentrelay.yaml"
        cfg_file.write_text("agent: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(cfg_file)

    def test_non_mapping(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "agentrelay.yaml"
        cfg_file.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(cfg_file)

    def test_validation_error_is_friendly(self, tmp_path: Path) -> None:
        cfg_file = _write_yaml(tmp_path / "agentrelay.yaml", {"inactivity_timeout_minutes": 0})
        with pytest.raises(ConfigError, match="inactivity_timeout_minutes"):
            load_config(cfg_file)


class TestEnvOverrides:
    def test_binary_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv(BINARY_ENV, "claude-nightly")
        assert load_config().agent.binary == "claude-nightly"

    def test_timeout_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg_file = _write_yaml(tmp_path / "agentrelay.yaml", {"inactivity_timeout_minutes": 5})
        monkeypatch.setenv(TIMEOUT_ENV, "12")
        assert load_config(cfg_file).inactivity_timeout_minutes == 12

    @pytest.mark.parametrize("value", ["abc", "0", "-3", ""])
    def test_invalid_timeout_falls_back(
        self,
        value: str,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv(TIMEOUT_ENV, value)
        with caplog.at_level(logging.WARNING, logger="agentrelay.config.parser"):
            cfg = load_config()
        assert cfg.inactivity_timeout_minutes == 30
        assert TIMEOUT_ENV in caplog.text

    def test_dotenv_next_to_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg_file = _write_yaml(tmp_path / "agentrelay.yaml", {})
        (tmp_path / ".env").write_text(f"{BINARY_ENV}=from-dotenv\n", encoding="utf-8")
        # Registered so monkeypatch restores the variable after load_dotenv sets it.
        monkeypatch.setenv(BINARY_ENV, "placeholder")
        assert load_config(cfg_file).agent.binary == "from-dotenv"
