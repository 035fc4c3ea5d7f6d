"""Load, validate, and resolve agentrelay.yaml configuration."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from agentrelay.config.models import DEFAULT_INACTIVITY_TIMEOUT_MINUTES, RelayConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "agentrelay.yaml"

#: Environment variable overriding ``agent.binary``.
BINARY_ENV = "AGENTRELAY_AGENT_BINARY"

#: Environment variable overriding ``inactivity_timeout_minutes``.
TIMEOUT_ENV = "INACTIVITY_TIMEOUT_MINUTES"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> RelayConfig:
    """Load and validate an agentrelay.yaml file.

    Args:
        path: Explicit config file path. If None, looks for
              agentrelay.yaml in the current directory and falls back
              to defaults when there is none.

    Returns:
        A validated RelayConfig instance.

    Raises:
        ConfigError: On missing explicit file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        raw: dict[str, Any] = {}
        _load_env(Path.cwd())
    else:
        raw = _read_yaml(config_path)
        _load_env(config_path.parent)
    _apply_env_overrides(raw)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    if not default.is_file():
        return None
    return default


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path, override=True)


def _apply_env_overrides(raw: dict[str, Any]) -> None:
    binary = os.environ.get(BINARY_ENV)
    if binary:
        agent = raw.get("agent")
        if not isinstance(agent, dict):
            agent = {}
            raw["agent"] = agent
        agent["binary"] = binary

    timeout_raw = os.environ.get(TIMEOUT_ENV)
    if timeout_raw is None:
        return
    try:
        minutes = int(timeout_raw)
    except ValueError:
        minutes = 0
    if minutes < 1:
        logger.warning(
            "Invalid %s=%r, using default %d minutes",
            TIMEOUT_ENV,
            timeout_raw,
            DEFAULT_INACTIVITY_TIMEOUT_MINUTES,
        )
        minutes = DEFAULT_INACTIVITY_TIMEOUT_MINUTES
    raw["inactivity_timeout_minutes"] = minutes


def _validate(raw: dict[str, Any]) -> RelayConfig:
    try:
        return RelayConfig.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"])
            msg = err["msg"]
            if "field required" in msg.lower():
                msg = "This field is required"
            elif "input should be" in msg.lower():
                msg = f"Invalid value: {msg}"
            parts.append(f"  {loc}: {msg}")
        joined = "\n".join(parts)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc
