"""Configuration models and parser for agentrelay.yaml."""

from agentrelay.config.models import AgentConfig, RelayConfig
from agentrelay.config.parser import ConfigError, load_config

__all__ = [
    "AgentConfig",
    "ConfigError",
    "RelayConfig",
    "load_config",
]
