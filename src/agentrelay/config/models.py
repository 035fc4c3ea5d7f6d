"""Pydantic v2 models for agentrelay.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Default inactivity window before a silent agent is killed.
DEFAULT_INACTIVITY_TIMEOUT_MINUTES = 30


class AgentConfig(BaseModel):
    """How the agent CLI is invoked."""

    model_config = ConfigDict(extra="forbid")

    binary: str = Field(
        default="claude",
        description="Agent executable name or path",
    )

    @field_validator("binary")
    @classmethod
    def _non_empty_binary(cls, value: str) -> str:
        if not value.strip():
            msg = "Agent binary must not be empty"
            raise ValueError(msg)
        return value.strip()


class RelayConfig(BaseModel):
    """Top-level agentrelay.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    agent: AgentConfig = Field(
        default_factory=AgentConfig,
        description="Agent CLI settings",
    )
    inactivity_timeout_minutes: int = Field(
        default=DEFAULT_INACTIVITY_TIMEOUT_MINUTES,
        ge=1,
        description="Minutes without agent output before the process is killed",
    )
    flush_delay_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Quiet window before buffered agent text is posted",
    )
    progress_throttle_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Minimum interval between tool-progress updates",
    )
    stderr_tail_chars: int = Field(
        default=1000,
        ge=0,
        description="Characters of agent stderr kept in failure logs",
    )
    autopilot_post_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        description="Pause between auto-answered question messages",
    )

    @property
    def inactivity_timeout_seconds(self) -> float:
        return self.inactivity_timeout_minutes * 60.0
