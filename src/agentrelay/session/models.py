"""Pydantic v2 model for session index records."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SessionRecord(BaseModel):
    """Links an agent-internal session id to the conversation that owns it."""

    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(description="Agent-internal session id")
    conversation_id: str = Field(description="Conversation (chat thread) key")
    directory: str = Field(description="Project directory the agent runs in")
    started_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    autopilot: bool = Field(default=False, description="Auto-answer questions")
