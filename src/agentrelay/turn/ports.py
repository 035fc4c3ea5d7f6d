"""Contracts of the collaborators a turn talks to (chat layer, session index)."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from agentrelay.agent.events import Question
from agentrelay.session.models import SessionRecord


class TurnStatus(enum.StrEnum):
    """Externally visible status of a conversation's current turn."""

    RECEIVED = "received"
    WORKING = "working"
    AWAITING_ANSWER = "awaiting_answer"
    PLAN_APPROVED = "plan_approved"
    AUTOPILOT_CONTINUE = "autopilot_continue"
    COMPLETED = "completed"
    ERROR = "error"


class PostResult(BaseModel):
    """Outcome of posting a message to the chat layer."""

    model_config = ConfigDict(frozen=True)

    success: bool
    handle: Any = Field(default=None, description="Sink-specific message handle")


class AnsweredState(BaseModel):
    """Rendered answer of a question that no longer awaits input."""

    model_config = ConfigDict(frozen=True)

    answer: str
    submitted: bool = True


@runtime_checkable
class SessionIndex(Protocol):
    """Where agent session ids are looked up and recorded."""

    def lookup_by_session_id(self, session_id: str) -> SessionRecord | None: ...

    def lookup_by_conversation_id(self, conversation_id: str) -> SessionRecord | None: ...

    def record_new_session(self, record: SessionRecord) -> None: ...

    def touch_activity(self, session_id: str) -> None: ...


@runtime_checkable
class MessageSink(Protocol):
    """The human-facing chat layer."""

    async def post_text(self, conversation_id: str, text: str) -> PostResult: ...

    async def render_question(
        self,
        conversation_id: str,
        question: Question,
        answered: AnsweredState | None = None,
    ) -> None: ...

    async def post_progress(self, conversation_id: str, tool_label: str) -> None: ...

    async def update_status(
        self, conversation_id: str, status: TurnStatus, text: str
    ) -> None: ...

    async def queue_pending_questions(
        self, conversation_id: str, questions: Sequence[Question]
    ) -> None: ...
