"""Pydantic v2 models for the typed agent stream events."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
)

logger = logging.getLogger(__name__)


class QuestionOption(BaseModel):
    """One selectable answer of an agent question."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    label: str = Field(description="Option label shown to the human")
    description: str | None = Field(default=None, description="Optional detail")


class Question(BaseModel):
    """A single entry of the agent's AskUserQuestion ``questions`` list."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    question: str = Field(description="Question text")
    header: str | None = Field(default=None, description="Short label")
    options: tuple[QuestionOption, ...] = Field(
        default=(),
        description="Selectable answers",
    )
    multi_select: bool = Field(
        default=False,
        validation_alias=AliasChoices("multiSelect", "multi_select"),
        description="Whether several options may be chosen",
    )


def parse_questions(tool_input: dict[str, Any]) -> tuple[Question, ...]:
    """Extract well-formed questions from an AskUserQuestion tool input.

    Malformed entries are dropped with a warning; a missing or non-list
    ``questions`` field yields an empty tuple.
    """
    raw = tool_input.get("questions")
    if not isinstance(raw, list):
        return ()
    questions: list[Question] = []
    for item in raw:
        try:
            questions.append(Question.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed question: %s", exc.errors()[:1])
    return tuple(questions)


class _StreamEventBase(BaseModel):
    """Immutable envelope shared by every stream event."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class InitEvent(_StreamEventBase):
    """The agent announced its session (first ``system/init`` record only)."""

    type: Literal["init"] = "init"
    session_id: str = Field(description="Agent-internal session id")
    model: str | None = Field(default=None, description="Model reported by the agent")


class TextEvent(_StreamEventBase):
    """A text block from an assistant message."""

    type: Literal["text"] = "text"
    text: str


class ToolUseEvent(_StreamEventBase):
    """A tool invocation from an assistant message."""

    type: Literal["tool_use"] = "tool_use"
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str | None = Field(
        default=None,
        description="Invocation id; absent ids are never de-duplicated",
    )


class AskUserEvent(_StreamEventBase):
    """The agent asked the human one or more questions."""

    type: Literal["ask_user"] = "ask_user"
    questions: tuple[Question, ...] = ()


class ExitPlanModeEvent(_StreamEventBase):
    """The agent wants to leave plan mode and needs approval."""

    type: Literal["exit_plan_mode"] = "exit_plan_mode"


class ResultEvent(_StreamEventBase):
    """The agent finished its work (first ``result`` record only)."""

    type: Literal["result"] = "result"
    result_text: str | None = None
    cost_usd: float | None = None


class ErrorEvent(_StreamEventBase):
    """The process could not be spawned or its pipes failed."""

    type: Literal["error"] = "error"
    kind: Literal["not_found", "spawn", "runtime"] = Field(
        description="not_found: binary missing; spawn: other spawn failure; "
        "runtime: pipe failure after spawn",
    )
    message: str = Field(description="Error description")

    @property
    def not_found(self) -> bool:
        return self.kind == "not_found"


class ExitEvent(_StreamEventBase):
    """The process is gone. ``code`` is None for killed processes."""

    type: Literal["exit"] = "exit"
    code: int | None = None


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


StreamEvent = Annotated[
    Annotated[InitEvent, Tag("init")]
    | Annotated[TextEvent, Tag("text")]
    | Annotated[ToolUseEvent, Tag("tool_use")]
    | Annotated[AskUserEvent, Tag("ask_user")]
    | Annotated[ExitPlanModeEvent, Tag("exit_plan_mode")]
    | Annotated[ResultEvent, Tag("result")]
    | Annotated[ErrorEvent, Tag("error")]
    | Annotated[ExitEvent, Tag("exit")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of every event the driver emits."""
