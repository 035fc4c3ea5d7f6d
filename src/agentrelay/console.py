"""ConsoleSink — a terminal stand-in for the chat layer."""

from __future__ import annotations

from collections.abc import Sequence

import click

from agentrelay.agent.events import Question
from agentrelay.turn.ports import AnsweredState, PostResult, TurnStatus

_STATUS_COLORS = {
    TurnStatus.RECEIVED: "blue",
    TurnStatus.WORKING: "blue",
    TurnStatus.AWAITING_ANSWER: "yellow",
    TurnStatus.PLAN_APPROVED: "cyan",
    TurnStatus.AUTOPILOT_CONTINUE: "cyan",
    TurnStatus.COMPLETED: "green",
    TurnStatus.ERROR: "red",
}


class ConsoleSink:
    """Echoes agent output, status lines and questions with ``click``.

    Agent text goes to stdout; status and progress lines go to stderr so
    the agent's answer can be piped.
    """

    def __init__(self) -> None:
        self.last_status: TurnStatus | None = None
        self.open_questions: list[Question] = []
        self._posted = 0

    async def post_text(self, conversation_id: str, text: str) -> PostResult:
        click.echo(text)
        self._posted += 1
        return PostResult(success=True, handle=self._posted)

    async def render_question(
        self,
        conversation_id: str,
        question: Question,
        answered: AnsweredState | None = None,
    ) -> None:
        header = f"[{question.header}] " if question.header else ""
        click.echo(click.style(f"? {header}{question.question}", fg="yellow", bold=True))
        for index, option in enumerate(question.options, start=1):
            line = f"  {index}. {option.label}"
            if option.description:
                line += f": {option.description}"
            click.echo(line)
        if answered is not None:
            click.echo(click.style(f"  {answered.answer}", fg="cyan"))
        else:
            self.open_questions.append(question)

    async def post_progress(self, conversation_id: str, tool_label: str) -> None:
        click.echo(click.style(f"  … {tool_label}", dim=True), err=True)

    async def update_status(
        self, conversation_id: str, status: TurnStatus, text: str
    ) -> None:
        self.last_status = status
        click.echo(click.style(f"[{status}] {text}", fg=_STATUS_COLORS[status]), err=True)

    async def queue_pending_questions(
        self, conversation_id: str, questions: Sequence[Question]
    ) -> None:
        self.open_questions.extend(questions)
        click.echo(
            click.style(f"  ({len(questions)} more question(s) follow)", dim=True),
            err=True,
        )
