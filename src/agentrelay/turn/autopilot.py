"""Autopilot answer selection for agent questions.

The policy is deliberately simple: options whose label says "recommended"
win, otherwise the first option is taken.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from agentrelay.agent.events import Question

_RECOMMENDED_RE = re.compile(r"recommended", re.IGNORECASE)

#: Answer used when a question offers no options at all.
NO_OPTION_ANSWER = "N/A"

#: Header length taken from the question text when no header is given.
_HEADER_FALLBACK_LEN = 50


@dataclass(frozen=True)
class AnsweredQuestion:
    question: Question
    header: str
    answer: str


@dataclass(frozen=True)
class AutopilotAnswers:
    """Selected answers plus the prompt and display text derived from them."""

    parts: tuple[AnsweredQuestion, ...]
    prompt: str
    display: str


def pick_answers(question: Question) -> list[str]:
    """Return the option labels autopilot selects for *question*."""
    labels = [option.label for option in question.options]
    recommended = [label for label in labels if _RECOMMENDED_RE.search(label)]
    if recommended:
        return recommended if question.multi_select else recommended[:1]
    return [labels[0]] if labels else [NO_OPTION_ANSWER]


def answer_questions(questions: Sequence[Question]) -> AutopilotAnswers:
    """Answer every question and build the resume prompt.

    One question resumes with the bare answer; several resume with one
    ``[header]: answer`` line each.
    """
    parts = tuple(
        AnsweredQuestion(
            question=q,
            header=q.header or q.question[:_HEADER_FALLBACK_LEN],
            answer=", ".join(pick_answers(q)),
        )
        for q in questions
    )
    if len(parts) == 1:
        return AutopilotAnswers(parts=parts, prompt=parts[0].answer, display=parts[0].answer)
    prompt = "\n".join(f"[{p.header}]: {p.answer}" for p in parts)
    display = ", ".join(f"{p.header}: {p.answer}" for p in parts)
    return AutopilotAnswers(parts=parts, prompt=prompt, display=display)
