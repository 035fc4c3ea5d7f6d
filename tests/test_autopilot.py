"""Tests for autopilot answer selection."""

from __future__ import annotations

from agentrelay.agent.events import Question, QuestionOption
from agentrelay.turn.autopilot import answer_questions, pick_answers


def _q(
    text: str,
    labels: list[str],
    header: str | None = None,
    multi: bool = False,
) -> Question:
    return Question(
        question=text,
        header=header,
        options=tuple(QuestionOption(label=label) for label in labels),
        multi_select=multi,
    )


class TestPickAnswers:
    def test_recommended_wins(self) -> None:
        q = _q("Which?", ["Fast", "Safe (Recommended)", "Cheap"])
        assert pick_answers(q) == ["Safe (Recommended)"]

    def test_recommended_case_insensitive(self) -> None:
        q = _q("Which?", ["A", "b - RECOMMENDED"])
        assert pick_answers(q) == ["b - RECOMMENDED"]

    def test_multi_select_takes_all_recommended(self) -> None:
        q = _q("Which?", ["A (recommended)", "B", "C (Recommended)"], multi=True)
        assert pick_answers(q) == ["A (recommended)", "C (Recommended)"]

    def test_single_select_takes_first_recommended(self) -> None:
        q = _q("Which?", ["A (recommended)", "C (Recommended)"])
        assert pick_answers(q) == ["A (recommended)"]

    def test_first_option_fallback(self) -> None:
        assert pick_answers(_q("Which?", ["X", "Y"])) == ["X"]

    def test_no_options(self) -> None:
        assert pick_answers(_q("Which?", [])) == ["N/A"]


class TestAnswerQuestions:
    def test_single_question_prompt_is_bare_answer(self) -> None:
        answers = answer_questions([_q("Which?", ["X", "Y"], header="Pick")])
        assert answers.prompt == "X"
        assert answers.display == "X"
        assert answers.parts[0].header == "Pick"

    def test_multiple_questions(self) -> None:
        answers = answer_questions(
            [
                _q("Database?", ["SQLite", "Postgres (Recommended)"], header="DB"),
                _q("Which framework should we use for the web frontend layer?", ["React"]),
            ]
        )
        header2 = "Which framework should we use for the web frontend layer?"[:50]
        assert answers.prompt == f"[DB]: Postgres (Recommended)\n[{header2}]: React"
        assert answers.display == f"DB: Postgres (Recommended), {header2}: React"

    def test_multi_select_answers_joined(self) -> None:
        answers = answer_questions(
            [_q("Features?", ["A (recommended)", "B (recommended)"], multi=True)]
        )
        assert answers.prompt == "A (recommended), B (recommended)"
