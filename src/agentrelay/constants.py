"""Shared constants and type aliases for the agentrelay runtime."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

#: Tool name the agent uses to ask the human a question.
ASK_USER_TOOL = "AskUserQuestion"

#: Tool name the agent uses to leave plan mode (requires approval).
EXIT_PLAN_MODE_TOOL = "ExitPlanMode"

#: Callback type for text senders (e.g. the output buffer's sink).
SendCallback = Callable[[str], Awaitable[None]]
