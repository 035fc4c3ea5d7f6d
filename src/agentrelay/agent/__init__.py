"""Agent process runtime: stream decoding, process driver, runner registry."""

from agentrelay.agent.content import Attachment, build_stream_json_message
from agentrelay.agent.decoder import JsonLineDecoder
from agentrelay.agent.events import (
    AskUserEvent,
    ErrorEvent,
    ExitEvent,
    ExitPlanModeEvent,
    InitEvent,
    Question,
    QuestionOption,
    ResultEvent,
    StreamEvent,
    TextEvent,
    ToolUseEvent,
)
from agentrelay.agent.process import AgentProcess
from agentrelay.agent.registry import ActiveRunnerRegistry, RunnerHandle

__all__ = [
    "ActiveRunnerRegistry",
    "AgentProcess",
    "AskUserEvent",
    "Attachment",
    "ErrorEvent",
    "ExitEvent",
    "ExitPlanModeEvent",
    "InitEvent",
    "JsonLineDecoder",
    "Question",
    "QuestionOption",
    "ResultEvent",
    "RunnerHandle",
    "StreamEvent",
    "TextEvent",
    "ToolUseEvent",
    "build_stream_json_message",
]
