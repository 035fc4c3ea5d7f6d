"""Turn layer: orchestration of one agent process per conversation turn."""

from agentrelay.turn.autopilot import answer_questions, pick_answers
from agentrelay.turn.buffer import OutputBuffer
from agentrelay.turn.orchestrator import (
    TurnContext,
    TurnError,
    TurnOrchestrator,
    TurnRequest,
)
from agentrelay.turn.ports import (
    AnsweredState,
    MessageSink,
    PostResult,
    SessionIndex,
    TurnStatus,
)
from agentrelay.turn.progress import ProgressTracker
from agentrelay.turn.scheduler import TurnScheduler, default_process_factory

__all__ = [
    "AnsweredState",
    "MessageSink",
    "OutputBuffer",
    "PostResult",
    "ProgressTracker",
    "SessionIndex",
    "TurnContext",
    "TurnError",
    "TurnOrchestrator",
    "TurnRequest",
    "TurnScheduler",
    "TurnStatus",
    "answer_questions",
    "default_process_factory",
    "pick_answers",
]
