"""Turn orchestrator — drives one agent process through one turn.

A turn starts one agent process for a conversation, consumes its event
stream and ends in exactly one of: *completed*, *error*, or *superseded*
(the process was killed on purpose to wait for a human answer or to resume
with an automatic one).

Most events are handled inline, in arrival order.  AskUser and
ExitPlanMode handlers run as separate tasks ("handler takeover") because
they suspend on chat-layer calls while the process may still die; the exit
handler must be able to run during those suspensions and is then the only
place that reports the failure.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from agentrelay.agent.content import Attachment
from agentrelay.agent.events import (
    AskUserEvent,
    ErrorEvent,
    ExitEvent,
    ExitPlanModeEvent,
    InitEvent,
    Question,
    ResultEvent,
    StreamEvent,
    TextEvent,
    ToolUseEvent,
)
from agentrelay.agent.helpers import stderr_tail
from agentrelay.agent.registry import ActiveRunnerRegistry
from agentrelay.config.models import RelayConfig
from agentrelay.constants import ASK_USER_TOOL, EXIT_PLAN_MODE_TOOL
from agentrelay.session.models import SessionRecord
from agentrelay.turn import messages
from agentrelay.turn.autopilot import answer_questions
from agentrelay.turn.buffer import OutputBuffer
from agentrelay.turn.ports import AnsweredState, MessageSink, SessionIndex
from agentrelay.turn.progress import ProgressTracker

logger = logging.getLogger(__name__)


class TurnError(Exception):
    """Raised for invalid turn requests or scheduler misuse."""


@dataclass(frozen=True)
class TurnRequest:
    """Everything needed to start (or resume) one turn."""

    conversation_id: str
    directory: str
    prompt: str
    session_id: str | None = None
    autopilot: bool = False
    attachments: tuple[Attachment, ...] = ()

    def __post_init__(self) -> None:
        if not self.conversation_id:
            msg = "TurnRequest requires a conversation_id"
            raise TurnError(msg)
        if not self.directory:
            msg = "TurnRequest requires a directory"
            raise TurnError(msg)


class TurnProcess(Protocol):
    """The driver surface a turn needs (satisfied by ``AgentProcess``)."""

    @property
    def current_session_id(self) -> str | None: ...

    @property
    def stderr_output(self) -> str: ...

    async def start(self) -> None: ...

    def kill(self) -> None: ...

    def events(self) -> AsyncIterator[StreamEvent]: ...


ProcessFactory = Callable[[TurnRequest], TurnProcess]


@dataclass
class TurnContext:
    """Per-turn flags that keep terminal reporting single and race-free."""

    result_received: bool = False
    result_task: asyncio.Task[None] | None = field(default=None, repr=False)
    completion_handled: bool = False
    error_handled: bool = False
    handler_takeover: bool = False
    process_exited_early: bool = False


class TurnOrchestrator:
    """Binds one conversation to one freshly started agent process."""

    def __init__(
        self,
        request: TurnRequest,
        *,
        registry: ActiveRunnerRegistry,
        sink: MessageSink,
        sessions: SessionIndex,
        config: RelayConfig,
        process_factory: ProcessFactory,
    ) -> None:
        self._request = request
        self._conversation_id = request.conversation_id
        self._registry = registry
        self._sink = sink
        self._sessions = sessions
        self._config = config
        self._process = process_factory(request)
        self._tracker = ProgressTracker(
            sink, request.conversation_id, config.progress_throttle_seconds
        )
        self._buffer = OutputBuffer(self._post_text, config.flush_delay_seconds)
        self._ctx = TurnContext()
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self._follow_up: TurnRequest | None = None

    @property
    def process(self) -> TurnProcess:
        return self._process

    @property
    def context(self) -> TurnContext:
        return self._ctx

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    async def run(self) -> TurnRequest | None:
        """Run the turn to its end.

        Returns the request that continues the conversation (autopilot
        answer or plan approval), or None when nothing should follow.
        """
        logger.info(
            "Starting turn for %s (session=%s, autopilot=%s)",
            self._conversation_id,
            self._request.session_id or "new",
            self._request.autopilot,
        )
        self._registry.register(
            self._conversation_id, self._process, on_timeout=self._on_inactivity_timeout
        )
        try:
            await self._tracker.mark_received()
            await self._process.start()
            async for event in self._process.events():
                if not isinstance(event, ExitEvent):
                    self._registry.refresh_activity(self._conversation_id, self._process)
                await self._dispatch(event)
            while self._handler_tasks:
                await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)
        except asyncio.CancelledError:
            self._registry.unregister(self._conversation_id, self._process)
            self._process.kill()
            handlers = list(self._handler_tasks)
            for task in handlers:
                task.cancel()
            await asyncio.gather(*handlers, return_exceptions=True)
            raise
        finally:
            self._tracker.dispose()
        return self._follow_up

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def _dispatch(self, event: StreamEvent) -> None:
        match event:
            case AskUserEvent():
                self._ctx.handler_takeover = True
                self._spawn(self._handle_ask_user(event), "ask_user")
                return
            case ExitPlanModeEvent():
                self._ctx.handler_takeover = True
                self._spawn(self._handle_exit_plan_mode(), "exit_plan_mode")
                return

        try:
            match event:
                case InitEvent():
                    await self._handle_init(event)
                case TextEvent():
                    self._handle_text(event)
                case ToolUseEvent():
                    await self._handle_tool_use(event)
                case ResultEvent():
                    await self._handle_result(event)
                case ErrorEvent():
                    await self._handle_error(event)
                case ExitEvent():
                    await self._handle_exit(event)
        except Exception:
            logger.exception(
                "Error in %s handler (%s)", event.type, self._conversation_id
            )

    def _spawn(self, coro: Awaitable[None], context: str) -> None:
        task = asyncio.create_task(self._guarded(coro, context))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _guarded(self, coro: Awaitable[None], context: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Error in %s handler (%s)", context, self._conversation_id)

    # ------------------------------------------------------------------ #
    # Event handlers
    # ------------------------------------------------------------------ #

    async def _handle_init(self, event: InitEvent) -> None:
        if self._request.session_id is None:
            record = SessionRecord(
                session_id=event.session_id,
                conversation_id=self._conversation_id,
                directory=self._request.directory,
                autopilot=self._request.autopilot,
            )
            try:
                self._sessions.record_new_session(record)
            except Exception:
                logger.exception("Failed to record session %s", event.session_id)
            logger.info(
                "Session %s started for %s (model=%s)",
                event.session_id,
                self._conversation_id,
                event.model,
            )
        else:
            try:
                self._sessions.touch_activity(event.session_id)
            except Exception:
                logger.exception("Failed to touch session %s", event.session_id)
            logger.info("Session %s resumed for %s", event.session_id, self._conversation_id)

        await self._tracker.mark_working()

    def _handle_text(self, event: TextEvent) -> None:
        if not event.text.strip():
            return
        self._buffer.append(event.text)

    async def _handle_tool_use(self, event: ToolUseEvent) -> None:
        if event.tool_name in (ASK_USER_TOOL, EXIT_PLAN_MODE_TOOL):
            return
        await self._tracker.update_tool_use(event.tool_name)

    async def _handle_result(self, event: ResultEvent) -> None:
        self._ctx.result_received = True
        self._ctx.result_task = asyncio.create_task(self._complete_from_result(event))
        await self._ctx.result_task

        # A result means the work is done; the kill produces a silent exit.
        logger.info("Killing agent process after result (%s)", self._conversation_id)
        self._process.kill()

    async def _complete_from_result(self, event: ResultEvent) -> None:
        await self._buffer.flush()
        logger.info(
            "Turn completed for %s (cost_usd=%s)", self._conversation_id, event.cost_usd
        )
        await self._report_completion()

    async def _handle_error(self, event: ErrorEvent) -> None:
        await self._buffer.flush()
        self._registry.unregister(self._conversation_id, self._process)
        if event.not_found:
            user_message = messages.AGENT_NOT_FOUND
        else:
            user_message = messages.error_occurred(event.message)
        logger.error(
            "Agent error for %s (%s): %s", self._conversation_id, event.kind, event.message
        )
        await self._report_failure(user_message)

    async def _handle_exit(self, event: ExitEvent) -> None:
        ctx = self._ctx
        code = event.code
        if code is not None and ctx.handler_takeover and not ctx.error_handled:
            # Tell the takeover handler before suspending so it never resumes.
            ctx.process_exited_early = True

        if ctx.result_task is not None:
            await asyncio.wait({ctx.result_task})
        await self._buffer.flush()
        self._registry.unregister(self._conversation_id, self._process)

        if code is None:
            logger.debug("Agent process for %s was killed", self._conversation_id)
            return
        if ctx.error_handled:
            return

        if ctx.handler_takeover:
            ctx.process_exited_early = True
            self._log_exit_failure(code, "while a question handler was running")
            await self._report_failure(messages.exit_error(code))
            return

        if code == 0 and ctx.result_received:
            return
        if code == 0:
            logger.warning(
                "Agent for %s exited normally without a result", self._conversation_id
            )
            await self._report_completion()
            return

        self._log_exit_failure(code, "")
        await self._report_failure(messages.exit_error(code))

    # ------------------------------------------------------------------ #
    # Handler takeover: questions and plan approval
    # ------------------------------------------------------------------ #

    async def _handle_ask_user(self, event: AskUserEvent) -> None:
        self._ctx.handler_takeover = True
        await self._buffer.flush()
        if self._takeover_aborted("question"):
            return

        questions = event.questions
        logger.info(
            "Agent asked %d question(s) in %s (autopilot=%s)",
            len(questions),
            self._conversation_id,
            self._request.autopilot,
        )

        if not questions:
            logger.warning("Question without content in %s, ending turn", self._conversation_id)
            await self._report_failure(messages.EMPTY_QUESTIONS)
            self._registry.unregister(self._conversation_id, self._process)
            self._process.kill()
            return

        if self._request.autopilot:
            await self._answer_automatically(questions)
        else:
            await self._ask_human(questions)

    async def _ask_human(self, questions: Sequence[Question]) -> None:
        if len(questions) > 1:
            try:
                await self._sink.queue_pending_questions(
                    self._conversation_id, list(questions[1:])
                )
            except Exception:
                logger.exception("Failed to queue pending questions (%s)", self._conversation_id)

        try:
            await self._sink.render_question(self._conversation_id, questions[0])
            await self._tracker.mark_awaiting_answer()
        except Exception:
            logger.exception("Failed to send question (%s)", self._conversation_id)
        finally:
            # The agent cannot read an answer from stdin; the answer starts
            # a new turn that resumes the session.
            logger.info("Killing agent process after question (%s)", self._conversation_id)
            self._registry.unregister(self._conversation_id, self._process)
            self._process.kill()

    async def _answer_automatically(self, questions: Sequence[Question]) -> None:
        answers = answer_questions(questions)
        logger.info("Autopilot selected %r in %s", answers.display, self._conversation_id)

        delay = self._config.autopilot_post_delay_seconds
        for index, part in enumerate(answers.parts):
            answered = AnsweredState(answer=messages.autopilot_answer(part.answer))
            try:
                await self._sink.render_question(self._conversation_id, part.question, answered)
            except Exception:
                logger.exception("Failed to post autopilot answer (%s)", self._conversation_id)
            if index < len(answers.parts) - 1 and delay > 0:
                await asyncio.sleep(delay)

        await self._tracker.mark_autopilot_continue()
        await self._resume_after_takeover(answers.prompt, "autopilot answer")

    async def _handle_exit_plan_mode(self) -> None:
        self._ctx.handler_takeover = True
        await self._buffer.flush()
        if self._takeover_aborted("plan approval"):
            return

        logger.info(
            "Agent requested plan approval in %s, approving (autopilot=%s)",
            self._conversation_id,
            self._request.autopilot,
        )
        await self._tracker.mark_plan_approved()
        await self._resume_after_takeover(messages.PLAN_APPROVED_PROMPT, "plan approval")

    async def _resume_after_takeover(self, prompt: str, stage: str) -> None:
        if self._takeover_aborted(stage):
            return

        session_id = self._process.current_session_id
        self._registry.unregister(self._conversation_id, self._process)
        self._process.kill()

        if self._ctx.process_exited_early:
            logger.warning("Agent exited during %s, not resuming", stage)
            return

        if not session_id:
            logger.error("No session id to resume after %s (%s)", stage, self._conversation_id)
            await self._report_failure(messages.AUTOPILOT_NO_SESSION)
            return

        self._follow_up = dataclasses.replace(
            self._request, prompt=prompt, session_id=session_id, attachments=()
        )

    def _takeover_aborted(self, stage: str) -> bool:
        if self._ctx.process_exited_early:
            logger.warning(
                "Agent exited during %s handling in %s, aborting", stage, self._conversation_id
            )
            return True
        entry = self._registry.get(self._conversation_id)
        if entry is None or entry.handle is not self._process:
            logger.warning(
                "Runner for %s was stopped or replaced during %s handling, aborting",
                self._conversation_id,
                stage,
            )
            return True
        return False

    # ------------------------------------------------------------------ #
    # Inactivity timeout
    # ------------------------------------------------------------------ #

    def _on_inactivity_timeout(self) -> None:
        """Registry callback; the registry kills the process right after."""
        if self._ctx.completion_handled or self._ctx.error_handled:
            return
        self._ctx.error_handled = True
        logger.warning("Agent for %s killed by inactivity timeout", self._conversation_id)
        text = messages.inactivity_timeout(self._config.inactivity_timeout_minutes)
        self._spawn(self._announce_failure(text), "inactivity_timeout")

    # ------------------------------------------------------------------ #
    # Terminal reporting
    # ------------------------------------------------------------------ #

    async def _report_completion(self) -> None:
        if self._ctx.completion_handled or self._ctx.error_handled:
            return
        self._ctx.completion_handled = True
        await self._tracker.mark_completed()

    async def _report_failure(self, user_message: str) -> None:
        if self._ctx.completion_handled or self._ctx.error_handled:
            logger.info("Terminal state already reported for %s", self._conversation_id)
            return
        self._ctx.error_handled = True
        await self._announce_failure(user_message)

    async def _announce_failure(self, user_message: str) -> None:
        await self._post_text(user_message)
        await self._tracker.mark_error(user_message)

    def _log_exit_failure(self, code: int, situation: str) -> None:
        stderr = self._process.stderr_output
        suffix = f" {situation}" if situation else ""
        if stderr:
            logger.error(
                "Agent for %s exited with code %s%s; stderr: %s",
                self._conversation_id,
                code,
                suffix,
                stderr_tail(stderr, self._config.stderr_tail_chars),
            )
        else:
            logger.warning(
                "Agent for %s exited with code %s%s", self._conversation_id, code, suffix
            )

    async def _post_text(self, text: str) -> None:
        try:
            result = await self._sink.post_text(self._conversation_id, text)
        except Exception:
            logger.exception("Failed to post message (%s)", self._conversation_id)
            return
        if not result.success:
            logger.warning("Message sink rejected a message (%s)", self._conversation_id)
