"""TurnScheduler — starts turns and chains their automatic continuations."""

from __future__ import annotations

import asyncio
import logging
from collections import deque

from agentrelay.agent.process import AgentProcess
from agentrelay.agent.registry import ActiveRunnerRegistry
from agentrelay.config.models import RelayConfig
from agentrelay.turn import messages
from agentrelay.turn.orchestrator import (
    ProcessFactory,
    TurnError,
    TurnOrchestrator,
    TurnProcess,
    TurnRequest,
)
from agentrelay.turn.ports import MessageSink, SessionIndex, TurnStatus

logger = logging.getLogger(__name__)


def default_process_factory(config: RelayConfig) -> ProcessFactory:
    """Build real agent processes using the configured binary."""

    def _factory(request: TurnRequest) -> TurnProcess:
        return AgentProcess(
            request.directory,
            request.prompt,
            session_id=request.session_id,
            attachments=request.attachments,
            binary=config.agent.binary,
        )

    return _factory


class TurnScheduler:
    """Runs one chain of turns per submitted request.

    A turn that ends with an automatic continuation (autopilot answer or
    plan approval) hands back a follow-up request; the chain runs it next.
    Chains are loops over a work queue, so long autopilot sessions never
    grow the call stack.
    """

    DRAIN_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        registry: ActiveRunnerRegistry,
        sink: MessageSink,
        sessions: SessionIndex,
        config: RelayConfig,
        process_factory: ProcessFactory | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._sessions = sessions
        self._config = config
        self._process_factory = process_factory or default_process_factory(config)
        self._pending_tasks: set[asyncio.Task[None]] = set()
        self._closing = False

    @property
    def pending_tasks(self) -> set[asyncio.Task[None]]:
        """Currently running turn chains."""
        return self._pending_tasks

    @property
    def registry(self) -> ActiveRunnerRegistry:
        return self._registry

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def submit(self, request: TurnRequest) -> asyncio.Task[None]:
        """Start a turn for *request*; any live turn of the conversation is superseded."""
        if self._closing:
            msg = "Scheduler is shutting down; no new turns are accepted"
            raise TurnError(msg)
        task = asyncio.create_task(
            self._run_chain(request), name=f"turn:{request.conversation_id}"
        )
        self._pending_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def answer(
        self,
        conversation_id: str,
        directory: str,
        session_id: str,
        answer: str,
        *,
        autopilot: bool = False,
    ) -> asyncio.Task[None]:
        """Resume *session_id* with a human's answer to a rendered question."""
        return self.submit(
            TurnRequest(
                conversation_id=conversation_id,
                directory=directory,
                prompt=answer,
                session_id=session_id,
                autopilot=autopilot,
            )
        )

    def stop(self, conversation_id: str) -> bool:
        """Kill the live process of a conversation, if any."""
        killed = self._registry.kill_active(conversation_id)
        if killed:
            logger.info("Stopped agent for %s", conversation_id)
        return killed

    async def wait_idle(self) -> None:
        """Wait until every running chain has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    async def shutdown(self) -> int:
        """Kill every live process and wait for the chains to drain.

        Returns the number of processes killed.  Chains still running after
        :attr:`DRAIN_TIMEOUT` are cancelled.
        """
        self._closing = True
        killed = self._registry.kill_all()
        logger.info("Shutdown: killed %d agent process(es)", killed)

        pending = list(self._pending_tasks)
        if not pending:
            return killed
        try:
            await asyncio.wait_for(
                asyncio.gather(*pending, return_exceptions=True),
                timeout=self.DRAIN_TIMEOUT,
            )
        except TimeoutError:
            remaining = [t for t in pending if not t.done()]
            logger.warning("Drain timeout: %d turn(s) still running", len(remaining))
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)
        return killed

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    async def _run_chain(self, request: TurnRequest) -> None:
        queue: deque[TurnRequest] = deque([request])
        first = True
        while queue:
            current = queue.popleft()
            if self._closing and not first:
                logger.info("Not resuming %s during shutdown", current.conversation_id)
                return
            try:
                follow_up = await self._create(current).run()
            except Exception:
                if first:
                    raise
                logger.exception("Failed to resume session for %s", current.conversation_id)
                await self._notify_resume_failed(current.conversation_id)
                return
            first = False
            if follow_up is not None:
                logger.info(
                    "Resuming session %s for %s", follow_up.session_id, follow_up.conversation_id
                )
                queue.append(follow_up)

    def _create(self, request: TurnRequest) -> TurnOrchestrator:
        return TurnOrchestrator(
            request,
            registry=self._registry,
            sink=self._sink,
            sessions=self._sessions,
            config=self._config,
            process_factory=self._process_factory,
        )

    async def _notify_resume_failed(self, conversation_id: str) -> None:
        try:
            await self._sink.post_text(conversation_id, messages.AUTOPILOT_RESUME_FAILED)
            await self._sink.update_status(
                conversation_id,
                TurnStatus.ERROR,
                messages.failed(messages.AUTOPILOT_RESUME_FAILED),
            )
        except Exception:
            logger.exception("Failed to report resume failure (%s)", conversation_id)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        """Log chain errors and drop the task from the pending set."""
        self._pending_tasks.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error("Turn error (%s): %s", task.get_name(), exc)
