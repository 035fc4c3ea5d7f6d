"""Progress tracker — the one visible status line of a turn."""

from __future__ import annotations

import asyncio
import logging
import time

from agentrelay.turn import messages
from agentrelay.turn.ports import MessageSink, TurnStatus

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Reports received → working → (completed | error | awaiting answer).

    Tool progress is throttled: within *throttle_seconds* of the last
    update only the newest label is kept, and it is delivered when the
    window closes or right before the next status change.

    Sink failures are logged and swallowed; tracking never fails a turn.
    """

    def __init__(
        self,
        sink: MessageSink,
        conversation_id: str,
        throttle_seconds: float = 5.0,
    ) -> None:
        self._sink = sink
        self._conversation_id = conversation_id
        self._throttle_seconds = throttle_seconds
        self._start = time.monotonic()
        self._status: TurnStatus | None = None

        self._last_progress_at: float | None = None
        self._pending_label: str | None = None
        self._pending_timer: asyncio.TimerHandle | None = None
        self._disposed = False

    @property
    def status(self) -> TurnStatus | None:
        return self._status

    def elapsed_text(self) -> str:
        return messages.format_elapsed(time.monotonic() - self._start)

    # ------------------------------------------------------------------ #
    # Status transitions
    # ------------------------------------------------------------------ #

    async def mark_received(self) -> None:
        await self._set_status(TurnStatus.RECEIVED, messages.STATUS_RECEIVED)

    async def mark_working(self) -> None:
        await self._set_status(TurnStatus.WORKING, messages.STATUS_WORKING)

    async def mark_completed(self) -> None:
        await self._set_status(
            TurnStatus.COMPLETED, messages.completed(self.elapsed_text())
        )

    async def mark_error(self, error_message: str) -> None:
        await self._set_status(TurnStatus.ERROR, messages.failed(error_message))

    async def mark_plan_approved(self) -> None:
        await self._set_status(TurnStatus.PLAN_APPROVED, messages.STATUS_PLAN_APPROVED)

    async def mark_autopilot_continue(self) -> None:
        await self._set_status(
            TurnStatus.AUTOPILOT_CONTINUE,
            messages.autopilot_continue(self.elapsed_text()),
        )

    async def mark_awaiting_answer(self) -> None:
        await self._set_status(TurnStatus.AWAITING_ANSWER, messages.STATUS_AWAITING_ANSWER)

    # ------------------------------------------------------------------ #
    # Tool progress
    # ------------------------------------------------------------------ #

    async def update_tool_use(self, tool_name: str) -> None:
        text = messages.tool_progress(messages.tool_label(tool_name), self.elapsed_text())
        now = time.monotonic()
        if (
            self._last_progress_at is None
            or now - self._last_progress_at >= self._throttle_seconds
        ):
            self._last_progress_at = now
            self._clear_pending()
            await self._post_progress(text)
            return

        self._pending_label = text
        if self._pending_timer is None:
            delay = self._throttle_seconds - (now - self._last_progress_at)
            loop = asyncio.get_running_loop()
            self._pending_timer = loop.call_later(delay, self._on_pending_timer)

    def dispose(self) -> None:
        """Drop any pending progress update; later timers become no-ops."""
        self._clear_pending()
        self._disposed = True

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    async def _set_status(self, status: TurnStatus, text: str) -> None:
        await self._flush_pending()
        self._status = status
        try:
            await self._sink.update_status(self._conversation_id, status, text)
        except Exception:
            logger.exception(
                "Failed to update status to %s (%s)", status, self._conversation_id
            )

    async def _post_progress(self, text: str) -> None:
        try:
            await self._sink.post_progress(self._conversation_id, text)
        except Exception:
            logger.exception("Failed to post progress (%s)", self._conversation_id)

    def _on_pending_timer(self) -> None:
        self._pending_timer = None
        if self._disposed:
            return
        task = asyncio.create_task(self._flush_pending())
        task.add_done_callback(_log_task_error)

    async def _flush_pending(self) -> None:
        if self._pending_timer is not None:
            self._pending_timer.cancel()
            self._pending_timer = None
        if self._pending_label is None:
            return
        text, self._pending_label = self._pending_label, None
        self._last_progress_at = time.monotonic()
        await self._post_progress(text)

    def _clear_pending(self) -> None:
        if self._pending_timer is not None:
            self._pending_timer.cancel()
            self._pending_timer = None
        self._pending_label = None


def _log_task_error(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Pending progress flush failed: %s", task.exception())
