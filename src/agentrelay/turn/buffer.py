"""Output buffer — coalesces rapid agent text fragments into one message."""

from __future__ import annotations

import asyncio
import logging

from agentrelay.constants import SendCallback

logger = logging.getLogger(__name__)


class OutputBuffer:
    """Collects text and sends it as a single message after a quiet window.

    Every :meth:`append` restarts the one pending timer.  :meth:`flush`
    cancels the timer, waits for any send already in flight (started by the
    timer or by another flush), then sends whatever is still queued.
    Flushing an empty buffer is a no-op.
    """

    def __init__(self, send: SendCallback, flush_delay: float = 2.0) -> None:
        self._send = send
        self._flush_delay = flush_delay
        self._parts: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        # Held for the whole of each send so flushes complete in order.
        self._send_lock = asyncio.Lock()

    @property
    def pending(self) -> int:
        """Number of queued fragments."""
        return len(self._parts)

    def append(self, text: str) -> None:
        self._parts.append(text)
        self._reset_timer()

    async def flush(self) -> None:
        self._cancel_timer()
        await self._send_pending()

    async def _send_pending(self) -> None:
        async with self._send_lock:
            if not self._parts:
                return
            combined = "\n".join(self._parts)
            self._parts = []
            await self._send(combined)

    def _reset_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._flush_delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.create_task(self._send_pending())
        task.add_done_callback(_log_flush_error)


def _log_flush_error(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Output buffer flush error: %s", exc)
