"""Active-runner registry — at most one live agent process per conversation.

Each entry owns an inactivity timer.  When no event refreshes it for the
configured duration the registry logs the condition, invokes the entry's
timeout callback, kills the process and drops the entry.

``refresh_activity`` and ``unregister`` only act when the caller passes the
*same* handle object that is currently registered, so a superseded process
can never refresh or clear the entry of its replacement.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class RunnerHandle(Protocol):
    """Anything the registry can terminate."""

    def kill(self) -> None:
        """Terminate the underlying process; must never raise."""
        ...


@dataclass
class RunnerEntry:
    """Registry record for one conversation."""

    handle: RunnerHandle
    registered_at: float
    last_activity_at: float
    on_timeout: Callable[[], None] | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class ActiveRunnerRegistry:
    """Maps conversation ids to their single live runner handle."""

    def __init__(self, timeout_seconds: float) -> None:
        self._timeout_seconds = timeout_seconds
        self._entries: dict[str, RunnerEntry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, conversation_id: str) -> RunnerEntry | None:
        return self._entries.get(conversation_id)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def register(
        self,
        conversation_id: str,
        handle: RunnerHandle,
        on_timeout: Callable[[], None] | None = None,
    ) -> None:
        """Install *handle*, killing any runner already registered for the id."""
        existing = self._entries.pop(conversation_id, None)
        if existing is not None:
            _cancel(existing)
            existing.handle.kill()
            logger.info("Previous runner killed on re-register (%s)", conversation_id)

        now = time.monotonic()
        entry = RunnerEntry(
            handle=handle,
            registered_at=now,
            last_activity_at=now,
            on_timeout=on_timeout,
        )
        self._start_timer(conversation_id, entry)
        self._entries[conversation_id] = entry
        logger.debug("Runner registered (%s)", conversation_id)

    def refresh_activity(self, conversation_id: str, handle: RunnerHandle) -> None:
        """Reset the inactivity window if *handle* is the registered one."""
        entry = self._entries.get(conversation_id)
        if entry is None or entry.handle is not handle:
            return
        entry.last_activity_at = time.monotonic()
        _cancel(entry)
        self._start_timer(conversation_id, entry)

    def unregister(self, conversation_id: str, handle: RunnerHandle) -> None:
        """Drop the entry if *handle* is the registered one."""
        entry = self._entries.get(conversation_id)
        if entry is None or entry.handle is not handle:
            return
        _cancel(entry)
        del self._entries[conversation_id]
        logger.debug("Runner unregistered (%s)", conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    def kill_active(self, conversation_id: str) -> bool:
        """Force-stop the conversation's runner (stop / interrupt requests)."""
        entry = self._entries.pop(conversation_id, None)
        if entry is None:
            return False
        _cancel(entry)
        entry.handle.kill()
        logger.info("Runner killed by external request (%s)", conversation_id)
        return True

    def kill_all(self) -> int:
        """Kill every registered runner and return how many there were."""
        entries = list(self._entries.items())
        self._entries.clear()
        for conversation_id, entry in entries:
            _cancel(entry)
            entry.handle.kill()
            logger.info("Runner killed during shutdown (%s)", conversation_id)
        return len(entries)

    # ------------------------------------------------------------------ #
    # Timer
    # ------------------------------------------------------------------ #

    def _start_timer(self, conversation_id: str, entry: RunnerEntry) -> None:
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(
            self._timeout_seconds, self._on_timer, conversation_id, entry
        )

    def _on_timer(self, conversation_id: str, entry: RunnerEntry) -> None:
        if self._entries.get(conversation_id) is not entry:
            return
        now = time.monotonic()
        logger.warning(
            "Runner inactivity timeout (%s): inactive %.1fs, total %.1fs",
            conversation_id,
            now - entry.last_activity_at,
            now - entry.registered_at,
        )
        if entry.on_timeout is not None:
            try:
                entry.on_timeout()
            except Exception:
                logger.exception("on_timeout callback error (%s)", conversation_id)

        entry.timer = None
        entry.handle.kill()
        if self._entries.get(conversation_id) is entry:
            del self._entries[conversation_id]


def _cancel(entry: RunnerEntry) -> None:
    if entry.timer is not None:
        entry.timer.cancel()
        entry.timer = None
