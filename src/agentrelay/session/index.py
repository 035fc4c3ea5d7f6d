"""In-memory session index used by the CLI and tests."""

from __future__ import annotations

import logging
import threading

from agentrelay.session.models import SessionRecord, utc_now

logger = logging.getLogger(__name__)


class InMemorySessionIndex:
    """Session index keyed by session id, with a conversation-id lookup.

    Thread-safe: all access is serialized through a ``threading.Lock``.
    Nothing is persisted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionRecord] = {}
        self._by_conversation: dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def lookup_by_session_id(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._sessions.get(session_id)

    def lookup_by_conversation_id(self, conversation_id: str) -> SessionRecord | None:
        with self._lock:
            session_id = self._by_conversation.get(conversation_id)
            if session_id is None:
                return None
            return self._sessions.get(session_id)

    def record_new_session(self, record: SessionRecord) -> None:
        with self._lock:
            previous = self._by_conversation.get(record.conversation_id)
            if previous is not None and previous != record.session_id:
                self._sessions.pop(previous, None)
            self._sessions[record.session_id] = record
            self._by_conversation[record.conversation_id] = record.session_id
        logger.info(
            "Session %s recorded for conversation %s",
            record.session_id,
            record.conversation_id,
        )

    def touch_activity(self, session_id: str) -> None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                logger.debug("touch_activity for unknown session %s", session_id)
                return
            record.last_activity_at = utc_now()
