"""Tests for the in-memory session index."""

from __future__ import annotations

from datetime import timedelta

from agentrelay.session.index import InMemorySessionIndex
from agentrelay.session.models import SessionRecord, utc_now
from agentrelay.turn.ports import SessionIndex


def _record(session_id: str = "s1", conversation_id: str = "c1") -> SessionRecord:
    return SessionRecord(session_id=session_id, conversation_id=conversation_id, directory="/w")


class TestInMemorySessionIndex:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemorySessionIndex(), SessionIndex)

    def test_record_and_lookup(self) -> None:
        index = InMemorySessionIndex()
        index.record_new_session(_record())
        assert index.lookup_by_session_id("s1") is not None
        assert index.lookup_by_conversation_id("c1").session_id == "s1"  # type: ignore[union-attr]
        assert index.lookup_by_session_id("missing") is None
        assert index.lookup_by_conversation_id("missing") is None

    def test_new_session_replaces_conversation_mapping(self) -> None:
        index = InMemorySessionIndex()
        index.record_new_session(_record("s1"))
        index.record_new_session(_record("s2"))
        assert index.lookup_by_conversation_id("c1").session_id == "s2"  # type: ignore[union-attr]
        assert index.lookup_by_session_id("s1") is None
        assert len(index) == 1

    def test_touch_activity(self) -> None:
        index = InMemorySessionIndex()
        record = _record()
        record.last_activity_at = utc_now() - timedelta(hours=1)
        index.record_new_session(record)
        before = index.lookup_by_session_id("s1").last_activity_at  # type: ignore[union-attr]
        index.touch_activity("s1")
        after = index.lookup_by_session_id("s1").last_activity_at  # type: ignore[union-attr]
        assert after > before

    def test_touch_unknown_session_is_noop(self) -> None:
        index = InMemorySessionIndex()
        index.touch_activity("ghost")
        assert len(index) == 0
