"""Tests for the progress tracker."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from agentrelay.turn import messages
from agentrelay.turn.ports import TurnStatus
from agentrelay.turn.progress import ProgressTracker


def _sink() -> MagicMock:
    sink = MagicMock()
    sink.update_status = AsyncMock()
    sink.post_progress = AsyncMock()
    return sink


class TestStatus:
    async def test_transitions(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1")
        await tracker.mark_received()
        await tracker.mark_working()
        await tracker.mark_completed()

        statuses = [c.args[1] for c in sink.update_status.await_args_list]
        assert statuses == [TurnStatus.RECEIVED, TurnStatus.WORKING, TurnStatus.COMPLETED]
        assert tracker.status is TurnStatus.COMPLETED
        assert sink.update_status.await_args_list[0].args[0] == "c1"

    async def test_error_text(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1")
        await tracker.mark_error("boom")
        sink.update_status.assert_awaited_once_with("c1", TurnStatus.ERROR, messages.failed("boom"))

    async def test_completed_includes_elapsed(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1")
        await tracker.mark_completed()
        text = sink.update_status.await_args.args[2]
        assert text == messages.completed("less than a second")

    async def test_sink_failure_swallowed(self) -> None:
        sink = _sink()
        sink.update_status.side_effect = RuntimeError("down")
        tracker = ProgressTracker(sink, "c1")
        await tracker.mark_working()
        assert tracker.status is TurnStatus.WORKING


class TestToolProgress:
    async def test_first_update_posts_immediately(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1", throttle_seconds=5)
        await tracker.update_tool_use("Read")
        sink.post_progress.assert_awaited_once()
        assert sink.post_progress.await_args.args[1].startswith("Reading files")

    async def test_throttled_updates_keep_latest(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1", throttle_seconds=0.1)
        await tracker.update_tool_use("Read")
        await tracker.update_tool_use("Grep")
        await tracker.update_tool_use("Bash")
        assert sink.post_progress.await_count == 1

        await asyncio.sleep(0.2)
        assert sink.post_progress.await_count == 2
        assert sink.post_progress.await_args.args[1].startswith("Running a command")

    async def test_status_change_flushes_pending(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1", throttle_seconds=10)
        await tracker.update_tool_use("Read")
        await tracker.update_tool_use("Edit")
        await tracker.mark_completed()
        assert sink.post_progress.await_count == 2
        assert sink.post_progress.await_args.args[1].startswith("Editing files")

    async def test_dispose_drops_pending(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1", throttle_seconds=0.05)
        await tracker.update_tool_use("Read")
        await tracker.update_tool_use("Edit")
        tracker.dispose()
        await asyncio.sleep(0.1)
        assert sink.post_progress.await_count == 1

    async def test_unknown_tool_label(self) -> None:
        sink = _sink()
        tracker = ProgressTracker(sink, "c1")
        await tracker.update_tool_use("SomethingNew")
        assert sink.post_progress.await_args.args[1].startswith(messages.DEFAULT_TOOL_LABEL)


class TestFormatElapsed:
    def test_format(self) -> None:
        assert messages.format_elapsed(0.4) == "less than a second"
        assert messages.format_elapsed(34.9) == "34s"
        assert messages.format_elapsed(82) == "1m 22s"
