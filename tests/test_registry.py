"""Tests for the active-runner registry."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from agentrelay.agent.registry import ActiveRunnerRegistry


def _handle() -> MagicMock:
    return MagicMock(spec=["kill"])


class TestRegistration:
    async def test_register_and_lookup(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        handle = _handle()
        registry.register("c1", handle)
        assert registry.is_active("c1")
        assert registry.get("c1").handle is handle  # type: ignore[union-attr]
        assert len(registry) == 1
        registry.kill_all()

    async def test_reregister_kills_previous(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        old, new = _handle(), _handle()
        registry.register("c1", old)
        registry.register("c1", new)
        old.kill.assert_called_once()
        new.kill.assert_not_called()
        assert registry.get("c1").handle is new  # type: ignore[union-attr]
        registry.kill_all()

    async def test_unregister_is_identity_guarded(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        old, new = _handle(), _handle()
        registry.register("c1", old)
        registry.register("c1", new)
        registry.unregister("c1", old)
        assert registry.is_active("c1")
        registry.unregister("c1", new)
        assert not registry.is_active("c1")

    async def test_unregister_unknown_is_noop(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        registry.unregister("missing", _handle())
        assert len(registry) == 0


class TestKill:
    async def test_kill_active(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        handle = _handle()
        registry.register("c1", handle)
        assert registry.kill_active("c1") is True
        handle.kill.assert_called_once()
        assert not registry.is_active("c1")
        assert registry.kill_active("c1") is False

    async def test_kill_all(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=60)
        handles = [_handle() for _ in range(3)]
        for i, handle in enumerate(handles):
            registry.register(f"c{i}", handle)
        assert registry.kill_all() == 3
        for handle in handles:
            handle.kill.assert_called_once()
        assert len(registry) == 0
        assert registry.kill_all() == 0


class TestInactivityTimeout:
    async def test_timeout_invokes_callback_then_kills(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=0.05)
        order: list[str] = []
        handle = MagicMock(spec=["kill"])
        handle.kill.side_effect = lambda: order.append("kill")
        registry.register("c1", handle, on_timeout=lambda: order.append("callback"))

        await asyncio.sleep(0.15)

        assert order == ["callback", "kill"]
        assert not registry.is_active("c1")

    async def test_refresh_postpones_timeout(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=0.1)
        handle = _handle()
        registry.register("c1", handle)
        for _ in range(4):
            await asyncio.sleep(0.05)
            registry.refresh_activity("c1", handle)
        handle.kill.assert_not_called()
        assert registry.is_active("c1")
        registry.kill_all()

    async def test_refresh_by_stale_handle_ignored(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=0.1)
        old, new = _handle(), _handle()
        registry.register("c1", old)
        registry.register("c1", new)
        for _ in range(3):
            await asyncio.sleep(0.05)
            registry.refresh_activity("c1", old)
        await asyncio.sleep(0.1)
        new.kill.assert_called_once()
        assert not registry.is_active("c1")

    async def test_callback_error_still_kills(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=0.05)
        handle = _handle()

        def _boom() -> None:
            raise RuntimeError("callback failed")

        registry.register("c1", handle, on_timeout=_boom)
        await asyncio.sleep(0.15)
        handle.kill.assert_called_once()
        assert not registry.is_active("c1")

    async def test_unregister_cancels_timer(self) -> None:
        registry = ActiveRunnerRegistry(timeout_seconds=0.05)
        handle = _handle()
        callback = MagicMock()
        registry.register("c1", handle, on_timeout=callback)
        registry.unregister("c1", handle)
        await asyncio.sleep(0.1)
        callback.assert_not_called()
        handle.kill.assert_not_called()
