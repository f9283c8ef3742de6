"""Tests for the in-memory process registry."""

import asyncio

import pytest

from src.errors import AgentAlreadyRunningError
from src.services.process_registry import ProcessRegistry, SupervisorHandle


class TestRegister:
    """Tests for handle registration."""

    @pytest.mark.asyncio
    async def test_register_and_lookup(self):
        registry = ProcessRegistry()
        handle = SupervisorHandle("s1", "c1")

        assert await registry.register(handle) is None
        assert registry.get("s1") is handle
        assert registry.is_running("s1") is True
        assert registry.list_sessions() == ["s1"]

    @pytest.mark.asyncio
    async def test_second_live_handle_is_rejected(self):
        registry = ProcessRegistry()
        await registry.register(SupervisorHandle("s1", "c1"))

        with pytest.raises(AgentAlreadyRunningError):
            await registry.register(SupervisorHandle("s1", "c1"))

    @pytest.mark.asyncio
    async def test_concurrent_registers_admit_exactly_one(self):
        registry = ProcessRegistry()
        handles = [SupervisorHandle("s1", "c1") for _ in range(5)]

        results = await asyncio.gather(
            *(registry.register(h) for h in handles), return_exceptions=True
        )

        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, AgentAlreadyRunningError)) == 4

    @pytest.mark.asyncio
    async def test_live_handle_replaces_reachable_one(self):
        registry = ProcessRegistry()
        reachable = await registry.mark_reachable("s1", "c1")
        live = SupervisorHandle("s1", "c1")

        assert await registry.register(live) is reachable
        assert registry.get("s1") is live


class TestReachable:
    """Tests for handles adopted during reconciliation."""

    @pytest.mark.asyncio
    async def test_reachable_is_not_running(self):
        registry = ProcessRegistry()
        await registry.mark_reachable("s1", "c1")

        assert registry.is_reachable("s1") is True
        assert registry.is_running("s1") is False
        assert registry.live_handles() == []

    @pytest.mark.asyncio
    async def test_mark_reachable_is_idempotent(self):
        registry = ProcessRegistry()
        first = await registry.mark_reachable("s1", "c1")
        second = await registry.mark_reachable("s1", "c1")
        assert first is second
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_mark_reachable_keeps_live_handle(self):
        registry = ProcessRegistry()
        live = SupervisorHandle("s1", "c1")
        await registry.register(live)

        assert await registry.mark_reachable("s1", "c1") is live
        assert registry.is_running("s1") is True


class TestRemove:
    """Tests for handle removal."""

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self):
        registry = ProcessRegistry()
        await registry.register(SupervisorHandle("s1", "c1"))

        assert await registry.remove("s1") is True
        assert await registry.remove("s1") is False
        assert registry.get("s1") is None

    @pytest.mark.asyncio
    async def test_stale_handle_does_not_evict_successor(self):
        registry = ProcessRegistry()
        old = SupervisorHandle("s1", "c1")
        await registry.register(old)
        await registry.remove("s1", old)
        new = SupervisorHandle("s1", "c1")
        await registry.register(new)

        assert await registry.remove("s1", old) is False
        assert registry.get("s1") is new


@pytest.mark.asyncio
async def test_only_reachable_handles_start_out_launched():
    registry = ProcessRegistry()
    live = SupervisorHandle("s1", "c1")
    reachable = await registry.mark_reachable("s2", "c2")

    assert live.launched.is_set() is False
    assert reachable.launched.is_set() is True
