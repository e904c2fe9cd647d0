"""Controller registry: one bootstrapped controller per account."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from smartedu.registry import ControllerRegistry


def _controller() -> MagicMock:
    ctrl = MagicMock()
    ctrl.start = AsyncMock()
    ctrl.close = AsyncMock()
    return ctrl


class TestRegistry:
    @pytest.mark.asyncio
    async def test_creates_and_starts_once(self) -> None:
        factory = MagicMock(side_effect=lambda *_: _controller())
        registry = ControllerRegistry(factory)

        first, second = await asyncio.gather(
            registry.get_or_create("a1", "tok"),
            registry.get_or_create("a1", "tok"),
        )
        assert first is second
        factory.assert_called_once_with("a1", "tok")
        first.start.assert_awaited_once()
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_remove_closes(self) -> None:
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()))
        ctrl = await registry.get_or_create("a1", "tok")
        await registry.remove("a1")
        ctrl.close.assert_awaited_once()
        assert registry.get("a1") is None

    @pytest.mark.asyncio
    async def test_close_all(self) -> None:
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()))
        a = await registry.get_or_create("a1", "tok")
        b = await registry.get_or_create("a2", "tok")
        await registry.close()
        a.close.assert_awaited_once()
        b.close.assert_awaited_once()
        assert len(registry) == 0


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEviction:
    @pytest.mark.asyncio
    async def test_idle_controllers_are_closed(self) -> None:
        clock = FakeClock()
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()), idle_seconds=60, clock=clock)
        stale = await registry.get_or_create("a1", "tok")
        clock.now = 50
        fresh = await registry.get_or_create("a2", "tok")

        clock.now = 70
        assert await registry.evict_idle() == 1
        stale.close.assert_awaited_once()
        fresh.close.assert_not_awaited()
        assert registry.get("a1") is None
        assert registry.get("a2") is fresh

    @pytest.mark.asyncio
    async def test_use_refreshes_idle_deadline(self) -> None:
        clock = FakeClock()
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()), idle_seconds=60, clock=clock)
        await registry.get_or_create("a1", "tok")
        clock.now = 50
        await registry.get_or_create("a1", "tok")
        clock.now = 100
        assert await registry.evict_idle() == 0
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_held_controllers_are_not_evicted(self) -> None:
        clock = FakeClock()
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()), idle_seconds=60, clock=clock)
        ctrl = await registry.acquire("a1", "tok")
        clock.now = 1000
        assert await registry.evict_idle() == 0
        ctrl.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_release_closes(self) -> None:
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()))
        ctrl = await registry.acquire("a1", "tok")
        await registry.acquire("a1", "tok")

        await registry.release("a1")
        ctrl.close.assert_not_awaited()
        assert registry.get("a1") is ctrl

        await registry.release("a1")
        ctrl.close.assert_awaited_once()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sweeper_evicts_periodically(self) -> None:
        registry = ControllerRegistry(MagicMock(side_effect=lambda *_: _controller()), idle_seconds=0)
        ctrl = await registry.get_or_create("a1", "tok")

        sweeper = asyncio.create_task(registry.run_sweeper(0.01))
        await asyncio.sleep(0.05)
        sweeper.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sweeper

        ctrl.close.assert_awaited_once()
        assert len(registry) == 0
