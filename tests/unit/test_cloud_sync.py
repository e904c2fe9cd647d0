"""Debounced cloud sync: coalescing, merging and failure carry-over."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from smartedu.profile.cloud_sync import DebouncedCloudSync


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_produces_single_write(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=0.05)
        for i in range(5):
            sync.schedule({"xp": i})
            await asyncio.sleep(0.01)
        writer.assert_not_awaited()

        await asyncio.sleep(0.1)
        writer.assert_awaited_once_with({"xp": 4})

    @pytest.mark.asyncio
    async def test_fields_from_distinct_calls_are_merged(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=0.05)
        sync.schedule({"interests": ["AI"]})
        sync.schedule({"xp": 10, "level": 1})
        sync.schedule({"xp": 20})
        assert sync.pending == {"interests": ["AI"], "xp": 20, "level": 1}

        await asyncio.sleep(0.1)
        writer.assert_awaited_once_with({"interests": ["AI"], "xp": 20, "level": 1})
        assert sync.pending == {}
        assert not sync.is_scheduled

    @pytest.mark.asyncio
    async def test_quiet_windows_produce_separate_writes(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=0.02)
        sync.schedule({"bio": "a"})
        await asyncio.sleep(0.06)
        sync.schedule({"bio": "b"})
        await asyncio.sleep(0.06)
        assert [c.args[0] for c in writer.await_args_list] == [{"bio": "a"}, {"bio": "b"}]


class TestFailure:
    @pytest.mark.asyncio
    async def test_failed_fields_ride_with_next_write(self) -> None:
        calls: list[dict[str, Any]] = []

        async def writer(payload: dict[str, Any]) -> None:
            calls.append(payload)
            if len(calls) == 1:
                msg = "offline"
                raise OSError(msg)

        sync = DebouncedCloudSync(writer, delay_seconds=0.02)
        sync.schedule({"badges": [], "xp": 5})
        await asyncio.sleep(0.06)
        assert sync.pending == {"badges": [], "xp": 5}

        sync.schedule({"xp": 9})
        await asyncio.sleep(0.06)
        assert calls[-1] == {"badges": [], "xp": 9}
        assert sync.pending == {}

    @pytest.mark.asyncio
    async def test_slow_failed_write_never_overrides_newer_values(self) -> None:
        remote: dict[str, Any] = {}
        calls = 0

        async def writer(payload: dict[str, Any]) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(0.2)
                msg = "offline"
                raise OSError(msg)
            remote.update(payload)

        sync = DebouncedCloudSync(writer, delay_seconds=0.02)
        sync.schedule({"xp": 100})
        await asyncio.sleep(0.05)
        sync.schedule({"xp": 200})
        await asyncio.sleep(0.3)
        sync.schedule({"level": 2})
        await asyncio.sleep(0.1)

        assert remote == {"xp": 200, "level": 2}
        assert sync.pending == {}

    @pytest.mark.asyncio
    async def test_writes_never_overlap(self) -> None:
        active = 0
        peak = 0

        async def writer(_payload: dict[str, Any]) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.05)
            active -= 1

        sync = DebouncedCloudSync(writer, delay_seconds=0.01)
        sync.schedule({"xp": 1})
        await asyncio.sleep(0.02)
        sync.schedule({"xp": 2})
        await asyncio.sleep(0.02)
        await sync.flush()
        assert peak == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_retry_on_its_own(self) -> None:
        writer = AsyncMock(side_effect=OSError("offline"))
        sync = DebouncedCloudSync(writer, delay_seconds=0.02)
        sync.schedule({"xp": 1})
        await asyncio.sleep(0.1)
        assert writer.await_count == 1


class TestFlushAndCancel:
    @pytest.mark.asyncio
    async def test_flush_writes_immediately(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=10)
        sync.schedule({"tagline": "Builder"})
        await sync.flush()
        writer.assert_awaited_once_with({"tagline": "Builder"})
        assert not sync.is_scheduled

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=10)
        await sync.flush()
        writer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_drops_buffer(self) -> None:
        writer = AsyncMock()
        sync = DebouncedCloudSync(writer, delay_seconds=0.02)
        sync.schedule({"xp": 1})
        sync.cancel()
        await asyncio.sleep(0.05)
        writer.assert_not_awaited()
        assert sync.pending == {}
