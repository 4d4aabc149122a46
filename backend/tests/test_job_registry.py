"""Tests for the in-process job registry."""

from __future__ import annotations

import asyncio

import pytest

from markwise.services.job_registry import JobRegistry


class TestSpawn:
    @pytest.mark.asyncio
    async def test_tracks_running_task_until_done(self, registry: JobRegistry) -> None:
        release = asyncio.Event()

        async def runner() -> None:
            await release.wait()

        task = registry.spawn(1, runner())

        assert task is not None
        assert registry.is_running(1)
        assert registry.task_for(1) is task
        assert registry.active_job_ids() == [1]

        release.set()
        await registry.wait(1)

        assert not registry.is_running(1)
        assert registry.active_job_ids() == []

    @pytest.mark.asyncio
    async def test_entry_removed_when_runner_raises(self, registry: JobRegistry) -> None:
        async def runner() -> None:
            raise RuntimeError("runner crashed")

        task = registry.spawn(7, runner())
        await registry.wait(7)

        assert task.done()
        assert isinstance(task.exception(), RuntimeError)
        assert not registry.is_running(7)

    @pytest.mark.asyncio
    async def test_second_spawn_for_same_job_is_ignored(self, registry: JobRegistry) -> None:
        release = asyncio.Event()
        calls: list[str] = []

        async def runner(name: str) -> None:
            calls.append(name)
            await release.wait()

        first = registry.spawn(3, runner("first"))
        second = registry.spawn(3, runner("second"))

        assert first is not None
        assert second is None
        assert registry.task_for(3) is first

        release.set()
        await registry.wait(3)
        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_wait_for_unknown_job_returns(self, registry: JobRegistry) -> None:
        await registry.wait(404)
        assert not registry.is_running(404)


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_all_runners(self, registry: JobRegistry) -> None:
        async def runner() -> None:
            await asyncio.sleep(60)

        first = registry.spawn(1, runner())
        second = registry.spawn(2, runner())

        await registry.shutdown()
        await asyncio.sleep(0)

        assert first.cancelled()
        assert second.cancelled()
        assert registry.active_job_ids() == []
