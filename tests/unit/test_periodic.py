"""Unit tests for PeriodicTask."""

from __future__ import annotations

import asyncio

import pytest

from krelease.runtime.periodic import PeriodicTask


async def _wait_for_cycles(task: PeriodicTask, count: int) -> None:
    for _ in range(200):
        if task.cycles >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"only {task.cycles} cycles ran")


class TestPeriodicTask:
    async def test_runs_repeatedly_until_stopped(self) -> None:
        """Cycles repeat until stop is called."""
        runs = []

        async def _body() -> None:
            runs.append(1)

        task = PeriodicTask("test", interval=0.01, body=_body)
        task.start()
        await _wait_for_cycles(task, 3)
        await task.stop(grace=1.0)

        assert len(runs) >= 3
        assert task.running is False

    async def test_failing_cycle_does_not_stop_loop(self) -> None:
        """An exception in one cycle does not end the loop."""
        calls = []

        async def _body() -> None:
            calls.append(1)
            raise RuntimeError("boom")

        task = PeriodicTask("failing", interval=0.01, body=_body)
        task.start()
        await _wait_for_cycles(task, 2)
        await task.stop(grace=1.0)
        assert len(calls) >= 2

    async def test_cycle_timeout_is_contained(self) -> None:
        """A hung body is cut off at the timeout and the next cycle still runs."""
        async def _slow() -> None:
            await asyncio.sleep(10)

        task = PeriodicTask("slow", interval=0.01, body=_slow, timeout=0.02)
        task.start()
        await _wait_for_cycles(task, 2)
        await task.stop(grace=1.0)

    async def test_stop_waits_for_in_flight_cycle(self) -> None:
        """stop lets a running cycle finish within the grace period."""
        started = asyncio.Event()
        finished = []

        async def _body() -> None:
            started.set()
            await asyncio.sleep(0.05)
            finished.append(1)

        task = PeriodicTask("graceful", interval=10, body=_body)
        task.start()
        await started.wait()
        await task.stop(grace=1.0)
        assert finished == [1]

    async def test_stop_cancels_after_grace(self) -> None:
        """stop cancels a cycle that outlives the grace period."""
        started = asyncio.Event()

        async def _body() -> None:
            started.set()
            await asyncio.sleep(10)

        task = PeriodicTask("stuck", interval=10, body=_body)
        task.start()
        await started.wait()
        await task.stop(grace=0.05)
        assert task.running is False

    async def test_delayed_first_run(self) -> None:
        """run_immediately=False waits one interval before the first cycle."""
        calls = []

        async def _body() -> None:
            calls.append(1)

        task = PeriodicTask("delayed", interval=10, body=_body, run_immediately=False)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop(grace=1.0)
        assert calls == []

    async def test_run_cycle_directly(self) -> None:
        """run_cycle contains errors and counts the cycle."""
        async def _body() -> None:
            raise ValueError("contained")

        task = PeriodicTask("direct", interval=1, body=_body)
        await task.run_cycle()
        assert task.cycles == 1

    def test_interval_must_be_positive(self) -> None:
        """A zero interval is rejected."""
        with pytest.raises(ValueError):
            PeriodicTask("bad", interval=0, body=lambda: asyncio.sleep(0))
