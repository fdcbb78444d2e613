"""Fixed-interval background task runner.

Each cycle runs under its own timeout.  A failing or timed-out cycle is
logged and the next one is scheduled as usual; a cycle never takes the
process down.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

_log = structlog.get_logger(component="runtime.periodic")


class PeriodicTask:
    """Run *body* every *interval* seconds until stopped.

    Args:
        name:            Task name used in logs and as the asyncio task name.
        interval:        Seconds to wait between the end of one cycle and the
                         start of the next.
        body:            Zero-argument coroutine function run once per cycle.
        timeout:         Per-cycle timeout in seconds; None disables it.
        run_immediately: Run the first cycle at start instead of after one
                         interval.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        body: Callable[[], Awaitable[object]],
        timeout: float | None = None,
        run_immediately: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self._interval = interval
        self._body = body
        self._timeout = timeout
        self._run_immediately = run_immediately
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError(f"periodic task {self.name} already running")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        _log.info("periodic_task_started", task=self.name, interval=self._interval)
        return self._task

    async def stop(self, grace: float = 15.0) -> None:
        """Signal the loop to exit, cancelling the in-flight cycle after *grace* seconds."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except TimeoutError:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        _log.info("periodic_task_stopped", task=self.name, cycles=self.cycles)

    async def run_cycle(self) -> None:
        """Run *body* once, logging instead of raising on failure."""
        self.cycles += 1
        try:
            if self._timeout is None:
                await self._body()
            else:
                await asyncio.wait_for(self._body(), timeout=self._timeout)
        except TimeoutError:
            _log.warning("periodic_cycle_timeout", task=self.name, timeout=self._timeout)
        except Exception as exc:
            _log.error("periodic_cycle_failed", task=self.name, error=str(exc), exc_info=True)

    async def _loop(self) -> None:
        if not self._run_immediately and await self._wait():
            return
        while not self._stop_event.is_set():
            await self.run_cycle()
            if await self._wait():
                return

    async def _wait(self) -> bool:
        """Sleep one interval; True when stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        except TimeoutError:
            return False
        return True
