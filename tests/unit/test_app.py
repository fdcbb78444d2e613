"""Unit tests for how ReleaseTrackerApp wires its periodic tasks."""

from __future__ import annotations

import pytest
import structlog

from krelease.app import ReleaseTrackerApp
from krelease.models.config import HeartbeatConfig, ReleaseTrackerConfig, SyncConfig
from krelease.runtime.periodic import PeriodicTask


@pytest.fixture()
def started(monkeypatch: pytest.MonkeyPatch) -> dict[str, PeriodicTask]:
    tasks: dict[str, PeriodicTask] = {}

    def _start(self: PeriodicTask) -> None:
        tasks[self.name] = self

    monkeypatch.setattr(PeriodicTask, "start", _start)
    return tasks


def _app(sync: SyncConfig, heartbeat: HeartbeatConfig | None = None) -> ReleaseTrackerApp:
    app = ReleaseTrackerApp(ReleaseTrackerConfig(sync=sync, heartbeat=heartbeat or HeartbeatConfig()))
    app._log = structlog.get_logger(component="app")
    app._outbox = object()  # type: ignore[assignment]
    return app


class TestPeriodicCeilings:
    async def test_sync_cycle_is_bounded(self, started: dict[str, PeriodicTask]) -> None:
        """The outbox drain runs under the configured cycle timeout."""
        app = _app(SyncConfig(aggregator_url="http://aggregator", interval_seconds=60, cycle_timeout_seconds=45))
        app._start_sync()
        try:
            assert started["outbox-sync"]._timeout == 45
        finally:
            await app._sync_agent.stop()

    async def test_heartbeat_is_bounded_by_its_interval(self, started: dict[str, PeriodicTask]) -> None:
        """A heartbeat with retries never outlives one heartbeat interval."""
        app = _app(SyncConfig(aggregator_url="http://aggregator"), HeartbeatConfig(interval_seconds=120))
        app._start_heartbeat()
        try:
            assert started["heartbeat"]._timeout == 120
        finally:
            await app._heartbeat.stop()

    async def test_nothing_scheduled_without_aggregator(self, started: dict[str, PeriodicTask]) -> None:
        """Sync and heartbeat stay off when no aggregator is configured."""
        app = _app(SyncConfig())
        app._start_sync()
        app._start_heartbeat()
        assert started == {}
