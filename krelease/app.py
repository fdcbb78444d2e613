"""Application bootstrap for krelease.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → database → ledger/outbox/liveness
              → classifier/resolver → collector → sync → heartbeat → REST

Collection, sync and heartbeat loops only run in collector mode (sync and
heartbeat additionally need an aggregator url).  Shutdown stops components
in reverse startup order; each stop is guarded independently so one failing
teardown does not block the rest.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from krelease.config import load_config
from krelease.models.config import ReleaseTrackerConfig, RunMode
from krelease.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from krelease.auth.classifier import AccessKeyClassifier
    from krelease.collector.collector import ReleaseCollector
    from krelease.ledger.database import Database
    from krelease.ledger.outbox import OutboxQueue
    from krelease.ledger.store import ReleaseLedger
    from krelease.liveness.tracker import LivenessTracker
    from krelease.query.resolver import QueryResolver
    from krelease.runtime.periodic import PeriodicTask
    from krelease.sync.agent import SyncAgent
    from krelease.sync.heartbeat import HeartbeatClient

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ReleaseTrackerApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.

    Args:
        config: Pre-built configuration; loaded from the environment when None.
    """

    def __init__(self, config: ReleaseTrackerConfig | None = None) -> None:
        self.config = config

        self._database: Database | None = None
        self._ledger: ReleaseLedger | None = None
        self._outbox: OutboxQueue | None = None
        self._liveness: LivenessTracker | None = None
        self._classifier: AccessKeyClassifier | None = None
        self._resolver: QueryResolver | None = None
        self._source: object | None = None
        self._collector: ReleaseCollector | None = None
        self._sync_agent: SyncAgent | None = None
        self._heartbeat: HeartbeatClient | None = None
        self._rest_server: object | None = None

        self._periodic: list[PeriodicTask] = []
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info(
            "krelease_starting",
            version=_krelease_version(),
            mode=self.config.mode.value,
            tenant=f"{self.config.tenant.client_name}/{self.config.tenant.env_name}",
        )

        # --- 3. Database --------------------------------------------------
        await self._start_database()

        # --- 4. Ledger, outbox, liveness -----------------------------------
        self._start_stores()

        # --- 5. Classifier and resolver ------------------------------------
        self._start_access()

        # --- 6. Collector (collector mode) ---------------------------------
        await self._start_collector()

        # --- 7. Sync agent (collector mode with aggregator) ----------------
        self._start_sync()

        # --- 8. Heartbeat (collector mode with aggregator) -----------------
        self._start_heartbeat()

        # --- 9. REST API ---------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("krelease_started", port=self.config.api.port, base_path=self.config.api.base_path)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_database(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from krelease.ledger.database import Database

            database = Database(self.config.store.database_path, self.config.store.busy_timeout_ms)
            version = await asyncio.get_running_loop().run_in_executor(None, database.migrate)
            self._database = database
            self._log.info("database_ready", path=str(database.path), schema_version=version)
        except Exception as exc:
            raise _ComponentError("database", exc) from exc

    def _start_stores(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._database is not None
        from krelease.ledger.outbox import OutboxQueue
        from krelease.ledger.store import ReleaseLedger
        from krelease.liveness.tracker import LivenessTracker

        self._ledger = ReleaseLedger(self._database)
        self._liveness = LivenessTracker(self._database)
        if self.config.sync_enabled:
            self._outbox = OutboxQueue(self._database)
        self._log.info("stores_ready", outbox=self._outbox is not None)

    def _start_access(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._ledger is not None
        assert self._liveness is not None
        from krelease.auth.classifier import AccessKeyClassifier
        from krelease.query.resolver import QueryResolver

        self._classifier = AccessKeyClassifier(self.config.auth.api_keys)
        self._resolver = QueryResolver(
            self._ledger,
            self._liveness,
            namespace_priority=self.config.collector.namespaces,
        )
        if not self._classifier.enabled:
            self._log.warning("authentication_disabled", reason="no valid api keys configured")

    async def _start_collector(self) -> None:
        """Build the Kubernetes source and schedule periodic collection."""
        assert self._log is not None
        assert self.config is not None
        assert self._ledger is not None
        if self.config.mode != RunMode.COLLECTOR:
            self._log.info("collector_disabled", mode=self.config.mode.value)
            return

        try:
            from krelease.collector.collector import ReleaseCollector
            from krelease.collector.kubernetes import KubernetesObservationSource
            from krelease.runtime.periodic import PeriodicTask

            source = await KubernetesObservationSource.from_config(self.config.collector)
            collector = ReleaseCollector(
                source,
                self._ledger,
                self.config.tenant,
                outbox=self._outbox,
                retention_limit=self.config.store.retention_limit,
                timeout=self.config.collector.timeout_seconds,
            )
            task = PeriodicTask(
                "collection",
                interval=self.config.collector.interval_seconds,
                body=collector.collect_once,
                timeout=self.config.collector.timeout_seconds,
            )
            self._background_tasks.append(task.start())
            self._periodic.append(task)
            self._source = source
            self._collector = collector
            self._log.info(
                "collector_started",
                namespaces=self.config.collector.namespaces,
                interval=self.config.collector.interval_seconds,
            )
        except Exception as exc:
            raise _ComponentError("collector", exc) from exc

    def _start_sync(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.sync_enabled:
            self._log.info("sync_disabled")
            return
        assert self._outbox is not None
        from krelease.runtime.periodic import PeriodicTask
        from krelease.sync.agent import SyncAgent

        agent = SyncAgent(self._outbox, self.config.sync)
        task = PeriodicTask(
            "outbox-sync",
            interval=self.config.sync.interval_seconds,
            body=agent.drain,
            timeout=self.config.sync.cycle_timeout_seconds,
            run_immediately=False,
        )
        self._background_tasks.append(task.start())
        self._periodic.append(task)
        self._sync_agent = agent
        self._log.info("sync_started", aggregator_url=self.config.sync.aggregator_url)

    def _start_heartbeat(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.sync_enabled:
            return
        from krelease.runtime.periodic import PeriodicTask
        from krelease.sync.heartbeat import HeartbeatClient

        client = HeartbeatClient(self.config.tenant, self.config.sync, self.config.heartbeat)
        task = PeriodicTask(
            "heartbeat",
            interval=self.config.heartbeat.interval_seconds,
            body=client.send_with_retry,
            timeout=self.config.heartbeat.interval_seconds,
        )
        self._background_tasks.append(task.start())
        self._periodic.append(task)
        self._heartbeat = client
        self._log.info("heartbeat_started", interval=self.config.heartbeat.interval_seconds)

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        try:
            import uvicorn

            from krelease.api import create_app

            fastapi_app = create_app(
                config=self.config,
                database=self._database,
                ledger=self._ledger,
                liveness=self._liveness,
                classifier=self._classifier,
                resolver=self._resolver,
                outbox=self._outbox,
                collector=self._collector,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_api_started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("krelease_shutting_down")
        self._running = False

        # Stop accepting requests first, then let in-flight cycles finish.
        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._periodic):
            await self._stop_component(task.name, task)
        self._periodic.clear()

        pending = [task for task in self._background_tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_component("heartbeat", self._heartbeat)
        await self._stop_component("sync", self._sync_agent)
        await self._stop_component("collector", self._collector)
        await self._stop_component("collector_source", self._source)
        self._rest_server = None

        log.info("krelease_stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))


def _krelease_version() -> str:
    from krelease import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: ReleaseTrackerConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = ReleaseTrackerApp(config)
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
