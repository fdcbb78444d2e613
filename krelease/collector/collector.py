"""Turns observations into ledger facts."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from krelease.collector.source import Observation, ObservationSource
from krelease.errors import KReleaseError
from krelease.ledger.outbox import OutboxQueue
from krelease.ledger.store import DEFAULT_RETENTION, ReleaseLedger
from krelease.models.config import TenantConfig
from krelease.models.releases import ImageRef, ReleaseFact, Tenant, parse_image_path
from krelease.observability.metrics import collection_cycles_total

_log = structlog.get_logger(component="collector")

DEFAULT_COLLECTION_TIMEOUT = 300.0


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class CollectionResult:
    observed: int = 0
    recorded: int = 0
    skipped: int = 0
    pruned: int = 0


class ReleaseCollector:
    """Records every observed container with a digest as a release fact.

    Facts go to the local ledger; when an outbox is given they are also
    queued for delivery to the aggregator.  Retention runs after each cycle.

    Args:
        source:          Observation source (Kubernetes in production).
        ledger:          Local release ledger.
        tenant:          Tenant every observation is attributed to.
        outbox:          Outbox queue, or None when sync is disabled.
        retention_limit: Facts kept per (component, tenant).
        timeout:         Wall-clock ceiling for one cycle in seconds.
        clock:           Observation timestamp source.
    """

    def __init__(
        self,
        source: ObservationSource,
        ledger: ReleaseLedger,
        tenant: TenantConfig,
        outbox: OutboxQueue | None = None,
        retention_limit: int = DEFAULT_RETENTION,
        timeout: float = DEFAULT_COLLECTION_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._source = source
        self._ledger = ledger
        self._tenant = Tenant(tenant.client_name, tenant.env_name)
        self._outbox = outbox
        self._retention_limit = retention_limit
        self._timeout = timeout
        self._clock = clock
        self._inflight: asyncio.Task[CollectionResult] | None = None

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def collect_once(self) -> CollectionResult:
        """Run one collection cycle, or join the one already in flight.

        The cycle runs as its own task under the collector's timeout, so a
        caller that gives up early (a periodic cycle timing out, a cancelled
        request) never leaves it unbounded.

        Raises:
            TimeoutError: the cycle exceeded the timeout and was cancelled.
        """
        if not self.busy:
            self._inflight = asyncio.create_task(self._bounded(), name="collection-cycle")
            self._inflight.add_done_callback(_consume_result)
        assert self._inflight is not None
        return await asyncio.shield(self._inflight)

    async def stop(self) -> None:
        """Cancel the in-flight cycle, if any."""
        if self.busy:
            assert self._inflight is not None
            self._inflight.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._inflight
        self._inflight = None

    async def _bounded(self) -> CollectionResult:
        try:
            result = await asyncio.wait_for(self._collect(), timeout=self._timeout)
        except TimeoutError:
            collection_cycles_total.labels(outcome="timeout").inc()
            _log.warning("collection_timed_out", timeout=self._timeout, tenant=str(self._tenant))
            raise
        except Exception:
            collection_cycles_total.labels(outcome="failed").inc()
            raise
        collection_cycles_total.labels(outcome="success").inc()
        return result

    async def _collect(self) -> CollectionResult:
        observations = await self._source.observe()
        now = self._clock()
        result = CollectionResult(observed=len(observations))
        _log.info("collection_started", observations=len(observations), tenant=str(self._tenant))

        for observation in observations:
            if not observation.digest:
                result.skipped += 1
                continue
            try:
                await self._record(observation, now)
            except KReleaseError as exc:
                result.skipped += 1
                _log.warning(
                    "observation_record_failed",
                    component=str(observation.component),
                    error=exc.detail,
                )
                continue
            result.recorded += 1

        result.pruned = await self._ledger.prune(self._retention_limit)
        _log.info(
            "collection_completed",
            recorded=result.recorded,
            skipped=result.skipped,
            pruned=result.pruned,
        )
        return result

    async def _record(self, observation: Observation, now: datetime) -> None:
        repo, name, tag = parse_image_path(observation.image)
        fact = ReleaseFact(
            component=observation.component,
            tenant=self._tenant,
            image=ImageRef(repo=repo, name=name, tag=tag, digest=observation.digest),
            first_seen=now,
            last_seen=now,
        )
        await self._ledger.upsert(fact, source="collector")
        if self._outbox is not None:
            await self._outbox.enqueue(fact)


def _consume_result(task: asyncio.Task[CollectionResult]) -> None:
    # Joiners may all have been cancelled; the outcome is already logged.
    if not task.cancelled():
        task.exception()
