"""Drains the collector's outbox to the aggregator.

Delivery is at-least-once: an entry is deleted only after the aggregator
answered 2xx, and the aggregator's upsert makes a repeated push harmless.
One failing entry never blocks the others.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from urllib.parse import quote

import httpx
import structlog

from krelease.errors import KReleaseError, SyncDeliveryFailure
from krelease.ledger.outbox import OutboxQueue
from krelease.models.config import SyncConfig
from krelease.models.releases import OutboxEntry
from krelease.observability.metrics import outbox_pushes_total
from krelease.sync.transport import build_http_client

_log = structlog.get_logger(component="sync.agent")


@dataclass
class DrainResult:
    delivered: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.delivered + self.failed


def ingestion_payload(entry: OutboxEntry) -> dict[str, str]:
    """JSON body accepted by the aggregator's ingestion route."""
    fact = entry.fact
    return {
        "image_repo": fact.image.repo,
        "image_name": fact.image.name,
        "image_tag": fact.image.tag,
        "image_sha": fact.image.digest,
        "client_name": fact.tenant.client_name,
        "env_name": fact.tenant.env_name,
        "first_seen": fact.first_seen.isoformat(),
        "released_at": fact.last_seen.isoformat(),
    }


class SyncAgent:
    """Pushes pending outbox entries to the aggregator's ingestion route.

    Args:
        outbox: Collector-local outbox.
        config: Aggregator URL, tenant key and HTTP options.
        client: Optional pre-built AsyncClient (tests inject a mock
                transport); built from *config* otherwise.
    """

    def __init__(
        self,
        outbox: OutboxQueue,
        config: SyncConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.aggregator_url:
            raise ValueError("SyncAgent requires an aggregator url")
        self._outbox = outbox
        self._config = config
        self._base_url = config.aggregator_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or build_http_client(config)

    async def drain(self) -> DrainResult:
        """Push every pending entry once; returns per-cycle counts."""
        entries = await self._outbox.pending()
        result = DrainResult()
        if not entries:
            _log.debug("outbox_empty")
            return result

        _log.info("outbox_drain_started", pending=len(entries))
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))

        async def _bounded(entry: OutboxEntry) -> bool:
            async with semaphore:
                return await self._deliver(entry)

        outcomes = await asyncio.gather(*(_bounded(entry) for entry in entries))
        for delivered in outcomes:
            if delivered:
                result.delivered += 1
            else:
                result.failed += 1

        _log.info("outbox_drain_completed", delivered=result.delivered, failed=result.failed)
        return result

    async def stop(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _deliver(self, entry: OutboxEntry) -> bool:
        try:
            await self._push(entry)
        except SyncDeliveryFailure as exc:
            outbox_pushes_total.labels(outcome="failed").inc()
            _log.warning("outbox_entry_failed", entry_id=exc.entry_id, reason=exc.reason)
            return False

        outbox_pushes_total.labels(outcome="delivered").inc()
        try:
            await self._outbox.acknowledge(entry)
        except KReleaseError as exc:
            # Delivered but still queued; the next cycle re-pushes it.
            _log.warning("outbox_acknowledge_failed", entry_id=entry.id, error=exc.detail)
            return False
        _log.info("outbox_entry_delivered", entry_id=entry.id, component=str(entry.fact.component))
        return True

    async def _push(self, entry: OutboxEntry) -> None:
        component = entry.fact.component
        path = "/".join(
            quote(part, safe="")
            for part in (
                component.namespace,
                component.workload_kind,
                component.workload_name,
                component.container_name,
            )
        )
        headers = {"X-API-Key": self._config.api_key} if self._config.api_key else {}
        try:
            response = await self._client.put(
                f"{self._base_url}/api/collect/{path}",
                json=ingestion_payload(entry),
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise SyncDeliveryFailure(entry.id, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise SyncDeliveryFailure(entry.id, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            raise SyncDeliveryFailure(
                entry.id,
                f"aggregator returned status {response.status_code}: {response.text[:200]}",
            )
