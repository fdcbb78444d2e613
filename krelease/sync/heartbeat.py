"""Collector-side heartbeat sender."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx
import structlog

from krelease.models.config import HeartbeatConfig, SyncConfig, TenantConfig
from krelease.observability.metrics import heartbeats_sent_total
from krelease.sync.transport import build_http_client

_log = structlog.get_logger(component="sync.heartbeat")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class HeartbeatClient:
    """POSTs ``{client_name, env_name, agent_version, timestamp}`` to ``/api/ping``.

    A heartbeat that still fails after ``max_retries`` retries is dropped;
    the next interval sends a fresh one.
    """

    def __init__(
        self,
        tenant: TenantConfig,
        sync: SyncConfig,
        heartbeat: HeartbeatConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not sync.aggregator_url:
            raise ValueError("HeartbeatClient requires an aggregator url")
        self._tenant = tenant
        self._sync = sync
        self._heartbeat = heartbeat
        self._url = f"{sync.aggregator_url.rstrip('/')}/api/ping"
        self._owns_client = client is None
        self._client = client or build_http_client(sync)
        self._sleep = sleep
        self._clock = clock

    async def send(self) -> bool:
        """Send one heartbeat.  Returns True on a 2xx response."""
        payload = {
            "client_name": self._tenant.client_name,
            "env_name": self._tenant.env_name,
            "agent_version": self._heartbeat.agent_version,
            "timestamp": self._clock().isoformat(),
        }
        headers = {"X-API-Key": self._sync.api_key} if self._sync.api_key else {}
        try:
            response = await self._client.post(self._url, json=payload, headers=headers)
        except httpx.TimeoutException:
            _log.warning("heartbeat_request_timeout", url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("heartbeat_http_error", error=str(exc))
            return False

        if response.is_success:
            return True
        _log.warning("heartbeat_non_2xx_response", status_code=response.status_code, body=response.text[:200])
        return False

    async def send_with_retry(self) -> bool:
        """Send with linear backoff (``backoff * attempt``) between attempts."""
        retries = max(0, self._heartbeat.max_retries)
        for attempt in range(1, retries + 2):
            if await self.send():
                heartbeats_sent_total.labels(outcome="success").inc()
                _log.info(
                    "heartbeat_sent",
                    client_name=self._tenant.client_name,
                    env_name=self._tenant.env_name,
                    attempt=attempt,
                )
                return True
            if attempt <= retries:
                wait = self._heartbeat.backoff_seconds * attempt
                _log.info("heartbeat_retry_scheduled", attempt=attempt, wait_seconds=wait)
                await self._sleep(wait)

        heartbeats_sent_total.labels(outcome="failed").inc()
        _log.warning("heartbeat_failed", attempts=retries + 1)
        return False

    async def stop(self) -> None:
        if self._owns_client:
            await self._client.aclose()
