"""Outbound HTTP client shared by the sync agent and the heartbeat sender."""

from __future__ import annotations

import httpx
import structlog

from krelease.models.config import SyncConfig

_log = structlog.get_logger(component="sync.transport")


def build_http_client(config: SyncConfig) -> httpx.AsyncClient:
    """AsyncClient honouring the configured timeout, proxy and TLS options."""
    if config.proxy_url:
        _log.info("aggregator_proxy_enabled")
    if config.tls_insecure:
        _log.warning("aggregator_tls_verification_disabled")
    return httpx.AsyncClient(
        timeout=config.timeout_seconds,
        proxy=config.proxy_url or None,
        verify=not config.tls_insecure,
        headers={"Content-Type": "application/json"},
    )
