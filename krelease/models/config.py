"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class RunMode(StrEnum):
    """Role of this instance in the collector → aggregator topology."""

    COLLECTOR = "collector"
    AGGREGATOR = "aggregator"


@dataclass
class TenantConfig:
    """Tenant this instance observes and reports as."""

    client_name: str = "default"
    env_name: str = "default"


@dataclass
class StoreConfig:
    """Ledger storage configuration."""

    database_path: str = "/data/releases.db"
    busy_timeout_ms: int = 5000
    retention_limit: int = 10


@dataclass
class CollectorConfig:
    """Workload observation configuration."""

    namespaces: list[str] = field(default_factory=lambda: ["default"])
    in_cluster: bool = True
    kubeconfig_path: str = ""
    interval_seconds: int = 3600
    timeout_seconds: int = 300


@dataclass
class SyncConfig:
    """Outbox drain configuration (collector mode only)."""

    aggregator_url: str = ""
    api_key: str = ""
    interval_seconds: int = 300
    timeout_seconds: float = 30.0
    cycle_timeout_seconds: int = 300
    max_concurrency: int = 4
    proxy_url: str = ""
    tls_insecure: bool = False


@dataclass
class HeartbeatConfig:
    """Liveness heartbeat configuration (collector mode only)."""

    interval_seconds: int = 300
    max_retries: int = 3
    backoff_seconds: float = 5.0
    agent_version: str = ""


@dataclass
class AuthConfig:
    """API key configuration.  An empty list disables authentication."""

    api_keys: list[str] = field(default_factory=list)


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 8080
    base_path: str = ""


@dataclass
class LogConfig:
    """Logging configuration.

    Attributes:
        level:  Minimum event level.
        format: ``json`` or ``console``.
    """

    level: str = "info"
    format: str = "json"


@dataclass
class ReleaseTrackerConfig:
    """Top-level krelease configuration."""

    mode: RunMode = RunMode.COLLECTOR
    tenant: TenantConfig = field(default_factory=TenantConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def sync_enabled(self) -> bool:
        return self.mode == RunMode.COLLECTOR and bool(self.sync.aggregator_url)
