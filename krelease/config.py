"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

import structlog

from krelease import __version__
from krelease.models.config import (
    APIConfig,
    AuthConfig,
    CollectorConfig,
    HeartbeatConfig,
    LogConfig,
    ReleaseTrackerConfig,
    RunMode,
    StoreConfig,
    SyncConfig,
    TenantConfig,
)
from krelease.observability.logging import LOG_FORMATS, key_preview

_log = structlog.get_logger(component="config")

_API_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{32,}$")
_WINDOW_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KRELEASE_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _env_list(key: str, default: str = "") -> list[str]:
    return [item.strip() for item in _env(key, default).split(",") if item.strip()]


def _parse_time_window(value: str) -> int:
    """Convert ``30s`` / ``5m`` / ``1h`` / ``1d`` to seconds."""
    match = re.match(r"^([0-9]+)(s|m|h|d)$", value)
    if not match:
        raise ValueError(f"Invalid time window format: {value}")
    seconds = int(match.group(1)) * _WINDOW_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Time window must be positive: {value}")
    return seconds


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in LOG_FORMATS:
        raise ValueError(f"Invalid log format: {value}. Must be one of {LOG_FORMATS}")
    return value.lower()


def _validate_mode(value: str) -> RunMode:
    try:
        return RunMode(value.lower())
    except ValueError:
        raise ValueError(f"Invalid mode: {value}. Must be 'collector' or 'aggregator'") from None


def _normalize_base_path(path: str) -> str:
    """Ensure a leading slash and no trailing slash; empty stays empty."""
    if not path:
        return ""
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return "" if path == "/" else path


def _load_api_keys(raw: list[str]) -> list[str]:
    keys: list[str] = []
    for key in raw:
        if _API_KEY_RE.match(key):
            keys.append(key)
        else:
            _log.warning("api_key_rejected", key_preview=key_preview(key), reason="invalid format")
    if raw and not keys:
        _log.warning("no_valid_api_keys", detail="authentication disabled")
    elif keys:
        _log.info("api_keys_loaded", count=len(keys))
    return keys


def load_config() -> ReleaseTrackerConfig:
    """Load configuration from KRELEASE_* environment variables."""
    sync_interval = _parse_time_window(_env("SYNC_INTERVAL", "5m"))
    return ReleaseTrackerConfig(
        mode=_validate_mode(_env("MODE", "collector")),
        tenant=TenantConfig(
            client_name=_env("CLIENT_NAME", "default"),
            env_name=_env("ENV_NAME", "default"),
        ),
        store=StoreConfig(
            database_path=_env("DATABASE_PATH", "/data/releases.db"),
            busy_timeout_ms=_env_int("DATABASE_BUSY_TIMEOUT_MS", 5000, min_val=100),
            retention_limit=_env_int("RETENTION_LIMIT", 10, min_val=1, max_val=100),
        ),
        collector=CollectorConfig(
            namespaces=_env_list("NAMESPACES", "default"),
            in_cluster=_env_bool("IN_CLUSTER", True),
            kubeconfig_path=_env("KUBECONFIG", ""),
            interval_seconds=_parse_time_window(_env("COLLECTION_INTERVAL", "60m")),
            timeout_seconds=_parse_time_window(_env("COLLECTION_TIMEOUT", "5m")),
        ),
        sync=SyncConfig(
            aggregator_url=_env("AGGREGATOR_URL", "").rstrip("/"),
            api_key=_env("AGGREGATOR_API_KEY", ""),
            interval_seconds=sync_interval,
            timeout_seconds=_env_float("SYNC_TIMEOUT", 30.0),
            cycle_timeout_seconds=_parse_time_window(_env("SYNC_CYCLE_TIMEOUT", f"{sync_interval}s")),
            max_concurrency=_env_int("SYNC_MAX_CONCURRENCY", 4, min_val=1, max_val=32),
            proxy_url=_env("PROXY_URL", ""),
            tls_insecure=_env_bool("TLS_INSECURE", False),
        ),
        heartbeat=HeartbeatConfig(
            interval_seconds=_parse_time_window(_env("HEARTBEAT_INTERVAL", "5m")),
            max_retries=_env_int("HEARTBEAT_MAX_RETRIES", 3, min_val=0, max_val=10),
            backoff_seconds=_env_float("HEARTBEAT_BACKOFF", 5.0),
            agent_version=_env("AGENT_VERSION", __version__),
        ),
        auth=AuthConfig(
            api_keys=_load_api_keys(_env_list("API_KEYS")),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
            base_path=_normalize_base_path(_env("BASE_PATH", "")),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
