"""Collector → aggregator delivery: outbox drain and heartbeats."""

from krelease.sync.agent import DrainResult, SyncAgent, ingestion_payload
from krelease.sync.heartbeat import HeartbeatClient
from krelease.sync.transport import build_http_client

__all__ = ["DrainResult", "HeartbeatClient", "SyncAgent", "build_http_client", "ingestion_payload"]
