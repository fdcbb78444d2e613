"""Heartbeat storage and read-time liveness classification."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from krelease.errors import TransientStoreError, ValidationError
from krelease.ledger.database import Database, format_ts, parse_ts
from krelease.models.liveness import Heartbeat, LivenessReport, LivenessStatus
from krelease.models.releases import Tenant
from krelease.observability.metrics import heartbeats_received_total

_log = structlog.get_logger(component="liveness.tracker")

ONLINE_WITHIN = timedelta(minutes=10)
WARNING_WITHIN = timedelta(minutes=15)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def classify(now: datetime, last_heartbeat_at: datetime | None) -> LivenessStatus:
    """Pure status function; nothing about a transition is ever stored."""
    if last_heartbeat_at is None:
        return LivenessStatus.NEVER
    age = now - last_heartbeat_at
    if age <= ONLINE_WITHIN:
        return LivenessStatus.ONLINE
    if age <= WARNING_WITHIN:
        return LivenessStatus.WARNING
    return LivenessStatus.OFFLINE


class LivenessTracker:
    """One heartbeat row per tenant, overwritten on every heartbeat.

    ``last_heartbeat_at`` is the receipt time on this instance, so collector
    clock skew does not affect the status.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = _utcnow) -> None:
        self._db = database
        self._clock = clock

    async def record(self, heartbeat: Heartbeat) -> datetime:
        """Store *heartbeat* and return the recorded receipt time."""
        if not heartbeat.client_name or not heartbeat.env_name:
            raise ValidationError("client_name and env_name are required")

        received_at = self._clock()
        stamp = format_ts(received_at)
        params = (
            heartbeat.client_name,
            heartbeat.env_name,
            stamp,
            heartbeat.agent_version,
            stamp,
            stamp,
        )

        def _record(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO heartbeats (
                    client_name, env_name, last_heartbeat_at, agent_version, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (client_name, env_name) DO UPDATE SET
                    last_heartbeat_at = excluded.last_heartbeat_at,
                    agent_version = excluded.agent_version,
                    updated_at = excluded.updated_at
                """,
                params,
            )

        await self._db.run(_record)
        heartbeats_received_total.inc()
        _log.info(
            "heartbeat_recorded",
            client_name=heartbeat.client_name,
            env_name=heartbeat.env_name,
            agent_version=heartbeat.agent_version,
        )
        return received_at

    async def status(self, tenant: Tenant) -> LivenessReport:
        """Liveness of *tenant*'s collector; ``unknown`` if the store fails."""

        def _lookup(conn: sqlite3.Connection) -> sqlite3.Row | None:
            return conn.execute(
                "SELECT last_heartbeat_at, agent_version FROM heartbeats WHERE client_name = ? AND env_name = ?",
                (tenant.client_name, tenant.env_name),
            ).fetchone()

        try:
            row = await self._db.run(_lookup)
        except TransientStoreError as exc:
            _log.warning("liveness_lookup_failed", tenant=str(tenant), error=str(exc))
            return LivenessReport(status=LivenessStatus.UNKNOWN)

        if row is None:
            return LivenessReport(status=LivenessStatus.NEVER)
        last = parse_ts(row["last_heartbeat_at"])
        return LivenessReport(
            status=classify(self._clock(), last),
            last_heartbeat_at=last,
            agent_version=row["agent_version"],
        )
