"""Durable release ledger.

Holds every observed (component, tenant, digest) fact.  A fact is created on
first observation of a digest, only ever has ``last_seen`` advanced on
re-observation, and is removed only by retention.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from krelease.errors import AmbiguousMatch, NotFound, ValidationError
from krelease.ledger.database import Database, format_ts, parse_ts
from krelease.ledger.rows import (
    COMPONENT_PARTITION,
    FACT_COLUMNS,
    fact_from_row,
    fact_params,
    last_seen_statement,
    upsert_statement,
)
from krelease.models.releases import Component, ReleaseFact, Tenant
from krelease.observability.metrics import facts_upserted_total, retention_pruned_total

_log = structlog.get_logger(component="ledger.store")

DEFAULT_RETENTION = 10


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def validate_fact(fact: ReleaseFact) -> None:
    """Raise ValidationError if *fact* lacks any identity field or its digest."""
    required = {
        "namespace": fact.component.namespace,
        "workload_kind": fact.component.workload_kind,
        "workload_name": fact.component.workload_name,
        "container_name": fact.component.container_name,
        "client_name": fact.tenant.client_name,
        "env_name": fact.tenant.env_name,
        "image_tag": fact.image.tag,
        "image_sha": fact.image.digest,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ValidationError(f"Missing required field: {', '.join(missing)}")


class ReleaseLedger:
    """Release facts keyed by (component, tenant, digest).

    Args:
        database: Shared SQLite handle.
        clock:    Source of ``created_at`` / ``updated_at`` timestamps.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = _utcnow) -> None:
        self._db = database
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, fact: ReleaseFact, source: str = "collector") -> bool:
        """Insert *fact* or advance the stored ``last_seen``.

        Returns True when the fact is new or its stored ``last_seen`` moved
        forward.  An identical redelivery or an out-of-order one returns
        False; ``last_seen`` stays put, though an earlier ``first_seen`` is
        still taken.
        """
        validate_fact(fact)
        params = fact_params(fact, self._clock())
        statement = upsert_statement("releases")
        lookup = last_seen_statement("releases")

        def _upsert(conn: sqlite3.Connection) -> tuple[str | None, str]:
            conn.execute("BEGIN IMMEDIATE")
            try:
                prior = conn.execute(lookup, fact.natural_key).fetchone()
                stored = conn.execute(statement, params).fetchall()[0]["last_seen"]
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return (prior["last_seen"] if prior is not None else None), stored

        prior_last_seen, stored_last_seen = await self._db.run(_upsert)
        facts_upserted_total.labels(source=source).inc()

        if stored_last_seen > format_ts(fact.last_seen):
            _log.info(
                "stale_fact_ignored",
                component=str(fact.component),
                tenant=str(fact.tenant),
                digest=fact.image.digest,
                incoming_last_seen=fact.last_seen.isoformat(),
                stored_last_seen=stored_last_seen,
            )
            return False

        advanced = prior_last_seen is None or stored_last_seen > prior_last_seen
        if not advanced:
            _log.debug("fact_unchanged", component=str(fact.component), digest=fact.image.digest)
        return advanced

    async def prune(self, keep: int = DEFAULT_RETENTION) -> int:
        """Delete all but the *keep* most recently observed facts per (component, tenant).

        Advisory housekeeping: not isolated from concurrent readers.
        """

        def _prune(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                f"""
                DELETE FROM releases WHERE id IN (
                    SELECT id FROM (
                        SELECT id, ROW_NUMBER() OVER (
                            PARTITION BY {COMPONENT_PARTITION}
                            ORDER BY last_seen DESC, id DESC
                        ) AS rn
                        FROM releases
                    ) WHERE rn > ?
                )
                """,
                (keep,),
            )
            return cursor.rowcount

        deleted = await self._db.run(_prune)
        if deleted:
            retention_pruned_total.inc(deleted)
        _log.info("retention_completed", deleted=deleted, keep=keep)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def current_state(self, client_name: str | None = None, env_name: str | None = None) -> list[ReleaseFact]:
        """Latest fact per (component, tenant), optionally filtered to one tenant."""
        filters = ["length(image_sha) > 0"]
        args: list[str] = []
        if client_name:
            filters.append("client_name = ?")
            args.append(client_name)
        if env_name:
            filters.append("env_name = ?")
            args.append(env_name)
        return await self._db.run(lambda conn: self._latest(conn, " AND ".join(filters), args))

    async def history(self, component: Component, tenant: Tenant, limit: int = DEFAULT_RETENTION) -> list[ReleaseFact]:
        """Up to *limit* facts for one (component, tenant), newest first."""

        def _history(conn: sqlite3.Connection) -> list[ReleaseFact]:
            rows = conn.execute(
                f"""
                SELECT {FACT_COLUMNS} FROM releases
                WHERE namespace = ? AND workload_type = ? AND workload_name = ?
                  AND container_name = ? AND client_name = ? AND env_name = ?
                ORDER BY last_seen DESC, id DESC
                LIMIT ?
                """,
                (
                    component.namespace,
                    component.workload_kind,
                    component.workload_name,
                    component.container_name,
                    tenant.client_name,
                    tenant.env_name,
                    limit,
                ),
            ).fetchall()
            return [fact_from_row(row) for row in rows]

        return await self._db.run(_history)

    async def resolve_by_name(
        self,
        workload_kind: str,
        workload_name: str,
        container_name: str,
        tenant: Tenant,
    ) -> ReleaseFact:
        """Current release for a workload container looked up by name.

        Names are unique only within a namespace, so a match in more than one
        namespace is reported instead of picking one silently.

        Raises:
            NotFound:       no current release matches.
            AmbiguousMatch: current releases exist in several namespaces.
        """
        filters = (
            "length(image_sha) > 0 AND workload_type = ? AND workload_name = ? "
            "AND container_name = ? AND client_name = ? AND env_name = ?"
        )
        args = [workload_kind, workload_name, container_name, tenant.client_name, tenant.env_name]
        facts = await self._db.run(lambda conn: self._latest(conn, filters, args))

        lookup = f"{workload_kind}/{workload_name}/{container_name}"
        if not facts:
            raise NotFound(f"no release found for {lookup} in {tenant}")
        namespaces = sorted({fact.component.namespace for fact in facts})
        if len(namespaces) > 1:
            raise AmbiguousMatch(lookup, namespaces)
        return facts[0]

    async def tenants(self) -> dict[str, list[str]]:
        """Every client with its environments, both sorted."""

        def _tenants(conn: sqlite3.Connection) -> dict[str, list[str]]:
            rows = conn.execute(
                "SELECT DISTINCT client_name, env_name FROM releases ORDER BY client_name, env_name"
            ).fetchall()
            catalog: dict[str, list[str]] = {}
            for row in rows:
                catalog.setdefault(row["client_name"], []).append(row["env_name"])
            return catalog

        return await self._db.run(_tenants)

    async def last_update(self, tenant: Tenant) -> datetime | None:
        """Most recent write time for *tenant*, or None if it has no facts."""

        def _last_update(conn: sqlite3.Connection) -> str | None:
            row = conn.execute(
                "SELECT MAX(updated_at) AS last_update FROM releases WHERE client_name = ? AND env_name = ?",
                (tenant.client_name, tenant.env_name),
            ).fetchone()
            return row["last_update"]

        value = await self._db.run(_last_update)
        return parse_ts(value) if value else None

    async def count(self) -> int:
        return await self._db.run(lambda conn: conn.execute("SELECT COUNT(*) FROM releases").fetchone()[0])

    @staticmethod
    def _latest(conn: sqlite3.Connection, filters: str, args: list[str]) -> list[ReleaseFact]:
        rows = conn.execute(
            f"""
            SELECT {FACT_COLUMNS} FROM (
                SELECT *, ROW_NUMBER() OVER (
                    PARTITION BY {COMPONENT_PARTITION}
                    ORDER BY last_seen DESC, id DESC
                ) AS rn
                FROM releases
                WHERE {filters}
            )
            WHERE rn = 1
            ORDER BY namespace, workload_name, container_name, client_name, env_name
            """,
            args,
        ).fetchall()
        return [fact_from_row(row) for row in rows]
