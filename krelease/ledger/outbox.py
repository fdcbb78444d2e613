"""Collector-local outbox of facts awaiting delivery to the aggregator.

Entries are transit-only copies.  An entry exists from the local write
until the aggregator confirms it and is never authoritative.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from krelease.ledger.database import Database, format_ts, parse_ts
from krelease.ledger.rows import FACT_COLUMNS, fact_from_row, fact_params, upsert_statement
from krelease.ledger.store import validate_fact
from krelease.models.releases import OutboxEntry, ReleaseFact

_log = structlog.get_logger(component="ledger.outbox")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class OutboxQueue:
    """Pending deliveries keyed by the same natural key as the ledger."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = _utcnow) -> None:
        self._db = database
        self._clock = clock

    async def enqueue(self, fact: ReleaseFact) -> None:
        """Add *fact*, or advance the pending copy if one is already queued."""
        validate_fact(fact)
        params = fact_params(fact, self._clock())
        statement = upsert_statement("pending_releases")
        await self._db.run(lambda conn: conn.execute(statement, params).fetchall())

    async def pending(self) -> list[OutboxEntry]:
        """Every pending entry, oldest first."""

        def _pending(conn: sqlite3.Connection) -> list[OutboxEntry]:
            rows = conn.execute(
                f"""
                SELECT id, created_at, {FACT_COLUMNS} FROM pending_releases
                WHERE length(image_sha) > 0
                ORDER BY created_at ASC, id ASC
                """
            ).fetchall()
            return [
                OutboxEntry(id=row["id"], fact=fact_from_row(row), created_at=parse_ts(row["created_at"]))
                for row in rows
            ]

        return await self._db.run(_pending)

    async def acknowledge(self, entry: OutboxEntry) -> bool:
        """Delete *entry* after confirmed delivery.

        The delete only matches while the stored ``last_seen`` equals the one
        that was delivered, so a re-observation queued during the push stays
        pending for the next cycle.  Returns True if the row was removed.
        """
        delivered_last_seen = format_ts(entry.fact.last_seen)

        def _delete(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                "DELETE FROM pending_releases WHERE id = ? AND last_seen = ?",
                (entry.id, delivered_last_seen),
            )
            return cursor.rowcount

        removed = await self._db.run(_delete) > 0
        if not removed:
            _log.info("outbox_entry_advanced_during_push", entry_id=entry.id)
        return removed

    async def count(self) -> int:
        return await self._db.run(lambda conn: conn.execute("SELECT COUNT(*) FROM pending_releases").fetchone()[0])
