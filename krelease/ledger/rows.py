"""Row mapping and statements shared by the releases and outbox tables."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from krelease.ledger.database import format_ts, parse_ts
from krelease.models.releases import Component, ImageRef, ReleaseFact, Tenant

FACT_COLUMNS = (
    "namespace, workload_type, workload_name, container_name, "
    "image_repo, image_name, image_tag, image_sha, client_name, env_name, "
    "first_seen, last_seen"
)

NATURAL_KEY = "namespace, workload_type, workload_name, container_name, client_name, env_name, image_sha"

COMPONENT_PARTITION = "namespace, workload_type, workload_name, container_name, client_name, env_name"


def upsert_statement(table: str) -> str:
    """Single-statement insert-or-advance on the natural key.

    ``last_seen`` only moves forward and ``first_seen`` only moves back, so
    a redelivered or out-of-order fact can never regress stored state.
    """
    return f"""
        INSERT INTO {table} ({FACT_COLUMNS}, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT ({NATURAL_KEY}) DO UPDATE SET
            last_seen = MAX({table}.last_seen, excluded.last_seen),
            first_seen = MIN({table}.first_seen, excluded.first_seen),
            updated_at = excluded.updated_at
        RETURNING last_seen
    """


def last_seen_statement(table: str) -> str:
    """Stored ``last_seen`` for one natural key, bound in ``ReleaseFact.natural_key`` order."""
    where = " AND ".join(f"{column} = ?" for column in NATURAL_KEY.split(", "))
    return f"SELECT last_seen FROM {table} WHERE {where}"


def fact_params(fact: ReleaseFact, now: datetime) -> tuple[str, ...]:
    c, t, i = fact.component, fact.tenant, fact.image
    stamp = format_ts(now)
    return (
        c.namespace,
        c.workload_kind,
        c.workload_name,
        c.container_name,
        i.repo,
        i.name,
        i.tag,
        i.digest,
        t.client_name,
        t.env_name,
        format_ts(fact.first_seen),
        format_ts(fact.last_seen),
        stamp,
        stamp,
    )


def fact_from_row(row: sqlite3.Row) -> ReleaseFact:
    return ReleaseFact(
        component=Component(
            namespace=row["namespace"],
            workload_kind=row["workload_type"],
            workload_name=row["workload_name"],
            container_name=row["container_name"],
        ),
        tenant=Tenant(client_name=row["client_name"], env_name=row["env_name"]),
        image=ImageRef(
            repo=row["image_repo"],
            name=row["image_name"],
            tag=row["image_tag"],
            digest=row["image_sha"],
        ),
        first_seen=parse_ts(row["first_seen"]),
        last_seen=parse_ts(row["last_seen"]),
    )
