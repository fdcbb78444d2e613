"""Ordered schema migrations for the ledger database."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import structlog

_log = structlog.get_logger(component="ledger.migrations")

_FACT_COLUMNS = """
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_name TEXT NOT NULL,
    env_name TEXT NOT NULL,
    namespace TEXT NOT NULL,
    workload_type TEXT NOT NULL,
    workload_name TEXT NOT NULL,
    container_name TEXT NOT NULL,
    image_repo TEXT NOT NULL,
    image_name TEXT NOT NULL,
    image_tag TEXT NOT NULL,
    image_sha TEXT NOT NULL CHECK (length(image_sha) > 0),
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (namespace, workload_type, workload_name, container_name, client_name, env_name, image_sha)
"""


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="Initial schema",
        statements=(
            f"CREATE TABLE IF NOT EXISTS releases ({_FACT_COLUMNS})",
            "CREATE INDEX IF NOT EXISTS idx_releases_component ON releases "
            "(namespace, workload_type, workload_name, container_name, client_name, env_name)",
            "CREATE INDEX IF NOT EXISTS idx_releases_last_seen ON releases (last_seen)",
            f"CREATE TABLE IF NOT EXISTS pending_releases ({_FACT_COLUMNS})",
            "CREATE INDEX IF NOT EXISTS idx_pending_releases_created_at ON pending_releases (created_at)",
            """
            CREATE TABLE IF NOT EXISTS heartbeats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_name TEXT NOT NULL,
                env_name TEXT NOT NULL,
                last_heartbeat_at TEXT NOT NULL,
                agent_version TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (client_name, env_name)
            )
            """,
        ),
    ),
    Migration(
        version=2,
        description="Index name-based release lookups",
        statements=(
            "CREATE INDEX IF NOT EXISTS idx_releases_by_name ON releases "
            "(workload_type, workload_name, container_name, client_name, env_name)",
            "CREATE INDEX IF NOT EXISTS idx_releases_tenant ON releases (client_name, env_name)",
        ),
    ),
)


def current_version(conn: sqlite3.Connection) -> int:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()
    return int(row[0])


def run_migrations(conn: sqlite3.Connection, migrations: tuple[Migration, ...] = MIGRATIONS) -> int:
    """Apply every migration newer than the recorded version, one transaction each."""
    version = current_version(conn)
    _log.info("schema_version", version=version)

    for migration in migrations:
        if migration.version <= version:
            continue
        _log.info("applying_migration", version=migration.version, description=migration.description)
        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in migration.statements:
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_migrations (version, description) VALUES (?, ?)",
                (migration.version, migration.description),
            )
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        version = migration.version

    return version
