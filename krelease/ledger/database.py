"""SQLite access shared by the ledger, the outbox and the liveness tracker.

Each unit of work opens its own connection and runs inside the default
thread-pool executor so the asyncio event loop is never blocked.  Writers
rely on single statements or short BEGIN IMMEDIATE transactions; there is
no in-process lock.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from contextlib import closing
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import structlog

from krelease.errors import TransientStoreError, ValidationError
from krelease.ledger.migrations import run_migrations

_log = structlog.get_logger(component="ledger.database")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

T = TypeVar("T")


def format_ts(value: datetime) -> str:
    """Fixed-width UTC text so lexical order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_TS_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=UTC)


class Database:
    """Handle to a SQLite database file.

    Args:
        path:            Database file path.  Parent directories are created.
        busy_timeout_ms: How long a writer waits on a locked database.
    """

    def __init__(self, path: str | Path, busy_timeout_ms: int = 5000) -> None:
        self.path = Path(path)
        self._busy_timeout_ms = busy_timeout_ms

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self._busy_timeout_ms / 1000,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
        return conn

    def migrate(self) -> int:
        """Create the file if needed and apply pending migrations.

        Returns the schema version after migrating.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with closing(self.connect()) as conn:
                conn.execute("PRAGMA journal_mode = WAL")
                return run_migrations(conn)
        except (OSError, sqlite3.Error) as exc:
            raise TransientStoreError(f"failed to migrate {self.path}: {exc}") from exc

    def execute(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run *fn* with a fresh connection, translating sqlite errors."""
        try:
            with closing(self.connect()) as conn:
                return fn(conn)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"rejected by store: {exc}") from exc
        except sqlite3.Error as exc:
            _log.warning("store_error", path=str(self.path), error=str(exc))
            raise TransientStoreError(f"store unavailable: {exc}") from exc

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Async wrapper around :meth:`execute`."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.execute, fn)

    async def ping(self) -> None:
        """Raise TransientStoreError unless the schema is readable."""

        def _ping(conn: sqlite3.Connection) -> None:
            conn.execute("SELECT 1 FROM schema_migrations LIMIT 1").fetchall()

        await self.run(_ping)
