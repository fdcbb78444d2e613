"""Release ledger for krelease.

Durable SQLite-backed store of observed release facts plus the collector's
outbox of facts awaiting delivery to the aggregator.

Submodules:
    database    -- connection handling, timestamp encoding, error translation.
    migrations  -- ordered schema migrations.
    store       -- ReleaseLedger: upsert, retention and query operations.
    outbox      -- OutboxQueue: pending deliveries for the sync agent.
"""

from krelease.ledger.database import Database
from krelease.ledger.outbox import OutboxQueue
from krelease.ledger.store import ReleaseLedger

__all__ = ["Database", "OutboxQueue", "ReleaseLedger"]
