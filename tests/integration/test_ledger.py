"""Integration tests for the release ledger and the outbox queue.

Tests cover: idempotent upsert, monotonic last_seen, retention per
(component, tenant), validation, current state and history reads, name
resolution, store failures, and outbox acknowledgement semantics.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from krelease.errors import AmbiguousMatch, NotFound, TransientStoreError, ValidationError
from krelease.ledger.database import Database
from krelease.ledger.outbox import OutboxQueue
from krelease.ledger.store import ReleaseLedger
from krelease.models.releases import Component, Tenant

from .conftest import DIGEST_A, DIGEST_B, T0, FakeClock, make_fact

ACME_PROD = Tenant("acme", "prod")
API = Component("shop", "Deployment", "api", "app")


def _digest(i: int) -> str:
    return f"{i:064x}"


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


class TestUpsert:
    async def test_same_fact_twice_leaves_one_row(self, ledger: ReleaseLedger) -> None:
        """Repeating a fact does not add a row."""
        fact = make_fact()
        await ledger.upsert(fact)
        await ledger.upsert(fact)
        assert await ledger.count() == 1

    async def test_reobservation_advances_last_seen(self, ledger: ReleaseLedger) -> None:
        """A later observation moves last_seen and keeps first_seen."""
        await ledger.upsert(make_fact(last_seen=T0))
        later = T0 + timedelta(hours=1)
        advanced = await ledger.upsert(make_fact(last_seen=later))

        assert advanced is True
        [current] = await ledger.current_state()
        assert current.last_seen == later
        assert current.first_seen == T0
        assert await ledger.count() == 1

    async def test_identical_redelivery_reports_not_advanced(self, ledger: ReleaseLedger) -> None:
        """Only the first of two identical deliveries counts as an advance."""
        fact = make_fact()
        assert await ledger.upsert(fact) is True
        assert await ledger.upsert(fact) is False

    async def test_stale_delivery_never_regresses(self, ledger: ReleaseLedger) -> None:
        """An older delivery cannot move last_seen back."""
        later = T0 + timedelta(hours=1)
        await ledger.upsert(make_fact(first_seen=T0, last_seen=later))
        advanced = await ledger.upsert(make_fact(last_seen=T0))

        assert advanced is False
        [current] = await ledger.current_state()
        assert current.last_seen == later

    async def test_earlier_first_seen_is_kept(self, ledger: ReleaseLedger) -> None:
        """first_seen only ever moves earlier."""
        await ledger.upsert(make_fact(first_seen=T0, last_seen=T0 + timedelta(hours=2)))
        await ledger.upsert(make_fact(first_seen=T0 - timedelta(hours=1), last_seen=T0 + timedelta(hours=3)))
        [current] = await ledger.current_state()
        assert current.first_seen == T0 - timedelta(hours=1)

    async def test_new_digest_creates_new_fact(self, ledger: ReleaseLedger) -> None:
        """A different digest is a separate fact."""
        await ledger.upsert(make_fact(digest=DIGEST_A, last_seen=T0))
        await ledger.upsert(make_fact(digest=DIGEST_B, tag="1.1.0", last_seen=T0 + timedelta(minutes=5)))
        assert await ledger.count() == 2

    async def test_empty_digest_rejected(self, ledger: ReleaseLedger) -> None:
        """A fact without a digest is refused and not stored."""
        with pytest.raises(ValidationError, match="image_sha"):
            await ledger.upsert(make_fact(digest=""))
        assert await ledger.count() == 0

    async def test_missing_identity_rejected(self, ledger: ReleaseLedger) -> None:
        """A fact missing a tenant field is refused."""
        with pytest.raises(ValidationError, match="client_name"):
            await ledger.upsert(make_fact(client_name=""))


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestRetention:
    async def test_fifteen_facts_pruned_to_ten_most_recent(self, ledger: ReleaseLedger) -> None:
        """Retention keeps the most recently seen facts."""
        for i in range(15):
            await ledger.upsert(make_fact(digest=_digest(i), tag=f"1.0.{i}", last_seen=T0 + timedelta(minutes=i)))

        deleted = await ledger.prune(keep=10)

        assert deleted == 5
        history = await ledger.history(API, ACME_PROD, limit=50)
        assert len(history) == 10
        assert [fact.image.tag for fact in history] == [f"1.0.{i}" for i in range(14, 4, -1)]

    async def test_retention_is_per_tenant(self, ledger: ReleaseLedger) -> None:
        """Each tenant keeps its own history window."""
        for i in range(12):
            stamp = T0 + timedelta(minutes=i)
            await ledger.upsert(make_fact(digest=_digest(i), last_seen=stamp))
            await ledger.upsert(make_fact(digest=_digest(i), client_name="globex", last_seen=stamp))

        assert await ledger.prune(keep=10) == 4
        assert len(await ledger.history(API, ACME_PROD, limit=50)) == 10
        assert len(await ledger.history(API, Tenant("globex", "prod"), limit=50)) == 10

    async def test_prune_keeps_current_release(self, ledger: ReleaseLedger) -> None:
        """The current release survives even the tightest retention."""
        for i in range(3):
            await ledger.upsert(make_fact(digest=_digest(i), last_seen=T0 + timedelta(minutes=i)))
        await ledger.prune(keep=1)
        [current] = await ledger.current_state()
        assert current.image.digest == _digest(2)

    async def test_prune_on_small_ledger_is_noop(self, ledger: ReleaseLedger) -> None:
        """Nothing is deleted below the limit."""
        await ledger.upsert(make_fact())
        assert await ledger.prune(keep=10) == 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    async def test_current_state_is_latest_per_component_and_tenant(self, ledger: ReleaseLedger) -> None:
        """Current state holds the newest fact per component within the tenant."""
        await ledger.upsert(make_fact(digest=DIGEST_A, tag="1.0.0", last_seen=T0))
        await ledger.upsert(make_fact(digest=DIGEST_B, tag="2.0.0", last_seen=T0 + timedelta(hours=1)))
        await ledger.upsert(make_fact(name="worker", last_seen=T0))
        await ledger.upsert(make_fact(client_name="globex", last_seen=T0))

        state = await ledger.current_state(client_name="acme", env_name="prod")

        assert [(f.component.workload_name, f.image.tag) for f in state] == [("api", "2.0.0"), ("worker", "1.0.0")]

    async def test_current_state_without_filter_spans_tenants(self, ledger: ReleaseLedger) -> None:
        """Without a filter every tenant is included."""
        await ledger.upsert(make_fact())
        await ledger.upsert(make_fact(client_name="globex"))
        assert len(await ledger.current_state()) == 2

    async def test_history_newest_first_with_limit(self, ledger: ReleaseLedger) -> None:
        """History is newest first and honours the limit."""
        for i in range(4):
            await ledger.upsert(make_fact(digest=_digest(i), tag=f"v{i}", last_seen=T0 + timedelta(days=i)))
        history = await ledger.history(API, ACME_PROD, limit=2)
        assert [fact.image.tag for fact in history] == ["v3", "v2"]

    async def test_tenants_catalog(self, ledger: ReleaseLedger) -> None:
        """The catalog lists clients with their sorted environments."""
        await ledger.upsert(make_fact(env_name="prod"))
        await ledger.upsert(make_fact(env_name="staging"))
        await ledger.upsert(make_fact(client_name="globex", env_name="dev"))
        assert await ledger.tenants() == {"acme": ["prod", "staging"], "globex": ["dev"]}

    async def test_last_update_tracks_writes(self, ledger: ReleaseLedger, clock: FakeClock) -> None:
        """last_update follows the most recent write time."""
        assert await ledger.last_update(ACME_PROD) is None
        await ledger.upsert(make_fact())
        written_at = clock.advance(minutes=3)
        await ledger.upsert(make_fact(last_seen=T0 + timedelta(minutes=3)))
        assert await ledger.last_update(ACME_PROD) == written_at


# ---------------------------------------------------------------------------
# Name resolution
# ---------------------------------------------------------------------------


class TestResolveByName:
    async def test_single_namespace_match(self, ledger: ReleaseLedger) -> None:
        """A name found in one namespace resolves to its current release."""
        await ledger.upsert(make_fact(tag="1.0.0", digest=DIGEST_A, last_seen=T0))
        await ledger.upsert(make_fact(tag="1.1.0", digest=DIGEST_B, last_seen=T0 + timedelta(hours=1)))

        fact = await ledger.resolve_by_name("Deployment", "api", "app", ACME_PROD)

        assert fact.image.tag == "1.1.0"
        assert fact.component.namespace == "shop"

    async def test_same_name_in_two_namespaces_is_ambiguous(self, ledger: ReleaseLedger) -> None:
        """A name found in several namespaces reports them all."""
        await ledger.upsert(make_fact(namespace="shop"))
        await ledger.upsert(make_fact(namespace="payments"))

        with pytest.raises(AmbiguousMatch) as excinfo:
            await ledger.resolve_by_name("Deployment", "api", "app", ACME_PROD)
        assert excinfo.value.namespaces == ["payments", "shop"]

    async def test_no_match_is_not_found(self, ledger: ReleaseLedger) -> None:
        """An unknown workload is not found."""
        await ledger.upsert(make_fact())
        with pytest.raises(NotFound):
            await ledger.resolve_by_name("Deployment", "missing", "app", ACME_PROD)

    async def test_kind_is_part_of_identity(self, ledger: ReleaseLedger) -> None:
        """A matching name under another kind does not resolve."""
        await ledger.upsert(make_fact(kind="StatefulSet"))
        with pytest.raises(NotFound):
            await ledger.resolve_by_name("Deployment", "api", "app", ACME_PROD)

    async def test_other_tenant_is_not_found(self, ledger: ReleaseLedger) -> None:
        """Releases of another tenant are not visible."""
        await ledger.upsert(make_fact(client_name="globex"))
        with pytest.raises(NotFound):
            await ledger.resolve_by_name("Deployment", "api", "app", ACME_PROD)


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


class TestStoreFailures:
    async def test_unreachable_store_raises_transient_error(self, tmp_path: Path) -> None:
        """An unopenable database surfaces as a transient error."""
        # A directory cannot be opened as a database file.
        ledger = ReleaseLedger(Database(tmp_path))
        with pytest.raises(TransientStoreError):
            await ledger.current_state()

    async def test_ping_fails_before_migration(self, tmp_path: Path) -> None:
        """ping fails on a database without the schema."""
        with pytest.raises(TransientStoreError):
            await Database(tmp_path / "fresh.db").ping()

    async def test_migrate_is_idempotent(self, database: Database) -> None:
        """Migrating twice leaves the schema version unchanged."""
        first = database.migrate()
        assert database.migrate() == first
        await database.ping()


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


class TestOutbox:
    async def test_enqueue_is_keyed_like_the_ledger(self, outbox: OutboxQueue) -> None:
        """Re-enqueueing a fact replaces its pending entry."""
        await outbox.enqueue(make_fact(last_seen=T0))
        await outbox.enqueue(make_fact(last_seen=T0 + timedelta(minutes=5)))

        [entry] = await outbox.pending()
        assert entry.fact.last_seen == T0 + timedelta(minutes=5)

    async def test_pending_is_oldest_first(self, outbox: OutboxQueue, clock: FakeClock) -> None:
        """Pending entries come back in enqueue order."""
        await outbox.enqueue(make_fact(name="first"))
        clock.advance(seconds=1)
        await outbox.enqueue(make_fact(name="second"))
        names = [entry.fact.component.workload_name for entry in await outbox.pending()]
        assert names == ["first", "second"]

    async def test_acknowledge_removes_delivered_entry(self, outbox: OutboxQueue) -> None:
        """Acknowledging a delivered entry removes it."""
        await outbox.enqueue(make_fact())
        [entry] = await outbox.pending()
        assert await outbox.acknowledge(entry) is True
        assert await outbox.count() == 0

    async def test_reobservation_during_push_stays_pending(self, outbox: OutboxQueue) -> None:
        """An entry updated during its push is not acknowledged away."""
        await outbox.enqueue(make_fact(last_seen=T0))
        [in_flight] = await outbox.pending()

        await outbox.enqueue(make_fact(last_seen=T0 + timedelta(minutes=1)))

        assert await outbox.acknowledge(in_flight) is False
        [still_pending] = await outbox.pending()
        assert still_pending.fact.last_seen == T0 + timedelta(minutes=1)

    async def test_empty_digest_never_queued(self, outbox: OutboxQueue) -> None:
        """A fact without a digest is never queued."""
        with pytest.raises(ValidationError):
            await outbox.enqueue(make_fact(digest=""))
        assert await outbox.count() == 0
