"""Shared fixtures for krelease integration tests.

Every test gets its own SQLite file under ``tmp_path`` and a controllable
clock, so ledger, outbox and liveness behaviour can be exercised end to end
without a Kubernetes cluster or a network.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from krelease.auth.classifier import AccessKeyClassifier
from krelease.collector.source import Observation
from krelease.ledger.database import Database
from krelease.ledger.outbox import OutboxQueue
from krelease.ledger.store import ReleaseLedger
from krelease.liveness.tracker import LivenessTracker
from krelease.models.config import ReleaseTrackerConfig, RunMode, TenantConfig
from krelease.models.releases import Component, ImageRef, ReleaseFact, Tenant
from krelease.query.resolver import QueryResolver

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)

ADMIN_KEY = "admin_" + "a" * 32
ACME_KEY = "acme-" + "s" * 32
GLOBEX_KEY = "globex-" + "g" * 32

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_fact(
    namespace: str = "shop",
    kind: str = "Deployment",
    name: str = "api",
    container: str = "app",
    client_name: str = "acme",
    env_name: str = "prod",
    repo: str = "registry.example.com/team",
    image: str = "api",
    tag: str = "1.0.0",
    digest: str = DIGEST_A,
    first_seen: datetime | None = None,
    last_seen: datetime | None = None,
) -> ReleaseFact:
    """Create a ReleaseFact with sensible defaults for testing."""
    last = last_seen or first_seen or T0
    return ReleaseFact(
        component=Component(namespace, kind, name, container),
        tenant=Tenant(client_name, env_name),
        image=ImageRef(repo=repo, name=image, tag=tag, digest=digest),
        first_seen=first_seen or last,
        last_seen=last,
    )


def make_observation(
    namespace: str = "shop",
    kind: str = "Deployment",
    name: str = "api",
    container: str = "app",
    image: str = "registry.example.com/team/api:1.0.0",
    digest: str = DIGEST_A,
) -> Observation:
    return Observation(component=Component(namespace, kind, name, container), image=image, digest=digest)


def make_config(
    mode: RunMode = RunMode.AGGREGATOR,
    api_keys: list[str] | None = None,
    client_name: str = "acme",
    env_name: str = "prod",
    aggregator_url: str = "",
    namespaces: list[str] | None = None,
) -> ReleaseTrackerConfig:
    config = ReleaseTrackerConfig(mode=mode, tenant=TenantConfig(client_name, env_name))
    config.auth.api_keys = list(api_keys if api_keys is not None else [ADMIN_KEY, ACME_KEY, GLOBEX_KEY])
    config.sync.aggregator_url = aggregator_url
    config.collector.namespaces = list(namespaces or ["shop"])
    return config


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSource:
    """ObservationSource returning whatever the test sets."""

    def __init__(self, observations: list[Observation] | None = None) -> None:
        self.observations = list(observations or [])
        self.calls = 0

    async def observe(self) -> list[Observation]:
        self.calls += 1
        return list(self.observations)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    """Migrated database in a temporary directory."""
    db = Database(tmp_path / "releases.db", busy_timeout_ms=1000)
    db.migrate()
    return db


@pytest.fixture()
def ledger(database: Database, clock: FakeClock) -> ReleaseLedger:
    return ReleaseLedger(database, clock=clock)


@pytest.fixture()
def outbox(database: Database, clock: FakeClock) -> OutboxQueue:
    return OutboxQueue(database, clock=clock)


@pytest.fixture()
def liveness(database: Database, clock: FakeClock) -> LivenessTracker:
    return LivenessTracker(database, clock=clock)


@pytest.fixture()
def classifier() -> AccessKeyClassifier:
    return AccessKeyClassifier([ADMIN_KEY, ACME_KEY, GLOBEX_KEY])


@pytest.fixture()
def resolver(ledger: ReleaseLedger, liveness: LivenessTracker) -> QueryResolver:
    return QueryResolver(ledger, liveness, namespace_priority=["shop", "payments"])
