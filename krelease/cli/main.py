"""krelease command-line interface.

All commands read the same ``KRELEASE_*`` environment as the server.
"""

from __future__ import annotations

import asyncio

import click

from krelease import __version__
from krelease.config import load_config
from krelease.errors import KReleaseError
from krelease.ledger.database import Database
from krelease.models.config import ReleaseTrackerConfig
from krelease.observability.logging import setup_logging


def _load() -> ReleaseTrackerConfig:
    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(f"invalid configuration: {exc}") from exc
    setup_logging(config.log.level, config.log.format)
    return config


def _database(config: ReleaseTrackerConfig) -> Database:
    database = Database(config.store.database_path, config.store.busy_timeout_ms)
    database.migrate()
    return database


@click.group()
@click.version_option(__version__, prog_name="krelease")
def cli() -> None:
    """Multi-tenant container release tracker."""


@cli.command()
def serve() -> None:
    """Run the server in the configured mode until SIGTERM/SIGINT."""
    from krelease.app import main

    asyncio.run(main())


@cli.command()
def migrate() -> None:
    """Apply pending schema migrations and exit."""
    config = _load()
    try:
        version = Database(config.store.database_path, config.store.busy_timeout_ms).migrate()
    except KReleaseError as exc:
        raise click.ClickException(exc.detail) from exc
    click.echo(f"schema at version {version} ({config.store.database_path})")


@cli.command()
@click.option("--keep", type=click.IntRange(min=1), default=None, help="Facts kept per component and tenant.")
def prune(keep: int | None) -> None:
    """Run retention once."""
    from krelease.ledger.store import ReleaseLedger

    config = _load()
    limit = keep or config.store.retention_limit
    try:
        deleted = asyncio.run(ReleaseLedger(_database(config)).prune(limit))
    except KReleaseError as exc:
        raise click.ClickException(exc.detail) from exc
    click.echo(f"pruned {deleted} release(s), keeping {limit} per component")


@cli.command()
def sync() -> None:
    """Drain the outbox to the aggregator once."""
    from krelease.ledger.outbox import OutboxQueue
    from krelease.sync.agent import SyncAgent

    config = _load()
    if not config.sync_enabled:
        raise click.ClickException("sync needs collector mode and KRELEASE_AGGREGATOR_URL")

    async def _drain() -> tuple[int, int]:
        agent = SyncAgent(OutboxQueue(_database(config)), config.sync)
        try:
            result = await agent.drain()
        finally:
            await agent.stop()
        return result.delivered, result.failed

    try:
        delivered, failed = asyncio.run(_drain())
    except KReleaseError as exc:
        raise click.ClickException(exc.detail) from exc
    click.echo(f"delivered {delivered}, failed {failed}")
    if failed:
        raise SystemExit(1)


@cli.command()
def status() -> None:
    """Show ledger and outbox sizes."""
    from krelease.ledger.outbox import OutboxQueue
    from krelease.ledger.store import ReleaseLedger

    config = _load()

    async def _counts() -> tuple[int, int]:
        database = _database(config)
        return await ReleaseLedger(database).count(), await OutboxQueue(database).count()

    try:
        releases, pending = asyncio.run(_counts())
    except KReleaseError as exc:
        raise click.ClickException(exc.detail) from exc
    click.echo(f"mode: {config.mode.value}")
    click.echo(f"tenant: {config.tenant.client_name}/{config.tenant.env_name}")
    click.echo(f"releases: {releases}")
    click.echo(f"pending: {pending}")
