"""Read-side operations with tenant access control applied.

Every operation authorizes the principal before touching the ledger, so a
tenant key asking for another client gets AccessDenied rather than an empty
or NotFound answer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from krelease.ledger.store import DEFAULT_RETENTION, ReleaseLedger
from krelease.liveness.tracker import LivenessTracker
from krelease.models.access import Principal
from krelease.models.liveness import LivenessReport
from krelease.models.releases import Component, ReleaseFact, Tenant

_log = structlog.get_logger(component="query.resolver")


@dataclass
class NamespaceGroup:
    name: str
    releases: list[ReleaseFact] = field(default_factory=list)


@dataclass
class CurrentStateView:
    """Current releases grouped by namespace in display order."""

    namespaces: list[NamespaceGroup]
    total: int
    last_update: datetime | None = None


@dataclass
class TenantCatalog:
    """Clients and environments visible to a principal, with liveness."""

    clients: dict[str, list[str]]
    liveness: dict[str, dict[str, LivenessReport]]
    total_releases: int = 0

    @property
    def total_clients(self) -> int:
        return len(self.clients)

    @property
    def total_environments(self) -> int:
        return sum(len(envs) for envs in self.clients.values())


def group_by_namespace(facts: list[ReleaseFact], priority: list[str]) -> list[NamespaceGroup]:
    """Group *facts* by namespace.

    Namespaces listed in *priority* come first in that order; the rest
    follow in the order they first appear in *facts*.
    """
    grouped: dict[str, NamespaceGroup] = {}
    for fact in facts:
        namespace = fact.component.namespace
        grouped.setdefault(namespace, NamespaceGroup(namespace)).releases.append(fact)

    ordered = [grouped[ns] for ns in priority if ns in grouped]
    listed = set(priority)
    ordered.extend(group for ns, group in grouped.items() if ns not in listed)
    return ordered


class QueryResolver:
    """Read API over the ledger and the liveness tracker.

    Args:
        ledger:             Release ledger.
        liveness:           Heartbeat tracker, used by the catalog.
        namespace_priority: Display order of namespaces in current state.
    """

    def __init__(
        self,
        ledger: ReleaseLedger,
        liveness: LivenessTracker,
        namespace_priority: list[str] | None = None,
    ) -> None:
        self._ledger = ledger
        self._liveness = liveness
        self._priority = list(namespace_priority or [])

    async def current_state(
        self,
        principal: Principal,
        client_name: str | None = None,
        env_name: str | None = None,
    ) -> CurrentStateView:
        if client_name:
            principal.authorize(client_name)
        elif not principal.is_admin:
            client_name = principal.client_name

        facts = await self._ledger.current_state(client_name=client_name, env_name=env_name)
        last_update = None
        if client_name and env_name:
            last_update = await self._ledger.last_update(Tenant(client_name, env_name))
        return CurrentStateView(
            namespaces=group_by_namespace(facts, self._priority),
            total=len(facts),
            last_update=last_update,
        )

    async def history(
        self,
        principal: Principal,
        component: Component,
        tenant: Tenant,
        limit: int = DEFAULT_RETENTION,
    ) -> list[ReleaseFact]:
        principal.authorize(tenant.client_name)
        return await self._ledger.history(component, tenant, limit=limit)

    async def resolve_by_name(
        self,
        principal: Principal,
        workload_kind: str,
        workload_name: str,
        container_name: str,
        tenant: Tenant,
    ) -> ReleaseFact:
        principal.authorize(tenant.client_name)
        return await self._ledger.resolve_by_name(workload_kind, workload_name, container_name, tenant)

    async def catalog(self, principal: Principal) -> TenantCatalog:
        clients = await self._ledger.tenants()
        if not principal.is_admin:
            own = principal.client_name or ""
            clients = {own: clients[own]} if own in clients else {}

        liveness: dict[str, dict[str, LivenessReport]] = {}
        for client_name, envs in clients.items():
            liveness[client_name] = {}
            for env_name in envs:
                liveness[client_name][env_name] = await self._liveness.status(Tenant(client_name, env_name))

        scope = None if principal.is_admin else principal.client_name
        facts = await self._ledger.current_state(client_name=scope)
        _log.debug("catalog_resolved", clients=len(clients), admin=principal.is_admin)
        return TenantCatalog(clients=clients, liveness=liveness, total_releases=len(facts))
