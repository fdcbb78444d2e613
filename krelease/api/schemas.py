"""Request and response models for the REST API."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field

from krelease.models.liveness import LivenessReport
from krelease.models.releases import Component, ReleaseFact
from krelease.query.resolver import CurrentStateView, TenantCatalog


class ErrorResponse(BaseModel):
    error: str
    detail: str


class ComponentModel(BaseModel):
    namespace: str
    workload_kind: str
    workload_name: str
    container_name: str

    @classmethod
    def from_component(cls, component: Component) -> ComponentModel:
        return cls(
            namespace=component.namespace,
            workload_kind=component.workload_kind,
            workload_name=component.workload_name,
            container_name=component.container_name,
        )


class ReleaseModel(BaseModel):
    namespace: str
    workload_kind: str
    workload_name: str
    container_name: str
    client_name: str
    env_name: str
    image_repo: str
    image_name: str
    image_tag: str
    image_sha: str
    image_path: str
    first_seen: datetime
    last_seen: datetime

    @classmethod
    def from_fact(cls, fact: ReleaseFact) -> ReleaseModel:
        return cls(
            namespace=fact.component.namespace,
            workload_kind=fact.component.workload_kind,
            workload_name=fact.component.workload_name,
            container_name=fact.component.container_name,
            client_name=fact.tenant.client_name,
            env_name=fact.tenant.env_name,
            image_repo=fact.image.repo,
            image_name=fact.image.name,
            image_tag=fact.image.tag,
            image_sha=fact.image.digest,
            image_path=fact.image.full_path,
            first_seen=fact.first_seen,
            last_seen=fact.last_seen,
        )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestRequest(BaseModel):
    """Body of ``PUT /collect/{namespace}/{kind}/{name}/{container}``.

    ``released_at`` is the observation time and becomes ``last_seen``;
    ``first_seen`` defaults to it.  Both default to the receipt time.
    """

    image_repo: str = ""
    image_name: str = ""
    image_tag: str = ""
    image_sha: str = ""
    client_name: str = ""
    env_name: str = ""
    first_seen: datetime | None = None
    released_at: datetime | None = None


class IngestResponse(BaseModel):
    status: str = "success"
    advanced: bool
    component: ComponentModel
    release: ReleaseModel
    timestamp: datetime


class CollectTriggerResponse(BaseModel):
    status: str
    message: str
    timestamp: datetime


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class NamespaceGroupModel(BaseModel):
    name: str
    releases: list[ReleaseModel]


class CurrentStateResponse(BaseModel):
    ordered_namespaces: list[NamespaceGroupModel]
    total: int
    last_update: datetime | None = None

    @classmethod
    def from_view(cls, view: CurrentStateView) -> CurrentStateResponse:
        return cls(
            ordered_namespaces=[
                NamespaceGroupModel(name=group.name, releases=[ReleaseModel.from_fact(f) for f in group.releases])
                for group in view.namespaces
            ],
            total=view.total,
            last_update=view.last_update,
        )


class HistoryResponse(BaseModel):
    component: ComponentModel
    client_name: str
    env_name: str
    history: list[ReleaseModel]
    timestamp: datetime


class ResolveResponse(BaseModel):
    """Single current release for a name lookup, as consumed by badge renderers."""

    version: str
    release: ReleaseModel


class LivenessModel(BaseModel):
    status: str
    last_heartbeat_at: datetime | None = None
    agent_version: str = ""

    @classmethod
    def from_report(cls, report: LivenessReport) -> LivenessModel:
        return cls(
            status=report.status.value,
            last_heartbeat_at=report.last_heartbeat_at,
            agent_version=report.agent_version,
        )


class StatisticsModel(BaseModel):
    total_clients: int
    total_environments: int
    total_releases: int


class CatalogResponse(BaseModel):
    clients_environments: dict[str, list[str]]
    liveness: dict[str, dict[str, LivenessModel]]
    statistics: StatisticsModel
    timestamp: datetime

    @classmethod
    def from_catalog(cls, catalog: TenantCatalog, timestamp: datetime) -> CatalogResponse:
        return cls(
            clients_environments=catalog.clients,
            liveness={
                client: {env: LivenessModel.from_report(report) for env, report in envs.items()}
                for client, envs in catalog.liveness.items()
            },
            statistics=StatisticsModel(
                total_clients=catalog.total_clients,
                total_environments=catalog.total_environments,
                total_releases=catalog.total_releases,
            ),
            timestamp=timestamp,
        )


# ---------------------------------------------------------------------------
# Heartbeats, config, health
# ---------------------------------------------------------------------------


class PingRequest(BaseModel):
    client_name: str = ""
    env_name: str = ""
    agent_version: str = Field(default="", validation_alias=AliasChoices("agent_version", "slave_version"))
    timestamp: datetime | None = None


class PingResponse(BaseModel):
    status: str = "ok"
    received_at: datetime


class PrincipalModel(BaseModel):
    is_admin: bool
    client_name: str | None = None


class ConfigResponse(BaseModel):
    mode: str
    client_name: str
    env_name: str
    principal: PrincipalModel


class HealthResponse(BaseModel):
    status: str
    mode: str
    version: str
