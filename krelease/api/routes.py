"""REST endpoints.

``router`` is mounted at ``{base_path}/api`` and every route on it requires
a classified principal.  ``public_router`` is mounted at ``{base_path}`` and
serves health and metrics without authentication.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from krelease.api.deps import require_principal
from krelease.api.schemas import (
    CatalogResponse,
    CollectTriggerResponse,
    ComponentModel,
    ConfigResponse,
    CurrentStateResponse,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    IngestRequest,
    IngestResponse,
    PingRequest,
    PingResponse,
    PrincipalModel,
    ReleaseModel,
    ResolveResponse,
)
from krelease.errors import TransientStoreError, ValidationError
from krelease.models.access import Principal
from krelease.models.liveness import Heartbeat
from krelease.models.releases import Component, ImageRef, ReleaseFact, Tenant, parse_image_path

_log = structlog.get_logger(component="api.routes")

router = APIRouter()
public_router = APIRouter()

PrincipalDep = Annotated[Principal, Depends(require_principal)]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _as_utc(value: datetime | None, default: datetime) -> datetime:
    if value is None:
        return default
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.put("/collect/{namespace}/{kind}/{name}/{container}", response_model=IngestResponse)
async def ingest_release(
    namespace: str,
    kind: str,
    name: str,
    container: str,
    body: IngestRequest,
    request: Request,
    principal: PrincipalDep,
) -> IngestResponse:
    """Upsert one release fact; the aggregator's side of the sync protocol."""
    state = request.app.state
    missing = [field for field in ("image_tag", "image_sha") if not getattr(body, field)]
    if missing:
        raise ValidationError(f"Missing required field: {', '.join(missing)}")

    client_name = body.client_name or principal.client_name or state.config.tenant.client_name
    env_name = body.env_name or state.config.tenant.env_name
    principal.authorize(client_name)

    now = _utcnow()
    released_at = _as_utc(body.released_at, now)
    first_seen = _as_utc(body.first_seen, released_at)

    # Re-parse so repo, name and tag split the same way as an observed image path.
    image_path = f"{body.image_name}:{body.image_tag}"
    if body.image_repo:
        image_path = f"{body.image_repo}/{image_path}"
    repo, image_name, tag = parse_image_path(image_path)

    component = Component(namespace, kind, name, container)
    fact = ReleaseFact(
        component=component,
        tenant=Tenant(client_name, env_name),
        image=ImageRef(repo=repo, name=image_name, tag=tag, digest=body.image_sha),
        first_seen=min(first_seen, released_at),
        last_seen=released_at,
    )

    advanced = await state.ledger.upsert(fact, source="ingestion")
    if state.outbox is not None:
        await state.outbox.enqueue(fact)

    _log.info(
        "release_ingested",
        component=str(component),
        tenant=str(fact.tenant),
        image_tag=tag,
        advanced=advanced,
    )
    return IngestResponse(
        advanced=advanced,
        component=ComponentModel.from_component(component),
        release=ReleaseModel.from_fact(fact),
        timestamp=now,
    )


@router.post("/collect", response_model=CollectTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_collection(
    request: Request,
    background_tasks: BackgroundTasks,
    principal: PrincipalDep,
) -> CollectTriggerResponse:
    """Start a collection cycle in the background and return immediately."""
    collector = request.app.state.collector
    if collector is None:
        raise ValidationError("Collection is only available in collector mode")

    if collector.busy:
        return CollectTriggerResponse(
            status="already_running",
            message="A collection cycle is already in progress",
            timestamp=_utcnow(),
        )

    background_tasks.add_task(_run_collection, collector)
    _log.info("collection_triggered", admin=principal.is_admin, client_name=principal.client_name)
    return CollectTriggerResponse(
        status="accepted",
        message="Collection process started",
        timestamp=_utcnow(),
    )


async def _run_collection(collector: object) -> None:
    try:
        await collector.collect_once()  # type: ignore[attr-defined]
    except Exception as exc:
        _log.error("triggered_collection_failed", error=str(exc))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/releases/current", response_model=CurrentStateResponse)
async def current_releases(
    request: Request,
    principal: PrincipalDep,
    client_name: str | None = None,
    env_name: str | None = None,
) -> CurrentStateResponse:
    view = await request.app.state.resolver.current_state(principal, client_name, env_name)
    return CurrentStateResponse.from_view(view)


@router.get(
    "/releases/history/{client}/{env}/{namespace}/{kind}/{name}/{container}",
    response_model=HistoryResponse,
)
async def release_history(
    client: str,
    env: str,
    namespace: str,
    kind: str,
    name: str,
    container: str,
    request: Request,
    principal: PrincipalDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> HistoryResponse:
    component = Component(namespace, kind, name, container)
    facts = await request.app.state.resolver.history(principal, component, Tenant(client, env), limit=limit)
    return HistoryResponse(
        component=ComponentModel.from_component(component),
        client_name=client,
        env_name=env,
        history=[ReleaseModel.from_fact(fact) for fact in facts],
        timestamp=_utcnow(),
    )


@router.get(
    "/releases/resolve/{client}/{env}/{kind}/{name}/{container}",
    response_model=ResolveResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def resolve_release(
    client: str,
    env: str,
    kind: str,
    name: str,
    container: str,
    request: Request,
    principal: PrincipalDep,
) -> ResolveResponse:
    """Current release by workload name; 409 when the name exists in several namespaces."""
    fact = await request.app.state.resolver.resolve_by_name(principal, kind, name, container, Tenant(client, env))
    return ResolveResponse(version=fact.image.tag, release=ReleaseModel.from_fact(fact))


@router.get("/clients-environments", response_model=CatalogResponse)
async def clients_environments(request: Request, principal: PrincipalDep) -> CatalogResponse:
    catalog = await request.app.state.resolver.catalog(principal)
    return CatalogResponse.from_catalog(catalog, timestamp=_utcnow())


# ---------------------------------------------------------------------------
# Heartbeats and config
# ---------------------------------------------------------------------------


@router.post("/ping", response_model=PingResponse)
async def ping(body: PingRequest, request: Request, principal: PrincipalDep) -> PingResponse:
    if not body.client_name or not body.env_name:
        raise ValidationError("client_name and env_name are required")
    principal.authorize(body.client_name)

    received_at = await request.app.state.liveness.record(
        Heartbeat(
            client_name=body.client_name,
            env_name=body.env_name,
            agent_version=body.agent_version,
            sent_at=body.timestamp,
        )
    )
    return PingResponse(received_at=received_at)


@router.get("/config", response_model=ConfigResponse)
async def config(request: Request, principal: PrincipalDep) -> ConfigResponse:
    cfg = request.app.state.config
    return ConfigResponse(
        mode=cfg.mode.value,
        client_name=cfg.tenant.client_name,
        env_name=cfg.tenant.env_name,
        principal=PrincipalModel(is_admin=principal.is_admin, client_name=principal.client_name),
    )


# ---------------------------------------------------------------------------
# Unauthenticated
# ---------------------------------------------------------------------------


@public_router.get("/health", response_model=HealthResponse, responses={503: {"model": ErrorResponse}})
async def health(request: Request) -> HealthResponse | JSONResponse:
    from krelease import __version__

    cfg = request.app.state.config
    try:
        await request.app.state.database.ping()
    except TransientStoreError as exc:
        _log.warning("health_check_failed", error=exc.detail)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(error=exc.code, detail=exc.detail).model_dump(),
        )
    return HealthResponse(status="healthy", mode=cfg.mode.value, version=__version__)


@public_router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
