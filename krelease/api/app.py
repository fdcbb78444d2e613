"""FastAPI application factory for krelease.

Usage::

    from krelease.api.app import create_app

    app = create_app(
        config=config,
        database=database,
        ledger=ledger,
        liveness=liveness,
        classifier=classifier,
        resolver=resolver,
    )

The factory is shared by the production bootstrap (``krelease.app``) and
the tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from krelease.api.routes import public_router, router
from krelease.api.schemas import ErrorResponse
from krelease.errors import KReleaseError
from krelease.models.config import ReleaseTrackerConfig

_log = structlog.get_logger(component="api.app")


def create_app(
    config: ReleaseTrackerConfig,
    database: Any,
    ledger: Any,
    liveness: Any,
    classifier: Any,
    resolver: Any,
    outbox: Any = None,
    collector: Any = None,
) -> FastAPI:
    """Create and configure the krelease FastAPI application.

    Args:
        config:     Loaded configuration (mode, tenant, base path).
        database:   Database handle, pinged by the health endpoint.
        ledger:     ReleaseLedger receiving ingested facts.
        liveness:   LivenessTracker receiving heartbeats.
        classifier: AccessKeyClassifier gating every /api route.
        resolver:   QueryResolver serving the read routes.
        outbox:     OutboxQueue when ingested facts must be forwarded too.
        collector:  ReleaseCollector backing ``POST /collect``; None in
                    aggregator mode.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from krelease import __version__

    base_path = config.api.base_path
    app = FastAPI(
        title="krelease",
        summary="Multi-tenant container release tracker",
        version=__version__,
        docs_url=f"{base_path}/api/docs",
        redoc_url=None,
        openapi_url=f"{base_path}/api/openapi.json",
    )

    app.state.config = config
    app.state.database = database
    app.state.ledger = ledger
    app.state.liveness = liveness
    app.state.classifier = classifier
    app.state.resolver = resolver
    app.state.outbox = outbox
    app.state.collector = collector

    app.include_router(router, prefix=f"{base_path}/api")
    app.include_router(public_router, prefix=base_path)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(KReleaseError)
    async def krelease_exception_handler(request: Request, exc: KReleaseError) -> JSONResponse:
        """Map domain errors to their status code and the error envelope."""
        if exc.status_code >= 500:
            _log.warning("request_failed", path=str(request.url.path), error=exc.code, detail=exc.detail)
        else:
            _log.info("request_rejected", path=str(request.url.path), error=exc.code, detail=exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.code, detail=exc.detail).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = "Invalid request"
        if errors:
            locs = errors[0].get("loc", ())
            field = str(locs[-1]) if locs else ""
            detail = f"{field}: {errors[0].get('msg', '')}" if field else str(errors[0].get("msg", ""))
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="VALIDATION_ERROR", detail=detail).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="INTERNAL_ERROR", detail="An unexpected error occurred.").model_dump(),
        )

    return app
