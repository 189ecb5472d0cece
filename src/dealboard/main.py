"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
a lifespan that selects and bootstraps the local store and wires the
services onto ``app.state``, and the API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealboard.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealboard.api.v1.router import router as api_router
from src.dealboard.config import Settings, get_settings
from src.dealboard.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dealboard.crm.activity import ActivityMergeEngine
from src.dealboard.crm.salesforce import SalesforceClient
from src.dealboard.crm.source import RemoteRecordSource
from src.dealboard.store.adapter import LocalStore, create_store
from src.dealboard.store.repository import (
    OpportunityRepository,
    PreferenceRepository,
    SyncLogRepository,
)
from src.dealboard.sync.orchestrator import SyncOrchestrator
from src.dealboard.views.service import ViewService


@dataclass
class Services:
    """Everything a request handler or the sync CLI needs, built once."""

    store: LocalStore
    salesforce: SalesforceClient
    opportunity_repository: OpportunityRepository
    sync_log_repository: SyncLogRepository
    preference_repository: PreferenceRepository
    sync_orchestrator: SyncOrchestrator
    view_service: ViewService

    async def aclose(self) -> None:
        await self.salesforce.aclose()
        await self.store.close()


def build_services(
    settings: Settings,
    store: LocalStore,
    salesforce: SalesforceClient | None = None,
) -> Services:
    """Wire repositories, the sync pipeline and the view service around a store."""
    if salesforce is None:
        salesforce = SalesforceClient(
            username=settings.SALESFORCE_USERNAME,
            password=settings.SALESFORCE_PASSWORD,
            security_token=settings.SALESFORCE_SECURITY_TOKEN,
            login_url=settings.SALESFORCE_LOGIN_URL,
            api_version=settings.SALESFORCE_API_VERSION,
            timeout=settings.SALESFORCE_TIMEOUT,
        )

    opportunity_repository = OpportunityRepository(store)
    sync_log_repository = SyncLogRepository(store)
    preference_repository = PreferenceRepository(store)

    orchestrator = SyncOrchestrator(
        source=RemoteRecordSource(
            salesforce,
            excluded_owners=settings.source_excluded_owners,
            limit=settings.SALESFORCE_QUERY_LIMIT,
        ),
        merger=ActivityMergeEngine(
            salesforce,
            batch_size=settings.ACTIVITY_BATCH_SIZE,
            timeout=settings.SYNC_MERGE_TIMEOUT,
        ),
        opportunities=opportunity_repository,
        sync_log=sync_log_repository,
        fetch_timeout=settings.SYNC_FETCH_TIMEOUT,
        isolate_record_failures=settings.SYNC_ISOLATE_RECORD_FAILURES,
    )

    view_service = ViewService(
        opportunity_repository,
        preference_repository,
        default_user_id=settings.DEFAULT_USER_ID,
    )

    return Services(
        store=store,
        salesforce=salesforce,
        opportunity_repository=opportunity_repository,
        sync_log_repository=sync_log_repository,
        preference_repository=preference_repository,
        sync_orchestrator=orchestrator,
        view_service=view_service,
    )


def attach_services(app: FastAPI, services: Services) -> None:
    app.state.services = services
    app.state.store = services.store
    app.state.opportunity_repository = services.opportunity_repository
    app.state.sync_log_repository = services.sync_log_repository
    app.state.sync_orchestrator = services.sync_orchestrator
    app.state.view_service = services.view_service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: store + services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    store = await create_store(settings)
    services = build_services(settings, store)
    attach_services(app, services)
    log.info("startup.complete", backend=store.dialect_name)

    yield

    await services.aclose()
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dealboard API",
        version="0.1.0",
        description="Salesforce opportunity mirror with follow-up views",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(api_router)

    # Prometheus metrics endpoint (infrastructure route, outside /api)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
