"""FastAPI application wiring for the storefront auth service."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
import httpx
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.admin import router as admin_router
from .api.deps import build_attempt_limiter
from .api.routes import router as v1_router
from .config import get_settings
from .domain.administration import AccountAdministrationService
from .domain.audit import AuditTrail
from .domain.contracts import ADMIN_AUDIENCE, CUSTOMER_AUDIENCE
from .domain.guard import AccessGuard
from .domain.service import AuthenticationService
from .identity.gotrue import GoTrueIdentityProvider
from .repository import AccountRepository

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, identity client, services) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    client = httpx.Client(base_url=settings.identity_url, timeout=settings.identity_timeout_seconds)

    provider = GoTrueIdentityProvider(
        client,
        anon_key=settings.identity_anon_key,
        service_key=settings.identity_service_key,
    )
    repository = AccountRepository(pool)
    audit = AuditTrail(repository)

    app.state.pool = pool
    app.state.audit_trail = audit
    app.state.admin_auth = AuthenticationService(provider, repository, audit, ADMIN_AUDIENCE, settings)
    app.state.shop_auth = AuthenticationService(provider, repository, audit, CUSTOMER_AUDIENCE, settings)
    app.state.access_guard = AccessGuard(provider, repository)
    app.state.administration = AccountAdministrationService(provider, repository, audit)
    app.state.attempt_limiter = build_attempt_limiter(settings)
    logger.info("storefront auth ready (identity provider at %s)", settings.identity_url)
    try:
        yield
    finally:
        client.close()
        pool.close()
        pool.wait_close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# Session cookies are sent cross-origin by the storefront frontend.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
app.include_router(admin_router)
