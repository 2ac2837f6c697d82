from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cert_service.api.certificates import router as certificates_router
from cert_service.api.health import router as health_router
from cert_service.api.metrics_endpoint import router as metrics_router
from cert_service.api.signing_credentials import router as signing_credentials_router
from cert_service.api.verification import router as verification_router
from cert_service.core.config import SETTINGS
from cert_service.core.logging import setup_logging
from cert_service.db.engine import lifespan_db
from cert_service.middleware.metrics import MetricsMiddleware
from cert_service.middleware.request_context import RequestContextMiddleware
from cert_service.services.artifact_store import DriveArtifactStore
from cert_service.services.registry import artifact_store

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_db():
        try:
            yield
        finally:
            if isinstance(artifact_store, DriveArtifactStore):
                await artifact_store.aclose()


app = FastAPI(
    title="cert-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext -> Metrics -> route handler.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(verification_router)
app.include_router(signing_credentials_router)
app.include_router(certificates_router)

logger.info(
    "cert-service started  env=%s log_level=%s port=%d artifact_store=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.artifact_store,
    "on" if SETTINGS.is_dev else "off",
)
