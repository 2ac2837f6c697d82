"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; the body's
                       "status" reports "degraded" when a dependency is.
  /ready (readiness):  can this instance take traffic?  503 when the
                       database is configured but unreachable.

The artifact store is optional (downloads fall back to inline
rendering), so it never makes the instance unready.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from cert_service.db.engine import engine
from cert_service.services.registry import artifact_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_check() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _database_check(),
        "artifact_store": "ok" if artifact_store.is_available() else "not_configured",
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_check() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
