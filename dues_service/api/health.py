"""Health and readiness endpoints.

  /health (liveness): the process answers. Dependency status is reported
    in the body but never turns the response into an error, so a Redis
    blip does not get the container restarted.

  /ready (readiness): can this instance take billing traffic? With a
    database configured, it must answer a trivial query; money cannot be
    recorded without it. Redis is optional (notifications fall back to
    the in-process queue), so it never fails readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from dues_service.db import engine as db_engine
from dues_service.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        async with db_engine.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        return "degraded"
    return "ok"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed")
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Always 200; ``status`` says whether a dependency is impaired.
    """
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """200 when the database (if configured) answers, else 503."""
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
