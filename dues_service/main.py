from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dues_service.api.billing import router as billing_router
from dues_service.api.fees import router as fees_router
from dues_service.api.health import router as health_router
from dues_service.api.metrics_endpoint import router as metrics_router
from dues_service.api.payments import router as payments_router
from dues_service.api.webhooks import router as webhooks_router
from dues_service.core.config import SETTINGS
from dues_service.core.logging import setup_logging
from dues_service.db.engine import lifespan_db
from dues_service.db.redis import lifespan_redis
from dues_service.middleware.metrics import MetricsMiddleware
from dues_service.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="dues-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last added runs first: RequestContext -> Metrics -> route handler.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(fees_router)
app.include_router(payments_router)
app.include_router(billing_router)
app.include_router(webhooks_router)

logger.info(
    "dues-service started  env=%s log_level=%s port=%d processor=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "stripe" if SETTINGS.stripe_configured else "none",
    "on" if SETTINGS.is_dev else "off",
)
