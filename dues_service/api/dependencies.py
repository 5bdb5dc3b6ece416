"""FastAPI dependencies shared by the billing routers.

Handlers never build stores or processors themselves; they receive them
here so tests can swap in fakes with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from fastapi import HTTPException, status

from dues_service.db import engine as db_engine
from dues_service.repos.stores import Stores, pg_stores
from dues_service.services import processor as processor_module
from dues_service.services.processor import PaymentProcessor
from dues_service.services.task_queue import TaskQueue, task_queue

logger = logging.getLogger(__name__)

# Used whenever DATABASE_URL is unset (local runs and tests).
memory_stores = Stores.in_memory()


async def get_stores() -> AsyncGenerator[Stores, None]:
    """Request-scoped stores.

    With a database, one session per request: committed when the handler
    returns, rolled back when it raises. A settlement that reports a
    failure in its result has already reverted its own writes, so
    committing is still correct.
    """
    if db_engine.async_session_factory is None:
        yield memory_stores
        return

    async with db_engine.async_session_factory() as session:
        try:
            yield pg_stores(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_processor() -> PaymentProcessor:
    """The configured payment processor, or 503 when none is configured."""
    processor = processor_module.build_processor()
    if processor is None:
        logger.warning("Payment processor requested but STRIPE_SECRET_KEY is unset")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment processor is not configured",
        )
    return processor


def get_task_queue() -> TaskQueue:
    return task_queue
