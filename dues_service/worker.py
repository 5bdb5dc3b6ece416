"""Recurring billing worker.

RUN:  python -m dues_service.worker

Same image as the API, different command:
  api:     uvicorn dues_service.main:app --host 0.0.0.0 --port 8000
  worker:  python -m dues_service.worker

Once per BILLING_INTERVAL_SECONDS the worker runs recurring billing for
every active organization in one database transaction. Each organization
and each membership write sits in its own savepoint; one that fails is
rolled back, logged and skipped, and the next cycle tries it again. The
per-org run guard is in-process, so run exactly one worker.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from dues_service.core.config import SETTINGS
from dues_service.core.logging import setup_logging
from dues_service.db import engine as db_engine
from dues_service.repos.stores import Stores, pg_stores
from dues_service.services.billing_run import (
    BillingRunResult,
    process_all_organizations_billing,
)

logger = logging.getLogger(__name__)


async def run_billing_once(stores: Stores | None = None) -> dict[UUID, BillingRunResult]:
    """One billing cycle over all organizations.

    Without explicit ``stores`` this needs DATABASE_URL; the in-memory
    stores live in the API process and are not visible from here.
    """
    if stores is not None:
        return await process_all_organizations_billing(stores)

    if db_engine.async_session_factory is None:
        logger.error("Billing worker needs DATABASE_URL; nothing to bill")
        return {}

    async with db_engine.async_session_factory() as session:
        try:
            results = await process_all_organizations_billing(pg_stores(session))
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return results


def summarize(results: dict[UUID, BillingRunResult]) -> dict[str, int]:
    return {
        "organizations": len(results),
        "failed": sum(1 for r in results.values() if not r.success),
        "payments_created": sum(r.payments_created for r in results.values()),
        "status_updates": sum(r.status_updates for r in results.values()),
    }


async def run_worker() -> None:
    logger.info(
        "Billing worker started: interval=%ds", SETTINGS.billing_interval_seconds
    )
    while True:
        try:
            summary = summarize(await run_billing_once())
            logger.info(
                "Billing cycle done: orgs=%d failed=%d created=%d status_updates=%d",
                summary["organizations"],
                summary["failed"],
                summary["payments_created"],
                summary["status_updates"],
            )
        except Exception:
            logger.exception("Billing cycle failed")
        await asyncio.sleep(SETTINGS.billing_interval_seconds)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
