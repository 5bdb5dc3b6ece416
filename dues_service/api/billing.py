"""Billing run trigger.

Normally a scheduler calls this once a day per organization; operators
use ``dry_run`` to preview what a run would bill.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dues_service.api.dependencies import get_stores
from dues_service.repos.stores import Stores
from dues_service.services.billing_run import BillingOptions, process_recurring_billing

router = APIRouter(prefix="/v1/orgs", tags=["billing"])


class BillingRunIn(BaseModel):
    billing_date: date | None = None
    dry_run: bool = False


class BillingRunOut(BaseModel):
    success: bool
    payments_created: int
    payment_ids: list[str]
    skipped: int
    status_updates: int
    errors: list[dict[str, str]]
    timestamp: str
    aborted: str | None = None


@router.post("/{org_id}/billing/run", response_model=BillingRunOut)
async def run_billing(
    org_id: UUID,
    stores: Annotated[Stores, Depends(get_stores)],
    body: BillingRunIn | None = None,
):
    """Create pending dues payments for everything due; returns a summary.

    A run with per-membership errors still answers 200 with
    ``success=false``. An unknown organization answers 404 and a run
    already in progress for the organization answers 409.
    """
    body = body or BillingRunIn()
    result = await process_recurring_billing(
        org_id,
        stores,
        BillingOptions(billing_date=body.billing_date, dry_run=body.dry_run),
    )
    out = BillingRunOut(
        success=result.success,
        payments_created=result.payments_created,
        payment_ids=[str(p) for p in result.payment_ids],
        skipped=result.skipped,
        status_updates=result.status_updates,
        errors=result.errors,
        timestamp=result.timestamp.isoformat(),
        aborted=result.aborted,
    )
    if result.aborted == "not_found":
        return JSONResponse(status_code=404, content=out.model_dump())
    if result.aborted == "in_progress":
        return JSONResponse(status_code=409, content=out.model_dump())
    return out
