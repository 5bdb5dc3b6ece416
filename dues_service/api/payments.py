"""Payment endpoints: manual recording, settlement and card charges.

Every response carries the settlement outcome so an operator can tell a
fresh settlement from a replay. Partial failures (payment on record,
membership not credited) answer 500 with ``partial_success`` set so the
caller knows not to record the money a second time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dues_service.api.dependencies import get_processor, get_stores, get_task_queue
from dues_service.models.payment import Payment, PaymentMethod, PaymentType
from dues_service.repos.stores import Stores
from dues_service.services.fee_calculator import calculate_fees
from dues_service.services.invoice_generator import (
    enrollment_fee_metadata,
    generate_ad_hoc_invoice_metadata,
    today_in_timezone,
)
from dues_service.services.payment_recorder import (
    RecordPaymentError,
    RecordPaymentInput,
    record_manual_payment,
)
from dues_service.services.processor import PaymentProcessor, ProcessorError
from dues_service.services.settlement import (
    SettlementRequest,
    SettlementResult,
    notifications_for,
    settle_payment,
)
from dues_service.services.task_queue import TaskQueue, enqueue_notification

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

_RECORD_ERROR_STATUS = {
    "invalid": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
}

_OUTCOME_STATUS = {
    "settled": status.HTTP_200_OK,
    "already_settled": status.HTTP_200_OK,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid_state": status.HTTP_409_CONFLICT,
    "stale": status.HTTP_409_CONFLICT,
    "partial": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# --- Pydantic schemas ---


class RecordPaymentIn(BaseModel):
    membership_id: UUID
    type: PaymentType
    method: PaymentMethod
    amount_cents: int
    months_credited: int = 0
    check_number: str | None = None
    zelle_transaction_id: str | None = None
    notes: str | None = None
    recorded_by: str | None = None
    pending_payment_id: UUID | None = None


class SettleIn(BaseModel):
    method: PaymentMethod | None = None
    paid_at: datetime | None = None
    processor_transaction_id: str | None = None
    recorded_by: str | None = None
    notes: str | None = None


class ChargeIn(BaseModel):
    membership_id: UUID
    type: PaymentType = "dues"
    amount_cents: int
    months_credited: int = 1
    customer_id: str | None = None
    connected_account_id: str | None = None


class SettlementOut(BaseModel):
    success: bool
    outcome: str
    payment_id: str | None = None
    membership_id: str | None = None
    membership_updated: bool = False
    new_paid_months: int | None = None
    new_status: str | None = None
    became_eligible: bool = False
    error: str | None = None
    subscription_id: str | None = None
    subscription_status: str | None = None


class RecordPaymentOut(BaseModel):
    payment_id: str
    created_new: bool
    settled_existing: bool
    partial_success: bool
    warning: str | None = None
    settlement: SettlementOut


class ChargeOut(BaseModel):
    payment_id: str
    payment_intent_id: str
    client_secret: str | None
    charge_amount_cents: int
    application_fee_cents: int
    net_amount_cents: int


def _settlement_out(result: SettlementResult) -> SettlementOut:
    return SettlementOut(
        success=result.success,
        outcome=result.outcome,
        payment_id=str(result.payment_id) if result.payment_id else None,
        membership_id=str(result.membership_id) if result.membership_id else None,
        membership_updated=result.membership_updated,
        new_paid_months=result.new_paid_months,
        new_status=result.new_status,
        became_eligible=result.became_eligible,
        error=result.error,
        subscription_id=result.subscription_id,
        subscription_status=result.subscription_status,
    )


async def _notify(queue: TaskQueue, result: SettlementResult) -> None:
    for kind, payload in notifications_for(result):
        await enqueue_notification(queue, kind, payload)


# --- Endpoints ---


@router.post("/v1/orgs/{org_id}/payments/record", response_model=RecordPaymentOut)
async def record_payment(
    org_id: UUID,
    body: RecordPaymentIn,
    stores: Annotated[Stores, Depends(get_stores)],
    queue: Annotated[TaskQueue, Depends(get_task_queue)],
):
    """Record cash, check or Zelle money and credit the membership."""
    try:
        recorded = await record_manual_payment(
            RecordPaymentInput(org_id=org_id, **body.model_dump()), stores
        )
    except RecordPaymentError as e:
        raise HTTPException(
            status_code=_RECORD_ERROR_STATUS.get(e.status, status.HTTP_400_BAD_REQUEST),
            detail=str(e),
        ) from None

    await _notify(queue, recorded.settlement)
    out = RecordPaymentOut(
        payment_id=str(recorded.payment_id),
        created_new=recorded.created_new,
        settled_existing=recorded.settled_existing,
        partial_success=recorded.partial_success,
        warning=recorded.warning,
        settlement=_settlement_out(recorded.settlement),
    )
    if recorded.success:
        return out
    if recorded.partial_success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=out.model_dump(),
        )
    return JSONResponse(
        status_code=_OUTCOME_STATUS[recorded.settlement.outcome],
        content=out.model_dump(),
    )


@router.post("/v1/payments/{payment_id}/settle", response_model=SettlementOut)
async def settle(
    payment_id: UUID,
    body: SettleIn,
    stores: Annotated[Stores, Depends(get_stores)],
    queue: Annotated[TaskQueue, Depends(get_task_queue)],
):
    """Settle a pending payment (idempotent)."""
    result = await settle_payment(
        SettlementRequest(payment_id=payment_id, **body.model_dump()), stores
    )
    extra = {"payment_id": str(payment_id)}
    if result.success:
        logger.info("Settle %s: %s", payment_id, result.outcome, extra=extra)
    else:
        logger.warning(
            "Settle %s failed (%s): %s", payment_id, result.outcome, result.error, extra=extra
        )

    await _notify(queue, result)
    out = _settlement_out(result)
    if result.success:
        return out
    return JSONResponse(
        status_code=_OUTCOME_STATUS[result.outcome], content=out.model_dump()
    )


@router.post(
    "/v1/orgs/{org_id}/payments/charge",
    response_model=ChargeOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_charge(
    org_id: UUID,
    body: ChargeIn,
    stores: Annotated[Stores, Depends(get_stores)],
    processor: Annotated[PaymentProcessor, Depends(get_processor)],
) -> ChargeOut:
    """Create a pending card payment and its payment intent.

    The payment is settled later, when the processor's
    ``payment_intent.succeeded`` webhook arrives.
    """
    org = await stores.organizations.get_by_id(org_id)
    if org is None:
        raise HTTPException(status_code=404, detail="organization not found")
    membership = await stores.memberships.get_by_id(body.membership_id)
    if membership is None or membership.org_id != org_id:
        raise HTTPException(status_code=404, detail="membership not found")
    if body.type != "enrollment_fee" and membership.has_live_subscription:
        raise HTTPException(
            status_code=409,
            detail="membership has an active auto-pay subscription",
        )
    if body.amount_cents <= 0:
        raise HTTPException(status_code=400, detail="amount_cents must be positive")

    fees = calculate_fees(body.amount_cents, org.platform_fee_dollars, org.pass_fees_to_member)

    today = today_in_timezone(org.timezone)
    if body.type == "enrollment_fee":
        invoice = enrollment_fee_metadata(today)
    else:
        if body.months_credited <= 0:
            raise HTTPException(
                status_code=400, detail="dues payments must credit at least one month"
            )
        invoice = await generate_ad_hoc_invoice_metadata(
            org,
            membership.next_payment_due or today,
            body.months_credited,
            stores.invoice_sequences,
        )

    payment = Payment.new(
        org_id=org.id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type=body.type,
        amount_cents=body.amount_cents,
        invoice=invoice,
        method="card",
        platform_fee_cents=fees.platform_fee_cents,
        processor_fee_cents=fees.processor_fee_cents,
        total_charged_cents=fees.charge_amount_cents,
        net_amount_cents=fees.net_amount_cents,
    )
    await stores.payments.add(payment)

    try:
        intent = await processor.create_payment_intent(
            amount_cents=fees.charge_amount_cents,
            customer_id=body.customer_id,
            metadata={
                "payment_id": str(payment.id),
                "membership_id": str(membership.id),
                "org_id": str(org.id),
                "payment_type": payment.type,
                "months_credited": str(payment.months_credited),
            },
            application_fee_cents=fees.application_fee_cents,
            connected_account_id=body.connected_account_id,
        )
    except ProcessorError as exc:
        # The row never gets an intent; fail it so manual recording
        # does not pick it up as open dues.
        await stores.payments.mark_failed(payment.id, reason=str(exc))
        logger.warning(
            "Charge failed at processor: payment=%s error=%s",
            payment.id,
            exc,
            extra={"payment_id": str(payment.id), "org_id": str(org.id)},
        )
        raise HTTPException(
            status_code=502, detail=f"payment processor error: {exc}"
        ) from exc

    await stores.payments.link_processor_transaction(payment.id, intent.id)
    logger.info(
        "Charge created: payment=%s intent=%s charge=%d net=%d",
        payment.id,
        intent.id,
        fees.charge_amount_cents,
        fees.net_amount_cents,
        extra={"payment_id": str(payment.id), "org_id": str(org.id)},
    )

    return ChargeOut(
        payment_id=str(payment.id),
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        charge_amount_cents=fees.charge_amount_cents,
        application_fee_cents=fees.application_fee_cents,
        net_amount_cents=fees.net_amount_cents,
    )
