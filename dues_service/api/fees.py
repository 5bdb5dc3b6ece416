"""Fee quote endpoints.

Thin wrappers over the fee calculator so a checkout page can show the
member what a card payment will cost before any payment exists.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from dues_service.services.fee_calculator import (
    FeeInputError,
    calculate_fees,
    reverse_calculate_base_amount,
)

router = APIRouter(prefix="/v1/fees", tags=["fees"])


class FeeQuoteIn(BaseModel):
    base_amount_cents: int
    platform_fee_dollars: float = 0.0
    pass_fees_to_member: bool = False


class FeeBreakdownOut(BaseModel):
    base_amount: float
    platform_fee: float
    processor_fee: float
    charge_amount: float
    net_amount: float
    total_fees: float


class FeeQuoteOut(BaseModel):
    base_amount_cents: int
    platform_fee_cents: int
    processor_fee_cents: int
    charge_amount_cents: int
    net_amount_cents: int
    application_fee_cents: int
    pass_fees_to_member: bool
    breakdown: FeeBreakdownOut


class ReverseIn(BaseModel):
    charge_amount_cents: int
    platform_fee_dollars: float = 0.0
    pass_fees_to_member: bool = True


class ReverseOut(BaseModel):
    charge_amount_cents: int
    base_amount_cents: int


@router.post("/quote", response_model=FeeQuoteOut)
def quote_fees(body: FeeQuoteIn) -> FeeQuoteOut:
    """Fee breakdown for charging ``base_amount_cents`` by card."""
    try:
        fees = calculate_fees(
            body.base_amount_cents, body.platform_fee_dollars, body.pass_fees_to_member
        )
    except FeeInputError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None

    dollars = fees.breakdown
    return FeeQuoteOut(
        base_amount_cents=fees.base_amount_cents,
        platform_fee_cents=fees.platform_fee_cents,
        processor_fee_cents=fees.processor_fee_cents,
        charge_amount_cents=fees.charge_amount_cents,
        net_amount_cents=fees.net_amount_cents,
        application_fee_cents=fees.application_fee_cents,
        pass_fees_to_member=fees.pass_fees_to_member,
        breakdown=FeeBreakdownOut(
            base_amount=dollars.base_amount,
            platform_fee=dollars.platform_fee,
            processor_fee=dollars.processor_fee,
            charge_amount=dollars.charge_amount,
            net_amount=dollars.net_amount,
            total_fees=dollars.total_fees,
        ),
    )


@router.post("/reverse", response_model=ReverseOut)
def reverse_fees(body: ReverseIn) -> ReverseOut:
    """Base amount recovered from what a card was actually charged."""
    try:
        base = reverse_calculate_base_amount(
            body.charge_amount_cents, body.platform_fee_dollars, body.pass_fees_to_member
        )
    except FeeInputError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    return ReverseOut(charge_amount_cents=body.charge_amount_cents, base_amount_cents=base)
