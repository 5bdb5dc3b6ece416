"""Manual payment recording (cash, check, Zelle).

Three ways in, tried in order:

1. an explicit pending payment id is settled as-is;
2. for dues, the newest pending dues payment on the membership (usually
   one the billing run created) is settled;
3. otherwise a new payment row is created with invoice metadata and
   settled straight away.

If a row was created but settlement then failed, the result says so
(``partial_success``) so the operator knows the money is on record but
the membership has not moved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from uuid import UUID

from dues_service.models.payment import Payment, PaymentMethod, PaymentType
from dues_service.repos.stores import Stores
from dues_service.services.invoice_generator import (
    enrollment_fee_metadata,
    generate_ad_hoc_invoice_metadata,
    today_in_timezone,
)
from dues_service.services.pricing import check_amount_variance
from dues_service.services.settlement import (
    MembershipLocks,
    SettlementRequest,
    SettlementResult,
    settle_payment,
)

logger = logging.getLogger(__name__)


class RecordPaymentError(Exception):
    """Request rejected before anything was written."""

    def __init__(self, message: str, *, status: str = "invalid") -> None:
        super().__init__(message)
        self.status = status  # invalid|not_found|conflict


@dataclass(frozen=True, slots=True)
class RecordPaymentInput:
    org_id: UUID
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


@dataclass(frozen=True, slots=True)
class RecordPaymentResult:
    payment_id: UUID
    settlement: SettlementResult
    created_new: bool = False
    settled_existing: bool = False
    warning: str | None = None

    @property
    def success(self) -> bool:
        return self.settlement.success

    @property
    def partial_success(self) -> bool:
        """Payment row exists but the membership was not credited."""
        return (self.created_new and not self.settlement.success) or (
            self.settlement.partial
        )


def build_notes(
    method: PaymentMethod,
    notes: str | None,
    check_number: str | None = None,
    zelle_transaction_id: str | None = None,
) -> str | None:
    text = notes or ""
    if method == "check" and check_number:
        text = f"Check #{check_number}" + (f" - {text}" if text else "")
    elif method == "zelle" and zelle_transaction_id:
        text = f"Zelle: {zelle_transaction_id}" + (f" - {text}" if text else "")
    return text or None


async def record_manual_payment(
    data: RecordPaymentInput,
    stores: Stores,
    *,
    locks: MembershipLocks | None = None,
    today: date | None = None,
) -> RecordPaymentResult:
    if data.amount_cents <= 0:
        raise RecordPaymentError("amount_cents must be positive")
    if data.type != "enrollment_fee" and data.months_credited <= 0:
        raise RecordPaymentError("dues payments must credit at least one month")

    org = await stores.organizations.get_by_id(data.org_id)
    if org is None:
        raise RecordPaymentError("organization not found", status="not_found")
    membership = await stores.memberships.get_by_id(data.membership_id)
    if membership is None or membership.org_id != data.org_id:
        raise RecordPaymentError("membership not found", status="not_found")

    if data.type != "enrollment_fee" and membership.has_live_subscription:
        raise RecordPaymentError(
            "membership has an active auto-pay subscription "
            f"({membership.subscription_id}, {membership.subscription_status}); "
            "cancel it before recording dues manually",
            status="conflict",
        )

    warning = None
    if data.type != "enrollment_fee" and membership.plan_id is not None:
        plan = await stores.plans.get_by_id(membership.plan_id)
        variance = (
            check_amount_variance(data.amount_cents, plan, data.months_credited)
            if plan is not None
            else None
        )
        if variance is not None and variance.flagged:
            warning = variance.warning
            logger.warning(
                "Payment amount mismatch: membership=%s amount=%d expected=%d months=%d",
                membership.id,
                data.amount_cents,
                variance.expected_cents,
                data.months_credited,
                extra={"membership_id": str(membership.id), "org_id": str(org.id)},
            )

    notes = build_notes(
        data.method, data.notes, data.check_number, data.zelle_transaction_id
    )
    base_request = SettlementRequest(
        method=data.method,
        paid_at=datetime.now(UTC),
        notes=notes,
        recorded_by=data.recorded_by,
    )

    if data.pending_payment_id is not None:
        existing = await stores.payments.get_by_id(data.pending_payment_id)
        if existing is None or existing.membership_id != membership.id:
            raise RecordPaymentError("pending payment not found", status="not_found")
        result = await settle_payment(
            replace(base_request, payment_id=existing.id),
            stores,
            locks=locks,
            today=today,
        )
        _log_result(result)
        return RecordPaymentResult(
            payment_id=existing.id, settlement=result, warning=warning
        )

    if data.type == "dues":
        pending = await stores.payments.find_latest_pending(membership.id, type="dues")
        if pending is not None:
            result = await settle_payment(
                replace(base_request, payment_id=pending.id),
                stores,
                locks=locks,
                today=today,
            )
            _log_result(result)
            return RecordPaymentResult(
                payment_id=pending.id,
                settlement=result,
                settled_existing=True,
                warning=warning,
            )

    local_today = today or today_in_timezone(org.timezone)
    if data.type == "enrollment_fee":
        invoice = enrollment_fee_metadata(local_today)
    else:
        anchor = membership.next_payment_due or local_today
        invoice = await generate_ad_hoc_invoice_metadata(
            org, anchor, data.months_credited, stores.invoice_sequences
        )

    payment = Payment.new(
        org_id=org.id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type=data.type,
        amount_cents=data.amount_cents,
        invoice=invoice,
        method=data.method,
        notes=notes,
        recorded_by=data.recorded_by,
        check_number=data.check_number,
        zelle_transaction_id=data.zelle_transaction_id,
    )
    await stores.payments.add(payment)
    logger.info(
        "Created %s payment %s for membership %s (%s)",
        payment.type,
        payment.id,
        membership.id,
        invoice.period_label,
        extra={"payment_id": str(payment.id), "membership_id": str(membership.id)},
    )

    result = await settle_payment(
        replace(base_request, payment_id=payment.id),
        stores,
        locks=locks,
        today=today,
    )
    _log_result(result)
    return RecordPaymentResult(
        payment_id=payment.id, settlement=result, created_new=True, warning=warning
    )


def _log_result(result: SettlementResult) -> None:
    extra = {
        "payment_id": str(result.payment_id),
        "membership_id": str(result.membership_id),
    }
    if result.success:
        logger.info(
            "Settlement %s: paid_months=%s status=%s eligible=%s",
            result.outcome,
            result.new_paid_months,
            result.new_status,
            result.became_eligible,
            extra=extra,
        )
    else:
        logger.warning(
            "Settlement %s: %s", result.outcome, result.error, extra=extra
        )
