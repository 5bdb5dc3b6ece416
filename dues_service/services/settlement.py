"""Settlement engine: finalize a pending payment and advance its membership.

This is the only place paid months, next-due dates, eligibility and the
payment-standing status move. It is called by manual payment recording
and by processor webhooks, which can race each other and can deliver the
same event twice, so:

* an already-completed payment is a success with no mutation;
* the payment write is a conditional ``pending -> completed`` update;
* the membership write is a compare-and-set on ``version``;
* if the membership write fails the payment is put back to ``pending``;
* callers in one process are serialized per membership by
  ``MembershipLocks``.

Nothing here logs or notifies. Every outcome comes back as a
``SettlementResult`` and the caller decides what to say about it.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from typing import Literal
from uuid import UUID

from dues_service.core.metrics import (
    ELIGIBILITY_TRANSITIONS,
    MONTHS_CREDITED,
    SETTLEMENTS,
)
from dues_service.models.membership import Membership, MembershipStatus
from dues_service.models.payment import DUES_TYPES, Payment, PaymentMethod
from dues_service.repos.membership_repo import StaleMembershipError
from dues_service.repos.payment_repo import PaymentNotPendingError, PaymentRepo
from dues_service.repos.stores import Stores
from dues_service.services.invoice_generator import (
    add_months_preserve_day,
    today_in_timezone,
)

SettlementOutcome = Literal[
    "settled",
    "already_settled",
    "not_found",
    "conflict",
    "invalid_state",
    "stale",
    "partial",
    "error",
]


@dataclass(frozen=True, slots=True)
class SettlementRequest:
    """What the caller knows about money that has been received.

    Identify the payment by ``payment_id``, or by the processor's
    transaction id when that is all a webhook carries.
    """

    payment_id: UUID | None = None
    processor_transaction_id: str | None = None
    method: PaymentMethod | None = None
    paid_at: datetime | None = None
    recorded_by: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class SettlementResult:
    success: bool
    outcome: SettlementOutcome
    payment_id: UUID | None = None
    membership_id: UUID | None = None
    membership_updated: bool = False
    new_paid_months: int | None = None
    new_status: MembershipStatus | None = None
    became_eligible: bool = False
    months_credited: int = 0
    error: str | None = None
    subscription_id: str | None = None
    subscription_status: str | None = None

    @property
    def partial(self) -> bool:
        """Payment is recorded as completed but the membership did not move."""
        return self.outcome == "partial"


class MembershipLocks:
    """In-process per-membership locks.

    Locks are created on first use and dropped once nobody holds or waits
    on them, so the registry stays small and no lock outlives the event
    loop it was used on.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, membership_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.get(membership_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[membership_id] = lock
        self._users[membership_id] = self._users.get(membership_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[membership_id] -= 1
            if self._users[membership_id] == 0:
                del self._users[membership_id]
                del self._locks[membership_id]

    def __len__(self) -> int:
        return len(self._locks)


membership_locks = MembershipLocks()


def apply_settlement(
    membership: Membership,
    payment: Payment,
    *,
    eligibility_months: int,
    today: date,
    paid_on: date,
) -> tuple[Membership, bool]:
    """Membership as it should look after ``payment`` settles.

    Returns the new membership and whether this settlement is the one that
    first reached the eligibility threshold.
    """
    months = payment.months_credited if payment.type in DUES_TYPES else 0
    previous = membership.paid_months
    paid_months = min(previous + months, eligibility_months)
    if paid_months < previous:
        # Already above a lowered threshold; never move backwards.
        paid_months = previous

    next_due = membership.next_payment_due
    if months > 0:
        next_due = add_months_preserve_day(next_due or today, months)

    status: MembershipStatus = membership.status
    join_date = membership.join_date
    if membership.status == "pending" and membership.agreement_signed_at is not None:
        status = "current"
        join_date = join_date or today
    elif membership.status == "lapsed":
        status = "current"

    enrollment_fee_status = membership.enrollment_fee_status
    if payment.type == "enrollment_fee" and enrollment_fee_status != "waived":
        enrollment_fee_status = "paid"

    was_eligible = membership.eligible or previous >= eligibility_months
    became_eligible = (
        not was_eligible
        and paid_months >= eligibility_months
        and membership.status != "cancelled"
    )

    updated = replace(
        membership,
        paid_months=paid_months,
        next_payment_due=next_due,
        status=status,
        join_date=join_date,
        enrollment_fee_status=enrollment_fee_status,
        last_payment_date=paid_on,
        eligible_date=today if became_eligible else membership.eligible_date,
    )
    return updated, became_eligible


async def settle_payment(
    request: SettlementRequest,
    stores: Stores,
    *,
    locks: MembershipLocks | None = None,
    today: date | None = None,
) -> SettlementResult:
    """Mark a pending payment completed and credit its membership.

    ``today`` overrides the organization-local date (tests, backfills).
    """
    payment = await _resolve_payment(request, stores.payments)
    if payment is None:
        return _finish(
            SettlementResult(
                success=False,
                outcome="not_found",
                payment_id=request.payment_id,
                error="Payment not found",
            )
        )

    early = _check_terminal(payment)
    if early is not None:
        return _finish(early)

    if locks is None:
        locks = membership_locks
    async with locks.hold(payment.membership_id):
        result = await _settle_locked(payment.id, request, stores, today)
    return _finish(result)


async def mark_payment_failed(
    payment_id: UUID,
    stores: Stores,
    *,
    reason: str | None = None,
    processor_transaction_id: str | None = None,
) -> Payment | None:
    """``pending -> failed``. Terminal payments are left untouched (None)."""
    return await stores.payments.mark_failed(
        payment_id,
        reason=reason,
        processor_transaction_id=processor_transaction_id,
    )


async def _resolve_payment(
    request: SettlementRequest, payments: PaymentRepo
) -> Payment | None:
    if request.payment_id is not None:
        return await payments.get_by_id(request.payment_id)
    if request.processor_transaction_id:
        return await payments.get_by_processor_transaction_id(
            request.processor_transaction_id
        )
    return None


def _check_terminal(payment: Payment) -> SettlementResult | None:
    if payment.status == "completed":
        return SettlementResult(
            success=True,
            outcome="already_settled",
            payment_id=payment.id,
            membership_id=payment.membership_id,
            error="Payment was already completed (no action taken)",
        )
    if payment.status in ("failed", "refunded"):
        return SettlementResult(
            success=False,
            outcome="invalid_state",
            payment_id=payment.id,
            membership_id=payment.membership_id,
            error=f"Cannot settle a {payment.status} payment",
        )
    return None


async def _settle_locked(
    payment_id: UUID,
    request: SettlementRequest,
    stores: Stores,
    today: date | None,
) -> SettlementResult:
    # Re-read under the lock: a concurrent caller may have finished first.
    payment = await stores.payments.get_by_id(payment_id)
    if payment is None:
        return SettlementResult(
            success=False,
            outcome="not_found",
            payment_id=payment_id,
            error="Payment not found",
        )
    early = _check_terminal(payment)
    if early is not None:
        return early

    membership = await stores.memberships.get_by_id(payment.membership_id)
    if membership is None:
        return SettlementResult(
            success=False,
            outcome="not_found",
            payment_id=payment.id,
            membership_id=payment.membership_id,
            error="Membership not found for payment",
        )

    if payment.type in DUES_TYPES and membership.has_live_subscription:
        return SettlementResult(
            success=False,
            outcome="conflict",
            payment_id=payment.id,
            membership_id=membership.id,
            error=(
                "Membership has an active recurring subscription; "
                "cancel it before settling dues manually"
            ),
            subscription_id=membership.subscription_id,
            subscription_status=membership.subscription_status,
        )

    org = await stores.organizations.get_by_id(payment.org_id)
    if org is None:
        return SettlementResult(
            success=False,
            outcome="not_found",
            payment_id=payment.id,
            membership_id=membership.id,
            error="Organization not found for payment",
        )

    paid_at = request.paid_at or datetime.now(UTC)
    local_today = today or today_in_timezone(org.timezone)
    paid_on = today or today_in_timezone(org.timezone, now=paid_at)

    original = payment
    try:
        payment = await stores.payments.mark_completed(
            payment.id,
            paid_at=paid_at,
            method=request.method,
            processor_transaction_id=request.processor_transaction_id,
            recorded_by=request.recorded_by,
            notes=request.notes,
        )
    except PaymentNotPendingError:
        current = await stores.payments.get_by_id(payment.id)
        if current is not None and current.status == "completed":
            return SettlementResult(
                success=True,
                outcome="already_settled",
                payment_id=payment.id,
                membership_id=membership.id,
                error="Payment was already completed (no action taken)",
            )
        return SettlementResult(
            success=False,
            outcome="invalid_state",
            payment_id=payment.id,
            membership_id=membership.id,
            error="Payment left the pending state during settlement",
        )

    updated, became_eligible = apply_settlement(
        membership,
        payment,
        eligibility_months=org.billing.eligibility_months,
        today=local_today,
        paid_on=paid_on,
    )

    try:
        stored = await stores.memberships.compare_and_set(updated, membership.version)
    except Exception as exc:
        return await _roll_back(original, membership, exc, stores.payments)

    return SettlementResult(
        success=True,
        outcome="settled",
        payment_id=payment.id,
        membership_id=stored.id,
        membership_updated=True,
        new_paid_months=stored.paid_months,
        new_status=stored.status,
        became_eligible=became_eligible,
        months_credited=stored.paid_months - membership.paid_months,
    )


async def _roll_back(
    original: Payment,
    membership: Membership,
    cause: Exception,
    payments: PaymentRepo,
) -> SettlementResult:
    try:
        await payments.revert_to_pending(original)
    except Exception as revert_exc:
        return SettlementResult(
            success=False,
            outcome="partial",
            payment_id=original.id,
            membership_id=membership.id,
            error=(
                "Payment recorded but membership was not updated: "
                f"{cause}; revert failed: {revert_exc}"
            ),
        )

    if isinstance(cause, StaleMembershipError):
        return SettlementResult(
            success=False,
            outcome="stale",
            payment_id=original.id,
            membership_id=membership.id,
            error="Membership changed during settlement; payment left pending",
        )
    return SettlementResult(
        success=False,
        outcome="error",
        payment_id=original.id,
        membership_id=membership.id,
        error=f"Membership update failed; payment left pending: {cause}",
    )


def notifications_for(result: SettlementResult) -> list[tuple[str, dict[str, str]]]:
    """Which notifications a settlement warrants, as ``(kind, payload)``.

    Only a fresh settlement notifies; replays and failures stay quiet.
    """
    if result.outcome != "settled":
        return []
    payload = {
        "payment_id": str(result.payment_id),
        "membership_id": str(result.membership_id),
    }
    planned = [("payment_receipt", payload)]
    if result.became_eligible:
        planned.append(
            ("eligibility_reached", {**payload, "paid_months": str(result.new_paid_months)})
        )
    return planned


def _finish(result: SettlementResult) -> SettlementResult:
    SETTLEMENTS.labels(outcome=result.outcome).inc()
    if result.outcome == "settled":
        MONTHS_CREDITED.inc(result.months_credited)
        if result.became_eligible:
            ELIGIBILITY_TRANSITIONS.inc()
    return result
