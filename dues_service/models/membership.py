from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal
from uuid import UUID, uuid4

BillingFrequency = Literal["monthly", "biannual", "annual"]
MembershipStatus = Literal["pending", "current", "lapsed", "cancelled"]
EnrollmentFeeStatus = Literal["unpaid", "paid", "waived"]
SubscriptionStatus = Literal[
    "active", "past_due", "trialing", "canceled", "paused", "none"
]

BILLING_FREQUENCIES: tuple[str, ...] = ("monthly", "biannual", "annual")

# A subscription in any of these states is still collecting money.
LIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "past_due"})


@dataclass(frozen=True, slots=True)
class Membership:
    """One member's dues account with one organization.

    ``version`` is bumped by the store on every write and is the
    optimistic-concurrency token for settlement.
    """

    id: UUID
    org_id: UUID
    member_id: UUID
    plan_id: UUID | None
    billing_frequency: BillingFrequency = "monthly"
    status: MembershipStatus = "pending"
    paid_months: int = 0
    next_payment_due: date | None = None
    enrollment_fee_status: EnrollmentFeeStatus = "unpaid"
    auto_pay_enabled: bool = False
    subscription_id: str | None = None
    subscription_status: SubscriptionStatus = "none"
    payer_member_id: UUID | None = None
    agreement_signed_at: datetime | None = None
    join_date: date | None = None
    last_payment_date: date | None = None
    eligible_date: date | None = None
    cancelled_date: date | None = None
    version: int = 0

    @property
    def has_live_subscription(self) -> bool:
        return (
            self.auto_pay_enabled
            and self.subscription_status in LIVE_SUBSCRIPTION_STATUSES
        )

    @property
    def enrollment_fee_settled(self) -> bool:
        return self.enrollment_fee_status in ("paid", "waived")

    @property
    def eligible(self) -> bool:
        return self.eligible_date is not None

    @staticmethod
    def new(
        *,
        org_id: UUID,
        member_id: UUID,
        plan_id: UUID | None = None,
        billing_frequency: BillingFrequency = "monthly",
        next_payment_due: date | None = None,
        payer_member_id: UUID | None = None,
    ) -> Membership:
        return Membership(
            id=uuid4(),
            org_id=org_id,
            member_id=member_id,
            plan_id=plan_id,
            billing_frequency=billing_frequency,
            next_payment_due=next_payment_due,
            payer_member_id=payer_member_id,
        )
