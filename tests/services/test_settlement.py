"""Settlement engine tests.

Every test runs against fresh in-memory stores; ``today`` is pinned so
due-date arithmetic is deterministic.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, date, datetime

import pytest
from prometheus_client import REGISTRY

from dues_service.models.invoice import InvoiceMetadata
from dues_service.models.payment import Payment
from dues_service.repos.membership_repo import InMemoryMembershipRepo
from dues_service.repos.payment_repo import InMemoryPaymentRepo
from dues_service.repos.stores import Stores
from dues_service.services.settlement import (
    MembershipLocks,
    SettlementRequest,
    apply_settlement,
    mark_payment_failed,
    notifications_for,
    settle_payment,
)
from tests.conftest import TODAY, create_test_membership, create_test_org


def _invoice(months: int, start: date = TODAY) -> InvoiceMetadata:
    return InvoiceMetadata(
        invoice_number=None,
        due_date=start,
        period_start=start,
        period_end=start,
        period_label="test",
        months_credited=months,
    )


def _pending(stores: Stores, membership, *, type="dues", months=1, **kw) -> Payment:
    payment = Payment.new(
        org_id=membership.org_id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type=type,
        amount_cents=2500 * max(months, 1),
        invoice=None if type == "enrollment_fee" else _invoice(months),
        **kw,
    )
    asyncio.run(stores.payments.add(payment))
    return payment


def _settle(stores: Stores, payment_id, **kw):
    request = SettlementRequest(payment_id=payment_id, method=kw.pop("method", "cash"))
    return asyncio.run(settle_payment(request, stores, today=TODAY, **kw))


def _membership(stores: Stores, membership_id):
    return asyncio.run(stores.memberships.get_by_id(membership_id))


def _payment(stores: Stores, payment_id):
    return asyncio.run(stores.payments.get_by_id(payment_id))


def _sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


# ---- happy path ----


def test_settles_pending_dues(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=3)
    payment = _pending(stores, membership, months=1)

    result = _settle(stores, payment.id)

    assert result.success is True
    assert result.outcome == "settled"
    assert result.membership_updated is True
    assert result.new_paid_months == 4
    assert result.months_credited == 1
    stored = _payment(stores, payment.id)
    assert stored.status == "completed"
    assert stored.method == "cash"
    assert stored.paid_at is not None
    m = _membership(stores, membership.id)
    assert m.paid_months == 4
    assert m.next_payment_due == date(2025, 4, 10)
    assert m.last_payment_date == TODAY
    assert m.version == membership.version + 1


def test_due_date_advances_from_current_due_not_today(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, next_payment_due=date(2025, 1, 31))
    payment = _pending(stores, membership, months=1)

    _settle(stores, payment.id)

    assert _membership(stores, membership.id).next_payment_due == date(2025, 2, 28)


def test_due_date_starts_from_today_when_unset(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, next_payment_due=None)
    payment = _pending(stores, membership, months=6)

    _settle(stores, payment.id)

    assert _membership(stores, membership.id).next_payment_due == date(2025, 9, 10)


def test_lookup_by_processor_transaction_id(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership, processor_transaction_id="pi_123")

    result = asyncio.run(
        settle_payment(
            SettlementRequest(processor_transaction_id="pi_123", method="card"),
            stores,
            today=TODAY,
        )
    )

    assert result.outcome == "settled"
    assert result.payment_id == payment.id


# ---- idempotency ----


def test_second_settlement_is_a_no_op(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=10)
    payment = _pending(stores, membership, months=1)

    first = _settle(stores, payment.id)
    second = _settle(stores, payment.id)

    assert first.outcome == "settled"
    assert second.success is True
    assert second.outcome == "already_settled"
    assert second.membership_updated is False
    assert _membership(stores, membership.id).paid_months == 11


def test_concurrent_settlements_credit_once(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=10)
    payment = _pending(stores, membership, months=2)
    locks = MembershipLocks()

    async def _race():
        request = SettlementRequest(payment_id=payment.id, method="cash")
        return await asyncio.gather(
            *(settle_payment(request, stores, locks=locks, today=TODAY) for _ in range(5))
        )

    results = asyncio.run(_race())

    outcomes = sorted(r.outcome for r in results)
    assert outcomes == ["already_settled"] * 4 + ["settled"]
    assert all(r.success for r in results)
    assert _membership(stores, membership.id).paid_months == 12
    assert len(locks) == 0


def test_unknown_payment_is_not_found(stores) -> None:
    from uuid import uuid4

    result = _settle(stores, uuid4())
    assert result.success is False
    assert result.outcome == "not_found"


def test_request_without_identifier_is_not_found(stores) -> None:
    result = asyncio.run(settle_payment(SettlementRequest(), stores, today=TODAY))
    assert result.outcome == "not_found"


@pytest.mark.parametrize("status", ["failed", "refunded"])
def test_terminal_failed_payments_are_invalid_state(stores, status) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=5)
    payment = _pending(stores, membership)
    stores.payments._by_id[payment.id] = replace(payment, status=status)

    result = _settle(stores, payment.id)

    assert result.success is False
    assert result.outcome == "invalid_state"
    assert _membership(stores, membership.id).paid_months == 5


def test_missing_membership_is_not_found(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)
    stores.memberships._by_id.clear()

    result = _settle(stores, payment.id)

    assert result.outcome == "not_found"
    assert _payment(stores, payment.id).status == "pending"


# ---- conflict guard ----


@pytest.mark.parametrize("sub_status", ["active", "trialing", "past_due"])
def test_live_subscription_blocks_manual_dues(stores, sub_status) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores,
        org,
        paid_months=7,
        auto_pay_enabled=True,
        subscription_id="sub_1",
        subscription_status=sub_status,
    )
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)

    assert result.success is False
    assert result.outcome == "conflict"
    assert result.subscription_id == "sub_1"
    assert result.subscription_status == sub_status
    assert _membership(stores, membership.id).paid_months == 7
    assert _payment(stores, payment.id).status == "pending"


def test_canceled_subscription_does_not_block(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores,
        org,
        auto_pay_enabled=True,
        subscription_id="sub_1",
        subscription_status="canceled",
    )
    payment = _pending(stores, membership)

    assert _settle(stores, payment.id).outcome == "settled"


def test_enrollment_fee_is_not_blocked_by_subscription(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores,
        org,
        enrollment_fee_status="unpaid",
        auto_pay_enabled=True,
        subscription_status="active",
    )
    payment = _pending(stores, membership, type="enrollment_fee", months=0)

    result = _settle(stores, payment.id)

    assert result.outcome == "settled"
    m = _membership(stores, membership.id)
    assert m.enrollment_fee_status == "paid"
    assert m.paid_months == membership.paid_months
    assert m.next_payment_due == membership.next_payment_due


# ---- eligibility ----


def test_eligibility_fires_exactly_once(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=59)
    first = _pending(stores, membership)
    second = _pending(stores, membership)

    r1 = _settle(stores, first.id)
    r2 = _settle(stores, second.id)

    assert r1.became_eligible is True
    assert r1.new_paid_months == 60
    assert r2.became_eligible is False
    assert r2.new_paid_months == 60
    m = _membership(stores, membership.id)
    assert m.eligible_date == TODAY


def test_paid_months_saturate_at_threshold(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=55)
    payment = _pending(stores, membership, type="back_dues", months=12)

    result = _settle(stores, payment.id)

    assert result.new_paid_months == 60
    assert result.months_credited == 5
    assert result.became_eligible is True
    # the due date still moves by the full 12 months
    assert _membership(stores, membership.id).next_payment_due == date(2026, 3, 10)


def test_org_threshold_is_respected(stores) -> None:
    org = create_test_org(stores, eligibility_months=12)
    membership = create_test_membership(stores, org, paid_months=11)
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)

    assert result.became_eligible is True
    assert result.new_paid_months == 12


def test_cancelled_membership_never_becomes_eligible() -> None:
    from uuid import uuid4

    from dues_service.models.membership import Membership

    membership = replace(
        Membership.new(org_id=uuid4(), member_id=uuid4()),
        status="cancelled",
        paid_months=59,
    )
    payment = Payment.new(
        org_id=membership.org_id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type="dues",
        amount_cents=2500,
        invoice=_invoice(1),
    )
    updated, became = apply_settlement(
        membership, payment, eligibility_months=60, today=TODAY, paid_on=TODAY
    )
    assert updated.paid_months == 60
    assert became is False
    assert updated.eligible_date is None


def test_paid_months_never_decrease_when_threshold_lowered() -> None:
    from uuid import uuid4

    from dues_service.models.membership import Membership

    membership = replace(
        Membership.new(org_id=uuid4(), member_id=uuid4()),
        status="current",
        paid_months=70,
        eligible_date=date(2020, 1, 1),
    )
    payment = Payment.new(
        org_id=membership.org_id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type="dues",
        amount_cents=2500,
        invoice=_invoice(1),
    )
    updated, became = apply_settlement(
        membership, payment, eligibility_months=60, today=TODAY, paid_on=TODAY
    )
    assert updated.paid_months == 70
    assert became is False
    assert updated.eligible_date == date(2020, 1, 1)


# ---- standing ----


def test_pending_member_with_agreement_becomes_current(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, status="pending", join_date=None)
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)

    assert result.new_status == "current"
    assert _membership(stores, membership.id).join_date == TODAY


def test_pending_member_without_agreement_stays_pending(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores, org, status="pending", agreement_signed_at=None
    )
    payment = _pending(stores, membership)

    assert _settle(stores, payment.id).new_status == "pending"


def test_lapsed_member_returns_to_current(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, status="lapsed")
    payment = _pending(stores, membership)

    assert _settle(stores, payment.id).new_status == "current"


def test_waived_enrollment_fee_stays_waived(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, enrollment_fee_status="waived")
    payment = _pending(stores, membership, type="enrollment_fee", months=0)

    _settle(stores, payment.id)

    assert _membership(stores, membership.id).enrollment_fee_status == "waived"


# ---- rollback ----


class _StaleMembershipRepo(InMemoryMembershipRepo):
    """Bumps the stored version right before the write, like a racing writer."""

    async def compare_and_set(self, updated, expected_version):
        current = self._by_id[updated.id]
        self._by_id[updated.id] = replace(current, version=current.version + 1)
        return await super().compare_and_set(updated, expected_version)


class _BrokenMembershipRepo(InMemoryMembershipRepo):
    async def compare_and_set(self, updated, expected_version):
        raise RuntimeError("connection reset")


class _NoRevertPaymentRepo(InMemoryPaymentRepo):
    async def revert_to_pending(self, original):
        raise RuntimeError("payments table unavailable")


def test_stale_membership_rolls_payment_back(stores) -> None:
    stores.memberships = _StaleMembershipRepo()
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=4)
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)

    assert result.success is False
    assert result.outcome == "stale"
    assert result.partial is False
    stored = _payment(stores, payment.id)
    assert stored.status == "pending"
    assert stored.paid_at is None
    assert _membership(stores, membership.id).paid_months == 4


def test_failed_membership_write_rolls_payment_back(stores) -> None:
    stores.memberships = _BrokenMembershipRepo()
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)

    request = SettlementRequest(
        payment_id=payment.id,
        method="check",
        processor_transaction_id="pi_X",
        recorded_by="treasurer",
        notes="Check #1",
    )

    result = asyncio.run(settle_payment(request, stores, today=TODAY))

    assert result.outcome == "error"
    assert "connection reset" in result.error
    stored = _payment(stores, payment.id)
    assert stored.status == "pending"
    assert stored.paid_at is None
    assert stored.method is None
    assert stored.processor_transaction_id is None
    assert stored.recorded_by is None
    assert stored.notes is None
    # still reachable by the webhook fallback for unlinked pending payments
    found = asyncio.run(
        stores.payments.find_latest_pending(membership.id, unlinked_only=True)
    )
    assert found.id == payment.id


def test_failed_rollback_is_partial(stores) -> None:
    stores.memberships = _BrokenMembershipRepo()
    stores.payments = _NoRevertPaymentRepo()
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)

    assert result.success is False
    assert result.outcome == "partial"
    assert result.partial is True
    assert "revert failed" in result.error
    assert _payment(stores, payment.id).status == "completed"


def test_rolled_back_payment_can_be_settled_again(stores) -> None:
    stores.memberships = _StaleMembershipRepo()
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=4)
    payment = _pending(stores, membership)
    assert _settle(stores, payment.id).outcome == "stale"

    fresh = InMemoryMembershipRepo()
    fresh._by_id = stores.memberships._by_id
    stores.memberships = fresh

    assert _settle(stores, payment.id).outcome == "settled"
    assert _membership(stores, membership.id).paid_months == 5


# ---- failures, notifications, metrics ----


def test_mark_payment_failed_only_touches_pending(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)

    failed = asyncio.run(mark_payment_failed(payment.id, stores, reason="card_declined"))
    again = asyncio.run(mark_payment_failed(payment.id, stores, reason="other"))

    assert failed.status == "failed"
    assert failed.failure_reason == "card_declined"
    assert again is None
    assert _settle(stores, payment.id).outcome == "invalid_state"


def test_notifications_for_fresh_settlement(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=59)
    payment = _pending(stores, membership)

    result = _settle(stores, payment.id)
    kinds = [kind for kind, _ in notifications_for(result)]
    assert kinds == ["payment_receipt", "eligibility_reached"]

    replay = _settle(stores, payment.id)
    assert notifications_for(replay) == []


def test_settlement_outcomes_are_counted(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)

    settled_before = _sample("settlements_total", {"outcome": "settled"})
    replay_before = _sample("settlements_total", {"outcome": "already_settled"})
    _settle(stores, payment.id)
    _settle(stores, payment.id)

    assert _sample("settlements_total", {"outcome": "settled"}) - settled_before == 1
    assert (
        _sample("settlements_total", {"outcome": "already_settled"}) - replay_before == 1
    )


def test_paid_at_is_recorded_from_request(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    payment = _pending(stores, membership)
    paid_at = datetime(2025, 3, 9, 18, 0, tzinfo=UTC)

    asyncio.run(
        settle_payment(
            SettlementRequest(payment_id=payment.id, method="check", paid_at=paid_at),
            stores,
            today=TODAY,
        )
    )

    assert _payment(stores, payment.id).paid_at == paid_at
