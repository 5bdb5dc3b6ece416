from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

import pytest

from dues_service.models.invoice import InvoiceMetadata
from dues_service.models.payment import Payment
from dues_service.repos.membership_repo import InMemoryMembershipRepo
from dues_service.services.payment_recorder import (
    RecordPaymentError,
    RecordPaymentInput,
    build_notes,
    record_manual_payment,
)
from tests.conftest import (
    TODAY,
    create_test_membership,
    create_test_org,
    create_test_plan,
)


def _input(org, membership, **kw) -> RecordPaymentInput:
    fields = {
        "org_id": org.id,
        "membership_id": membership.id,
        "type": "dues",
        "method": "cash",
        "amount_cents": 2500,
        "months_credited": 1,
        **kw,
    }
    return RecordPaymentInput(**fields)


def _record(stores, data):
    return asyncio.run(record_manual_payment(data, stores, today=TODAY))


def _billing_run_payment(stores, membership) -> Payment:
    payment = Payment.new(
        org_id=membership.org_id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type="dues",
        amount_cents=2500,
        invoice=InvoiceMetadata(
            invoice_number="INV-OF-202503-0001",
            due_date=TODAY,
            period_start=TODAY,
            period_end=TODAY,
            period_label="March 2025",
            months_credited=1,
        ),
    )
    asyncio.run(stores.payments.add(payment))
    return payment


# ---- notes ----


def test_build_notes_prefixes_check_number() -> None:
    assert build_notes("check", "Ramadan drive", check_number="1042") == (
        "Check #1042 - Ramadan drive"
    )
    assert build_notes("check", None, check_number="1042") == "Check #1042"


def test_build_notes_prefixes_zelle_reference() -> None:
    assert build_notes("zelle", None, zelle_transaction_id="ZX9") == "Zelle: ZX9"


def test_build_notes_empty_is_none() -> None:
    assert build_notes("cash", None) is None
    assert build_notes("cash", "") is None


# ---- recording ----


def test_creates_and_settles_new_payment(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, paid_months=2)

    result = _record(
        stores,
        _input(org, membership, method="check", months_credited=3, amount_cents=7500,
               check_number="881", recorded_by="treasurer"),
    )

    assert result.success is True
    assert result.created_new is True
    assert result.settled_existing is False
    assert result.partial_success is False
    payment = asyncio.run(stores.payments.get_by_id(result.payment_id))
    assert payment.status == "completed"
    assert payment.method == "check"
    assert payment.months_credited == 3
    assert payment.invoice_number == "INV-OF-202503-0001"
    assert payment.period_label == "Mar - Jun 2025"
    assert payment.notes == "Check #881"
    assert payment.recorded_by == "treasurer"
    assert result.settlement.new_paid_months == 5


def test_settles_existing_pending_dues(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    pending = _billing_run_payment(stores, membership)

    result = _record(stores, _input(org, membership))

    assert result.settled_existing is True
    assert result.created_new is False
    assert result.payment_id == pending.id
    assert len(asyncio.run(stores.payments.list_by_membership(membership.id))) == 1


def test_settles_explicit_pending_payment(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    pending = _billing_run_payment(stores, membership)

    result = _record(stores, _input(org, membership, pending_payment_id=pending.id))

    assert result.payment_id == pending.id
    assert result.settlement.outcome == "settled"


def test_explicit_pending_payment_of_other_membership_is_not_found(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)
    other = create_test_membership(stores, org)
    pending = _billing_run_payment(stores, other)

    with pytest.raises(RecordPaymentError) as exc:
        _record(stores, _input(org, membership, pending_payment_id=pending.id))
    assert exc.value.status == "not_found"


def test_enrollment_fee_creates_payment_without_invoice_number(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org, enrollment_fee_status="unpaid")

    result = _record(
        stores,
        _input(org, membership, type="enrollment_fee", amount_cents=10000, months_credited=0),
    )

    assert result.created_new is True
    payment = asyncio.run(stores.payments.get_by_id(result.payment_id))
    assert payment.invoice_number is None
    assert payment.period_label == "Enrollment Fee"
    assert payment.months_credited == 0
    m = asyncio.run(stores.memberships.get_by_id(membership.id))
    assert m.enrollment_fee_status == "paid"
    assert m.paid_months == membership.paid_months


def test_enrollment_fee_allowed_with_live_subscription(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores, org, enrollment_fee_status="unpaid", auto_pay_enabled=True,
        subscription_id="sub_9", subscription_status="active",
    )

    result = _record(
        stores,
        _input(org, membership, type="enrollment_fee", amount_cents=10000, months_credited=0),
    )
    assert result.success is True


# ---- rejections ----


def test_live_subscription_rejects_dues_before_writing(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(
        stores, org, auto_pay_enabled=True, subscription_id="sub_9",
        subscription_status="past_due",
    )

    with pytest.raises(RecordPaymentError) as exc:
        _record(stores, _input(org, membership))

    assert exc.value.status == "conflict"
    assert "sub_9" in str(exc.value)
    assert asyncio.run(stores.payments.list_by_membership(membership.id)) == []


@pytest.mark.parametrize(
    "overrides",
    [{"amount_cents": 0}, {"amount_cents": -100}, {"months_credited": 0}],
)
def test_invalid_input_rejected(stores, overrides) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)

    with pytest.raises(RecordPaymentError) as exc:
        _record(stores, _input(org, membership, **overrides))
    assert exc.value.status == "invalid"


def test_unknown_org_is_not_found(stores) -> None:
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)

    with pytest.raises(RecordPaymentError) as exc:
        _record(stores, _input(org, membership, org_id=uuid4()))
    assert exc.value.status == "not_found"


def test_membership_of_other_org_is_not_found(stores) -> None:
    org = create_test_org(stores)
    other_org = create_test_org(stores, name="Masjid Noor", slug="noor")
    membership = create_test_membership(stores, other_org)

    with pytest.raises(RecordPaymentError) as exc:
        _record(stores, _input(org, membership))
    assert exc.value.status == "not_found"


# ---- variance and partial results ----


def test_amount_mismatch_is_warned_but_recorded(stores, caplog) -> None:
    org = create_test_org(stores)
    plan = create_test_plan(stores, org)
    membership = create_test_membership(stores, org, plan)

    with caplog.at_level(logging.WARNING, logger="dues_service.services.payment_recorder"):
        result = _record(stores, _input(org, membership, amount_cents=25000))

    assert result.success is True
    assert result.warning == "Amount 25000 differs from expected 2500 for 1 months"
    assert any("mismatch" in r.getMessage() for r in caplog.records)


def test_matching_amount_has_no_warning(stores) -> None:
    org = create_test_org(stores)
    plan = create_test_plan(stores, org)
    membership = create_test_membership(stores, org, plan)

    result = _record(stores, _input(org, membership, amount_cents=15000, months_credited=6))
    assert result.warning is None


class _BrokenMembershipRepo(InMemoryMembershipRepo):
    async def compare_and_set(self, updated, expected_version):
        raise RuntimeError("connection reset")


def test_created_payment_with_failed_settlement_is_partial(stores) -> None:
    stores.memberships = _BrokenMembershipRepo()
    org = create_test_org(stores)
    membership = create_test_membership(stores, org)

    result = _record(stores, _input(org, membership))

    assert result.success is False
    assert result.created_new is True
    assert result.partial_success is True
    assert result.settlement.outcome == "error"
    payment = asyncio.run(stores.payments.get_by_id(result.payment_id))
    assert payment.status == "pending"
