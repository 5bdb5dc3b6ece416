from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Literal
from uuid import UUID, uuid4

from dues_service.models.invoice import InvoiceMetadata

PaymentType = Literal["enrollment_fee", "dues", "back_dues"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
PaymentMethod = Literal["card", "bank", "cash", "check", "zelle"]

PAYMENT_TYPES: tuple[str, ...] = ("enrollment_fee", "dues", "back_dues")
PAYMENT_METHODS: tuple[str, ...] = ("card", "bank", "cash", "check", "zelle")
MANUAL_METHODS: tuple[str, ...] = ("cash", "check", "zelle")
TERMINAL_STATUSES = frozenset({"completed", "failed", "refunded"})

# Types that credit months and therefore go through the auto-pay guard.
DUES_TYPES = frozenset({"dues", "back_dues"})


@dataclass(frozen=True, slots=True)
class Payment:
    """One billing event. ``amount_cents`` is the base amount the
    organization is owed; processor/platform fees are recorded beside it."""

    id: UUID
    org_id: UUID
    membership_id: UUID
    member_id: UUID
    type: PaymentType
    amount_cents: int
    status: PaymentStatus = "pending"
    method: PaymentMethod | None = None
    months_credited: int = 0
    invoice_number: str | None = None
    due_date: date | None = None
    period_start: date | None = None
    period_end: date | None = None
    period_label: str | None = None
    processor_transaction_id: str | None = None
    platform_fee_cents: int = 0
    processor_fee_cents: int = 0
    total_charged_cents: int = 0
    net_amount_cents: int = 0
    notes: str | None = None
    recorded_by: str | None = None
    check_number: str | None = None
    zelle_transaction_id: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def credits_months(self) -> bool:
        return self.type in DUES_TYPES and self.months_credited > 0

    @staticmethod
    def new(
        *,
        org_id: UUID,
        membership_id: UUID,
        member_id: UUID,
        type: PaymentType,
        amount_cents: int,
        months_credited: int = 0,
        invoice: InvoiceMetadata | None = None,
        method: PaymentMethod | None = None,
        processor_transaction_id: str | None = None,
        platform_fee_cents: int = 0,
        processor_fee_cents: int = 0,
        total_charged_cents: int | None = None,
        net_amount_cents: int | None = None,
        notes: str | None = None,
        recorded_by: str | None = None,
        check_number: str | None = None,
        zelle_transaction_id: str | None = None,
    ) -> Payment:
        if amount_cents < 0:
            raise ValueError("amount_cents must be non-negative")
        if months_credited < 0:
            raise ValueError("months_credited must be non-negative")
        if type == "enrollment_fee":
            months_credited = 0
        elif invoice is not None:
            months_credited = invoice.months_credited
        if type in DUES_TYPES and months_credited > 0 and invoice is None:
            raise ValueError("dues payments that credit months need invoice metadata")

        return Payment(
            id=uuid4(),
            org_id=org_id,
            membership_id=membership_id,
            member_id=member_id,
            type=type,
            amount_cents=amount_cents,
            method=method,
            months_credited=months_credited,
            invoice_number=invoice.invoice_number if invoice else None,
            due_date=invoice.due_date if invoice else None,
            period_start=invoice.period_start if invoice else None,
            period_end=invoice.period_end if invoice else None,
            period_label=invoice.period_label if invoice else None,
            processor_transaction_id=processor_transaction_id,
            platform_fee_cents=platform_fee_cents,
            processor_fee_cents=processor_fee_cents,
            total_charged_cents=(
                amount_cents if total_charged_cents is None else total_charged_cents
            ),
            net_amount_cents=(
                amount_cents if net_amount_cents is None else net_amount_cents
            ),
            notes=notes,
            recorded_by=recorded_by,
            check_number=check_number,
            zelle_transaction_id=zelle_transaction_id,
            created_at=datetime.now(UTC),
        )
