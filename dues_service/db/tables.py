"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in dues_service/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.
All money columns are integer cents.
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from dues_service.db.engine import Base


class OrganizationRow(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="America/Los_Angeles"
    )
    platform_fee_dollars: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    pass_fees_to_member: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Partial overrides only; defaults are merged in by BillingConfig.
    billing_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, nullable=True
    )


class PlanRow(Base):
    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    monthly_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    biannual_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    annual_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrollment_fee_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )


class MembershipRow(Base):
    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )
    billing_frequency: Mapped[str] = mapped_column(
        String(16), nullable=False, default="monthly"
    )  # monthly|biannual|annual
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )  # pending|current|lapsed|cancelled
    paid_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_payment_due: Mapped[datetime.date | None] = mapped_column(
        Date, nullable=True
    )
    enrollment_fee_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="unpaid"
    )  # unpaid|paid|waived
    auto_pay_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    subscription_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="none"
    )
    payer_member_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    agreement_signed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    join_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    last_payment_date: Mapped[datetime.date | None] = mapped_column(
        Date, nullable=True
    )
    eligible_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    cancelled_date: Mapped[datetime.date | None] = mapped_column(
        Date, nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_memberships_org_id", "org_id"),)


class PaymentRow(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    membership_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("memberships.id"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # enrollment_fee|dues|back_dues
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )  # pending|completed|failed|refunded
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    months_credited: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invoice_number: Mapped[str | None] = mapped_column(
        String(64), unique=True, nullable=True
    )
    due_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    period_start: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    period_label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processor_transaction_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    platform_fee_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    processor_fee_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_charged_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    net_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    check_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    zelle_transaction_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_payments_membership_status", "membership_id", "status"),
    )


class InvoiceSequenceRow(Base):
    __tablename__ = "invoice_sequences"

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), primary_key=True
    )
    year_month: Mapped[str] = mapped_column(String(6), primary_key=True)  # YYYYMM
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ProcessedWebhookEventRow(Base):
    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    processed_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.UTC),
    )
