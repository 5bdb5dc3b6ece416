"""create billing tables

Revision ID: 3b7e91c4d2a0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e91c4d2a0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column(
            "timezone",
            sa.String(length=64),
            nullable=False,
            server_default="America/Los_Angeles",
        ),
        sa.Column(
            "platform_fee_dollars", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column(
            "pass_fees_to_member",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("billing_config", postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        "plans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("monthly_cents", sa.Integer(), nullable=False),
        sa.Column("biannual_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("annual_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "enrollment_fee_cents", sa.Integer(), nullable=False, server_default="0"
        ),
    )

    op.create_table(
        "memberships",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "plan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("plans.id"),
            nullable=True,
        ),
        sa.Column(
            "billing_frequency",
            sa.String(length=16),
            nullable=False,
            server_default="monthly",
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("paid_months", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_payment_due", sa.Date(), nullable=True),
        sa.Column(
            "enrollment_fee_status",
            sa.String(length=16),
            nullable=False,
            server_default="unpaid",
        ),
        sa.Column(
            "auto_pay_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("subscription_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column(
            "subscription_status",
            sa.String(length=16),
            nullable=False,
            server_default="none",
        ),
        sa.Column("payer_member_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("agreement_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("join_date", sa.Date(), nullable=True),
        sa.Column("last_payment_date", sa.Date(), nullable=True),
        sa.Column("eligible_date", sa.Date(), nullable=True),
        sa.Column("cancelled_date", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_memberships_org_id", "memberships", ["org_id"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column(
            "membership_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("memberships.id"),
            nullable=False,
        ),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=True),
        sa.Column("months_credited", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invoice_number", sa.String(length=64), nullable=True, unique=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("period_label", sa.String(length=64), nullable=True),
        sa.Column(
            "processor_transaction_id", sa.String(length=255), nullable=True, unique=True
        ),
        sa.Column(
            "platform_fee_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "processor_fee_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_charged_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("net_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.String(length=255), nullable=True),
        sa.Column("check_number", sa.String(length=64), nullable=True),
        sa.Column("zelle_transaction_id", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_payments_membership_status", "payments", ["membership_id", "status"]
    )

    op.create_table(
        "invoice_sequences",
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            primary_key=True,
        ),
        sa.Column("year_month", sa.String(length=6), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "processed_webhook_events",
        sa.Column("event_id", sa.String(length=255), primary_key=True),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("processed_webhook_events")
    op.drop_table("invoice_sequences")
    op.drop_index("ix_payments_membership_status", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_memberships_org_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("plans")
    op.drop_table("organizations")
