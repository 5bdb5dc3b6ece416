"""PostgreSQL implementation of MembershipRepo."""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dues_service.db.tables import MembershipRow
from dues_service.models.membership import Membership
from dues_service.repos.membership_repo import StaleMembershipError

# Everything but the identity and the version token is writable.
_WRITABLE = (
    "plan_id",
    "billing_frequency",
    "status",
    "paid_months",
    "next_payment_due",
    "enrollment_fee_status",
    "auto_pay_enabled",
    "subscription_id",
    "subscription_status",
    "payer_member_id",
    "agreement_signed_at",
    "join_date",
    "last_payment_date",
    "eligible_date",
    "cancelled_date",
)


class PgMembershipRepo:
    """Satisfies the MembershipRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, membership_id: UUID) -> Membership | None:
        row = await self._session.get(
            MembershipRow, membership_id, populate_existing=True
        )
        if row is None:
            return None
        return _row_to_membership(row)

    async def get_by_subscription_id(
        self, subscription_id: str
    ) -> Membership | None:
        stmt = select(MembershipRow).where(
            MembershipRow.subscription_id == subscription_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_membership(row)

    async def list_by_org(self, org_id: UUID) -> list[Membership]:
        stmt = select(MembershipRow).where(MembershipRow.org_id == org_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_membership(r) for r in rows]

    async def add(self, membership: Membership) -> None:
        row = MembershipRow(
            id=membership.id,
            org_id=membership.org_id,
            member_id=membership.member_id,
            version=membership.version,
            **{name: getattr(membership, name) for name in _WRITABLE},
        )
        self._session.add(row)
        await self._session.flush()

    async def compare_and_set(
        self, updated: Membership, expected_version: int
    ) -> Membership:
        stmt = (
            update(MembershipRow)
            .where(MembershipRow.id == updated.id)
            .where(MembershipRow.version == expected_version)
            .values(
                version=expected_version + 1,
                **{name: getattr(updated, name) for name in _WRITABLE},
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            if await self.get_by_id(updated.id) is None:
                raise KeyError("membership not found")
            raise StaleMembershipError(updated.id, expected_version)
        return replace(updated, version=expected_version + 1)


def _row_to_membership(row: MembershipRow) -> Membership:
    return Membership(
        id=row.id,
        org_id=row.org_id,
        member_id=row.member_id,
        plan_id=row.plan_id,
        billing_frequency=row.billing_frequency,  # type: ignore[arg-type]
        status=row.status,  # type: ignore[arg-type]
        paid_months=row.paid_months,
        next_payment_due=row.next_payment_due,
        enrollment_fee_status=row.enrollment_fee_status,  # type: ignore[arg-type]
        auto_pay_enabled=row.auto_pay_enabled,
        subscription_id=row.subscription_id,
        subscription_status=row.subscription_status,  # type: ignore[arg-type]
        payer_member_id=row.payer_member_id,
        agreement_signed_at=row.agreement_signed_at,
        join_date=row.join_date,
        last_payment_date=row.last_payment_date,
        eligible_date=row.eligible_date,
        cancelled_date=row.cancelled_date,
        version=row.version,
    )
