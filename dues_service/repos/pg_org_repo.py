"""PostgreSQL implementations of OrgRepo, PlanRepo, InvoiceSequenceRepo and
ProcessedEventRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from dues_service.db.tables import (
    InvoiceSequenceRow,
    OrganizationRow,
    PlanRow,
    ProcessedWebhookEventRow,
)
from dues_service.models.organization import BillingConfig, Organization
from dues_service.models.plan import Plan


class PgOrgRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        row = await self._session.get(OrganizationRow, org_id)
        if row is None:
            return None
        return _row_to_org(row)

    async def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.slug == slug)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def add(self, org: Organization) -> None:
        row = OrganizationRow(
            id=org.id,
            name=org.name,
            slug=org.slug,
            timezone=org.timezone,
            platform_fee_dollars=org.platform_fee_dollars,
            pass_fees_to_member=org.pass_fees_to_member,
            active=org.active,
            billing_config=org.billing.to_dict(),
        )
        self._session.add(row)
        await self._session.flush()

    async def list_active(self) -> list[Organization]:
        stmt = select(OrganizationRow).where(OrganizationRow.active.is_(True))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_org(r) for r in rows]


class PgPlanRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, plan_id: UUID) -> Plan | None:
        row = await self._session.get(PlanRow, plan_id)
        if row is None:
            return None
        return _row_to_plan(row)

    async def list_by_org(self, org_id: UUID) -> list[Plan]:
        stmt = select(PlanRow).where(PlanRow.org_id == org_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_plan(r) for r in rows]

    async def add(self, plan: Plan) -> None:
        row = PlanRow(
            id=plan.id,
            org_id=plan.org_id,
            name=plan.name,
            monthly_cents=plan.monthly_cents,
            biannual_cents=plan.biannual_cents,
            annual_cents=plan.annual_cents,
            enrollment_fee_cents=plan.enrollment_fee_cents,
        )
        self._session.add(row)
        await self._session.flush()


class PgInvoiceSequenceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_sequence(self, org_id: UUID, year_month: str) -> int:
        # Single upsert so two billing runs never hand out the same number.
        stmt = (
            insert(InvoiceSequenceRow)
            .values(org_id=org_id, year_month=year_month, last_value=1)
            .on_conflict_do_update(
                index_elements=[
                    InvoiceSequenceRow.org_id,
                    InvoiceSequenceRow.year_month,
                ],
                set_={"last_value": InvoiceSequenceRow.last_value + 1},
            )
            .returning(InvoiceSequenceRow.last_value)
        )
        return (await self._session.execute(stmt)).scalar_one()


class PgProcessedEventRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def mark_processed(self, event_id: str, event_type: str) -> bool:
        stmt = (
            insert(ProcessedWebhookEventRow)
            .values(event_id=event_id, event_type=event_type)
            .on_conflict_do_nothing(index_elements=[ProcessedWebhookEventRow.event_id])
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def is_processed(self, event_id: str) -> bool:
        row = await self._session.get(ProcessedWebhookEventRow, event_id)
        return row is not None


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        timezone=row.timezone,
        platform_fee_dollars=row.platform_fee_dollars,
        pass_fees_to_member=row.pass_fees_to_member,
        active=row.active,
        billing=BillingConfig.from_overrides(row.billing_config),
    )


def _row_to_plan(row: PlanRow) -> Plan:
    return Plan(
        id=row.id,
        org_id=row.org_id,
        name=row.name,
        monthly_cents=row.monthly_cents,
        biannual_cents=row.biannual_cents,
        annual_cents=row.annual_cents,
        enrollment_fee_cents=row.enrollment_fee_cents,
    )
