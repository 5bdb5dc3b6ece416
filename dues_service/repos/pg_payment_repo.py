"""PostgreSQL implementation of PaymentRepo."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dues_service.db.tables import PaymentRow
from dues_service.models.payment import Payment, PaymentMethod, PaymentType
from dues_service.repos.payment_repo import PaymentNotPendingError


class PgPaymentRepo:
    """Satisfies the PaymentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, payment_id: UUID) -> Payment | None:
        row = await self._session.get(PaymentRow, payment_id, populate_existing=True)
        if row is None:
            return None
        return _row_to_payment(row)

    async def get_by_processor_transaction_id(
        self, transaction_id: str
    ) -> Payment | None:
        stmt = select(PaymentRow).where(
            PaymentRow.processor_transaction_id == transaction_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def find_latest_pending(
        self,
        membership_id: UUID,
        *,
        type: PaymentType | None = None,
        unlinked_only: bool = False,
    ) -> Payment | None:
        stmt = select(PaymentRow).where(
            PaymentRow.membership_id == membership_id,
            PaymentRow.status == "pending",
        )
        if type is not None:
            stmt = stmt.where(PaymentRow.type == type)
        if unlinked_only:
            stmt = stmt.where(PaymentRow.processor_transaction_id.is_(None))
        stmt = stmt.order_by(PaymentRow.created_at.desc()).limit(1)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def has_payment_for_period(
        self, membership_id: UUID, period_start: date
    ) -> bool:
        stmt = (
            select(PaymentRow.id)
            .where(
                PaymentRow.membership_id == membership_id,
                PaymentRow.period_start == period_start,
                PaymentRow.status.in_(("pending", "completed")),
            )
            .limit(1)
        )
        return (await self._session.execute(stmt)).first() is not None

    async def list_by_membership(self, membership_id: UUID) -> list[Payment]:
        stmt = (
            select(PaymentRow)
            .where(PaymentRow.membership_id == membership_id)
            .order_by(PaymentRow.created_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_payment(r) for r in rows]

    async def add(self, payment: Payment) -> None:
        self._session.add(_payment_to_row(payment))
        await self._session.flush()

    async def mark_completed(
        self,
        payment_id: UUID,
        *,
        paid_at: datetime,
        method: PaymentMethod | None,
        processor_transaction_id: str | None = None,
        recorded_by: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        values: dict[str, object] = {"status": "completed", "paid_at": paid_at}
        if method is not None:
            values["method"] = method
        if processor_transaction_id is not None:
            values["processor_transaction_id"] = processor_transaction_id
        if recorded_by is not None:
            values["recorded_by"] = recorded_by
        if notes is not None:
            values["notes"] = notes

        stmt = (
            update(PaymentRow)
            .where(PaymentRow.id == payment_id)
            .where(PaymentRow.status == "pending")
            .values(**values)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            current = await self.get_by_id(payment_id)
            if current is None:
                raise KeyError("payment not found")
            raise PaymentNotPendingError(payment_id, current.status)

        updated = await self.get_by_id(payment_id)
        if updated is None:
            raise KeyError("payment not found")
        return updated

    async def revert_to_pending(self, original: Payment) -> Payment:
        stmt = (
            update(PaymentRow)
            .where(PaymentRow.id == original.id)
            .where(PaymentRow.status == "completed")
            .values(
                status="pending",
                paid_at=original.paid_at,
                method=original.method,
                processor_transaction_id=original.processor_transaction_id,
                recorded_by=original.recorded_by,
                notes=original.notes,
            )
        )
        result = await self._session.execute(stmt)
        current = await self.get_by_id(original.id)
        if current is None:
            raise KeyError("payment not found")
        if result.rowcount == 0:
            raise ValueError(f"cannot revert a {current.status} payment")
        return current

    async def mark_failed(
        self,
        payment_id: UUID,
        *,
        reason: str | None,
        processor_transaction_id: str | None = None,
    ) -> Payment | None:
        values: dict[str, object] = {"status": "failed", "failure_reason": reason}
        if processor_transaction_id is not None:
            values["processor_transaction_id"] = processor_transaction_id
        stmt = (
            update(PaymentRow)
            .where(PaymentRow.id == payment_id)
            .where(PaymentRow.status == "pending")
            .values(**values)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_id(payment_id)

    async def link_processor_transaction(
        self, payment_id: UUID, transaction_id: str
    ) -> None:
        stmt = (
            update(PaymentRow)
            .where(PaymentRow.id == payment_id)
            .values(processor_transaction_id=transaction_id)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("payment not found")


def _payment_to_row(p: Payment) -> PaymentRow:
    return PaymentRow(
        id=p.id,
        org_id=p.org_id,
        membership_id=p.membership_id,
        member_id=p.member_id,
        type=p.type,
        status=p.status,
        amount_cents=p.amount_cents,
        method=p.method,
        months_credited=p.months_credited,
        invoice_number=p.invoice_number,
        due_date=p.due_date,
        period_start=p.period_start,
        period_end=p.period_end,
        period_label=p.period_label,
        processor_transaction_id=p.processor_transaction_id,
        platform_fee_cents=p.platform_fee_cents,
        processor_fee_cents=p.processor_fee_cents,
        total_charged_cents=p.total_charged_cents,
        net_amount_cents=p.net_amount_cents,
        notes=p.notes,
        recorded_by=p.recorded_by,
        check_number=p.check_number,
        zelle_transaction_id=p.zelle_transaction_id,
        failure_reason=p.failure_reason,
        paid_at=p.paid_at,
        created_at=p.created_at,
    )


def _row_to_payment(row: PaymentRow) -> Payment:
    return Payment(
        id=row.id,
        org_id=row.org_id,
        membership_id=row.membership_id,
        member_id=row.member_id,
        type=row.type,  # type: ignore[arg-type]
        status=row.status,  # type: ignore[arg-type]
        amount_cents=row.amount_cents,
        method=row.method,  # type: ignore[arg-type]
        months_credited=row.months_credited,
        invoice_number=row.invoice_number,
        due_date=row.due_date,
        period_start=row.period_start,
        period_end=row.period_end,
        period_label=row.period_label,
        processor_transaction_id=row.processor_transaction_id,
        platform_fee_cents=row.platform_fee_cents,
        processor_fee_cents=row.processor_fee_cents,
        total_charged_cents=row.total_charged_cents,
        net_amount_cents=row.net_amount_cents,
        notes=row.notes,
        recorded_by=row.recorded_by,
        check_number=row.check_number,
        zelle_transaction_id=row.zelle_transaction_id,
        failure_reason=row.failure_reason,
        paid_at=row.paid_at,
        created_at=row.created_at,
    )
