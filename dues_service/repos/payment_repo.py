from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from dues_service.models.payment import Payment, PaymentMethod, PaymentType


class PaymentNotPendingError(Exception):
    """Conditional pending -> completed update found the row in another state."""

    def __init__(self, payment_id: UUID, status: str) -> None:
        super().__init__(f"payment {payment_id} is {status}, not pending")
        self.payment_id = payment_id
        self.status = status


class PaymentRepo(Protocol):
    async def get_by_id(self, payment_id: UUID) -> Payment | None: ...
    async def get_by_processor_transaction_id(
        self, transaction_id: str
    ) -> Payment | None: ...
    async def find_latest_pending(
        self,
        membership_id: UUID,
        *,
        type: PaymentType | None = None,
        unlinked_only: bool = False,
    ) -> Payment | None: ...
    async def has_payment_for_period(
        self, membership_id: UUID, period_start: date
    ) -> bool: ...
    async def list_by_membership(self, membership_id: UUID) -> list[Payment]: ...
    async def add(self, payment: Payment) -> None: ...
    async def mark_completed(
        self,
        payment_id: UUID,
        *,
        paid_at: datetime,
        method: PaymentMethod | None,
        processor_transaction_id: str | None = None,
        recorded_by: str | None = None,
        notes: str | None = None,
    ) -> Payment: ...
    async def revert_to_pending(self, original: Payment) -> Payment: ...
    async def mark_failed(
        self,
        payment_id: UUID,
        *,
        reason: str | None,
        processor_transaction_id: str | None = None,
    ) -> Payment | None: ...
    async def link_processor_transaction(
        self, payment_id: UUID, transaction_id: str
    ) -> None: ...


class InMemoryPaymentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Payment] = {}

    async def get_by_id(self, payment_id: UUID) -> Payment | None:
        return self._by_id.get(payment_id)

    async def get_by_processor_transaction_id(
        self, transaction_id: str
    ) -> Payment | None:
        for p in self._by_id.values():
            if p.processor_transaction_id == transaction_id:
                return p
        return None

    async def find_latest_pending(
        self,
        membership_id: UUID,
        *,
        type: PaymentType | None = None,
        unlinked_only: bool = False,
    ) -> Payment | None:
        candidates = [
            p
            for p in self._by_id.values()
            if p.membership_id == membership_id
            and p.status == "pending"
            and (type is None or p.type == type)
            and not (unlinked_only and p.processor_transaction_id)
        ]
        if not candidates:
            return None
        return max(
            candidates, key=lambda p: p.created_at.timestamp() if p.created_at else 0.0
        )

    async def has_payment_for_period(
        self, membership_id: UUID, period_start: date
    ) -> bool:
        return any(
            p.membership_id == membership_id
            and p.period_start == period_start
            and p.status in ("pending", "completed")
            for p in self._by_id.values()
        )

    async def list_by_membership(self, membership_id: UUID) -> list[Payment]:
        return [p for p in self._by_id.values() if p.membership_id == membership_id]

    async def add(self, payment: Payment) -> None:
        if payment.id in self._by_id:
            raise ValueError("payment already exists")
        self._by_id[payment.id] = payment

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
        p = self._by_id.get(payment_id)
        if p is None:
            raise KeyError("payment not found")
        if p.status != "pending":
            raise PaymentNotPendingError(payment_id, p.status)

        updated = replace(
            p,
            status="completed",
            paid_at=paid_at,
            method=method or p.method,
            processor_transaction_id=(
                processor_transaction_id or p.processor_transaction_id
            ),
            recorded_by=recorded_by or p.recorded_by,
            notes=notes or p.notes,
        )
        self._by_id[payment_id] = updated
        return updated

    async def revert_to_pending(self, original: Payment) -> Payment:
        """Undo ``mark_completed``: every stamped column goes back to ``original``."""
        p = self._by_id.get(original.id)
        if p is None:
            raise KeyError("payment not found")
        if p.status != "completed":
            raise ValueError(f"cannot revert a {p.status} payment")

        updated = replace(
            p,
            status="pending",
            paid_at=original.paid_at,
            method=original.method,
            processor_transaction_id=original.processor_transaction_id,
            recorded_by=original.recorded_by,
            notes=original.notes,
        )
        self._by_id[original.id] = updated
        return updated

    async def mark_failed(
        self,
        payment_id: UUID,
        *,
        reason: str | None,
        processor_transaction_id: str | None = None,
    ) -> Payment | None:
        p = self._by_id.get(payment_id)
        if p is None or p.status != "pending":
            return None

        updated = replace(
            p,
            status="failed",
            failure_reason=reason,
            processor_transaction_id=(
                processor_transaction_id or p.processor_transaction_id
            ),
        )
        self._by_id[payment_id] = updated
        return updated

    async def link_processor_transaction(
        self, payment_id: UUID, transaction_id: str
    ) -> None:
        p = self._by_id.get(payment_id)
        if p is None:
            raise KeyError("payment not found")
        self._by_id[payment_id] = replace(p, processor_transaction_id=transaction_id)
