from __future__ import annotations

from typing import Protocol
from uuid import UUID


class InvoiceSequenceRepo(Protocol):
    async def next_sequence(self, org_id: UUID, year_month: str) -> int: ...


class InMemoryInvoiceSequenceRepo:
    """Per-organization, per-month counters. ``year_month`` is ``YYYYMM``."""

    def __init__(self) -> None:
        self._counters: dict[tuple[UUID, str], int] = {}

    async def next_sequence(self, org_id: UUID, year_month: str) -> int:
        key = (org_id, year_month)
        value = self._counters.get(key, 0) + 1
        self._counters[key] = value
        return value
