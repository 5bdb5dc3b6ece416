from __future__ import annotations

from typing import Protocol
from uuid import UUID

from dues_service.models.plan import Plan


class PlanRepo(Protocol):
    async def get_by_id(self, plan_id: UUID) -> Plan | None: ...
    async def list_by_org(self, org_id: UUID) -> list[Plan]: ...
    async def add(self, plan: Plan) -> None: ...


class InMemoryPlanRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Plan] = {}

    async def get_by_id(self, plan_id: UUID) -> Plan | None:
        return self._by_id.get(plan_id)

    async def list_by_org(self, org_id: UUID) -> list[Plan]:
        return [p for p in self._by_id.values() if p.org_id == org_id]

    async def add(self, plan: Plan) -> None:
        if plan.id in self._by_id:
            raise ValueError("plan already exists")
        self._by_id[plan.id] = plan
