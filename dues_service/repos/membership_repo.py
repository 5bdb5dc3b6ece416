from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from dues_service.models.membership import Membership


class StaleMembershipError(Exception):
    """Compare-and-set lost: the stored version moved since it was read."""

    def __init__(self, membership_id: UUID, expected_version: int) -> None:
        super().__init__(
            f"membership {membership_id} changed since version {expected_version}"
        )
        self.membership_id = membership_id
        self.expected_version = expected_version


class MembershipRepo(Protocol):
    async def get_by_id(self, membership_id: UUID) -> Membership | None: ...
    async def get_by_subscription_id(
        self, subscription_id: str
    ) -> Membership | None: ...
    async def list_by_org(self, org_id: UUID) -> list[Membership]: ...
    async def add(self, membership: Membership) -> None: ...
    async def compare_and_set(
        self, updated: Membership, expected_version: int
    ) -> Membership: ...


class InMemoryMembershipRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Membership] = {}

    async def get_by_id(self, membership_id: UUID) -> Membership | None:
        return self._by_id.get(membership_id)

    async def get_by_subscription_id(
        self, subscription_id: str
    ) -> Membership | None:
        for m in self._by_id.values():
            if m.subscription_id == subscription_id:
                return m
        return None

    async def list_by_org(self, org_id: UUID) -> list[Membership]:
        return [m for m in self._by_id.values() if m.org_id == org_id]

    async def add(self, membership: Membership) -> None:
        if membership.id in self._by_id:
            raise ValueError("membership already exists")
        self._by_id[membership.id] = membership

    async def compare_and_set(
        self, updated: Membership, expected_version: int
    ) -> Membership:
        """Write ``updated`` only if the stored version is still
        ``expected_version``. Returns the stored row with its new version."""
        current = self._by_id.get(updated.id)
        if current is None:
            raise KeyError("membership not found")
        if current.version != expected_version:
            raise StaleMembershipError(updated.id, expected_version)

        stored = replace(updated, version=expected_version + 1)
        self._by_id[updated.id] = stored
        return stored
