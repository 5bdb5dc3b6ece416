from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

from dues_service.models.membership import BillingFrequency


@dataclass(frozen=True, slots=True)
class Plan:
    """Dues plan. All prices are integer cents."""

    id: UUID
    org_id: UUID
    name: str
    monthly_cents: int
    biannual_cents: int = 0
    annual_cents: int = 0
    enrollment_fee_cents: int = 0

    def price_for_frequency(self, frequency: BillingFrequency) -> int:
        if frequency == "biannual" and self.biannual_cents:
            return self.biannual_cents
        if frequency == "annual" and self.annual_cents:
            return self.annual_cents
        if frequency == "biannual":
            return self.monthly_cents * 6
        if frequency == "annual":
            return self.monthly_cents * 12
        return self.monthly_cents

    @staticmethod
    def new(
        *,
        org_id: UUID,
        name: str,
        monthly_cents: int,
        biannual_cents: int = 0,
        annual_cents: int = 0,
        enrollment_fee_cents: int = 0,
    ) -> Plan:
        return Plan(
            id=uuid4(),
            org_id=org_id,
            name=name,
            monthly_cents=monthly_cents,
            biannual_cents=biannual_cents,
            annual_cents=annual_cents,
            enrollment_fee_cents=enrollment_fee_cents,
        )
