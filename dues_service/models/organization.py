from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class BillingConfig:
    """Per-organization billing knobs.

    Stored as a partial JSON object; anything missing falls back to the
    defaults below.
    """

    eligibility_months: int = 60
    lapse_days: int = 7  # days overdue before current -> lapsed
    cancel_months: int = 24  # months unpaid before lapsed -> cancelled
    reminder_schedule: tuple[int, ...] = (3, 7, 14)
    max_reminders: int = 3
    send_invoice_reminders: bool = True

    @staticmethod
    def from_overrides(overrides: dict[str, Any] | None) -> BillingConfig:
        if not overrides:
            return BillingConfig()
        known = {f.name for f in fields(BillingConfig)}
        values = {k: v for k, v in overrides.items() if k in known}
        if "reminder_schedule" in values:
            values["reminder_schedule"] = tuple(values["reminder_schedule"])
        config = BillingConfig(**values)
        if config.eligibility_months <= 0:
            raise ValueError("eligibility_months must be positive")
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligibility_months": self.eligibility_months,
            "lapse_days": self.lapse_days,
            "cancel_months": self.cancel_months,
            "reminder_schedule": list(self.reminder_schedule),
            "max_reminders": self.max_reminders,
            "send_invoice_reminders": self.send_invoice_reminders,
        }


@dataclass(frozen=True, slots=True)
class Organization:
    id: UUID
    name: str
    slug: str
    timezone: str = "America/Los_Angeles"
    platform_fee_dollars: float = 0.0
    pass_fees_to_member: bool = False
    active: bool = True
    billing: BillingConfig = field(default_factory=BillingConfig)

    @staticmethod
    def new(
        *,
        name: str,
        slug: str,
        timezone: str = "America/Los_Angeles",
        platform_fee_dollars: float = 0.0,
        pass_fees_to_member: bool = False,
        billing: BillingConfig | None = None,
    ) -> Organization:
        return Organization(
            id=uuid4(),
            name=name,
            slug=slug,
            timezone=timezone,
            platform_fee_dollars=platform_fee_dollars,
            pass_fees_to_member=pass_fees_to_member,
            billing=billing or BillingConfig(),
        )
