"""Expected-price check for manually entered amounts.

Flags, never blocks: an operator typing 5000 instead of 500 should see a
warning, but a negotiated discount must still go through.
"""

from __future__ import annotations

from dataclasses import dataclass

from dues_service.models.plan import Plan

VARIANCE_THRESHOLD = 0.01


@dataclass(frozen=True, slots=True)
class AmountVariance:
    amount_cents: int
    expected_cents: int
    variance: float
    flagged: bool
    warning: str | None = None


def expected_amount_cents(plan: Plan, months: int) -> int:
    """Canonical price for ``months`` of dues on ``plan``.

    Uses the biannual/annual price when the month count matches and the
    plan defines one; otherwise the monthly rate times the months.
    """
    if months == 6 and plan.biannual_cents:
        return plan.biannual_cents
    if months == 12 and plan.annual_cents:
        return plan.annual_cents
    return plan.monthly_cents * months


def check_amount_variance(
    amount_cents: int, plan: Plan, months: int
) -> AmountVariance | None:
    """None when there is nothing to compare against (no months, free plan)."""
    if months <= 0:
        return None
    expected = expected_amount_cents(plan, months)
    if expected <= 0:
        return None

    variance = abs(amount_cents - expected) / expected
    flagged = variance > VARIANCE_THRESHOLD
    warning = None
    if flagged:
        warning = (
            f"Amount {amount_cents} differs from expected {expected} "
            f"for {months} months"
        )
    return AmountVariance(
        amount_cents=amount_cents,
        expected_cents=expected,
        variance=variance,
        flagged=flagged,
        warning=warning,
    )
