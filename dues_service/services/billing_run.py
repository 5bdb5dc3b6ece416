"""Recurring billing run.

Creates ``pending`` dues payments for memberships whose next payment is
due, then moves overdue memberships through ``current -> lapsed ->
cancelled``. It never credits months or advances due dates; that only
happens when money arrives and the payment is settled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

from dues_service.core.metrics import BILLING_RUN_PAYMENTS
from dues_service.models.membership import Membership
from dues_service.models.organization import Organization
from dues_service.models.payment import Payment
from dues_service.repos.stores import Stores
from dues_service.services.invoice_generator import (
    add_months_preserve_day,
    generate_invoice_metadata,
    today_in_timezone,
)

logger = logging.getLogger(__name__)

# Org ids with a run in progress in this process.
_RUNNING: set[UUID] = set()

# A subscription in these states is collecting dues itself.
_SELF_BILLING_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True, slots=True)
class BillingOptions:
    billing_date: date | None = None
    dry_run: bool = False


@dataclass(slots=True)
class BillingRunResult:
    success: bool = True
    payments_created: int = 0
    payment_ids: list[UUID] = field(default_factory=list)
    skipped: int = 0
    status_updates: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    # Set when the run never started: not_found|in_progress|error
    aborted: str | None = None

    @staticmethod
    def failed(message: str, aborted: str = "error") -> BillingRunResult:
        return BillingRunResult(
            success=False,
            errors=[{"membership_id": "N/A", "error": message}],
            aborted=aborted,
        )


def is_billable(membership: Membership, billing_date: date) -> bool:
    """Onboarding done, in good standing, and due on or before ``billing_date``."""
    return (
        membership.status == "current"
        and membership.enrollment_fee_settled
        and membership.agreement_signed_at is not None
        and membership.next_payment_due is not None
        and membership.next_payment_due <= billing_date
    )


async def process_recurring_billing(
    org_id: UUID,
    stores: Stores,
    options: BillingOptions | None = None,
) -> BillingRunResult:
    options = options or BillingOptions()
    org = await stores.organizations.get_by_id(org_id)
    if org is None:
        logger.error("Billing run: organization %s not found", org_id)
        return BillingRunResult.failed(
            f"Organization {org_id} not found", aborted="not_found"
        )

    if not options.dry_run:
        if org_id in _RUNNING:
            logger.warning(
                "Billing run already in progress for org %s",
                org_id,
                extra={"org_id": str(org_id)},
            )
            return BillingRunResult.failed(
                "Billing run already in progress. "
                "Please wait for the current run to complete.",
                aborted="in_progress",
            )
        _RUNNING.add(org_id)

    try:
        return await _run(org, stores, options)
    finally:
        if not options.dry_run:
            _RUNNING.discard(org_id)


async def _run(
    org: Organization, stores: Stores, options: BillingOptions
) -> BillingRunResult:
    billing_date = options.billing_date or today_in_timezone(org.timezone)
    extra = {"org_id": str(org.id)}
    logger.info(
        "Billing run started: org=%s date=%s dry_run=%s",
        org.slug,
        billing_date,
        options.dry_run,
        extra=extra,
    )

    result = BillingRunResult()
    memberships = await stores.memberships.list_by_org(org.id)

    for membership in memberships:
        if not is_billable(membership, billing_date):
            continue
        try:
            async with stores.savepoint():
                created = await _bill_membership(org, membership, stores, options)
        except Exception as exc:
            logger.exception(
                "Payment creation failed for membership %s",
                membership.id,
                extra={**extra, "membership_id": str(membership.id)},
            )
            result.errors.append({"membership_id": str(membership.id), "error": str(exc)})
            continue

        if created is None:
            result.skipped += 1
        elif created == "dry_run":
            result.payments_created += 1
        else:
            result.payments_created += 1
            result.payment_ids.append(created)
            BILLING_RUN_PAYMENTS.inc()

    if not options.dry_run:
        result.status_updates = await process_status_transitions(
            org, stores, billing_date, errors=result.errors
        )

    result.success = not result.errors
    result.timestamp = datetime.now(UTC)
    logger.info(
        "Billing run complete: org=%s created=%d skipped=%d status_updates=%d errors=%d",
        org.slug,
        result.payments_created,
        result.skipped,
        result.status_updates,
        len(result.errors),
        extra=extra,
    )
    return result


async def _bill_membership(
    org: Organization,
    membership: Membership,
    stores: Stores,
    options: BillingOptions,
) -> UUID | str | None:
    """Payment id created, ``"dry_run"``, or None when skipped."""
    extra = {"org_id": str(org.id), "membership_id": str(membership.id)}

    if (
        membership.subscription_id
        and membership.subscription_status in _SELF_BILLING_SUBSCRIPTION_STATUSES
    ):
        logger.info(
            "Skipping membership %s: billed by subscription %s (%s)",
            membership.id,
            membership.subscription_id,
            membership.subscription_status,
            extra=extra,
        )
        return None

    due = membership.next_payment_due
    if due is None:
        return None
    if await stores.payments.has_payment_for_period(membership.id, due):
        logger.warning(
            "Skipping membership %s: payment already exists for period %s",
            membership.id,
            due,
            extra=extra,
        )
        return None

    if options.dry_run:
        logger.debug("Dry run: would bill membership %s for %s", membership.id, due)
        return "dry_run"

    amount = 0
    if membership.plan_id is not None:
        plan = await stores.plans.get_by_id(membership.plan_id)
        if plan is not None:
            amount = plan.price_for_frequency(membership.billing_frequency)

    invoice = await generate_invoice_metadata(
        org, due, membership.billing_frequency, stores.invoice_sequences
    )
    payment = Payment.new(
        org_id=org.id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type="dues",
        amount_cents=amount,
        invoice=invoice,
        notes=f"{invoice.period_label} dues",
    )
    await stores.payments.add(payment)
    logger.info(
        "Created pending dues payment %s (%s, %d cents, %s)",
        payment.id,
        invoice.invoice_number,
        amount,
        invoice.period_label,
        extra={**extra, "payment_id": str(payment.id)},
    )
    return payment.id


async def process_status_transitions(
    org: Organization,
    stores: Stores,
    today: date,
    *,
    errors: list[dict[str, str]] | None = None,
) -> int:
    """current -> lapsed after ``lapse_days`` overdue; lapsed -> cancelled
    once the due date is ``cancel_months`` old. Returns the number moved."""
    lapse_cutoff = today - timedelta(days=org.billing.lapse_days)
    cancel_cutoff = add_months_preserve_day(today, -org.billing.cancel_months)

    updates = 0
    for membership in await stores.memberships.list_by_org(org.id):
        due = membership.next_payment_due
        if due is None:
            continue
        if membership.status == "current" and due <= lapse_cutoff:
            updated = replace(membership, status="lapsed")
        elif membership.status == "lapsed" and due <= cancel_cutoff:
            updated = replace(membership, status="cancelled", cancelled_date=today)
        else:
            continue

        try:
            async with stores.savepoint():
                await stores.memberships.compare_and_set(updated, membership.version)
        except Exception as exc:
            logger.error(
                "Status transition %s -> %s failed for membership %s: %s",
                membership.status,
                updated.status,
                membership.id,
                exc,
                extra={"org_id": str(org.id), "membership_id": str(membership.id)},
            )
            if errors is not None:
                errors.append({"membership_id": str(membership.id), "error": str(exc)})
            continue

        logger.info(
            "Membership %s: %s -> %s (next_payment_due=%s)",
            membership.id,
            membership.status,
            updated.status,
            due,
            extra={"org_id": str(org.id), "membership_id": str(membership.id)},
        )
        updates += 1
    return updates


async def process_all_organizations_billing(
    stores: Stores, options: BillingOptions | None = None
) -> dict[UUID, BillingRunResult]:
    """Run every active organization; one org failing never stops the rest.

    Each organization, and each membership write inside it, runs in its
    own ``stores.savepoint()``, so under Postgres a failed statement rolls
    back only that unit and the shared transaction stays usable.
    """
    results: dict[UUID, BillingRunResult] = {}
    for org in await stores.organizations.list_active():
        try:
            async with stores.savepoint():
                results[org.id] = await process_recurring_billing(
                    org.id, stores, options
                )
        except Exception as exc:
            logger.exception(
                "Billing failed for organization %s", org.slug, extra={"org_id": str(org.id)}
            )
            results[org.id] = BillingRunResult.failed(str(exc))
    return results
