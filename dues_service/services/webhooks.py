"""Processor webhook reconciliation.

Events arrive at least once and in any order. Each event id is recorded
after it has been handled, so a redelivered event is acknowledged
without side effects; a handler that raises leaves the id unrecorded and
the processor's retry gets another go. Settlement itself is idempotent,
which covers two deliveries of one event racing each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from dues_service.core.metrics import WEBHOOK_EVENTS
from dues_service.models.invoice import InvoiceMetadata
from dues_service.models.membership import LIVE_SUBSCRIPTION_STATUSES, Membership
from dues_service.models.organization import Organization
from dues_service.models.payment import Payment
from dues_service.repos.stores import Stores
from dues_service.services.fee_calculator import (
    calculate_fees,
    reverse_calculate_base_amount,
)
from dues_service.services.invoice_generator import (
    enrollment_fee_metadata,
    generate_ad_hoc_invoice_metadata,
    generate_invoice_metadata,
    months_for_frequency,
    today_in_timezone,
)
from dues_service.services.settlement import (
    MembershipLocks,
    SettlementRequest,
    SettlementResult,
    mark_payment_failed,
    membership_locks,
    notifications_for,
    settle_payment,
)
from dues_service.services.task_queue import TaskQueue, enqueue_notification

logger = logging.getLogger(__name__)

# Worth a retry: the next delivery may find the membership quiet again.
RETRYABLE_OUTCOMES = frozenset({"stale", "partial", "error"})

_SUBSCRIPTION_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "unpaid": "past_due",
    "paused": "paused",
    "canceled": "canceled",
    "incomplete": "none",
    "incomplete_expired": "none",
}


class WebhookProcessingError(Exception):
    """Handling failed in a way a redelivery may fix; answer 5xx."""


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    result: str  # handled|duplicate|ignored|failed
    detail: str | None = None
    payment_id: UUID | None = None
    settlement: SettlementResult | None = None


async def handle_event(
    event: dict[str, Any],
    stores: Stores,
    queue: TaskQueue,
    *,
    locks: MembershipLocks | None = None,
) -> WebhookOutcome:
    event_id = event["id"]
    event_type = event["type"]
    extra = {"event_id": event_id}

    if await stores.processed_events.is_processed(event_id):
        logger.info("Duplicate webhook event %s (%s)", event_id, event_type, extra=extra)
        WEBHOOK_EVENTS.labels(event_type=event_type, result="duplicate").inc()
        return WebhookOutcome(event_id, event_type, "duplicate")

    handler = _HANDLERS.get(event_type)
    obj = event.get("data", {}).get("object", {})
    try:
        if handler is None:
            outcome = WebhookOutcome(event_id, event_type, "ignored", "unhandled type")
        else:
            outcome = await handler(event_id, event_type, obj, stores, queue, locks)
    except WebhookProcessingError:
        WEBHOOK_EVENTS.labels(event_type=event_type, result="failed").inc()
        raise

    await stores.processed_events.mark_processed(event_id, event_type)
    WEBHOOK_EVENTS.labels(event_type=event_type, result=outcome.result).inc()
    logger.info(
        "Webhook %s (%s): %s%s",
        event_id,
        event_type,
        outcome.result,
        f" ({outcome.detail})" if outcome.detail else "",
        extra={**extra, "payment_id": str(outcome.payment_id) if outcome.payment_id else None},
    )
    return outcome


async def _payment_intent_succeeded(
    event_id: str,
    event_type: str,
    intent: dict[str, Any],
    stores: Stores,
    queue: TaskQueue,
    locks: MembershipLocks | None,
) -> WebhookOutcome:
    if intent.get("invoice"):
        # Subscription invoices are reconciled by the subscription itself.
        return WebhookOutcome(event_id, event_type, "ignored", "subscription invoice")

    payment = await _find_payment(intent, stores)
    if payment is None:
        payment = await _create_payment_for_intent(intent, stores)
        if payment is None:
            return WebhookOutcome(
                event_id, event_type, "ignored", "no membership metadata"
            )

    created = intent.get("created")
    paid_at = (
        datetime.fromtimestamp(created, UTC) if created else datetime.now(UTC)
    )
    result = await settle_payment(
        SettlementRequest(
            payment_id=payment.id,
            processor_transaction_id=intent["id"],
            method="card",
            paid_at=paid_at,
            notes="Payment completed via processor",
        ),
        stores,
        locks=locks,
    )

    if result.outcome in RETRYABLE_OUTCOMES:
        logger.error(
            "Settlement of %s failed (%s): %s",
            payment.id,
            result.outcome,
            result.error,
            extra={"event_id": event_id, "payment_id": str(payment.id)},
        )
        raise WebhookProcessingError(result.error or result.outcome)

    for kind, payload in notifications_for(result):
        await enqueue_notification(queue, kind, payload)

    return WebhookOutcome(
        event_id,
        event_type,
        "handled" if result.success else "failed",
        result.outcome if result.success else result.error,
        payment_id=payment.id,
        settlement=result,
    )


async def _payment_intent_failed(
    event_id: str,
    event_type: str,
    intent: dict[str, Any],
    stores: Stores,
    queue: TaskQueue,
    locks: MembershipLocks | None,
) -> WebhookOutcome:
    payment = await _find_payment(intent, stores)
    if payment is None:
        return WebhookOutcome(event_id, event_type, "ignored", "no matching payment")

    reason = (intent.get("last_payment_error") or {}).get("message")
    failed = await mark_payment_failed(
        payment.id,
        stores,
        reason=reason,
        processor_transaction_id=intent["id"],
    )
    if failed is None:
        return WebhookOutcome(
            event_id,
            event_type,
            "ignored",
            f"payment already {payment.status}",
            payment_id=payment.id,
        )

    await enqueue_notification(
        queue,
        "payment_failed",
        {
            "payment_id": str(failed.id),
            "membership_id": str(failed.membership_id),
            "reason": reason or "",
        },
    )
    return WebhookOutcome(event_id, event_type, "handled", payment_id=failed.id)


async def _subscription_changed(
    event_id: str,
    event_type: str,
    sub: dict[str, Any],
    stores: Stores,
    queue: TaskQueue,
    locks: MembershipLocks | None,
) -> WebhookOutcome:
    membership = await _find_membership_for_subscription(sub, stores)
    if membership is None:
        return WebhookOutcome(event_id, event_type, "ignored", "unknown membership")

    if event_type == "customer.subscription.deleted":
        status = "canceled"
    else:
        status = _SUBSCRIPTION_STATUS_MAP.get(sub.get("status", ""), "none")

    async with (locks if locks is not None else membership_locks).hold(membership.id):
        current = await stores.memberships.get_by_id(membership.id)
        if current is None:
            return WebhookOutcome(event_id, event_type, "ignored", "unknown membership")
        updated = replace(
            current,
            subscription_id=sub["id"],
            subscription_status=status,  # type: ignore[arg-type]
            auto_pay_enabled=status in LIVE_SUBSCRIPTION_STATUSES,
        )
        try:
            await stores.memberships.compare_and_set(updated, current.version)
        except Exception as exc:
            raise WebhookProcessingError(
                f"could not update membership {membership.id}: {exc}"
            ) from exc

    return WebhookOutcome(event_id, event_type, "handled", f"subscription {status}")


async def _find_payment(intent: dict[str, Any], stores: Stores) -> Payment | None:
    metadata = intent.get("metadata") or {}
    raw_id = metadata.get("payment_id")
    if raw_id:
        payment = await stores.payments.get_by_id(UUID(raw_id))
        if payment is not None:
            return payment

    payment = await stores.payments.get_by_processor_transaction_id(intent["id"])
    if payment is not None:
        return payment

    raw_membership = metadata.get("membership_id")
    if raw_membership:
        return await stores.payments.find_latest_pending(
            UUID(raw_membership), unlinked_only=True
        )
    return None


async def _create_payment_for_intent(
    intent: dict[str, Any], stores: Stores
) -> Payment | None:
    """Money arrived with no payment row: record one from the intent."""
    metadata = intent.get("metadata") or {}
    raw_membership = metadata.get("membership_id")
    if not raw_membership:
        return None
    membership = await stores.memberships.get_by_id(UUID(raw_membership))
    if membership is None:
        return None
    org = await stores.organizations.get_by_id(membership.org_id)
    if org is None:
        return None

    charged = int(intent.get("amount_received") or intent.get("amount") or 0)
    base = reverse_calculate_base_amount(
        charged, org.platform_fee_dollars, org.pass_fees_to_member
    )
    fees = calculate_fees(base, org.platform_fee_dollars, org.pass_fees_to_member)

    payment_type = metadata.get("payment_type", "dues")
    anchor = membership.next_payment_due or today_in_timezone(org.timezone)
    if payment_type == "enrollment_fee":
        invoice = enrollment_fee_metadata(today_in_timezone(org.timezone))
    else:
        payment_type = "back_dues" if payment_type == "back_dues" else "dues"
        months = int(
            metadata.get("months_credited")
            or months_for_frequency(membership.billing_frequency)
        )
        invoice = await _invoice_for(org, membership, anchor, months, stores)

    payment = Payment.new(
        org_id=org.id,
        membership_id=membership.id,
        member_id=membership.member_id,
        type=payment_type,  # type: ignore[arg-type]
        amount_cents=base,
        invoice=invoice,
        method="card",
        processor_transaction_id=intent["id"],
        platform_fee_cents=fees.platform_fee_cents,
        processor_fee_cents=fees.processor_fee_cents,
        total_charged_cents=charged,
        net_amount_cents=fees.net_amount_cents,
    )
    await stores.payments.add(payment)
    logger.info(
        "Recorded %s payment %s from intent %s (charged=%d base=%d)",
        payment.type,
        payment.id,
        intent["id"],
        charged,
        base,
        extra={"payment_id": str(payment.id), "membership_id": str(membership.id)},
    )
    return payment


async def _invoice_for(
    org: Organization,
    membership: Membership,
    anchor: date,
    months: int,
    stores: Stores,
) -> InvoiceMetadata:
    if months == months_for_frequency(membership.billing_frequency):
        return await generate_invoice_metadata(
            org, anchor, membership.billing_frequency, stores.invoice_sequences
        )
    return await generate_ad_hoc_invoice_metadata(
        org, anchor, months, stores.invoice_sequences
    )


async def _find_membership_for_subscription(
    sub: dict[str, Any], stores: Stores
) -> Membership | None:
    raw_membership = (sub.get("metadata") or {}).get("membership_id")
    if raw_membership:
        membership = await stores.memberships.get_by_id(UUID(raw_membership))
        if membership is not None:
            return membership
    return await stores.memberships.get_by_subscription_id(sub["id"])


_HANDLERS = {
    "payment_intent.succeeded": _payment_intent_succeeded,
    "payment_intent.payment_failed": _payment_intent_failed,
    "customer.subscription.created": _subscription_changed,
    "customer.subscription.updated": _subscription_changed,
    "customer.subscription.deleted": _subscription_changed,
}
