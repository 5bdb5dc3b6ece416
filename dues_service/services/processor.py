"""Payment processor adapter.

The billing core never talks to the processor. API handlers receive a
``PaymentProcessor`` through a FastAPI dependency and use it to create
customers, payment intents and subscriptions; tests override the
dependency with a fake.

``StripeProcessor`` passes its secret key on every call instead of setting
the global ``stripe.api_key``, so two processors with different keys can
coexist in one process.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from dues_service.core.config import SETTINGS

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Webhook payload failed signature verification or could not be parsed."""


class ProcessorError(Exception):
    """The processor rejected a request or could not be reached."""


@dataclass(frozen=True, slots=True)
class PaymentIntentRef:
    id: str
    client_secret: str | None
    amount_cents: int
    status: str


@dataclass(frozen=True, slots=True)
class SubscriptionRef:
    id: str
    status: str


class PaymentProcessor(Protocol):
    async def create_customer(
        self, *, email: str, name: str | None, metadata: dict[str, str]
    ) -> str: ...
    async def create_payment_intent(
        self,
        *,
        amount_cents: int,
        customer_id: str | None,
        metadata: dict[str, str],
        application_fee_cents: int | None = None,
        connected_account_id: str | None = None,
    ) -> PaymentIntentRef: ...
    async def create_subscription(
        self, *, customer_id: str, price_id: str, metadata: dict[str, str]
    ) -> SubscriptionRef: ...
    async def cancel_subscription(self, subscription_id: str) -> SubscriptionRef: ...
    def verify_webhook(self, payload: bytes, signature: str) -> dict[str, Any]: ...


class StripeProcessor:
    """Stripe-backed processor using the library's async request methods."""

    def __init__(self, secret_key: str, webhook_secret: str | None = None) -> None:
        self._api_key = secret_key
        self._webhook_secret = webhook_secret

    async def create_customer(
        self, *, email: str, name: str | None, metadata: dict[str, str]
    ) -> str:
        customer = await stripe.Customer.create_async(
            api_key=self._api_key, email=email, name=name, metadata=metadata
        )
        logger.info("Created processor customer %s", customer.id)
        return customer.id

    async def create_payment_intent(
        self,
        *,
        amount_cents: int,
        customer_id: str | None,
        metadata: dict[str, str],
        application_fee_cents: int | None = None,
        connected_account_id: str | None = None,
    ) -> PaymentIntentRef:
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": "usd",
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if connected_account_id:
            # Destination charge: the organization's account receives the
            # funds and the platform keeps the application fee.
            params["transfer_data"] = {"destination": connected_account_id}
            if application_fee_cents is not None:
                params["application_fee_amount"] = application_fee_cents

        try:
            intent = await stripe.PaymentIntent.create_async(
                api_key=self._api_key, **params
            )
        except stripe.StripeError as exc:
            raise ProcessorError(exc.user_message or str(exc)) from exc
        logger.info(
            "Created payment intent %s for %d cents",
            intent.id,
            amount_cents,
            extra={"payment_id": metadata.get("payment_id")},
        )
        return PaymentIntentRef(
            id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=intent.amount,
            status=intent.status,
        )

    async def create_subscription(
        self, *, customer_id: str, price_id: str, metadata: dict[str, str]
    ) -> SubscriptionRef:
        sub = await stripe.Subscription.create_async(
            api_key=self._api_key,
            customer=customer_id,
            items=[{"price": price_id}],
            metadata=metadata,
        )
        return SubscriptionRef(id=sub.id, status=sub.status)

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionRef:
        sub = await stripe.Subscription.cancel_async(
            subscription_id, api_key=self._api_key
        )
        logger.info("Cancelled subscription %s", subscription_id)
        return SubscriptionRef(id=sub.id, status=sub.status)

    def verify_webhook(self, payload: bytes, signature: str) -> dict[str, Any]:
        if not self._webhook_secret:
            raise WebhookSignatureError("webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureError(f"invalid payload: {exc}") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("invalid signature") from exc
        return json.loads(payload)


def build_processor() -> PaymentProcessor | None:
    """Processor from settings, or None when no secret key is configured."""
    if not SETTINGS.stripe_secret_key:
        return None
    return StripeProcessor(
        SETTINGS.stripe_secret_key, webhook_secret=SETTINGS.stripe_webhook_secret
    )
