from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
import stripe

from dues_service.services.processor import ProcessorError, StripeProcessor


def test_stripe_error_is_raised_as_processor_error(monkeypatch) -> None:
    async def unreachable(**params):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.PaymentIntent, "create_async", unreachable)
    processor = StripeProcessor("sk_test_123")

    with pytest.raises(ProcessorError, match="network down"):
        asyncio.run(
            processor.create_payment_intent(
                amount_cents=2500, customer_id=None, metadata={"payment_id": "p1"}
            )
        )


def test_destination_charge_params(monkeypatch) -> None:
    seen: dict = {}

    async def create(**params):
        seen.update(params)
        return SimpleNamespace(
            id="pi_9",
            client_secret="cs_9",
            amount=params["amount"],
            status="requires_payment_method",
        )

    monkeypatch.setattr(stripe.PaymentIntent, "create_async", create)
    processor = StripeProcessor("sk_test_123")

    intent = asyncio.run(
        processor.create_payment_intent(
            amount_cents=10200,
            customer_id="cus_1",
            metadata={"payment_id": "p1"},
            application_fee_cents=526,
            connected_account_id="acct_1",
        )
    )

    assert intent.id == "pi_9"
    assert intent.amount_cents == 10200
    assert seen["api_key"] == "sk_test_123"
    assert seen["customer"] == "cus_1"
    assert seen["transfer_data"] == {"destination": "acct_1"}
    assert seen["application_fee_amount"] == 526
