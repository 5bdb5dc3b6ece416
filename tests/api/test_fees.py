from __future__ import annotations

from fastapi.testclient import TestClient


def test_quote_standard_mode(client: TestClient) -> None:
    resp = client.post(
        "/v1/fees/quote",
        json={"base_amount_cents": 10000, "platform_fee_dollars": 2.0},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["charge_amount_cents"] == 10200
    assert data["processor_fee_cents"] == 326
    assert data["net_amount_cents"] == 9674
    assert data["application_fee_cents"] == 526
    assert data["breakdown"]["total_fees"] == 5.26


def test_quote_gross_up_mode(client: TestClient) -> None:
    resp = client.post(
        "/v1/fees/quote",
        json={"base_amount_cents": 10000, "pass_fees_to_member": True},
    )
    data = resp.json()
    assert data["charge_amount_cents"] == 10330
    assert data["net_amount_cents"] == 10000
    assert data["pass_fees_to_member"] is True


def test_quote_negative_amount_is_422(client: TestClient) -> None:
    resp = client.post("/v1/fees/quote", json={"base_amount_cents": -5})
    assert resp.status_code == 422
    assert "non-negative" in resp.json()["detail"]


def test_quote_fractional_cents_rejected_by_schema(client: TestClient) -> None:
    resp = client.post("/v1/fees/quote", json={"base_amount_cents": 10.5})
    assert resp.status_code == 422


def test_reverse_recovers_base(client: TestClient) -> None:
    resp = client.post("/v1/fees/reverse", json={"charge_amount_cents": 10330})
    assert resp.status_code == 200
    assert resp.json() == {"charge_amount_cents": 10330, "base_amount_cents": 10000}


def test_reverse_standard_mode(client: TestClient) -> None:
    resp = client.post(
        "/v1/fees/reverse",
        json={
            "charge_amount_cents": 10200,
            "platform_fee_dollars": 2.0,
            "pass_fees_to_member": False,
        },
    )
    assert resp.json()["base_amount_cents"] == 10000
