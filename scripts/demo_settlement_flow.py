"""Demo: quote a fee, record manual dues, replay a settlement, run billing.

Uses FastAPI TestClient against the in-memory stores.

Run with:
    python scripts/demo_settlement_flow.py
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, date, datetime
from uuid import uuid4

from fastapi.testclient import TestClient

from dues_service.api.dependencies import memory_stores
from dues_service.main import app
from dues_service.models.membership import Membership
from dues_service.models.organization import BillingConfig, Organization
from dues_service.models.plan import Plan


async def _seed() -> tuple[Organization, Membership]:
    org = Organization.new(
        name="Islamic Center of Fremont",
        slug="icf",
        platform_fee_dollars=1.00,
        billing=BillingConfig(eligibility_months=12),
    )
    await memory_stores.organizations.add(org)
    plan = Plan.new(org_id=org.id, name="Standard", monthly_cents=2500)
    await memory_stores.plans.add(plan)

    membership = Membership.new(
        org_id=org.id,
        member_id=uuid4(),
        plan_id=plan.id,
        next_payment_due=date(2025, 1, 15),
    )
    membership = replace(
        membership,
        status="current",
        enrollment_fee_status="paid",
        agreement_signed_at=datetime(2024, 12, 1, tzinfo=UTC),
        paid_months=10,
    )
    await memory_stores.memberships.add(membership)
    return org, membership


def main() -> None:
    client = TestClient(app)
    org, membership = asyncio.run(_seed())

    # ── Step 1: fee quote ───────────────────────────────────────────
    r = client.post(
        "/v1/fees/quote",
        json={"base_amount_cents": 10000, "platform_fee_dollars": 1.0},
    )
    body = r.json()
    print(
        f"1. POST /v1/fees/quote          -> {r.status_code}  "
        f"charge={body['charge_amount_cents']} net={body['net_amount_cents']}"
    )

    # ── Step 2: record 2 months of cash dues ────────────────────────
    r = client.post(
        f"/v1/orgs/{org.id}/payments/record",
        json={
            "membership_id": str(membership.id),
            "type": "dues",
            "method": "cash",
            "amount_cents": 5000,
            "months_credited": 2,
            "recorded_by": "treasurer",
        },
    )
    body = r.json()
    payment_id = body["payment_id"]
    settlement = body["settlement"]
    print(
        f"2. POST .../payments/record     -> {r.status_code}  "
        f"outcome={settlement['outcome']} paid_months={settlement['new_paid_months']} "
        f"eligible={settlement['became_eligible']}"
    )

    # ── Step 3: replay the settlement ───────────────────────────────
    r = client.post(f"/v1/payments/{payment_id}/settle", json={})
    print(f"3. POST .../settle (replay)     -> {r.status_code}  outcome={r.json()['outcome']}")

    # ── Step 4: dry-run billing ─────────────────────────────────────
    r = client.post(
        f"/v1/orgs/{org.id}/billing/run",
        json={"billing_date": "2025-03-20", "dry_run": True},
    )
    body = r.json()
    print(
        f"4. POST .../billing/run (dry)   -> {r.status_code}  "
        f"would_create={body['payments_created']}"
    )

    print("\nDone.")


if __name__ == "__main__":
    main()
