from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from datetime import UTC, date, datetime
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from dues_service.api.dependencies import memory_stores
from dues_service.main import app
from dues_service.models.membership import Membership
from dues_service.models.organization import BillingConfig, Organization
from dues_service.models.plan import Plan
from dues_service.repos.stores import Stores
from dues_service.services import billing_run
from dues_service.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import dues_service` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TODAY = date(2025, 3, 10)


@pytest.fixture(autouse=True)
def reset_memory_stores() -> None:
    """Swap fresh repos into the stores the API serves from."""
    fresh = Stores.in_memory()
    memory_stores.payments = fresh.payments
    memory_stores.memberships = fresh.memberships
    memory_stores.organizations = fresh.organizations
    memory_stores.plans = fresh.plans
    memory_stores.invoice_sequences = fresh.invoice_sequences
    memory_stores.processed_events = fresh.processed_events


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_billing_guard() -> None:
    billing_run._RUNNING.clear()


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def stores() -> Stores:
    """Private in-memory stores for service-level tests."""
    return Stores.in_memory()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def create_test_org(
    stores: Stores,
    *,
    name: str = "Islamic Center of Fremont",
    slug: str = "icf",
    platform_fee_dollars: float = 0.0,
    pass_fees_to_member: bool = False,
    eligibility_months: int = 60,
) -> Organization:
    org = Organization.new(
        name=name,
        slug=slug,
        platform_fee_dollars=platform_fee_dollars,
        pass_fees_to_member=pass_fees_to_member,
        billing=BillingConfig(eligibility_months=eligibility_months),
    )
    asyncio.run(stores.organizations.add(org))
    return org


def create_test_plan(
    stores: Stores, org: Organization, *, monthly_cents: int = 2500
) -> Plan:
    plan = Plan.new(
        org_id=org.id,
        name="Standard",
        monthly_cents=monthly_cents,
        biannual_cents=monthly_cents * 6,
        annual_cents=monthly_cents * 11,
        enrollment_fee_cents=10000,
    )
    asyncio.run(stores.plans.add(plan))
    return plan


def create_test_membership(
    stores: Stores,
    org: Organization,
    plan: Plan | None = None,
    **overrides,
) -> Membership:
    """A membership in good standing, onboarding done, due on TODAY."""
    membership = Membership.new(
        org_id=org.id,
        member_id=uuid4(),
        plan_id=plan.id if plan else None,
        next_payment_due=TODAY,
    )
    fields = {
        "status": "current",
        "enrollment_fee_status": "paid",
        "agreement_signed_at": datetime(2024, 1, 1, tzinfo=UTC),
        **overrides,
    }
    membership = replace(membership, **fields)
    asyncio.run(stores.memberships.add(membership))
    return membership
