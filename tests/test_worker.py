from __future__ import annotations

import asyncio

from dues_service import worker
from dues_service.db import engine as db_engine
from tests.conftest import create_test_membership, create_test_org


def test_run_billing_once_bills_every_org(stores) -> None:
    a = create_test_org(stores)
    b = create_test_org(stores, name="Masjid Noor", slug="noor")
    create_test_membership(stores, a, next_payment_due=None)
    create_test_membership(stores, b, next_payment_due=None)

    results = asyncio.run(worker.run_billing_once(stores))

    assert set(results) == {a.id, b.id}
    assert all(r.success for r in results.values())


def test_run_billing_once_without_database_does_nothing(monkeypatch) -> None:
    monkeypatch.setattr(db_engine, "async_session_factory", None)
    assert asyncio.run(worker.run_billing_once()) == {}


def test_summarize_counts_results(stores) -> None:
    org = create_test_org(stores)
    create_test_membership(stores, org, next_payment_due=None)
    results = asyncio.run(worker.run_billing_once(stores))

    summary = worker.summarize(results)

    assert summary == {
        "organizations": 1,
        "failed": 0,
        "payments_created": 0,
        "status_updates": 0,
    }
