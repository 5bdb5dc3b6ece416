"""Bundle of store handles passed into the billing core.

The core never reaches for module-level singletons; callers hand it a
``Stores`` built either from the in-memory repos or from a request-scoped
SQLAlchemy session (see ``pg_stores``).
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from dues_service.repos.invoice_sequence_repo import (
    InMemoryInvoiceSequenceRepo,
    InvoiceSequenceRepo,
)
from dues_service.repos.membership_repo import InMemoryMembershipRepo, MembershipRepo
from dues_service.repos.org_repo import InMemoryOrgRepo, OrgRepo
from dues_service.repos.payment_repo import InMemoryPaymentRepo, PaymentRepo
from dues_service.repos.plan_repo import InMemoryPlanRepo, PlanRepo
from dues_service.repos.webhook_event_repo import (
    InMemoryProcessedEventRepo,
    ProcessedEventRepo,
)


@dataclass(slots=True)
class Stores:
    payments: PaymentRepo
    memberships: MembershipRepo
    organizations: OrgRepo
    plans: PlanRepo
    invoice_sequences: InvoiceSequenceRepo
    processed_events: ProcessedEventRepo
    # Scope for one unit of work that may fail without spoiling the rest
    # of the transaction. A SAVEPOINT under Postgres; nothing in memory.
    savepoint: Callable[[], AbstractAsyncContextManager[Any]] = nullcontext

    @staticmethod
    def in_memory() -> Stores:
        return Stores(
            payments=InMemoryPaymentRepo(),
            memberships=InMemoryMembershipRepo(),
            organizations=InMemoryOrgRepo(),
            plans=InMemoryPlanRepo(),
            invoice_sequences=InMemoryInvoiceSequenceRepo(),
            processed_events=InMemoryProcessedEventRepo(),
        )


def pg_stores(session: AsyncSession) -> Stores:
    """Stores backed by one request-scoped session (one transaction)."""
    from dues_service.repos.pg_membership_repo import PgMembershipRepo
    from dues_service.repos.pg_org_repo import (
        PgInvoiceSequenceRepo,
        PgOrgRepo,
        PgPlanRepo,
        PgProcessedEventRepo,
    )
    from dues_service.repos.pg_payment_repo import PgPaymentRepo

    return Stores(
        payments=PgPaymentRepo(session),
        memberships=PgMembershipRepo(session),
        organizations=PgOrgRepo(session),
        plans=PgPlanRepo(session),
        invoice_sequences=PgInvoiceSequenceRepo(session),
        processed_events=PgProcessedEventRepo(session),
        savepoint=session.begin_nested,
    )
