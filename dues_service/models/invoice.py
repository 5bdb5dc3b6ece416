from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True, slots=True)
class InvoiceMetadata:
    """Period and numbering facts stamped on a dues payment row.

    ``invoice_number`` is None for enrollment fees, which are not invoiced.
    """

    invoice_number: str | None
    due_date: date
    period_start: date
    period_end: date
    period_label: str
    months_credited: int
