"""Invoice numbers, billing periods and period labels.

Every path that creates a dues payment (manual recording, webhook
reconciliation, the recurring billing run) goes through here so invoice
metadata is consistent.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from dues_service.models.invoice import InvoiceMetadata
from dues_service.models.membership import BillingFrequency
from dues_service.models.organization import Organization
from dues_service.repos.invoice_sequence_repo import InvoiceSequenceRepo

_MONTHS_BY_FREQUENCY: dict[str, int] = {"monthly": 1, "biannual": 6, "annual": 12}
_FREQUENCY_BY_MONTHS = {v: k for k, v in _MONTHS_BY_FREQUENCY.items()}

_ORG_PREFIX_RE = re.compile(
    r"^(Organization|Islamic Center|IC|Islamic Centre)\s+", re.IGNORECASE
)
_WORD_SPLIT_RE = re.compile(r"[\s-]+")


def months_for_frequency(frequency: BillingFrequency | str) -> int:
    """1 / 6 / 12. Unknown frequencies bill as monthly."""
    return _MONTHS_BY_FREQUENCY.get(frequency, 1)


def add_months_preserve_day(d: date, months: int) -> date:
    """Anniversary arithmetic.

    A date on the last day of its month lands on the last day of the target
    month (Feb 28 -> Mar 31); otherwise the day is kept and clamped to the
    target month's length (Jan 31 -> Feb 28).
    """
    last_of_current = calendar.monthrange(d.year, d.month)[1]
    total = d.month - 1 + months
    year = d.year + total // 12
    month = total % 12 + 1
    last_of_target = calendar.monthrange(year, month)[1]

    if d.day == last_of_current:
        day = last_of_target
    else:
        day = min(d.day, last_of_target)
    return date(year, month, day)


def calculate_next_billing_date(current: date, frequency: BillingFrequency) -> date:
    return add_months_preserve_day(current, months_for_frequency(frequency))


def calculate_period_end(period_start: date, months: int) -> date:
    """Last day covered: the day before the next period starts."""
    return add_months_preserve_day(period_start, months) - timedelta(days=1)


def format_period_label(start: date, frequency: BillingFrequency) -> str:
    if frequency == "biannual":
        end = add_months_preserve_day(start, 6)
        return f"{start:%b %Y} - {end:%b %Y}"
    if frequency == "annual":
        return f"{start.year}-{start.year + 1}"
    return f"{calendar.month_name[start.month]} {start.year}"


def format_custom_period_label(start: date, end: date) -> str:
    if start.year == end.year:
        return f"{start:%b} - {end:%b} {start.year}"
    return f"{start:%b %Y} - {end:%b %Y}"


def extract_org_code(name: str) -> str:
    """Two-letter code: initials of the first two words, else first two letters.

    >>> extract_org_code("Amanah Logic")
    'AL'
    >>> extract_org_code("Islamic Center of Fremont")
    'OF'
    """
    cleaned = _ORG_PREFIX_RE.sub("", name).strip()
    words = [w for w in _WORD_SPLIT_RE.split(cleaned) if w]
    if len(words) >= 2:
        return (words[0][0] + words[1][0]).upper()
    return cleaned[:2].upper()


async def generate_invoice_number(
    org: Organization, billing_date: date, sequences: InvoiceSequenceRepo
) -> str:
    """``INV-{ORG}-{YYYYMM}-{SEQ}``, sequence reserved atomically per org+month."""
    year_month = f"{billing_date:%Y%m}"
    seq = await sequences.next_sequence(org.id, year_month)
    return f"INV-{extract_org_code(org.name)}-{year_month}-{seq:04d}"


async def generate_invoice_metadata(
    org: Organization,
    billing_date: date,
    frequency: BillingFrequency,
    sequences: InvoiceSequenceRepo,
) -> InvoiceMetadata:
    """Metadata for one regular installment starting at ``billing_date``."""
    months = months_for_frequency(frequency)
    return InvoiceMetadata(
        invoice_number=await generate_invoice_number(org, billing_date, sequences),
        due_date=billing_date,
        period_start=billing_date,
        period_end=calculate_period_end(billing_date, months),
        period_label=format_period_label(billing_date, frequency),
        months_credited=months,
    )


async def generate_ad_hoc_invoice_metadata(
    org: Organization,
    billing_date: date,
    months_credited: int,
    sequences: InvoiceSequenceRepo,
) -> InvoiceMetadata:
    """Metadata for back dues or any custom month count."""
    if months_credited <= 0:
        raise ValueError("months_credited must be positive for invoiced payments")

    period_end = calculate_period_end(billing_date, months_credited)
    frequency = _FREQUENCY_BY_MONTHS.get(months_credited)
    if frequency is not None:
        label = format_period_label(billing_date, frequency)  # type: ignore[arg-type]
    else:
        label = format_custom_period_label(billing_date, period_end)

    return InvoiceMetadata(
        invoice_number=await generate_invoice_number(org, billing_date, sequences),
        due_date=billing_date,
        period_start=billing_date,
        period_end=period_end,
        period_label=label,
        months_credited=months_credited,
    )


def enrollment_fee_metadata(billing_date: date) -> InvoiceMetadata:
    """Enrollment fees are not invoiced and credit no months."""
    return InvoiceMetadata(
        invoice_number=None,
        due_date=billing_date,
        period_start=billing_date,
        period_end=billing_date,
        period_label="Enrollment Fee",
        months_credited=0,
    )


def today_in_timezone(tz_name: str, now: datetime | None = None) -> date:
    """The organization's local calendar date."""
    tz = ZoneInfo(tz_name)
    if now is None:
        return datetime.now(tz).date()
    return now.astimezone(tz).date()
