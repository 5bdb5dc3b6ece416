from __future__ import annotations

from uuid import uuid4

from dues_service.models.plan import Plan
from dues_service.services.pricing import check_amount_variance, expected_amount_cents


def _plan(**prices) -> Plan:
    return Plan.new(org_id=uuid4(), name="Standard", **{"monthly_cents": 2500, **prices})


def test_expected_amount_uses_period_prices_when_defined() -> None:
    plan = _plan(biannual_cents=14000, annual_cents=27000)
    assert expected_amount_cents(plan, 6) == 14000
    assert expected_amount_cents(plan, 12) == 27000
    assert expected_amount_cents(plan, 3) == 7500


def test_expected_amount_falls_back_to_monthly_rate() -> None:
    plan = _plan()
    assert expected_amount_cents(plan, 6) == 15000
    assert expected_amount_cents(plan, 12) == 30000


def test_exact_amount_not_flagged() -> None:
    variance = check_amount_variance(7500, _plan(), 3)
    assert variance is not None
    assert variance.flagged is False
    assert variance.warning is None


def test_one_percent_is_tolerated() -> None:
    # 2525 is exactly 1% over 2500
    assert check_amount_variance(2525, _plan(), 1).flagged is False


def test_large_mismatch_flagged_with_warning() -> None:
    variance = check_amount_variance(25000, _plan(), 1)
    assert variance.flagged is True
    assert variance.expected_cents == 2500
    assert variance.warning == "Amount 25000 differs from expected 2500 for 1 months"


def test_nothing_to_compare_returns_none() -> None:
    assert check_amount_variance(1000, _plan(), 0) is None
    assert check_amount_variance(1000, _plan(monthly_cents=0), 1) is None
