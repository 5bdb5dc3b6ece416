"""Card-charge sizing under the processor's percentage-plus-fixed fee model.

All amounts are integer cents except ``platform_fee_dollars``, which is
how organizations configure their platform fee. ``FeeBreakdown.breakdown``
is the only place cents are turned back into dollars.

Two policies:

* standard: the member pays base + platform fee and the organization
  absorbs the processor fee (net may go negative on tiny bases).
* gross-up (``pass_fees_to_member``): the charge is solved so the
  organization keeps exactly the base amount.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

PROCESSOR_PERCENT_RATE = 0.029
PROCESSOR_FIXED_CENTS = 30


class FeeInputError(ValueError):
    """Negative or non-integral amount handed to the fee calculator."""


@dataclass(frozen=True, slots=True)
class FeeBreakdownDollars:
    base_amount: float
    platform_fee: float
    processor_fee: float
    charge_amount: float
    net_amount: float
    total_fees: float


@dataclass(frozen=True, slots=True)
class FeeBreakdown:
    base_amount_cents: int
    platform_fee_cents: int
    processor_fee_cents: int
    charge_amount_cents: int
    net_amount_cents: int
    application_fee_cents: int
    pass_fees_to_member: bool

    @property
    def stripe_fee_cents(self) -> int:
        return self.processor_fee_cents

    @property
    def breakdown(self) -> FeeBreakdownDollars:
        return FeeBreakdownDollars(
            base_amount=self.base_amount_cents / 100,
            platform_fee=self.platform_fee_cents / 100,
            processor_fee=self.processor_fee_cents / 100,
            charge_amount=self.charge_amount_cents / 100,
            net_amount=self.net_amount_cents / 100,
            total_fees=self.application_fee_cents / 100,
        )


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; fees round .5 up.
    return math.floor(value + 0.5)


def _check_cents(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise FeeInputError(f"{name} must be an integer number of cents")
    if value < 0:
        raise FeeInputError(f"{name} must be non-negative, got {value}")


def _platform_fee_cents(platform_fee_dollars: float) -> int:
    if platform_fee_dollars < 0:
        raise FeeInputError(
            f"platform_fee_dollars must be non-negative, got {platform_fee_dollars}"
        )
    return _round_half_up(platform_fee_dollars * 100)


def processor_fee_for(charge_amount_cents: int) -> int:
    return _round_half_up(charge_amount_cents * PROCESSOR_PERCENT_RATE) + (
        PROCESSOR_FIXED_CENTS
    )


def calculate_fees(
    base_amount_cents: int,
    platform_fee_dollars: float,
    pass_fees_to_member: bool = False,
) -> FeeBreakdown:
    _check_cents("base_amount_cents", base_amount_cents)
    platform_fee_cents = _platform_fee_cents(platform_fee_dollars)

    if pass_fees_to_member:
        charge = math.ceil(
            (base_amount_cents + platform_fee_cents + PROCESSOR_FIXED_CENTS)
            / (1 - PROCESSOR_PERCENT_RATE)
        )
        processor_fee = processor_fee_for(charge)
        net = base_amount_cents
    else:
        charge = base_amount_cents + platform_fee_cents
        processor_fee = processor_fee_for(charge)
        net = base_amount_cents - processor_fee

    return FeeBreakdown(
        base_amount_cents=base_amount_cents,
        platform_fee_cents=platform_fee_cents,
        processor_fee_cents=processor_fee,
        charge_amount_cents=charge,
        net_amount_cents=net,
        application_fee_cents=platform_fee_cents + processor_fee,
        pass_fees_to_member=pass_fees_to_member,
    )


def reverse_calculate_base_amount(
    charge_amount_cents: int,
    platform_fee_dollars: float,
    pass_fees_to_member: bool = True,
) -> int:
    """Recover the base amount from what the card was actually charged.

    Exact in standard mode; within one cent of the original base in
    gross-up mode. Never negative.
    """
    _check_cents("charge_amount_cents", charge_amount_cents)
    platform_fee_cents = _platform_fee_cents(platform_fee_dollars)

    if not pass_fees_to_member:
        return max(0, charge_amount_cents - platform_fee_cents)

    base = math.floor(
        charge_amount_cents * (1 - PROCESSOR_PERCENT_RATE)
        - platform_fee_cents
        - PROCESSOR_FIXED_CENTS
    )
    return max(0, base)
