"""Conversions between major-unit decimals and the integer minor units stored in the database."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor(amount: Decimal) -> int:
    return int(quantize(amount) * 100)


def to_major(minor: int) -> Decimal:
    return quantize(Decimal(minor) / 100)


@dataclass(frozen=True)
class FeeBreakdown:
    platform_fee: int
    processor_fee: int
    creator_amount: int
    platform_net: int


def compute_fees(
    amount: int,
    platform_fee_rate: Decimal,
    processor_fee_rate: Decimal,
) -> FeeBreakdown:
    """Split a gross tip (minor units) into the platform take and the creator share.

    ``platform_net`` is what the platform keeps, ``processor_fee`` is charged by the
    payment gateway and borne by the platform, and the creator receives the rest.
    ``platform_fee`` is the gross platform deduction (net plus processor fee).
    """
    if amount <= 0:
        return FeeBreakdown(platform_fee=0, processor_fee=0, creator_amount=amount, platform_net=0)

    gross = to_major(amount)
    platform_net = quantize(gross * platform_fee_rate)
    processor_fee = quantize(gross * processor_fee_rate)
    creator_amount = quantize(gross - platform_net - processor_fee)
    return FeeBreakdown(
        platform_fee=to_minor(platform_net + processor_fee),
        processor_fee=to_minor(processor_fee),
        creator_amount=to_minor(creator_amount),
        platform_net=to_minor(platform_net),
    )
