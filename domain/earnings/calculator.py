"""
Earnings split for a booking price: platform fee, inclusive tax, provider net.

All amounts are integer minor currency units. Pure functions, no I/O.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from domain.common.config import MAX_FEE_BPS, DEFAULT_FEE_BPS
from domain.common.exceptions import InvalidAmountException

BPS_DENOMINATOR = 10_000


class TaxRule(Protocol):
    def tax_component(self, gross: int) -> int: ...


@dataclass(frozen=True)
class InclusiveTaxRule:
    """Tax already included in the price: tax = gross * rate / (1 + rate)."""

    rate_bps: int = 1500

    def tax_component(self, gross: int) -> int:
        # gross * r / (1 + r) with r = rate_bps / 10000, rounded half up
        numerator = gross * self.rate_bps
        denominator = BPS_DENOMINATOR + self.rate_bps
        return (2 * numerator + denominator) // (2 * denominator)


@dataclass(frozen=True)
class NoTaxRule:
    def tax_component(self, gross: int) -> int:
        return 0


NZ_GST = InclusiveTaxRule(rate_bps=1500)


@dataclass(frozen=True)
class EarningsBreakdown:
    gross: int
    platform_fee_amount: int
    gst_amount: int
    net_amount: int


def _validate_gross(gross: object) -> int:
    if isinstance(gross, bool):
        raise InvalidAmountException(gross)
    if isinstance(gross, float):
        if not math.isfinite(gross) or not gross.is_integer():
            raise InvalidAmountException(gross)
        gross = int(gross)
    if not isinstance(gross, int) or gross <= 0:
        raise InvalidAmountException(gross)
    return gross


def platform_fee(gross: int, fee_bps: int) -> int:
    """ceil(gross * fee_bps / 10000) in exact integer arithmetic."""
    return -(-gross * fee_bps // BPS_DENOMINATOR)


def calculate_earnings(
    gross: int,
    charges_tax: bool,
    fee_bps: int = DEFAULT_FEE_BPS,
    tax_rule: TaxRule = NZ_GST,
) -> EarningsBreakdown:
    amount = _validate_gross(gross)
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, int) or not 0 <= fee_bps <= MAX_FEE_BPS:
        raise InvalidAmountException(fee_bps, field="fee_bps")

    fee = platform_fee(amount, fee_bps)
    gst = tax_rule.tax_component(amount) if charges_tax else 0
    return EarningsBreakdown(
        gross=amount,
        platform_fee_amount=fee,
        gst_amount=gst,
        net_amount=amount - fee,
    )
