"""
GST COMPLIANCE CORE - COMMISSION & TAX CALCULATION RULE

LOCKED FORMULAS (each step rounded independently, in this order):
- commission_amount = round2(total_received * commission_percent / 100)
- tax_amount        = round2(commission_amount * tax_rate_percent / 100)
- net_income        = round2(commission_amount - tax_amount)
- return_amount     = round2(total_received - commission_amount)

GST is computed on commission_amount ONLY, never on total_received.
total_received is the amount that moved through the QR channel, it is NOT revenue.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Dict

from gst_core.errors import InvalidInputError
from gst_core.financial_precision import (
    Numeric,
    FinancialPrecisionError,
    to_decimal,
    round_financial,
    calculate_percentage,
)

ZERO = Decimal('0')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class DerivedAmounts:
    commission_amount: Decimal
    tax_amount: Decimal
    net_income: Decimal
    return_amount: Decimal

    def as_floats(self) -> Dict[str, float]:
        """Storage representation"""
        return {key: float(value) for key, value in asdict(self).items()}


def _coerce(value: Numeric, field: str) -> Decimal:
    try:
        return to_decimal(value)
    except FinancialPrecisionError:
        raise InvalidInputError(field, value, f"{field} must be a number")


def validate_percentage(value: Numeric, field: str) -> Decimal:
    """Percentages are accepted in the closed range [0, 100]"""
    percent = _coerce(value, field)
    if percent < ZERO or percent > HUNDRED:
        raise InvalidInputError(field, value, f"{field} must be between 0 and 100")
    return percent


def compute_derived(
    total_received: Numeric,
    commission_percent: Numeric,
    tax_rate_percent: Numeric
) -> DerivedAmounts:
    """
    Compute commission, tax, net income and return amount.

    Raises:
        InvalidInputError: non-positive total or percentage outside [0, 100]
    """
    total = _coerce(total_received, "total_received")
    if total <= ZERO:
        raise InvalidInputError(
            "total_received", total_received, "Total received amount must be greater than 0"
        )
    percent = validate_percentage(commission_percent, "commission_percent")
    tax_rate = validate_percentage(tax_rate_percent, "tax_rate_percent")

    commission_amount = round_financial(calculate_percentage(total, percent))
    tax_amount = round_financial(calculate_percentage(commission_amount, tax_rate))
    net_income = round_financial(commission_amount - tax_amount)
    return_amount = round_financial(total - commission_amount)

    return DerivedAmounts(
        commission_amount=commission_amount,
        tax_amount=tax_amount,
        net_income=net_income,
        return_amount=return_amount
    )
