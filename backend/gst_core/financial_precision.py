"""
GST COMPLIANCE CORE - DECIMAL PRECISION & FINANCIAL UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places, round half away from zero)
2. Safe conversion of stored floats to Decimal
3. Tolerance comparison used by every invariant check
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
import logging

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')

# Maximum drift allowed between a stored amount and its recomputed value
TOLERANCE = Decimal('0.01')

Numeric = Union[float, int, str, Decimal]


class FinancialPrecisionError(Exception):
    """Raised when a value cannot be interpreted as a monetary amount"""
    pass


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise FinancialPrecisionError(f"Cannot convert '{value}' to Decimal")
    else:
        raise FinancialPrecisionError(f"Cannot convert {type(value)} to Decimal")
    if not result.is_finite():
        raise FinancialPrecisionError(f"Amount must be finite, got {value}")
    return result


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places, half away from zero.
    Applied independently at every calculation step.
    """
    decimal_value = to_decimal(value)
    return decimal_value.quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Numeric) -> float:
    """
    Convert Decimal back to float for MongoDB storage.
    Rounds to 2 decimal places first.
    """
    return float(round_financial(value))


def within_tolerance(actual: Numeric, expected: Numeric) -> bool:
    """True when two amounts differ by no more than one paisa"""
    return abs(to_decimal(actual) - to_decimal(expected)) <= TOLERANCE


def calculate_percentage(amount: Numeric, percentage: Numeric) -> Decimal:
    """
    Calculate percentage of an amount (unrounded).
    Example: calculate_percentage(1000, 10) = 100
    """
    return to_decimal(amount) * to_decimal(percentage) / Decimal('100')
