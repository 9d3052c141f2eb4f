"""
GST Compliance Core Modules
"""
from .errors import (
    ComplianceError,
    InvalidInputError,
    CalculationMismatchError,
    FilingLockedError,
    NotFoundError,
    DuplicateInvoiceNumberError,
    ComplianceValidationError
)

from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    within_tolerance,
    calculate_percentage,
    FinancialPrecisionError
)

from .commission_engine import (
    DerivedAmounts,
    compute_derived
)

from .fiscal_year import (
    financial_year,
    financial_year_for_period,
    filing_period
)

from .invariant_validator import GSTInvariantValidator

from .atomic_numbering import (
    SequenceCounter,
    MongoSequenceCounter,
    InMemorySequenceCounter,
    InvoiceNumberAllocator
)

from .filing_lock_engine import (
    FilingLockEngine,
    Locked,
    Unlocked,
    LockState
)

__all__ = [
    'ComplianceError',
    'InvalidInputError',
    'CalculationMismatchError',
    'FilingLockedError',
    'NotFoundError',
    'DuplicateInvoiceNumberError',
    'ComplianceValidationError',
    'to_decimal',
    'round_financial',
    'to_float',
    'within_tolerance',
    'calculate_percentage',
    'FinancialPrecisionError',
    'DerivedAmounts',
    'compute_derived',
    'financial_year',
    'financial_year_for_period',
    'filing_period',
    'GSTInvariantValidator',
    'SequenceCounter',
    'MongoSequenceCounter',
    'InMemorySequenceCounter',
    'InvoiceNumberAllocator',
    'FilingLockEngine',
    'Locked',
    'Unlocked',
    'LockState',
]
