"""
GST COMPLIANCE CORE - INVARIANT VALIDATOR

Enforces the commission/tax relationships:
1. net_income    == commission_amount - tax_amount
2. return_amount == total_received - commission_amount
3. commission_amount + return_amount == total_received
4. tax_amount    == commission_amount * tax_rate / 100   (report time)
5. commission_amount > 0                                  (report time)

All comparisons allow a 0.01 tolerance.

Gates writes (validate_calculation) and report/export output
(validate_batch_for_compliance).
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union
import logging

from gst_core.commission_engine import DerivedAmounts
from gst_core.errors import (
    CalculationMismatchError,
    ComplianceValidationError,
    InvalidInputError,
)
from gst_core.financial_precision import (
    to_decimal,
    to_float,
    round_financial,
    within_tolerance,
    calculate_percentage,
)

logger = logging.getLogger(__name__)

DerivedLike = Union[DerivedAmounts, Mapping[str, Any]]


def _read(derived: DerivedLike, field: str) -> Decimal:
    if isinstance(derived, DerivedAmounts):
        return getattr(derived, field)
    value = derived.get(field)
    return to_decimal(value if value is not None else 0)


def _mismatch(field: str, expected: Decimal, actual: Decimal, message: str) -> Dict[str, Any]:
    return {
        "field": field,
        "expected": to_float(expected),
        "actual": float(actual),
        "message": message
    }


class GSTInvariantValidator:
    """
    Centralized commission/tax invariant enforcement.

    Recomputes each relationship from the already-stored amounts rather than
    trusting the calculation rule that produced them.
    """

    def __init__(self, tax_rate_percent: float):
        self.tax_rate_percent = to_decimal(tax_rate_percent)

    def find_calculation_mismatches(
        self,
        total_received: Any,
        derived: DerivedLike
    ) -> List[Dict[str, Any]]:
        total = to_decimal(total_received)
        commission = _read(derived, "commission_amount")
        tax = _read(derived, "tax_amount")
        net_income = _read(derived, "net_income")
        return_amount = _read(derived, "return_amount")

        mismatches = []

        expected_net = round_financial(commission - tax)
        if not within_tolerance(net_income, expected_net):
            mismatches.append(_mismatch(
                "net_income", expected_net, net_income,
                f"Net income ({net_income}) does not match commission - tax ({expected_net})"
            ))

        expected_return = round_financial(total - commission)
        if not within_tolerance(return_amount, expected_return):
            mismatches.append(_mismatch(
                "return_amount", expected_return, return_amount,
                f"Return amount ({return_amount}) does not match total received - commission ({expected_return})"
            ))

        if not within_tolerance(commission + return_amount, total):
            mismatches.append(_mismatch(
                "total_received", total, commission + return_amount,
                f"Commission + return ({commission + return_amount}) does not add up to total received ({total})"
            ))

        return mismatches

    def validate_calculation(self, total_received: Any, derived: DerivedLike) -> bool:
        """True when the derived amounts are consistent with total_received"""
        return not self.find_calculation_mismatches(total_received, derived)

    def ensure_valid_calculation(self, total_received: Any, derived: DerivedLike) -> None:
        """
        Write gate. Raises CalculationMismatchError; nothing is auto-corrected.
        """
        mismatches = self.find_calculation_mismatches(total_received, derived)
        if mismatches:
            logger.warning(f"[INVARIANT] Calculation mismatch: {mismatches}")
            raise CalculationMismatchError(mismatches)

    def ensure_reportable_commission(self, derived: DerivedLike) -> None:
        """
        A record with no commission can never pass the report-time check,
        so it is refused at write time.
        """
        commission = _read(derived, "commission_amount")
        if commission <= Decimal('0'):
            raise InvalidInputError(
                "commission_amount",
                float(commission),
                "Commission amount must be greater than 0 for GST calculation"
            )

    def validate_batch_for_compliance(
        self,
        transactions: List[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """
        Validate stored transactions before any report/export surfaces tax figures.

        Does NOT raise - collects all errors and warnings for the caller.
        """
        errors = []
        warnings = []
        invalid_indexes = set()

        for index, transaction in enumerate(transactions):
            transaction_id = transaction.get("_id", transaction.get("transaction_id"))
            if transaction_id is not None:
                transaction_id = str(transaction_id)

            total = to_decimal(transaction.get("total_received") or 0)
            commission = to_decimal(transaction.get("commission_amount") or 0)
            tax = to_decimal(transaction.get("tax_amount") or 0)
            net_income = to_decimal(transaction.get("net_income") or 0)
            return_amount = to_decimal(transaction.get("return_amount") or 0)

            rate = transaction.get("tax_rate_percent")
            tax_rate = to_decimal(rate) if rate is not None else self.tax_rate_percent

            def add_error(field: str, expected: Optional[Decimal], actual: Decimal, message: str):
                invalid_indexes.add(index)
                errors.append({
                    "transaction_index": index,
                    "transaction_id": transaction_id,
                    "invoice_number": transaction.get("invoice_number"),
                    "field": field,
                    "expected": to_float(expected) if expected is not None else None,
                    "actual": float(actual),
                    "message": message
                })

            # Rule 1: commission must be positive
            if commission <= Decimal('0'):
                add_error(
                    "commission_amount", None, commission,
                    "Commission amount must be greater than 0 for GST calculation"
                )

            # Rule 2: tax is computed on commission ONLY
            expected_tax = calculate_percentage(commission, tax_rate)
            if not within_tolerance(tax, expected_tax):
                add_error(
                    "tax_amount", expected_tax, tax,
                    f"Tax amount ({tax}) does not match {tax_rate}% of commission ({to_float(expected_tax)})"
                )

            # Rule 3: net income = commission - tax
            expected_net = commission - tax
            if not within_tolerance(net_income, expected_net):
                add_error(
                    "net_income", expected_net, net_income,
                    f"Net income ({net_income}) does not match commission - tax ({to_float(expected_net)})"
                )

            # Rule 4: return = total received - commission
            expected_return = total - commission
            if not within_tolerance(return_amount, expected_return):
                add_error(
                    "return_amount", expected_return, return_amount,
                    f"Return amount ({return_amount}) does not match total received - commission "
                    f"({to_float(expected_return)})"
                )

            # Sanity check only
            if within_tolerance(total, commission):
                warnings.append({
                    "transaction_index": index,
                    "transaction_id": transaction_id,
                    "invoice_number": transaction.get("invoice_number"),
                    "message": "Total received equals commission amount. Verify this is correct."
                })

        return {
            "is_valid": len(errors) == 0,
            "errors": errors,
            "warnings": warnings,
            "summary": {
                "total_transactions": len(transactions),
                "valid_transactions": len(transactions) - len(invalid_indexes),
                "error_count": len(errors),
                "warning_count": len(warnings)
            }
        }

    def ensure_batch_compliant(self, transactions: List[Mapping[str, Any]]) -> Dict[str, Any]:
        """Raises ComplianceValidationError when any transaction in the batch fails"""
        result = self.validate_batch_for_compliance(transactions)
        if not result["is_valid"]:
            logger.warning(
                f"[INVARIANT] Batch compliance failed: {result['summary']['error_count']} error(s) "
                f"across {result['summary']['total_transactions']} transaction(s)"
            )
            raise ComplianceValidationError(result)
        return result
