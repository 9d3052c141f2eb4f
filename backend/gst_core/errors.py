"""
GST COMPLIANCE CORE - ERROR TAXONOMY

Every rejection raised by the core carries:
1. A stable machine code (mapped to an HTTP status at the boundary)
2. A human readable message
3. Structured details (field, expected/actual, period identifiers)
"""

from typing import Any, Dict, List, Optional


class ComplianceError(Exception):
    """Base class for all domain rejections raised by the compliance core"""
    code = "COMPLIANCE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidInputError(ComplianceError):
    """Raw input is outside its domain bounds. Raised before any side effect."""
    code = "INVALID_INPUT"

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(message, {"field": field, "value": value})


class CalculationMismatchError(ComplianceError):
    """Derived amounts do not satisfy the commission/tax relationships"""
    code = "CALCULATION_MISMATCH"

    def __init__(self, mismatches: List[Dict[str, Any]]):
        self.mismatches = mismatches
        fields = ", ".join(m["field"] for m in mismatches)
        super().__init__(
            f"Calculation validation failed for: {fields}",
            {"mismatches": mismatches}
        )


class FilingLockedError(ComplianceError):
    """Mutation attempted against a period whose GST filing is locked"""
    code = "FILING_LOCKED"

    def __init__(self, financial_year: str, month: int, year: int, filing_period: str, operation: str):
        self.financial_year = financial_year
        self.month = month
        self.year = year
        self.filing_period = filing_period
        self.operation = operation
        super().__init__(
            f"Transactions for {month:02d}/{year} ({filing_period}) are locked due to GST filing. "
            f"{operation} is not allowed.",
            {
                "financial_year": financial_year,
                "month": month,
                "year": year,
                "filing_period": filing_period,
                "operation": operation
            }
        )


class NotFoundError(ComplianceError):
    """Referenced transaction or filing lock does not exist"""
    code = "NOT_FOUND"

    def __init__(self, entity_type: str, reference: Any):
        self.entity_type = entity_type
        self.reference = reference
        super().__init__(
            f"{entity_type} not found: {reference}",
            {"entity_type": entity_type, "reference": str(reference)}
        )


class DuplicateInvoiceNumberError(ComplianceError):
    """
    Invoice number uniqueness violated at persistence time.

    Unreachable while the sequence increment is atomic. Treated as a store
    integrity fault, never retried.
    """
    code = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(
            f"Invoice number {invoice_number} already exists - sequence integrity fault",
            {"invoice_number": invoice_number}
        )


class ComplianceValidationError(ComplianceError):
    """Batch validation found errors; report/export output is blocked"""
    code = "COMPLIANCE_VALIDATION_FAILED"

    def __init__(self, result: Dict[str, Any]):
        self.result = result
        self.errors = result.get("errors", [])
        self.warnings = result.get("warnings", [])
        super().__init__(
            "GST compliance validation failed",
            {
                "errors": self.errors,
                "warnings": self.warnings,
                "summary": result.get("summary", {})
            }
        )
