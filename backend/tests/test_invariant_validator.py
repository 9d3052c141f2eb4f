"""
Invariant validator tests: write gate and report-time batch validation
"""
import pytest

from gst_core.commission_engine import compute_derived
from gst_core.errors import CalculationMismatchError, ComplianceValidationError, InvalidInputError
from gst_core.invariant_validator import GSTInvariantValidator


def make_transaction(total, percent=1, rate=18, **overrides):
    tx = {
        "_id": f"tx-{total}",
        "invoice_number": "INV-FY24-00001",
        "total_received": float(total),
        "commission_percent": float(percent),
        "tax_rate_percent": float(rate),
        **compute_derived(total, percent, rate).as_floats()
    }
    tx.update(overrides)
    return tx


@pytest.fixture
def validator():
    return GSTInvariantValidator(18)


class TestCalculationGate:
    """validate_calculation / ensure_valid_calculation"""

    def test_computed_amounts_pass(self, validator):
        derived = compute_derived(10000, 1, 18)
        assert validator.validate_calculation(10000, derived) is True

    def test_mapping_input(self, validator):
        assert validator.validate_calculation(10000, {
            "commission_amount": 100, "tax_amount": 18, "net_income": 82, "return_amount": 9900
        })

    def test_tampered_net_income(self, validator):
        tampered = {"commission_amount": 100, "tax_amount": 18, "net_income": 90, "return_amount": 9900}
        with pytest.raises(CalculationMismatchError) as exc:
            validator.ensure_valid_calculation(10000, tampered)
        fields = [m["field"] for m in exc.value.mismatches]
        assert "net_income" in fields
        assert exc.value.code == "CALCULATION_MISMATCH"

    def test_tampered_return_amount(self, validator):
        tampered = {"commission_amount": 100, "tax_amount": 18, "net_income": 82, "return_amount": 10000}
        mismatches = validator.find_calculation_mismatches(10000, tampered)
        assert {m["field"] for m in mismatches} >= {"return_amount"}

    def test_one_paisa_tolerance(self, validator):
        within = {"commission_amount": 100, "tax_amount": 18, "net_income": 82.01, "return_amount": 9900}
        assert validator.validate_calculation(10000, within)

    def test_zero_commission_refused(self, validator):
        with pytest.raises(InvalidInputError) as exc:
            validator.ensure_reportable_commission(compute_derived(100, 0, 18))
        assert exc.value.field == "commission_amount"


class TestBatchCompliance:
    """validate_batch_for_compliance"""

    def test_valid_batch(self, validator):
        result = validator.validate_batch_for_compliance([
            make_transaction(10000), make_transaction(2500, 2), make_transaction(1234.56)
        ])
        assert result["is_valid"] is True
        assert result["errors"] == []
        assert result["summary"] == {
            "total_transactions": 3,
            "valid_transactions": 3,
            "error_count": 0,
            "warning_count": 0
        }

    def test_wrong_tax_amount_single_error(self, validator):
        """Only tax disagrees with commission; net income is consistent with the stored tax"""
        batch = [
            make_transaction(10000),
            make_transaction(20000, tax_amount=40.0, net_income=160.0),
        ]
        result = validator.validate_batch_for_compliance(batch)

        assert result["is_valid"] is False
        assert len(result["errors"]) == 1
        error = result["errors"][0]
        assert error["field"] == "tax_amount"
        assert error["transaction_index"] == 1
        assert error["transaction_id"] == "tx-20000"
        assert error["expected"] == 36.0
        assert error["actual"] == 40.0
        assert result["summary"]["valid_transactions"] == 1
        print(f"Batch error: {error['message']}")

    def test_tampered_tax_is_reported(self, validator):
        result = validator.validate_batch_for_compliance([make_transaction(10000, tax_amount=25.0)])
        assert not result["is_valid"]
        assert "tax_amount" in [e["field"] for e in result["errors"]]

    def test_zero_commission_is_error(self, validator):
        result = validator.validate_batch_for_compliance([make_transaction(100, 0)])
        assert result["errors"][0]["field"] == "commission_amount"

    def test_full_commission_is_warning_only(self, validator):
        result = validator.validate_batch_for_compliance([make_transaction(100, 100)])
        assert result["is_valid"] is True
        assert len(result["warnings"]) == 1
        assert result["summary"]["warning_count"] == 1

    def test_record_rate_takes_precedence(self, validator):
        """A record computed at 12% stays valid after the configured rate moves to 18%"""
        result = validator.validate_batch_for_compliance([make_transaction(10000, 1, 12)])
        assert result["is_valid"] is True

    def test_missing_rate_falls_back_to_configured(self, validator):
        tx = make_transaction(10000, 1, 12)
        del tx["tax_rate_percent"]
        result = validator.validate_batch_for_compliance([tx])
        assert not result["is_valid"]

    def test_empty_batch(self, validator):
        result = validator.validate_batch_for_compliance([])
        assert result["is_valid"] is True
        assert result["summary"]["total_transactions"] == 0

    def test_ensure_batch_compliant_raises(self, validator):
        with pytest.raises(ComplianceValidationError) as exc:
            validator.ensure_batch_compliant([make_transaction(10000, return_amount=1.0)])
        assert exc.value.errors[0]["field"] == "return_amount"
        assert exc.value.code == "COMPLIANCE_VALIDATION_FAILED"
