from datetime import datetime
from decimal import Decimal

from gst_core.gst_reporting import (
    split_tax,
    filter_for_gst_reporting,
    build_gst_summary,
    build_monthly_summary,
    build_gstr1,
)


def stored(day, total, commission, tax, invoice):
    return {
        "date": day,
        "invoice_number": invoice,
        "total_received": total,
        "commission_percent": 1.0,
        "commission_amount": commission,
        "tax_amount": tax,
        "net_income": round(commission - tax, 2),
        "return_amount": round(total - commission, 2),
    }


TRANSACTIONS = [
    stored(datetime(2024, 1, 5), 10000.0, 100.0, 18.0, "INV-FY23-00001"),
    stored(datetime(2024, 1, 20), 1234.56, 12.35, 2.22, "INV-FY23-00002"),
    stored(datetime(2024, 2, 3), 5000.0, 50.0, 9.0, "INV-FY23-00003"),
]


class TestTaxSplit:

    def test_even_split(self):
        assert split_tax(18) == {"cgst": Decimal("9.00"), "sgst": Decimal("9"), "igst": Decimal("0")}

    def test_odd_cent_goes_to_sgst_remainder(self):
        split = split_tax(0.19)
        assert split["cgst"] == Decimal("0.10")
        assert split["sgst"] == Decimal("0.09")
        assert split["cgst"] + split["sgst"] == Decimal("0.19")

    def test_projection_excludes_total_received(self):
        row = filter_for_gst_reporting(TRANSACTIONS[:1])[0]
        assert row["taxable_value"] == Decimal("100")
        assert "total_received" not in row
        assert "return_amount" not in row


class TestGSTSummary:

    def test_grouped_by_month_newest_first(self):
        report = build_gst_summary(TRANSACTIONS, tax_rate_percent=18.0, period_label="2024")
        assert [(g["year"], g["month"]) for g in report["summary"]] == [(2024, 2), (2024, 1)]

        january = report["summary"][1]
        assert january["taxable_value"] == 112.35
        assert january["total_tax"] == 20.22
        assert january["transaction_count"] == 2

        totals = report["totals"]
        assert totals["taxable_value"] == 162.35
        assert totals["total_commission"] == totals["taxable_value"]
        assert totals["total_tax"] == 29.22
        assert totals["igst"] == 0.0
        assert round(totals["cgst"] + totals["sgst"], 2) == totals["total_tax"]
        assert report["period"] == "2024"
        assert report["validation"]["is_valid"] is True

    def test_empty_period(self):
        report = build_gst_summary([], tax_rate_percent=18.0)
        assert report["summary"] == []
        assert report["totals"]["transaction_count"] == 0


class TestMonthlySummary:

    def test_business_totals_include_passed_through_money(self):
        report = build_monthly_summary(TRANSACTIONS, 2024)
        assert [m["month"] for m in report["monthly_summary"]] == [2, 1]
        january = report["monthly_summary"][1]
        assert january["total_received"] == 11234.56
        assert january["total_return"] == 11122.21
        assert january["transaction_count"] == 2


class TestGSTR1:

    def build(self, transactions):
        return build_gstr1(
            transactions, month=1, year=2024, gstin="29ABCDE1234F1Z5",
            state_code="29", hsn_code="998314", tax_rate_percent=18.0
        )

    def test_b2cs_rows_carry_commission_only(self):
        data = self.build(TRANSACTIONS[:2])
        gstr1 = data["gstr1"]

        assert gstr1["ret_period"] == "012024"
        assert gstr1["gstin"] == "29ABCDE1234F1Z5"
        assert [row["txval"] for row in gstr1["b2cs"]] == [100.0, 12.35]
        assert all(row["iamt"] == 0 and row["pos"] == "29" for row in gstr1["b2cs"])
        assert gstr1["b2cs"][1]["camt"] == 1.11
        assert gstr1["b2cs"][1]["samt"] == 1.11

    def test_single_hsn_row(self):
        gstr1 = self.build(TRANSACTIONS[:2])["gstr1"]
        assert len(gstr1["hsn"]) == 1
        hsn = gstr1["hsn"][0]
        assert hsn["hsn_sc"] == "998314"
        assert hsn["qty"] == 2
        assert hsn["txval"] == 112.35
        assert gstr1["doc_issue"][0]["totnum"] == 2

    def test_summary_identifies_filing_period(self):
        summary = self.build(TRANSACTIONS[:2])["summary"]
        assert summary["financial_year"] == "FY23"
        assert summary["filing_period"] == "FY23-01"
        assert summary["total_invoices"] == 2
        assert summary["total_tax"] == 20.22
