import asyncio
from datetime import date, datetime
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from transaction_service import TransactionService
from gst_core.errors import InvalidInputError
from gst_core.excel_service import build_transactions_workbook, parse_import_workbook


def workbook_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


UPLOAD = workbook_bytes([
    ["Date", "Total Received", "Commission %", "Remarks"],
    [datetime(2024, 5, 10), 10000, None, "walk-in"],
    ["11/05/2024", 5000, 2, None],
    [None, None, None, None],
    ["2024-05-12", -50, None, None],
    ["tomorrow", 100, None, None],
])


class TestExcelExport:

    def test_rows_and_total(self):
        transactions = [
            {"date": datetime(2024, 5, 10), "invoice_number": "INV-FY24-00001", "total_received": 10000.0,
             "commission_percent": 1.0, "commission_amount": 100.0, "tax_amount": 18.0,
             "net_income": 82.0, "return_amount": 9900.0, "payment_mode": "QR", "remarks": ""},
            {"date": datetime(2024, 5, 11), "invoice_number": "INV-FY24-00002", "total_received": 0.1,
             "commission_percent": 100.0, "commission_amount": 0.1, "tax_amount": 0.02,
             "net_income": 0.08, "return_amount": 0.0, "payment_mode": "QR", "remarks": None},
        ]
        ws = load_workbook(BytesIO(build_transactions_workbook(transactions))).active

        assert ws.title == "Transactions"
        assert ws["A1"].value == "Date"
        assert ws["B2"].value == "INV-FY24-00001"
        assert ws["A2"].value == "10/05/2024"
        assert ws["A4"].value == "TOTAL"
        assert ws["E4"].value == 100.1
        assert ws["F4"].value == 18.02


class TestExcelImport:

    def test_preview_rows(self):
        rows = parse_import_workbook(UPLOAD, default_commission_percent=1.0, tax_rate_percent=18.0)

        assert [r["row"] for r in rows] == [2, 3, 5, 6]
        first, second, negative, bad_date = rows

        assert first["is_valid"]
        assert first["date"] == "2024-05-10"
        assert first["commission_percent"] == 1.0
        assert first["tax_amount"] == 18.0
        assert first["remarks"] == "walk-in"

        assert second["date"] == "2024-05-11"
        assert second["commission_amount"] == 100.0

        assert not negative["is_valid"]
        assert not bad_date["is_valid"]
        assert bad_date["date"] is None

    def test_missing_required_column(self):
        content = workbook_bytes([["Date", "Remarks"], ["2024-05-10", "x"]])
        with pytest.raises(InvalidInputError) as exc:
            parse_import_workbook(content, 1.0, 18.0)
        assert "total_received" in exc.value.message

    def test_not_a_workbook(self):
        with pytest.raises(InvalidInputError):
            parse_import_workbook(b"date,total\n2024-05-10,100\n", 1.0, 18.0)


    def test_blank_date_is_rejected(self):
        content = workbook_bytes([["Date", "Total Received", "Commission %", "Remarks"], [None, 1000, 1, "no date"]])
        row, = parse_import_workbook(content, 1.0, 18.0)

        assert not row["is_valid"]
        assert row["date"] is None
        assert "Date is required" in row["errors"]

    @pytest.mark.parametrize("total, percent", [(1000, 0), (0.4, 1)])
    def test_zero_commission_is_rejected(self, total, percent):
        content = workbook_bytes([["Date", "Total Received", "Commission %"], ["2024-05-01", total, percent]])
        row, = parse_import_workbook(content, 1.0, 18.0)

        assert not row["is_valid"]
        assert any("Commission amount must be greater than 0" in e for e in row["errors"])

    def test_overlong_remarks_are_rejected(self):
        content = workbook_bytes([["Date", "Total Received", "Remarks"], ["2024-05-01", 1000, "x" * 501]])
        row, = parse_import_workbook(content, 1.0, 18.0)

        assert not row["is_valid"]
        assert any("Remarks cannot exceed" in e for e in row["errors"])


class TestImportThroughService:

    def test_preview_summary(self, db, test_config):
        preview = TransactionService(db, cfg=test_config).preview_import(UPLOAD)
        assert preview["summary"]["total_rows"] == 4
        assert preview["summary"]["valid_rows"] == 2
        assert preview["summary"]["total_received"] == 15000.0
        assert preview["summary"]["total_tax"] == 36.0
        assert asyncio.run(db.transactions.count_documents({})) == 0

    def test_confirm_creates_valid_rows(self, db, test_config):
        service = TransactionService(db, cfg=test_config)
        rows = [
            {"row": 2, "date": "2024-05-10", "total_received": 10000, "commission_percent": 1, "remarks": "walk-in"},
            {"row": 3, "date": "2024-05-11", "total_received": 0, "commission_percent": 1},
            {"row": 4, "date": "10-05-2024", "total_received": 100, "commission_percent": 1},
        ]
        result = asyncio.run(service.confirm_import(rows, actor="user-1"))

        assert [doc["invoice_number"] for doc in result["created"]] == ["INV-FY24-00001"]
        assert [(f["row"], f["code"]) for f in result["failed"]] == [(3, "INVALID_INPUT"), (4, "INVALID_INPUT")]
        assert asyncio.run(db.transactions.count_documents({})) == 1

    def test_confirm_refuses_row_without_date(self, db, test_config):
        service = TransactionService(db, cfg=test_config)
        rows = [{"row": 2, "date": None, "total_received": 1000, "commission_percent": 1}]
        result = asyncio.run(service.confirm_import(rows, actor="user-1"))

        assert result["created"] == []
        assert [(f["row"], f["code"], f["message"]) for f in result["failed"]] == [(2, "INVALID_INPUT", "Date is required")]
        assert asyncio.run(db.transactions.count_documents({})) == 0
