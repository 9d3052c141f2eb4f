"""
Spreadsheet export and import for transactions (openpyxl).

Export writes one row per stored transaction plus a TOTAL row.
Import parses an uploaded workbook into preview rows; derived amounts are
recomputed here and never read from the file.
"""

from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional
import logging

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.exceptions import InvalidFileException
from zipfile import BadZipFile

from gst_core.commission_engine import compute_derived
from gst_core.errors import ComplianceError, InvalidInputError
from gst_core.filing_lock_engine import MAX_REMARKS_LENGTH
from gst_core.financial_precision import to_decimal, to_float
from gst_core.invariant_validator import GSTInvariantValidator

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    ("Date", "date", 14),
    ("Invoice No", "invoice_number", 20),
    ("Total Received", "total_received", 18),
    ("Commission %", "commission_percent", 14),
    ("Commission Amount", "commission_amount", 20),
    ("GST Amount", "tax_amount", 16),
    ("Net Income", "net_income", 16),
    ("Return Amount", "return_amount", 18),
    ("Payment Mode", "payment_mode", 14),
    ("Remarks", "remarks", 30),
]

MONEY_KEYS = {"total_received", "commission_amount", "tax_amount", "net_income", "return_amount"}

# Accepted header spellings for import, normalized to lower case
IMPORT_HEADERS = {
    "date": "date",
    "total received": "total_received",
    "total_received": "total_received",
    "amount": "total_received",
    "commission %": "commission_percent",
    "commission percent": "commission_percent",
    "commission_percent": "commission_percent",
    "remarks": "remarks",
}

HEADER_FILL = PatternFill(fill_type="solid", fgColor="FFE0E0E0")


def build_transactions_workbook(transactions: List[Mapping[str, Any]]) -> bytes:
    """Workbook bytes with a header row, one row per transaction and a TOTAL row"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Transactions"

    ws.append([header for header, _, _ in EXPORT_COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = HEADER_FILL

    totals = {key: Decimal('0') for key in MONEY_KEYS}
    for tx in transactions:
        row = []
        for _, key, _ in EXPORT_COLUMNS:
            value = tx.get(key)
            if key == "date" and isinstance(value, datetime):
                value = value.strftime("%d/%m/%Y")
            elif key in MONEY_KEYS:
                totals[key] += to_decimal(value or 0)
                value = float(value or 0)
            row.append(value if value is not None else "")
        ws.append(row)

    ws.append([
        "TOTAL" if key == "date" else to_float(totals[key]) if key in MONEY_KEYS else ""
        for _, key, _ in EXPORT_COLUMNS
    ])
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    for index, (_, key, width) in enumerate(EXPORT_COLUMNS, start=1):
        column = ws.cell(row=1, column=index).column_letter
        ws.column_dimensions[column].width = width
        if key in MONEY_KEYS:
            for cell in ws[column][1:]:
                cell.number_format = "#,##0.00"

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise InvalidInputError("date", text, f"Unrecognized date '{text}', expected YYYY-MM-DD or DD/MM/YYYY")


def preview_row(
    raw: Mapping[str, Any],
    row_number: int,
    default_commission_percent: float,
    tax_rate_percent: float
) -> Dict[str, Any]:
    """Recompute one imported row; errors are collected, not raised"""
    preview = {
        "row": row_number,
        "date": None,
        "total_received": raw.get("total_received"),
        "commission_percent": raw.get("commission_percent"),
        "remarks": str(raw.get("remarks") or "").strip(),
        "errors": []
    }
    if preview["commission_percent"] in (None, ""):
        preview["commission_percent"] = default_commission_percent

    try:
        tx_date = _parse_date(raw.get("date"))
        if tx_date is None:
            preview["errors"].append("Date is required")
        else:
            preview["date"] = tx_date.isoformat()
    except InvalidInputError as e:
        preview["errors"].append(e.message)

    try:
        total_received = raw.get("total_received") if raw.get("total_received") not in (None, "") else 0
        derived = compute_derived(total_received, preview["commission_percent"], tax_rate_percent)
        # Same write-time checks as create_transaction
        validator = GSTInvariantValidator(tax_rate_percent)
        validator.ensure_valid_calculation(total_received, derived)
        validator.ensure_reportable_commission(derived)
        preview.update(derived.as_floats())
        preview["total_received"] = to_float(raw.get("total_received"))
        preview["commission_percent"] = float(preview["commission_percent"])
    except ComplianceError as e:
        preview["errors"].append(e.message)

    if len(preview["remarks"]) > MAX_REMARKS_LENGTH:
        preview["errors"].append(f"Remarks cannot exceed {MAX_REMARKS_LENGTH} characters")

    preview["is_valid"] = not preview["errors"]
    return preview


def parse_import_workbook(
    content: bytes,
    default_commission_percent: float,
    tax_rate_percent: float
) -> List[Dict[str, Any]]:
    """
    Read the first sheet of an uploaded workbook.

    Row 1 holds headers; blank rows are skipped.
    """
    try:
        wb = load_workbook(BytesIO(content), data_only=True, read_only=True)
    except (InvalidFileException, BadZipFile, KeyError) as e:
        raise InvalidInputError("file", None, f"Could not read Excel file: {str(e)}")

    ws = wb.worksheets[0]
    rows = ws.iter_rows(values_only=True)
    header_row = next(rows, None)
    if not header_row:
        wb.close()
        raise InvalidInputError("file", None, "Excel file is empty")

    columns = {}
    for index, header in enumerate(header_row):
        key = IMPORT_HEADERS.get(str(header or "").strip().lower())
        if key and key not in columns:
            columns[key] = index

    missing = {"date", "total_received"} - set(columns)
    if missing:
        wb.close()
        raise InvalidInputError(
            "file", None, f"Missing required column(s): {', '.join(sorted(missing))}"
        )

    previews = []
    for row_number, values in enumerate(rows, start=2):
        if values is None or all(v in (None, "") for v in values):
            continue
        raw = {key: values[index] if index < len(values) else None for key, index in columns.items()}
        previews.append(preview_row(raw, row_number, default_commission_percent, tax_rate_percent))

    wb.close()
    logger.info(f"[IMPORT] Parsed {len(previews)} row(s) from uploaded workbook")
    return previews
