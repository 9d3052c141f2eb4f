"""
GST COMPLIANCE CORE - REPORT SHAPING

Read-side reshaping of already-validated transactions into regulator-shaped
aggregates. Callers MUST run GSTInvariantValidator.ensure_batch_compliant first.

Taxable value is commission_amount ONLY. total_received and return_amount never
enter a GST figure.
"""

from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from gst_core.financial_precision import to_decimal, to_float, round_financial
from gst_core.fiscal_year import financial_year_for_period, filing_period

ZERO = Decimal('0')

GST_NOTES = [
    "GST applies ONLY on commission amount (not on total received)",
    "CGST and SGST are each half of total GST (intra-state supply)",
    "Total received is NOT included in taxable value (it is not revenue)",
]


def split_tax(tax_amount: Any) -> Dict[str, Decimal]:
    """Intra-state split: CGST is half of tax, SGST the remainder, so the two always sum to tax"""
    tax = to_decimal(tax_amount or 0)
    cgst = round_financial(tax / 2)
    return {"cgst": cgst, "sgst": tax - cgst, "igst": ZERO}


def filter_for_gst_reporting(transactions: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Project transactions onto GST reportable fields only"""
    rows = []
    for tx in transactions:
        split = split_tax(tx.get("tax_amount"))
        rows.append({
            "invoice_number": tx.get("invoice_number"),
            "date": tx.get("date"),
            "taxable_value": to_decimal(tx.get("commission_amount") or 0),
            "cgst": split["cgst"],
            "sgst": split["sgst"],
            "igst": split["igst"],
            "total_tax": to_decimal(tx.get("tax_amount") or 0),
            "net_income": to_decimal(tx.get("net_income") or 0),
        })
    return rows


def _gst_totals(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    totals = {
        "taxable_value": sum((r["taxable_value"] for r in rows), ZERO),
        "total_tax": sum((r["total_tax"] for r in rows), ZERO),
        "total_net_income": sum((r["net_income"] for r in rows), ZERO),
        "cgst": sum((r["cgst"] for r in rows), ZERO),
        "sgst": sum((r["sgst"] for r in rows), ZERO),
        "igst": ZERO,
    }
    result = {key: to_float(value) for key, value in totals.items()}
    # Commission IS the taxable value
    result["total_commission"] = result["taxable_value"]
    result["transaction_count"] = len(rows)
    return result


def _month_key(value: Any):
    if isinstance(value, datetime):
        return value.year, value.month
    return None, None


def build_gst_summary(
    transactions: List[Mapping[str, Any]],
    tax_rate_percent: float,
    warnings: Optional[List[Dict[str, Any]]] = None,
    period_label: str = "All"
) -> Dict[str, Any]:
    """
    GST summary ready for GSTR-1 / GSTR-3B.

    Groups are per calendar (year, month), newest first.
    """
    groups: Dict[Any, List[Dict[str, Any]]] = {}
    for row in filter_for_gst_reporting(transactions):
        groups.setdefault(_month_key(row["date"]), []).append(row)

    summary = []
    for (year, month) in sorted(groups, key=lambda k: (k[0] or 0, k[1] or 0), reverse=True):
        entry = {"year": year, "month": month}
        entry.update(_gst_totals(groups[(year, month)]))
        summary.append(entry)

    all_rows = [row for rows in groups.values() for row in rows]

    return {
        "summary": summary,
        "totals": _gst_totals(all_rows),
        "gst_rate": tax_rate_percent,
        "period": period_label,
        "validation": {"is_valid": True, "warnings": warnings or []},
        "notes": GST_NOTES,
    }


def build_monthly_summary(transactions: List[Mapping[str, Any]], year: int) -> Dict[str, Any]:
    """Per-month business totals for a calendar year, including money passed through"""
    months: Dict[int, Dict[str, Decimal]] = {}
    counts: Dict[int, int] = {}
    fields = OrderedDict([
        ("total_received", "total_received"),
        ("total_commission", "commission_amount"),
        ("total_tax", "tax_amount"),
        ("total_net_income", "net_income"),
        ("total_return", "return_amount"),
    ])

    for tx in transactions:
        month = tx["date"].month
        bucket = months.setdefault(month, {key: ZERO for key in fields})
        for key, field in fields.items():
            bucket[key] += to_decimal(tx.get(field) or 0)
        counts[month] = counts.get(month, 0) + 1

    monthly = []
    for month in sorted(months, reverse=True):
        entry = {"year": year, "month": month}
        entry.update({key: to_float(value) for key, value in months[month].items()})
        entry["transaction_count"] = counts[month]
        monthly.append(entry)

    return {"year": year, "monthly_summary": monthly}


def build_gstr1(
    transactions: List[Mapping[str, Any]],
    month: int,
    year: int,
    gstin: str,
    state_code: str,
    hsn_code: str,
    tax_rate_percent: float,
    warnings: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """
    GSTR-1 JSON for one filing month.

    Every invoice is a B2C small supply; one HSN row aggregates them all.
    IGST is always 0 (intra-state).
    """
    rows = filter_for_gst_reporting(transactions)
    rate = float(tax_rate_percent)

    b2cs = []
    hsn_txval = hsn_camt = hsn_samt = ZERO
    for row in rows:
        b2cs.append({
            "typ": "OE",
            "pos": state_code,
            "etin": "",
            "rt": rate,
            "txval": to_float(row["taxable_value"]),
            "iamt": 0,
            "camt": to_float(row["cgst"]),
            "samt": to_float(row["sgst"]),
            "csamt": 0
        })
        hsn_txval += row["taxable_value"]
        hsn_camt += row["cgst"]
        hsn_samt += row["sgst"]

    hsn = []
    if rows:
        hsn.append({
            "hsn_sc": hsn_code,
            "desc": "Commission Income",
            "uqc": "NOS",
            "qty": len(rows),
            "rt": rate,
            "txval": to_float(hsn_txval),
            "iamt": 0,
            "camt": to_float(hsn_camt),
            "samt": to_float(hsn_samt),
            "csamt": 0
        })

    gstr1 = {
        "version": "GST3.3",
        "gstin": gstin,
        "ret_period": f"{month:02d}{year}",
        "b2b": [],
        "b2cl": [],
        "b2cs": b2cs,
        "cdnr": [],
        "cdnur": [],
        "exp": [],
        "at": [],
        "atadj": [],
        "hsn": hsn,
        "doc_issue": [{
            "doc_num": len(rows),
            "doc_typ": "INV",
            "totnum": len(rows)
        }]
    }

    fy = financial_year_for_period(month, year)
    totals = _gst_totals(rows)

    return {
        "gstr1": gstr1,
        "summary": {
            "period": f"{year}-{month:02d}",
            "financial_year": fy,
            "filing_period": filing_period(fy, month),
            "total_invoices": len(rows),
            "total_taxable_value": totals["taxable_value"],
            "total_cgst": totals["cgst"],
            "total_sgst": totals["sgst"],
            "total_tax": totals["total_tax"]
        },
        "validation": {"is_valid": True, "warnings": warnings or []},
        "notes": [
            "Only commission income is included in taxable value",
            "Total received amount is NOT included (it is not revenue)",
            "GST applies ONLY on commission amount"
        ]
    }
