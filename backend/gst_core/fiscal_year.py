"""
Indian financial year helpers (April to March).

Shared by the invoice sequence allocator and the filing lock lookup.
Both call sites MUST use financial_year() so a date always maps to the same key.
"""

from datetime import date, datetime, time
from typing import Tuple

FY_START_MONTH = 4


def financial_year(value: date) -> str:
    """
    FY label of the financial year that starts in April.

    March 31, 2024 -> FY23, April 1, 2024 -> FY24.
    """
    start_year = value.year if value.month >= FY_START_MONTH else value.year - 1
    return f"FY{str(start_year)[-2:]}"


def financial_year_for_period(month: int, year: int) -> str:
    """FY label for a calendar (month, year), derived from the first day of that month"""
    return financial_year(date(year, month, 1))


def filing_period(fy: str, month: int) -> str:
    """Filing period key, e.g. FY23-01"""
    return f"{fy}-{month:02d}"


def month_bounds(month: int, year: int) -> Tuple[datetime, datetime]:
    """[start, end) datetimes covering a calendar month"""
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return start, end


def year_bounds(year: int) -> Tuple[datetime, datetime]:
    """[start, end) datetimes covering a calendar year"""
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)


def to_storage_datetime(value: date) -> datetime:
    """Transaction dates are stored as midnight datetimes; time of day carries no meaning"""
    if isinstance(value, datetime):
        return datetime.combine(value.date(), time.min)
    return datetime.combine(value, time.min)
