# backend/modules/incentives/services/period_utils.py

import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

CENTS = Decimal("0.01")


def money(value) -> Decimal:
    """Round to two decimal places, half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_year_month(year_month: str) -> Tuple[int, int]:
    try:
        year_str, month_str = year_month.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        raise ValueError(f"Invalid year_month '{year_month}', expected YYYY-MM")
    if len(year_str) != 4 or not 1 <= month <= 12:
        raise ValueError(f"Invalid year_month '{year_month}', expected YYYY-MM")
    return year, month


def format_year_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_bounds(year_month: str) -> Tuple[date, date]:
    year, month = parse_year_month(year_month)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def year_month_of(day: date) -> str:
    return format_year_month(day.year, day.month)


def preceding_months(year_month: str, count: int) -> List[str]:
    """The ``count`` months ending the month before ``year_month``, oldest first."""
    year, month = parse_year_month(year_month)
    months = []
    for _ in range(count):
        month -= 1
        if month == 0:
            year, month = year - 1, 12
        months.append(format_year_month(year, month))
    return list(reversed(months))
