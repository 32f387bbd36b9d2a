"""Date manipulation utilities"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Optional

# Excel serial day 0 (accounts for the 1900 leap-year bug)
EXCEL_EPOCH = date(1899, 12, 30)

DASH_DATE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")
DOTTED_DATE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{2,4})")


def add_months(from_date: date, months: int) -> date:
    """Advance by calendar months, clamping the day to the target month's length"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def excel_serial_to_date(serial: float) -> date:
    return EXCEL_EPOCH + timedelta(days=int(serial))


def expand_year(year: int) -> int:
    return 2000 + year if year < 100 else year


def parse_dash_date(value: str) -> date:
    """Parse DD-MM-YYYY"""
    match = DASH_DATE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid date format: {value}")
    day, month, year = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_slash_date(value: str) -> date:
    """Parse D/M/YY or D/M/YYYY"""
    parts = value.strip().split("/")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid date format: {value}")
    day, month, year = (int(part) for part in parts)
    return date(expand_year(year), month, day)


def parse_dotted_date(value: str) -> Optional[date]:
    """Parse D.M.YY or D.M.YYYY; None when the text holds no valid date"""
    match = DOTTED_DATE.search(value)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(expand_year(year), month, day)
    except ValueError:
        return None


def coerce_cell_date(value) -> date:
    """Accept a datetime/date cell, an Excel serial, or a D/M/YY string"""
    if value is None or value == "":
        raise ValueError("Date value is empty")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return excel_serial_to_date(value)
    return parse_slash_date(str(value))
