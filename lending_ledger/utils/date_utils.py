"""Date manipulation utilities"""

import calendar
import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List

# Spreadsheet day zero; using 1899-12-30 absorbs the fictitious 1900-02-29
SPREADSHEET_EPOCH = date(1899, 12, 30)
MAX_SPREADSHEET_SERIAL = (date(9999, 12, 31) - SPREADSHEET_EPOCH).days

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC = re.compile(r"^\d+(\.\d+)?$")


def month_end(day: date) -> date:
    """Last calendar day of the month containing day"""
    return date(day.year, day.month, calendar.monthrange(day.year, day.month)[1])


def next_month_end(day: date) -> date:
    """Last calendar day of the month after the one containing day"""
    return month_end(month_end(day) + timedelta(days=1))


def generate_month_ends(start: date, end: date) -> List[date]:
    """Month-end dates from start's month to end's month (inclusive)"""
    months = []
    current = month_end(start)
    last = month_end(end)
    while current <= last:
        months.append(current)
        current = next_month_end(current)
    return months


def months_back(from_date: date, months: int) -> date:
    """First day of the month that lies `months` months before from_date's month"""
    index = from_date.year * 12 + (from_date.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)


def from_spreadsheet_serial(serial: float) -> date:
    """
    Convert a spreadsheet date serial (days since 1899-12-30) to a calendar date.

    Any fractional part is a time of day and is dropped, never rounded, so a
    late-evening timestamp cannot spill into the next day.
    """
    if isinstance(serial, float) and (math.isnan(serial) or math.isinf(serial)):
        raise ValueError(f"Invalid date serial: {serial}")
    if serial < 1 or serial > MAX_SPREADSHEET_SERIAL:
        raise ValueError(f"Date serial out of range: {serial}")
    return SPREADSHEET_EPOCH + timedelta(days=int(serial))


def to_calendar_date(value: object) -> date:
    """
    Normalize any accepted date encoding to a plain datetime.date.

    Accepted:
    - date / datetime (datetime loses its time component, no tz conversion)
    - int / float / Decimal spreadsheet serials
    - numeric strings (serials exported through CSV)
    - ISO "YYYY-MM-DD" strings

    Raises:
        ValueError: for anything else
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a date: {value!r}")

    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if isinstance(value, (int, float, Decimal)):
        return from_spreadsheet_serial(float(value))

    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC.match(text):
            return from_spreadsheet_serial(float(text))
        if _ISO_DATE.match(text):
            return date.fromisoformat(text)
        raise ValueError(f"Invalid date format {value!r}, use YYYY-MM-DD")

    raise ValueError(f"Unsupported date value: {value!r}")
