"""
Date parsing for loss-run cells.

Priority, first match wins:
  1. Already a date value
  2. Spreadsheet serial number (1..200000)
  3. Digit-only text that looks like a serial
  4. ISO 8601 (YYYY-MM-DD, optional THH:MM:SS)
  5. US layout (MM/DD/YYYY or MM-DD-YYYY, 2- or 4-digit year)
  6. Text month first ("Jan 15, 2024")
  7. Day-month-year ("15-Jan-2024", "15 January 2024")
Anything else is an error. Numeric layouts never go through a permissive
date constructor.
"""

from __future__ import annotations

import math
import re
from datetime import date, timedelta
from typing import Any

from lossrun_doctor.cells import DateValue, Empty, Number, cell_text, to_cell
from lossrun_doctor.models import ParseResult
from lossrun_doctor.taxonomy import ErrorKind

SERIAL_MIN = 1
SERIAL_MAX = 200_000
SERIAL_EPOCH = date(1900, 1, 1)
# Serial 60 is the phantom 1900-02-29 of the legacy 1900 date system.
PHANTOM_LEAP_SERIAL = 60

MIN_YEAR = 1990
MAX_YEAR = 2100

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:T\d{2}:\d{2}:\d{2})?$")
US_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})$")
TEXT_MONTH_FIRST_RE = re.compile(r"^([A-Za-z]+)\s+(\d{1,2}),?\s+(\d{4})$")
DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})[/\s-]([A-Za-z]+)[/\s-](\d{4})$")
SERIAL_TEXT_RE = re.compile(r"^\d{1,6}$")

PLACEHOLDERS = {"-", "n/a"}


def resolve_two_digit_year(year: int) -> int:
    """00-49 -> 2000s, 50-99 -> 1900s; four-digit years pass through."""
    if year < 100:
        return 2000 + year if year < 50 else 1900 + year
    return year


def is_reasonable_year(year: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR


def excel_serial_to_date(serial: float) -> ParseResult[date]:
    raw = cell_text(serial)
    if not math.isfinite(serial) or serial < SERIAL_MIN or serial > SERIAL_MAX:
        return ParseResult.failure(
            ErrorKind.OUT_OF_RANGE_SERIAL, f'Excel serial out of range: "{raw}"', raw
        )
    adjusted = serial - 1 if serial > PHANTOM_LEAP_SERIAL else serial
    days = math.floor(adjusted - 1)
    return ParseResult.success(SERIAL_EPOCH + timedelta(days=days), raw)


def _calendar_date(year: int, month: int, day: int) -> date | None:
    if not (1 <= month <= 12 and 1 <= day <= 31 and is_reasonable_year(year)):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(value: Any) -> ParseResult[date]:
    cell = to_cell(value)
    raw = cell_text(cell)

    if isinstance(cell, Empty) or raw == "":
        return ParseResult.failure(ErrorKind.EMPTY_INPUT, "Empty date value", raw)

    if isinstance(cell, DateValue):
        return ParseResult.success(cell.value, raw)

    if isinstance(cell, Number):
        if not math.isfinite(cell.value):
            return ParseResult.failure(ErrorKind.NON_FINITE_NUMBER, f'Non-finite number: "{raw}"', raw)
        if SERIAL_MIN <= cell.value <= SERIAL_MAX:
            return excel_serial_to_date(cell.value)
        return ParseResult.failure(
            ErrorKind.OUT_OF_RANGE_SERIAL, f'Number out of serial range: "{raw}"', raw
        )

    text = raw

    if text.lower() in PLACEHOLDERS:
        return ParseResult.failure(ErrorKind.PLACEHOLDER_VALUE, f'Non-date placeholder: "{raw}"', raw)

    if SERIAL_TEXT_RE.match(text):
        number = int(text)
        if SERIAL_MIN <= number <= SERIAL_MAX:
            return excel_serial_to_date(number)

    match = ISO_RE.match(text)
    if match:
        parsed = _calendar_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return ParseResult.success(parsed, raw)
        return ParseResult.failure(ErrorKind.UNPARSEABLE_DATE, f'Invalid ISO date: "{raw}"', raw)

    match = US_RE.match(text)
    if match:
        year = resolve_two_digit_year(int(match.group(3)))
        parsed = _calendar_date(year, int(match.group(1)), int(match.group(2)))
        if parsed:
            return ParseResult.success(parsed, raw)
        return ParseResult.failure(ErrorKind.UNPARSEABLE_DATE, f'Invalid US date: "{raw}"', raw)

    match = TEXT_MONTH_FIRST_RE.match(text)
    if match:
        month = MONTHS.get(match.group(1).lower())
        parsed = _calendar_date(int(match.group(3)), month, int(match.group(2))) if month else None
        if parsed:
            return ParseResult.success(parsed, raw)
        return ParseResult.failure(ErrorKind.UNPARSEABLE_DATE, f'Invalid text-month date: "{raw}"', raw)

    match = DAY_MONTH_YEAR_RE.match(text)
    if match:
        month = MONTHS.get(match.group(2).lower())
        parsed = _calendar_date(int(match.group(3)), month, int(match.group(1))) if month else None
        if parsed:
            return ParseResult.success(parsed, raw)
        return ParseResult.failure(ErrorKind.UNPARSEABLE_DATE, f'Invalid text-month date: "{raw}"', raw)

    return ParseResult.failure(ErrorKind.UNPARSEABLE_DATE, f'Unparseable date: "{raw}"', raw)
