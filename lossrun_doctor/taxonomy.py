"""
Shared error taxonomy.

Keeps error kinds, severities and the summary-counter rules in one place so
the parsers, the row validator and the CLI do not drift.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    EMPTY_INPUT = "EMPTY_INPUT"
    PLACEHOLDER_VALUE = "PLACEHOLDER_VALUE"
    OUT_OF_RANGE_SERIAL = "OUT_OF_RANGE_SERIAL"
    NON_FINITE_NUMBER = "NON_FINITE_NUMBER"
    UNPARSEABLE_DATE = "UNPARSEABLE_DATE"
    UNPARSEABLE_CURRENCY = "UNPARSEABLE_CURRENCY"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    MAPPING_INCOMPLETE = "MAPPING_INCOMPLETE"
    EMPTY_SHEET = "EMPTY_SHEET"
    NO_SHEETS = "NO_SHEETS"
    UNREADABLE_FILE = "UNREADABLE_FILE"


ERROR_DEFINITIONS = {
    ErrorKind.EMPTY_INPUT: {
        "scope": "cell",
        "description": "The cell is blank, so there is nothing to parse.",
        "evidence": "Blank cell or whitespace-only text in a mapped column.",
    },
    ErrorKind.PLACEHOLDER_VALUE: {
        "scope": "cell",
        "description": "The cell holds a placeholder such as '-', 'N/A' or a bare '$' instead of a value.",
        "evidence": "Carrier exports that fill unknown values with dashes or N/A.",
    },
    ErrorKind.OUT_OF_RANGE_SERIAL: {
        "scope": "cell",
        "description": "A numeric date cell is outside the spreadsheet serial range 1..200000.",
        "evidence": "Negative numbers, zero or very large numbers in a date column.",
    },
    ErrorKind.NON_FINITE_NUMBER: {
        "scope": "cell",
        "description": "A numeric cell is infinite or not a number.",
        "evidence": "Overflowed formulas exported as numbers.",
    },
    ErrorKind.UNPARSEABLE_DATE: {
        "scope": "cell",
        "description": "The text does not match any supported date layout, or its year is outside 1990..2100.",
        "evidence": "Free text, day-first dates with a month above 12, or garbage years in a date column.",
    },
    ErrorKind.UNPARSEABLE_CURRENCY: {
        "scope": "cell",
        "description": "The text could not be read as a money amount.",
        "evidence": "Words or symbols other than $, $$ or USD in an amount column.",
    },
    ErrorKind.MISSING_REQUIRED_FIELD: {
        "scope": "row",
        "description": "A required field (site, date of loss, total incurred) is blank, so the row is skipped.",
        "evidence": "Subtotal rows, notes rows or partially filled claims.",
    },
    ErrorKind.MAPPING_INCOMPLETE: {
        "scope": "mapping",
        "description": "At least one required field is not mapped to a column, so rows cannot be parsed.",
        "evidence": "Headers that match no known vocabulary and content that gives no confident fallback.",
    },
    ErrorKind.EMPTY_SHEET: {
        "scope": "sheet",
        "description": "The selected sheet has no cells.",
        "evidence": "Cover sheets, placeholder tabs or chart sheets.",
    },
    ErrorKind.NO_SHEETS: {
        "scope": "workbook",
        "description": "The workbook contains no sheets at all.",
        "evidence": "Corrupt or truncated exports.",
    },
    ErrorKind.UNREADABLE_FILE: {
        "scope": "file",
        "description": "The file could not be read as a spreadsheet.",
        "evidence": "Wrong extension, encrypted workbook or a missing optional reader.",
    },
}


def describe(kind: ErrorKind) -> dict[str, str]:
    definition = ERROR_DEFINITIONS[kind]
    return {"id": kind.value, **definition}


def summary_counters(field: str, message: str) -> list[str]:
    """Summary counters a single row error contributes to.

    Field names containing "date" count as unparsable dates, field names
    containing "incurred" or "amount" as invalid amounts, and any message
    mentioning "missing" also counts as a missing required value.
    """
    counters: list[str] = []
    field_lower = field.lower()
    if "date" in field_lower:
        counters.append("unparsable_dates")
    elif "incurred" in field_lower or "amount" in field_lower:
        counters.append("invalid_amounts")
    if "missing" in message.lower():
        counters.append("missing_required")
    return counters
