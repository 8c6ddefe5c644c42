from __future__ import annotations

import re
from typing import Any, Iterable

import pandas as pd

from lossrun_doctor.cells import DateValue, Empty, Number, cell_text, to_cell

SNIFF_LIMIT = 10
MIN_WINNING_COUNT = 2

DATE_PATTERNS = [
    re.compile(r"^\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}$"),
    re.compile(r"^\d{4}[/\-]\d{1,2}[/\-]\d{1,2}$"),
    re.compile(r"^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[\s,]\d{1,2},?\s\d{4}$", re.IGNORECASE),
    re.compile(r"^\d{1,2}[\s\-](Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[\s\-]\d{2,4}$", re.IGNORECASE),
]
NUMBER_PUNCTUATION_RE = re.compile(r"[,$()]")
NUMBER_CHARS_RE = re.compile(r"^[$,\d\s.\-()]+$")
LEADING_FLOAT_RE = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def looks_like_loose_date(text: str) -> bool:
    """Permissive date check through pandas' datetime parser.

    Looser than ``dates.parse_date`` on purpose: it only feeds the type-match
    bonus in header scoring, never a parsed value.
    """
    if len(text) <= 5:
        return False
    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return False
    if pd.isna(parsed):
        return False
    return 1900 <= parsed.year <= 2100


def looks_like_number(text: str) -> bool:
    stripped = NUMBER_PUNCTUATION_RE.sub("", text)
    if not NUMBER_CHARS_RE.match(stripped):
        return False
    if not stripped.replace(" ", ""):
        return False
    return LEADING_FLOAT_RE.match(stripped) is not None


def classify_value(value: Any) -> str | None:
    cell = to_cell(value)
    if isinstance(cell, Empty):
        return None
    if isinstance(cell, DateValue):
        return "date"
    text = cell_text(cell)
    if text == "":
        return None
    if len(text) < 3:
        return "text"
    if any(pattern.match(text) for pattern in DATE_PATTERNS):
        return "date"
    if not isinstance(cell, Number) and looks_like_loose_date(text):
        return "date"
    if looks_like_number(text):
        return "number"
    return "text"


def detect_column_type(samples: Iterable[Any]) -> str:
    """Majority vote over the first sampled values: date, number or text.

    The winner needs at least two votes; an empty sample is "unknown".
    """
    values = list(samples)[:SNIFF_LIMIT]
    if not values:
        return "unknown"

    counts = {"date": 0, "number": 0, "text": 0}
    for value in values:
        kind = classify_value(value)
        if kind:
            counts[kind] += 1

    dates, numbers, texts = counts["date"], counts["number"], counts["text"]
    if dates > numbers and dates > texts and dates >= MIN_WINNING_COUNT:
        return "date"
    if numbers > texts and numbers >= MIN_WINNING_COUNT:
        return "number"
    return "text"
