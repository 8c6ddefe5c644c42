"""
Currency parsing for loss-run amount cells.

Handles plain numbers, $ / $$ / USD prefixes, parenthetical and leading-minus
negatives, European "1.234,56" and US "1,234.56" layouts. Empty input and
bare placeholders are errors, never a silent zero.
"""

from __future__ import annotations

import math
import re
from typing import Any

from lossrun_doctor.cells import DateValue, Empty, Number, cell_text, to_cell
from lossrun_doctor.models import ParseResult
from lossrun_doctor.taxonomy import ErrorKind

PARENS_RE = re.compile(r"^\((.+)\)$")
EUROPEAN_RE = re.compile(r"^[\d.]+,(\d{2})$")
CURRENCY_PREFIX_RE = re.compile(r"^(?:\$\$?|USD\s*)", re.IGNORECASE)
# Leading numeric prefix, read the way a lenient float parser reads "12.5 days".
LEADING_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

PLACEHOLDERS = {"-", "$", "$$"}


def parse_leading_float(text: str) -> float | None:
    match = LEADING_FLOAT_RE.match(text.strip())
    if not match:
        return None
    return float(match.group(0))


def parse_currency(value: Any) -> ParseResult[float]:
    cell = to_cell(value)
    raw = cell_text(cell)

    if isinstance(cell, Number):
        if math.isfinite(cell.value):
            return ParseResult.success(cell.value, raw)
        return ParseResult.failure(ErrorKind.NON_FINITE_NUMBER, f'Non-finite number: "{raw}"', raw)

    if isinstance(cell, Empty) or raw == "":
        return ParseResult.failure(ErrorKind.EMPTY_INPUT, "Empty currency value", raw)

    if isinstance(cell, DateValue):
        return ParseResult.failure(ErrorKind.UNPARSEABLE_CURRENCY, f'Date value is not an amount: "{raw}"', raw)

    if raw in PLACEHOLDERS:
        return ParseResult.failure(ErrorKind.PLACEHOLDER_VALUE, f'Currency placeholder: "{raw}"', raw)

    text = raw
    negative = False

    match = PARENS_RE.match(text)
    if match:
        negative = True
        text = match.group(1).strip()

    if text.startswith("-"):
        negative = True
        text = text[1:].strip()

    text = CURRENCY_PREFIX_RE.sub("", text, count=1).strip()

    if EUROPEAN_RE.match(text):
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", "")

    number = parse_leading_float(text)
    if number is None or not math.isfinite(number):
        return ParseResult.failure(ErrorKind.UNPARSEABLE_CURRENCY, f'Unparseable currency: "{raw}"', raw)

    return ParseResult.success(-number if negative else number, raw)
