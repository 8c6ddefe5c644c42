"""Raw spreadsheet cell values as a small tagged union.

Every reader hands cells over as one of ``Empty``, ``Number``, ``Text`` or
``DateValue`` so the parsers can branch on the cell kind instead of guessing
at arbitrary Python objects.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Union

import pandas as pd


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class DateValue:
    value: date


Cell = Union[Empty, Number, Text, DateValue]

EMPTY = Empty()


def to_cell(value: Any) -> Cell:
    if isinstance(value, (Empty, Number, Text, DateValue)):
        return value
    if value is None:
        return EMPTY
    if isinstance(value, bool):
        return Text(str(value))
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return EMPTY
        return DateValue(value.to_pydatetime().date())
    if isinstance(value, datetime):
        return DateValue(value.date())
    if isinstance(value, date):
        return DateValue(value)
    if isinstance(value, time):
        return Text(value.strftime("%H:%M:%S"))
    if isinstance(value, numbers.Real):
        number = float(value)
        if math.isnan(number):
            return EMPTY
        return Number(number)
    try:
        if pd.isna(value):
            return EMPTY
    except (TypeError, ValueError):
        pass
    return Text(str(value).replace("\x00", ""))


def format_number(value: float) -> str:
    if not math.isfinite(value):
        return str(value)
    if value == int(value):
        return str(int(value))
    return repr(value)


def cell_text(value: Any) -> str:
    """Trimmed display text for a cell; blank cells become ''."""
    cell = to_cell(value)
    if isinstance(cell, Empty):
        return ""
    if isinstance(cell, Number):
        return format_number(cell.value)
    if isinstance(cell, DateValue):
        return cell.value.isoformat()
    return cell.value.strip()


def is_blank(value: Any) -> bool:
    return cell_text(value) == ""


def row_is_blank(row: list[Any]) -> bool:
    return all(is_blank(value) for value in row)
