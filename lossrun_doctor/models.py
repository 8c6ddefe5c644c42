from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Generic, Optional, TypeVar

from lossrun_doctor.cells import Cell, row_is_blank
from lossrun_doctor.taxonomy import ErrorKind

T = TypeVar("T")

FIELD_TYPES = ("date", "number", "text")

# field key -> column index
Mapping = dict[str, int]

# column index -> first sampled data cells below the header row
SampleMatrix = dict[int, list[Cell]]


@dataclass(frozen=True)
class FieldDefinition:
    key: str
    label: str
    description: str
    required: bool
    hints: tuple[str, ...]
    field_type: str


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    value: Optional[T]
    error: Optional[str]
    raw: str
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def success(cls, value: T, raw: str) -> ParseResult[T]:
        return cls(value=value, error=None, raw=raw)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str, raw: str) -> ParseResult[T]:
        return cls(value=None, error=error, raw=raw, kind=kind)


@dataclass(frozen=True)
class SheetScore:
    sheet_name: str
    score: int
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class HeaderRow:
    row_index: int
    cells: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.cells)

    @property
    def data_start(self) -> int:
        return self.row_index + 1


@dataclass(frozen=True)
class HeaderMatch:
    column_index: int
    score: int


@dataclass(frozen=True)
class ContentMatch:
    column_index: int
    score: int
    reason: str


@dataclass(frozen=True)
class CompositeField:
    column_index: int
    header_name: str
    extracted_keys: tuple[str, ...]
    key_frequency: dict[str, int]


@dataclass(frozen=True)
class RowError:
    row_index: int
    field: str
    message: str
    raw_value: str
    severity: str = "error"
    kind: Optional[ErrorKind] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "field": self.field,
            "message": self.message,
            "raw_value": self.raw_value,
            "severity": self.severity,
            "kind": self.kind.value if self.kind else None,
        }


@dataclass(frozen=True)
class ValidationSummary:
    total_rows: int = 0
    valid_rows: int = 0
    skipped_rows: int = 0
    errors: tuple[RowError, ...] = ()
    warnings: tuple[str, ...] = ()
    unparsable_dates: int = 0
    invalid_amounts: int = 0
    missing_required: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "skipped_rows": self.skipped_rows,
            "errors": [error.to_dict() for error in self.errors],
            "warnings": list(self.warnings),
            "unparsable_dates": self.unparsable_dates,
            "invalid_amounts": self.invalid_amounts,
            "missing_required": self.missing_required,
        }


@dataclass(frozen=True)
class CanonicalRecord:
    site_name: str
    date_of_loss: Optional[date]
    total_incurred: float
    claim_number: Optional[str] = None
    claim_category: Optional[str] = None
    body_part: Optional[str] = None
    lost_days: Optional[float] = None
    cause_of_loss: Optional[str] = None
    loss_description: Optional[str] = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.total_incurred):
            raise ValueError("total_incurred must be finite")
        if self.lost_days is not None and not math.isfinite(self.lost_days):
            raise ValueError("lost_days must be finite")

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["date_of_loss"] = self.date_of_loss.isoformat() if self.date_of_loss else None
        return payload


@dataclass(frozen=True)
class Sheet:
    name: str
    rows: tuple[tuple[Cell, ...], ...] = ()
    kind: str = "worksheet"

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    @property
    def is_empty(self) -> bool:
        return all(row_is_blank(list(row)) for row in self.rows)


@dataclass(frozen=True)
class Workbook:
    sheets: tuple[Sheet, ...]
    source: Optional[str] = None
    warnings: tuple[str, ...] = field(default=())

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    def sheet(self, name: str) -> Sheet:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        raise KeyError(f"Sheet '{name}' not found. Available: {self.sheet_names}")
