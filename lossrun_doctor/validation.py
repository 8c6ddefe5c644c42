"""
Row validation.

Turns one raw row plus the confirmed mapping into a CanonicalRecord. A
required-field failure drops the row with every reason recorded; optional
fields that fail to parse become warnings and the row survives.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from lossrun_doctor.cells import EMPTY, Cell, cell_text, to_cell
from lossrun_doctor.currency import parse_currency
from lossrun_doctor.dates import parse_date
from lossrun_doctor.models import CanonicalRecord, Mapping, RowError, ValidationSummary
from lossrun_doctor.taxonomy import ErrorKind, summary_counters

OPTIONAL_TEXT_FIELDS = ("claim_number", "claim_category", "body_part", "cause_of_loss", "loss_description")


def _cell_for(row: list[Any], mapping: Mapping, field_key: str) -> Cell:
    index = mapping.get(field_key)
    if index is None or index < 0 or index >= len(row):
        return EMPTY
    return to_cell(row[index])


def _missing(row_index: int, field_key: str, message: str, mapping: Mapping, headers: list[str]) -> RowError:
    index = mapping.get(field_key, -1)
    if 0 <= index < len(headers) and headers[index]:
        message = f"{message} (column '{headers[index]}')"
    return RowError(row_index, field_key, message, "", kind=ErrorKind.MISSING_REQUIRED_FIELD)


def _parse_lost_days(value: Any, row_index: int, errors: list[RowError]) -> Optional[float]:
    if not cell_text(value):
        return None
    result = parse_currency(value)
    if result.error or result.value is None or not math.isfinite(result.value):
        errors.append(
            RowError(
                row_index,
                "lost_days",
                result.error or "Invalid lost days value",
                result.raw,
                severity="warning",
                kind=result.kind,
            )
        )
        return None
    return result.value


def validate_row(
    row: list[Any],
    mapping: Mapping,
    headers: list[str],
    row_index: int,
    composite_overrides: Optional[dict[str, str]] = None,
) -> tuple[Optional[CanonicalRecord], list[RowError]]:
    """Validate one row; ``row_index`` is the 1-based sheet row used in errors."""
    errors: list[RowError] = []

    # ── Required fields ──

    site_cell = _cell_for(row, mapping, "site_name")
    site_name = cell_text(site_cell)
    if not site_name:
        errors.append(_missing(row_index, "site_name", "Missing site name", mapping, headers))

    date_of_loss = None
    date_cell = _cell_for(row, mapping, "date_of_loss")
    if not cell_text(date_cell):
        errors.append(_missing(row_index, "date_of_loss", "Missing date of loss", mapping, headers))
    else:
        result = parse_date(date_cell)
        if result.ok:
            date_of_loss = result.value
        else:
            errors.append(
                RowError(
                    row_index,
                    "date_of_loss",
                    result.error or "Unparseable date of loss",
                    result.raw,
                    kind=result.kind,
                )
            )

    total_incurred = 0.0
    amount_cell = _cell_for(row, mapping, "total_incurred")
    if not cell_text(amount_cell):
        errors.append(_missing(row_index, "total_incurred", "Missing total incurred amount", mapping, headers))
    else:
        result = parse_currency(amount_cell)
        if result.ok and math.isfinite(result.value):
            total_incurred = result.value
        else:
            errors.append(
                RowError(
                    row_index,
                    "total_incurred",
                    result.error or "Invalid total incurred amount",
                    result.raw,
                    kind=result.kind,
                )
            )

    if errors:
        return None, errors

    # ── Optional fields ──

    optional: dict[str, Optional[str]] = {
        key: cell_text(_cell_for(row, mapping, key)) or None for key in OPTIONAL_TEXT_FIELDS
    }

    lost_days = None
    if "lost_days" in mapping:
        lost_days = _parse_lost_days(_cell_for(row, mapping, "lost_days"), row_index, errors)

    # Composite values only fill fields that are still blank.
    for key, value in (composite_overrides or {}).items():
        if not value:
            continue
        if key == "lost_days":
            if lost_days is None:
                lost_days = _parse_lost_days(value, row_index, errors)
        elif key in optional and not optional[key]:
            optional[key] = value

    record = CanonicalRecord(
        site_name=site_name,
        date_of_loss=date_of_loss,
        total_incurred=total_incurred,
        lost_days=lost_days,
        **optional,
    )
    return record, errors


# ── Summary ───────────────────────────────────────────────────────────────────

@dataclass
class SummaryTally:
    """Mutable counters for a single parse pass; ``freeze`` gives the summary."""

    total_rows: int = 0
    valid_rows: int = 0
    skipped_rows: int = 0
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    counters: dict[str, int] = field(
        default_factory=lambda: {"unparsable_dates": 0, "invalid_amounts": 0, "missing_required": 0}
    )

    def add_row(self, record: Optional[CanonicalRecord], errors: list[RowError]) -> None:
        self.total_rows += 1
        if record is None:
            self.skipped_rows += 1
        else:
            self.valid_rows += 1
        accumulate_errors(self, errors)

    def freeze(self) -> ValidationSummary:
        return ValidationSummary(
            total_rows=self.total_rows,
            valid_rows=self.valid_rows,
            skipped_rows=self.skipped_rows,
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            unparsable_dates=self.counters["unparsable_dates"],
            invalid_amounts=self.counters["invalid_amounts"],
            missing_required=self.counters["missing_required"],
        )


def accumulate_errors(tally: SummaryTally, errors: list[RowError]) -> None:
    for error in errors:
        tally.errors.append(error)
        if error.severity == "warning":
            tally.warnings.append(f"Row {error.row_index}: {error.field}: {error.message}")
        for counter in summary_counters(error.field, error.message):
            tally.counters[counter] += 1
