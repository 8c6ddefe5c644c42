"""
Ingestion pipeline as an explicit state machine.

``transition(state, event)`` is pure: it never mutates ``state`` and never
touches the filesystem. ``IngestionSession`` is the thin driver that reads
files, hands out load tokens and keeps the current state.

    NO_FILE -> LOADING -> WORKBOOK_LOADED -> SHEET_SELECTED
            -> MAPPING_CONFIRMED (no valid rows) | DATA_LOADED

Refused transitions (empty sheet, incomplete mapping, unknown sheet) only
change ``status``; everything else stays as it was.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from lossrun_doctor.composite import (
    DEFAULT_MIN_KEY_FREQUENCY,
    composite_field_targets,
    composite_values_for_row,
    detect_composite_fields,
)
from lossrun_doctor.content_detection import detect_all_unmapped_fields, round_half_up
from lossrun_doctor.dimensions import DimensionInfo, detect_dimensions
from lossrun_doctor.field_mapping import (
    FIELDS,
    check_distinct_columns,
    match_headers,
    merge_mapping,
    missing_required,
)
from lossrun_doctor.loader import load_file
from lossrun_doctor.models import (
    CanonicalRecord,
    CompositeField,
    ContentMatch,
    HeaderMatch,
    HeaderRow,
    Mapping,
    SampleMatrix,
    Sheet,
    SheetScore,
    ValidationSummary,
    Workbook,
)
from lossrun_doctor.sheets import build_sample_matrix, data_rows, find_header_row, rank_sheets
from lossrun_doctor.validation import SummaryTally, validate_row

MAX_DEFAULT_YEARS = 3


class Phase(str, Enum):
    NO_FILE = "no_file"
    LOADING = "loading"
    WORKBOOK_LOADED = "workbook_loaded"
    SHEET_SELECTED = "sheet_selected"
    MAPPING_CONFIRMED = "mapping_confirmed"
    DATA_LOADED = "data_loaded"


# ── State ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IngestionContext:
    """Everything derived from the current sheet selection."""

    sheet: Sheet
    header: HeaderRow
    samples: SampleMatrix
    composites: tuple[CompositeField, ...]
    min_key_frequency: int = DEFAULT_MIN_KEY_FREQUENCY

    @property
    def headers(self) -> list[str]:
        return list(self.header.cells)


@dataclass(frozen=True)
class FinancialDefaults:
    avg_cost: int
    injuries: int
    years: tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {"avg_cost": self.avg_cost, "injuries": self.injuries, "years": list(self.years)}


@dataclass(frozen=True)
class IngestionState:
    phase: Phase = Phase.NO_FILE
    status: str = ""
    load_token: int = 0
    source: Optional[str] = None
    workbook: Optional[Workbook] = None
    sheet_scores: tuple[SheetScore, ...] = ()
    context: Optional[IngestionContext] = None
    overrides: dict[str, int] = field(default_factory=dict)
    header_matches: dict[str, HeaderMatch] = field(default_factory=dict)
    content_matches: dict[str, ContentMatch] = field(default_factory=dict)
    mapping: dict[str, int] = field(default_factory=dict)
    records: tuple[CanonicalRecord, ...] = ()
    summary: Optional[ValidationSummary] = None
    sites: tuple[str, ...] = ()
    financial_defaults: Optional[FinancialDefaults] = None
    dimensions: dict[str, DimensionInfo] = field(default_factory=dict)

    @property
    def sheet_name(self) -> Optional[str]:
        return self.context.sheet.name if self.context else None

    @property
    def unmapped_required(self) -> list[str]:
        if self.context is None:
            return [key for key, definition in FIELDS.items() if definition.required]
        return missing_required(self.mapping, len(self.context.header))


# ── Events ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FileLoadStarted:
    token: int
    source: str


@dataclass(frozen=True)
class WorkbookLoaded:
    token: int
    workbook: Workbook


@dataclass(frozen=True)
class WorkbookLoadFailed:
    token: int
    message: str


@dataclass(frozen=True)
class SheetSelected:
    sheet_name: str
    min_key_frequency: int = DEFAULT_MIN_KEY_FREQUENCY


@dataclass(frozen=True)
class OverrideSet:
    field_key: str
    column_index: Optional[int]


@dataclass(frozen=True)
class MappingConfirmed:
    overrides: Optional[Mapping] = None


Event = Union[FileLoadStarted, WorkbookLoaded, WorkbookLoadFailed, SheetSelected, OverrideSet, MappingConfirmed]


# ── Derived data ──────────────────────────────────────────────────────────────

def populate_sites(records: Iterable[CanonicalRecord]) -> tuple[str, ...]:
    sites = {record.site_name for record in records if record.site_name}
    return tuple(sorted(sites, key=lambda site: (site.lower(), site)))


def filter_by_site(records: Iterable[CanonicalRecord], site: Optional[str]) -> list[CanonicalRecord]:
    records = list(records)
    if not site or site == "all":
        return records
    return [record for record in records if record.site_name == site]


def financial_defaults(records: Iterable[CanonicalRecord]) -> Optional[FinancialDefaults]:
    """Average cost per claim and claims per year over the most recent 1-3 years.

    Without any dated record the whole set is used and ``injuries`` is the
    plain record count.
    """
    records = list(records)
    if not records:
        return None

    totals: dict[int, float] = defaultdict(float)
    counts: dict[int, int] = defaultdict(int)
    for record in records:
        if record.date_of_loss is None:
            continue
        year = record.date_of_loss.year
        totals[year] += record.total_incurred
        counts[year] += 1

    if not counts:
        incurred = sum(record.total_incurred for record in records)
        return FinancialDefaults(
            avg_cost=round_half_up(incurred / max(len(records), 1)),
            injuries=len(records),
        )

    recent = sorted(counts, reverse=True)[:MAX_DEFAULT_YEARS]
    claims = sum(counts[year] for year in recent)
    incurred = sum(totals[year] for year in recent)
    return FinancialDefaults(
        avg_cost=round_half_up(incurred / max(claims, 1)),
        injuries=round_half_up(claims / len(recent)),
        years=tuple(recent),
    )


def propose_mapping(
    context: IngestionContext,
    overrides: Optional[Mapping] = None,
) -> tuple[Mapping, dict[str, HeaderMatch], dict[str, ContentMatch]]:
    """Merge overrides, header matches and content fallbacks for ``context``.

    Overrides claim their columns first, header matching runs over what is
    left, and content detection only sees columns nobody has claimed.
    """
    overrides = dict(overrides or {})
    headers = context.headers
    open_fields = [key for key in FIELDS if key not in overrides]

    header_matches = match_headers(headers, context.samples, claimed=overrides.values(), fields=open_fields)
    claimed = set(overrides.values()) | {match.column_index for match in header_matches.values()}
    unresolved = [key for key in open_fields if key not in header_matches]
    content_matches = detect_all_unmapped_fields(unresolved, context.samples, len(headers), claimed=claimed)

    return merge_mapping(header_matches, content_matches, overrides), header_matches, content_matches


def canonicalize(context: IngestionContext, mapping: Mapping) -> tuple[list[CanonicalRecord], ValidationSummary]:
    """Run every non-blank data row through the row validator."""
    targets = composite_field_targets(context.composites, mapping)
    headers = context.headers
    tally = SummaryTally()
    records: list[CanonicalRecord] = []

    for row_number, row in data_rows(context.sheet, context.header):
        cells = list(row)
        composite_values = composite_values_for_row(cells, targets)
        record, errors = validate_row(cells, mapping, headers, row_number, composite_values or None)
        if record is not None:
            records.append(record)
        tally.add_row(record, errors)

    return records, tally.freeze()


def build_context(sheet: Sheet, min_key_frequency: int = DEFAULT_MIN_KEY_FREQUENCY) -> IngestionContext:
    header = find_header_row(sheet)
    samples = build_sample_matrix(sheet, header)
    composites = detect_composite_fields(range(len(header)), list(header.cells), samples, min_key_frequency)
    return IngestionContext(
        sheet=sheet,
        header=header,
        samples=samples,
        composites=tuple(composites),
        min_key_frequency=min_key_frequency,
    )


def _parse_status(records: list[CanonicalRecord], summary: ValidationSummary) -> str:
    message = (
        f"Parsed {len(records)} valid row(s) of {summary.total_rows} total. "
        f"{summary.skipped_rows} row(s) skipped."
    )
    if summary.unparsable_dates:
        message += f" {summary.unparsable_dates} unparsable date(s)."
    if summary.invalid_amounts:
        message += f" {summary.invalid_amounts} invalid amount(s)."
    return message


# ── Transitions ───────────────────────────────────────────────────────────────

def _select_sheet(state: IngestionState, sheet_name: str, min_key_frequency: int, status_prefix: str = "") -> IngestionState:
    if state.workbook is None:
        return replace(state, status="No workbook loaded.")
    try:
        sheet = state.workbook.sheet(sheet_name)
    except KeyError as exc:
        return replace(state, status=f"{status_prefix} {exc.args[0]}".strip())
    if sheet.kind != "worksheet" or sheet.is_empty:
        return replace(state, status=f"{status_prefix} Sheet '{sheet_name}' appears to be empty.".strip())

    context = build_context(sheet, min_key_frequency)
    mapping, header_matches, content_matches = propose_mapping(context)

    status = status_prefix
    if context.header.row_index > 0:
        status += (
            f" Header row detected at row {context.header.row_index + 1} "
            f"(skipped {context.header.row_index} row(s) at top)."
        )
    if context.composites:
        names = ", ".join(composite.header_name for composite in context.composites)
        status += f" Detected {len(context.composites)} composite field(s): {names}."

    return replace(
        state,
        phase=Phase.SHEET_SELECTED,
        status=status.strip() or f"Selected sheet '{sheet_name}'.",
        context=context,
        overrides={},
        header_matches=header_matches,
        content_matches=content_matches,
        mapping=mapping,
        records=(),
        summary=None,
        sites=(),
        financial_defaults=None,
        dimensions={},
    )


def _on_workbook_loaded(state: IngestionState, event: WorkbookLoaded) -> IngestionState:
    workbook = event.workbook
    if not workbook.sheets:
        return replace(state, phase=Phase.NO_FILE, status="Error reading file: No sheets found in workbook.")

    scores = tuple(rank_sheets(workbook))
    best = scores[0]
    loaded = replace(
        state,
        phase=Phase.WORKBOOK_LOADED,
        workbook=workbook,
        sheet_scores=scores,
        status=f"Loaded workbook with {len(workbook.sheets)} sheet(s).",
    )
    prefix = (
        f"Loaded workbook with {len(workbook.sheets)} sheet(s). "
        f"Auto-selected '{best.sheet_name}' (score: {best.score})."
    )
    return _select_sheet(loaded, best.sheet_name, DEFAULT_MIN_KEY_FREQUENCY, prefix)


def _on_override(state: IngestionState, event: OverrideSet) -> IngestionState:
    if state.context is None:
        return replace(state, status="Select a sheet before overriding mappings.")
    if event.field_key not in FIELDS:
        return replace(state, status=f"Unknown field '{event.field_key}'.")

    overrides = dict(state.overrides)
    if event.column_index is None:
        overrides.pop(event.field_key, None)
    elif 0 <= event.column_index < len(state.context.header):
        overrides[event.field_key] = event.column_index
    else:
        return replace(state, status=f"Column {event.column_index} is outside the header row.")
    try:
        check_distinct_columns(state.context.headers, overrides)
    except ValueError as exc:
        return replace(state, status=str(exc))
    return replace(state, overrides=overrides, status=f"Override set for {FIELDS[event.field_key].label}.")


def _on_mapping_confirmed(state: IngestionState, event: MappingConfirmed) -> IngestionState:
    context = state.context
    if context is None or not len(context.header):
        return replace(state, status="No sheet/header information available.")

    overrides = dict(state.overrides if event.overrides is None else event.overrides)
    width = len(context.header)
    overrides = {key: index for key, index in overrides.items() if key in FIELDS and 0 <= index < width}
    try:
        check_distinct_columns(context.headers, overrides)
    except ValueError as exc:
        return replace(state, status=str(exc))

    mapping, header_matches, content_matches = propose_mapping(context, overrides)
    missing = missing_required(mapping, width)
    if missing:
        labels = ", ".join(FIELDS[key].label for key in missing)
        return replace(state, status=f"Missing required mappings for: {labels}")

    records, summary = canonicalize(context, mapping)
    confirmed = replace(
        state,
        overrides=overrides,
        header_matches=header_matches,
        content_matches=content_matches,
        mapping=mapping,
        records=tuple(records),
        summary=summary,
    )
    if not records:
        return replace(
            confirmed,
            phase=Phase.MAPPING_CONFIRMED,
            status="No valid rows after parsing. Check that date and incurred values are valid.",
            sites=(),
            financial_defaults=None,
            dimensions=detect_dimensions(()),
        )
    return replace(
        confirmed,
        phase=Phase.DATA_LOADED,
        status=_parse_status(records, summary),
        sites=populate_sites(records),
        financial_defaults=financial_defaults(records),
        dimensions=detect_dimensions(records),
    )


def transition(state: IngestionState, event: Event) -> IngestionState:
    """Next state for ``event``. Stale load completions are ignored."""
    if isinstance(event, FileLoadStarted):
        return IngestionState(
            phase=Phase.LOADING,
            status=f"Reading {event.source}...",
            load_token=event.token,
            source=event.source,
        )
    if isinstance(event, WorkbookLoaded):
        if event.token != state.load_token or state.phase != Phase.LOADING:
            return state
        return _on_workbook_loaded(state, event)
    if isinstance(event, WorkbookLoadFailed):
        if event.token != state.load_token or state.phase != Phase.LOADING:
            return state
        return replace(state, phase=Phase.NO_FILE, status=f"Error reading file: {event.message}")
    if isinstance(event, SheetSelected):
        return _select_sheet(state, event.sheet_name, event.min_key_frequency)
    if isinstance(event, OverrideSet):
        return _on_override(state, event)
    if isinstance(event, MappingConfirmed):
        return _on_mapping_confirmed(state, event)
    raise TypeError(f"Unknown event: {event!r}")


# ── Session driver ────────────────────────────────────────────────────────────

class IngestionSession:
    """Owns the current state and the load-token counter."""

    def __init__(self) -> None:
        self.state = IngestionState()
        self._tokens = itertools.count(1)

    def dispatch(self, event: Event) -> IngestionState:
        self.state = transition(self.state, event)
        return self.state

    def begin_load(self, source: "str | Path") -> int:
        token = next(self._tokens)
        self.dispatch(FileLoadStarted(token=token, source=str(source)))
        return token

    def finish_load(self, token: int, path: "str | Path") -> IngestionState:
        try:
            workbook = load_file(path)
        except (FileNotFoundError, ValueError, ImportError, OSError) as exc:
            return self.dispatch(WorkbookLoadFailed(token=token, message=str(exc)))
        return self.dispatch(WorkbookLoaded(token=token, workbook=workbook))

    def load_path(self, path: "str | Path") -> IngestionState:
        return self.finish_load(self.begin_load(path), path)

    def select_sheet(self, sheet_name: str, min_key_frequency: int = DEFAULT_MIN_KEY_FREQUENCY) -> IngestionState:
        return self.dispatch(SheetSelected(sheet_name=sheet_name, min_key_frequency=min_key_frequency))

    def set_override(self, field_key: str, column_index: Optional[int]) -> IngestionState:
        return self.dispatch(OverrideSet(field_key=field_key, column_index=column_index))

    def confirm_mapping(self, overrides: Optional[Mapping] = None) -> IngestionState:
        return self.dispatch(MappingConfirmed(overrides=overrides))
