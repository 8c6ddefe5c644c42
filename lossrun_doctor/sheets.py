"""
Sheet ranking and header-row location.
"""

from __future__ import annotations

import math
from typing import Iterator

from lossrun_doctor.cells import EMPTY, Cell, DateValue, Number, cell_text, is_blank, row_is_blank
from lossrun_doctor.column_types import looks_like_loose_date, looks_like_number
from lossrun_doctor.models import HeaderRow, SampleMatrix, Sheet, SheetScore, Workbook

UNUSABLE_SHEET_SCORE = -100

CLAIMS_KEYWORDS = ("claim", "loss", "detail", "data", "run", "listing", "report")
SUMMARY_KEYWORDS = (
    "summary", "cover", "total", "index", "toc", "instruction",
    "contents", "pivot", "chart", "graph", "about", "notes",
)
HEADER_KEYWORDS = (
    "claim", "date", "loss", "incurred", "paid", "reserve",
    "location", "site", "body part", "injury", "description", "accident",
)

HEADER_SCAN_ROWS = 5
MIN_HEADER_KEYWORD_HITS = 3

MAX_HEADER_SCAN = 20
MIN_HEADER_CELLS = 3
WIDE_ROW_CELLS = 50
SAMPLE_ROWS = 10


# ── Sheet ranking ─────────────────────────────────────────────────────────────

def score_sheet(sheet: Sheet) -> SheetScore:
    if sheet.kind != "worksheet":
        return SheetScore(sheet.name, UNUSABLE_SHEET_SCORE, (f"Non-worksheet type: {sheet.kind}",))
    if sheet.is_empty:
        return SheetScore(sheet.name, UNUSABLE_SHEET_SCORE, ("Empty sheet",))

    score = 0
    reasons: list[str] = []
    rows, columns = sheet.row_count, sheet.column_count

    if rows > 10:
        score += 20
        reasons.append(f"{rows} rows")
    if rows > 50:
        score += 15
    if rows > 500:
        score += 10

    if 5 <= columns <= 50:
        score += 15
        reasons.append(f"{columns} columns")
    if columns < 3:
        score -= 20
        reasons.append("Too few columns")

    name = sheet.name.lower()
    if any(keyword in name for keyword in CLAIMS_KEYWORDS):
        score += 25
        reasons.append("Sheet name matches claims keyword")
    if any(keyword in name for keyword in SUMMARY_KEYWORDS):
        score -= 20
        reasons.append("Sheet name matches summary keyword")

    hits = 0
    for row in sheet.rows[:HEADER_SCAN_ROWS]:
        for cell in row:
            text = cell_text(cell).lower()
            if text and any(keyword in text for keyword in HEADER_KEYWORDS):
                hits += 1
    if hits >= MIN_HEADER_KEYWORD_HITS:
        score += 30
        reasons.append(f"{hits} header keyword matches")

    return SheetScore(sheet.name, score, tuple(reasons))


def rank_sheets(workbook: Workbook) -> list[SheetScore]:
    """Every sheet, best first. ``sorted`` is stable, so ties keep workbook order."""
    scores = [score_sheet(sheet) for sheet in workbook.sheets]
    return sorted(scores, key=lambda item: item.score, reverse=True)


# ── Header location ───────────────────────────────────────────────────────────

def _is_label(cell: Cell) -> bool:
    if isinstance(cell, (Number, DateValue)):
        return False
    text = cell_text(cell)
    return not looks_like_number(text) and not looks_like_loose_date(text)


def score_header_candidate(row: tuple[Cell, ...]) -> int:
    filled = [cell for cell in row if not is_blank(cell)]
    if len(filled) < MIN_HEADER_CELLS:
        return 0
    score = len(filled)
    labels = sum(1 for cell in filled if _is_label(cell))
    if labels >= math.ceil(len(filled) / 2):
        score += 5
    if len(filled) > WIDE_ROW_CELLS:
        score -= 10
    return score


def find_header_row(sheet: Sheet) -> HeaderRow:
    """Best header candidate among the first 20 rows, or row 0 when none qualifies."""
    best_index = -1
    best_score = 0
    for index, row in enumerate(sheet.rows[:MAX_HEADER_SCAN]):
        score = score_header_candidate(row)
        if score > best_score:
            best_score = score
            best_index = index

    if best_index < 0 or best_score < MIN_HEADER_CELLS:
        best_index = 0
    cells = sheet.rows[best_index] if sheet.rows else ()
    return HeaderRow(row_index=best_index, cells=tuple(cell_text(cell) for cell in cells))


def build_sample_matrix(sheet: Sheet, header: HeaderRow, limit: int = SAMPLE_ROWS) -> SampleMatrix:
    """First ``limit`` rows below the header, per column. Missing cells are blank."""
    window = sheet.rows[header.data_start:header.data_start + limit]
    return {
        column: [row[column] if column < len(row) else EMPTY for row in window]
        for column in range(len(header))
    }


def data_rows(sheet: Sheet, header: HeaderRow) -> Iterator[tuple[int, tuple[Cell, ...]]]:
    """Yield (1-based sheet row number, cells) for every non-blank row below the header."""
    for offset, row in enumerate(sheet.rows[header.data_start:]):
        if row_is_blank(list(row)):
            continue
        yield header.data_start + offset + 1, row
