"""
loader.py: read a loss-run file into a Workbook of tagged cells.

Supports: .xlsx .xlsm (openpyxl), .xls .ods (pandas), .csv .tsv .txt (chardet + csv)

Public API:
    workbook = load_file("path/to/loss_run.xlsx")
    workbook.sheet_names, workbook.sheets[0].rows

Delimited text files become a single-sheet workbook named after the file.
"""

from __future__ import annotations

import csv
import io
import zipfile
from collections import Counter
from pathlib import Path
from typing import Any, Iterable

import chardet
import openpyxl
import pandas as pd
from openpyxl.chartsheet import Chartsheet

from lossrun_doctor.cells import Cell, is_blank, to_cell
from lossrun_doctor.models import Sheet, Workbook

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
OPENPYXL_FORMATS = {".xlsx", ".xlsm"}
LEGACY_EXCEL_FORMATS = {".xls"}
ODS_FORMATS = {".ods"}
ALL_FORMATS = TEXT_FORMATS | OPENPYXL_FORMATS | LEGACY_EXCEL_FORMATS | ODS_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# TEXT DECODING
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> tuple[str, float]:
    result = chardet.detect(raw)
    return result.get("encoding") or "unknown", round(result.get("confidence") or 0.0, 2)


def read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Each line tries UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement. Embedded null bytes are stripped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    csv.Sniffer first; otherwise score each candidate by column-count
    consistency and width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    best_width = 0
    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = [len(row) for row in rows]
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(widths)) * mode_width
        if len(rows[0]) == mode_width:
            score += 1.0
        if mode_width == 1:
            score -= 10.0
        if score > best_score or (score == best_score and mode_width > best_width):
            best_score = score
            best_width = mode_width
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# ROW NORMALISATION
# ══════════════════════════════════════════════════════════════════════════════

def _trim_trailing_blank_cells(cells: list[Cell]) -> list[Cell]:
    trimmed = list(cells)
    while trimmed and is_blank(trimmed[-1]):
        trimmed.pop()
    return trimmed


def normalise_rows(rows: Iterable[Iterable[Any]]) -> tuple[tuple[Cell, ...], ...]:
    """Tag every cell, drop trailing blank cells and trailing blank rows."""
    normalised = [tuple(_trim_trailing_blank_cells([to_cell(value) for value in row])) for row in rows]
    while normalised and not normalised[-1]:
        normalised.pop()
    return tuple(normalised)


def is_encrypted_ooxml(path: Path) -> bool:
    try:
        with zipfile.ZipFile(path) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile:
        return False
    return {"EncryptedPackage", "EncryptionInfo"}.issubset(names)


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_openpyxl(path: Path) -> Workbook:
    if is_encrypted_ooxml(path):
        raise ValueError("Password-protected / encrypted OOXML workbooks are not supported")
    try:
        book = openpyxl.load_workbook(path, data_only=True, keep_vba=path.suffix.lower() == ".xlsm")
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc

    sheets: list[Sheet] = []
    warnings: list[str] = []
    try:
        for name in book.sheetnames:
            worksheet = book[name]
            if isinstance(worksheet, Chartsheet):
                sheets.append(Sheet(name=name, kind="chartsheet"))
                continue
            if worksheet.sheet_state != "visible":
                warnings.append(f"Sheet '{name}' is {worksheet.sheet_state}.")
            sheets.append(Sheet(name=name, rows=normalise_rows(worksheet.iter_rows(values_only=True))))
    finally:
        book.close()

    return Workbook(sheets=tuple(sheets), source=str(path), warnings=tuple(warnings))


def _load_with_pandas(path: Path, engine: str | None) -> Workbook:
    try:
        with pd.ExcelFile(path, engine=engine) as book:
            frames = {
                name: book.parse(name, header=None, dtype=object)
                for name in book.sheet_names
            }
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc

    sheets = tuple(
        Sheet(name=str(name), rows=normalise_rows(frame.itertuples(index=False, name=None)))
        for name, frame in frames.items()
    )
    return Workbook(sheets=sheets, source=str(path))


def _load_legacy_excel(path: Path) -> Workbook:
    try:
        import xlrd  # noqa: F401
    except ImportError:
        raise ImportError(".xls files require xlrd. Install it with: pip install xlrd")
    return _load_with_pandas(path, engine="xlrd")


def _load_ods(path: Path) -> Workbook:
    try:
        import odf  # noqa: F401
    except ImportError:
        raise ImportError(".ods files require odfpy. Install it with: pip install odfpy")
    return _load_with_pandas(path, engine="odf")


def _load_text(path: Path, suffix: str) -> Workbook:
    raw = path.read_bytes()
    encoding, confidence = detect_encoding(raw)
    text = read_text_safely(raw, encoding if encoding != "unknown" else "utf-8")
    delimiter = "\t" if suffix == ".tsv" else detect_delimiter(text)

    warnings: list[str] = []
    if encoding.upper().replace("-", "") not in ("UTF8", "ASCII", "UNKNOWN"):
        warnings.append(f"Decoded as {encoding} (confidence {confidence}).")

    try:
        rows = normalise_rows(csv.reader(io.StringIO(text), delimiter=delimiter))
    except csv.Error as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    if suffix == ".txt" and sum(1 for row in rows if len(row) > 1) < 2:
        raise ValueError(
            ".txt file does not appear to contain delimited/tabular data "
            f"(detected delimiter {delimiter!r} but fewer than 2 rows contain multiple fields)"
        )
    return Workbook(sheets=(Sheet(name=path.stem, rows=rows),), source=str(path), warnings=tuple(warnings))


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_file(path: "str | Path") -> Workbook:
    """
    Load any supported file into a Workbook.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if a required optional reader is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        return _load_text(path, suffix)
    if suffix in OPENPYXL_FORMATS:
        return _load_openpyxl(path)
    if suffix in LEGACY_EXCEL_FORMATS:
        return _load_legacy_excel(path)
    return _load_ods(path)
