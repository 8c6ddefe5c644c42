#!/usr/bin/env python3
"""
Generates sample-data/loss_run_sample.xlsx, a carrier-style loss run with the
problems the canonicalizer has to survive.

Run from the repo root:
    python sample-data/generate_loss_run.py

Problems baked in:
  Sheet "Cover"
    - Title page with a few notes, no table
  Sheet "Claims Detail"
    - Two title rows and a blank row above the real header
    - Headers that only loosely match: "Loc", "DOI", "Net Incurred"
    - Dates as real dates, spreadsheet serials, US text and text months
    - Amounts as numbers, "$1,234.56", "(250.00)" and a European "1.234,56"
    - A "Notes" column packing "Nature of Injury: ..." / "Cause: ..." pairs
    - One row with a blank amount, one with "N/A" as the date
    - A blank spacer row inside the data
  Chart sheet "Trend"
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import openpyxl
from openpyxl.chart import BarChart, Reference

OUTPUT = Path(__file__).parent / "loss_run_sample.xlsx"

HEADERS = ["Claim #", "Loc", "DOI", "Net Incurred", "Body Part", "Notes"]

ROWS = [
    ["WC-24-0001", "Dallas", datetime(2022, 3, 14), 12500.00, "Lower Back", "Cause: Lifting"],
    ["WC-24-0002", "Dallas", 44712, "$1,234.56", "Knee", "Nature of Injury: Strain"],
    ["WC-24-0003", "Houston", "06/02/2022", 880.0, "Shoulder", "Cause: Slip"],
    ["WC-24-0004", "Austin", "Jan 5, 2023", "(250.00)", "Hand", "Nature of Injury: Laceration"],
    [None, None, None, None, None, None],
    ["WC-24-0005", "Houston", "2023-02-11", "1.234,56", "Wrist", "Cause: Fall"],
    ["WC-24-0006", "Austin", datetime(2023, 7, 30), 4300, "Ankle", "Nature of Injury: Sprain"],
    ["WC-24-0007", "Dallas", "15-Aug-2023", 15000, "Back", "Nature of Injury: Strain"],
    ["WC-24-0008", "Houston", datetime(2024, 1, 9), None, "Finger", "Cause: Struck"],
    ["WC-24-0009", "Austin", "N/A", 760, "Eye", "Nature of Injury: Foreign Body"],
    ["WC-24-0010", "Dallas", datetime(2024, 5, 21), "$9,870.00", "Neck", "Nature of Injury: Strain"],
]


def build_workbook(path: Path = OUTPUT) -> Path:
    wb = openpyxl.Workbook()

    # ── Sheet 1: Cover ────────────────────────────────────────────────────────
    cover = wb.active
    cover.title = "Cover"
    cover.append(["Workers' Compensation Loss Run"])
    cover.append(["Valued as of 2024-06-30"])

    # ── Sheet 2: Claims Detail ────────────────────────────────────────────────
    ws = wb.create_sheet("Claims Detail")
    ws.append(["Acme Manufacturing - Loss Run"])
    ws.append(["Policy period 2022-2024"])
    ws.append([])
    ws.append(HEADERS)
    for row in ROWS:
        ws.append(row)

    # ── Sheet 3: Trend (chart sheet) ──────────────────────────────────────────
    chart = BarChart()
    chart.add_data(Reference(ws, min_col=4, min_row=4, max_row=4 + len(ROWS)), titles_from_data=True)
    trend = wb.create_chartsheet("Trend")
    trend.add_chart(chart)

    wb.save(path)
    return path


if __name__ == "__main__":
    print(f"Created: {build_workbook()}")
