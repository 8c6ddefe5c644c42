from __future__ import annotations

import unittest
from datetime import date

from lossrun_doctor.cells import EMPTY, Text, to_cell
from lossrun_doctor.models import Sheet, Workbook
from lossrun_doctor.sheets import (
    UNUSABLE_SHEET_SCORE,
    build_sample_matrix,
    data_rows,
    find_header_row,
    rank_sheets,
    score_header_candidate,
    score_sheet,
)


def make_sheet(name: str, rows, kind: str = "worksheet") -> Sheet:
    return Sheet(name=name, rows=tuple(tuple(to_cell(value) for value in row) for row in rows), kind=kind)


CLAIM_ROWS = [
    ["Claims Listing"],
    [],
    ["Claim #", "Site", "Date of Loss", "Total Incurred", "Body Part"],
] + [
    [f"C-{i}", "Dallas", date(2024, 1, i), 100 * i, "Back"]
    for i in range(1, 13)
]


class SheetScoreTests(unittest.TestCase):
    def test_claims_sheet_scores_well(self):
        score = score_sheet(make_sheet("Loss Run", CLAIM_ROWS))
        # rows, columns, name keyword, header keywords
        self.assertEqual(score.score, 20 + 15 + 25 + 30)
        self.assertIn("Sheet name matches claims keyword", score.reasons)

    def test_summary_sheet_is_penalised(self):
        score = score_sheet(make_sheet("Summary", [["Total", 100], ["Count", 3]]))
        self.assertEqual(score.score, -40)

    def test_chartsheet_and_empty_sheet_are_unusable(self):
        self.assertEqual(score_sheet(Sheet(name="Chart1", kind="chartsheet")).score, UNUSABLE_SHEET_SCORE)
        empty = score_sheet(make_sheet("Blank", [[None, ""], []]))
        self.assertEqual(empty.score, UNUSABLE_SHEET_SCORE)
        self.assertEqual(empty.reasons, ("Empty sheet",))

    def test_rank_is_best_first_and_stable(self):
        workbook = Workbook(
            sheets=(
                make_sheet("A", [["x", "y"]]),
                make_sheet("Claims", CLAIM_ROWS),
                make_sheet("B", [["x", "y"]]),
            )
        )
        ranked = [score.sheet_name for score in rank_sheets(workbook)]
        self.assertEqual(ranked, ["Claims", "A", "B"])


class HeaderRowTests(unittest.TestCase):
    def test_header_below_title_rows(self):
        header = find_header_row(make_sheet("Loss Run", CLAIM_ROWS))
        self.assertEqual(header.row_index, 2)
        self.assertEqual(header.cells, ("Claim #", "Site", "Date of Loss", "Total Incurred", "Body Part"))
        self.assertEqual(header.data_start, 3)

    def test_falls_back_to_first_row(self):
        header = find_header_row(make_sheet("Tiny", [["a", "b"], ["1", "2"]]))
        self.assertEqual(header.row_index, 0)
        self.assertEqual(header.cells, ("a", "b"))

    def test_label_rows_beat_numeric_rows(self):
        labels = (Text("Site"), Text("Amount"), Text("Notes"))
        numbers = tuple(to_cell(value) for value in (1, 2, 3))
        self.assertEqual(score_header_candidate(labels), 8)
        self.assertEqual(score_header_candidate(numbers), 3)
        self.assertEqual(score_header_candidate((Text("a"), EMPTY)), 0)

    def test_very_wide_rows_are_penalised(self):
        row = tuple(Text(f"col {i}") for i in range(60))
        self.assertEqual(score_header_candidate(row), 60 + 5 - 10)


class SampleMatrixTests(unittest.TestCase):
    def test_samples_are_padded_and_limited(self):
        rows = [["Site", "Date", "Amount"], ["Dallas"]] + [["Austin", "2024-01-01", 5]] * 15
        sheet = make_sheet("Data", rows)
        header = find_header_row(sheet)
        samples = build_sample_matrix(sheet, header)
        self.assertEqual(sorted(samples), [0, 1, 2])
        self.assertEqual(len(samples[0]), 10)
        self.assertEqual(samples[1][0], EMPTY)
        self.assertEqual(samples[0][0], Text("Dallas"))

    def test_data_rows_skip_blanks_and_number_sheet_rows(self):
        rows = [["Title"], ["Site", "Date", "Amount"], ["Dallas", "2024-01-01", 5], [], [None, " "], ["Austin", "2024-01-02", 6]]
        sheet = make_sheet("Data", rows)
        header = find_header_row(sheet)
        self.assertEqual(header.row_index, 1)
        numbered = [(number, row[0].value) for number, row in data_rows(sheet, header)]
        self.assertEqual(numbered, [(3, "Dallas"), (6, "Austin")])


if __name__ == "__main__":
    unittest.main()
