from __future__ import annotations

import importlib.util
import sys
import tempfile
import unittest
from dataclasses import replace
from datetime import date
from pathlib import Path

from lossrun_doctor.cells import to_cell
from lossrun_doctor.models import CanonicalRecord, Sheet, Workbook
from lossrun_doctor.orchestrator import (
    FileLoadStarted,
    IngestionSession,
    IngestionState,
    MappingConfirmed,
    Phase,
    WorkbookLoaded,
    WorkbookLoadFailed,
    filter_by_site,
    financial_defaults,
    populate_sites,
    transition,
)

ROOT = Path(__file__).resolve().parents[1]


def load_module(module_path: Path, module_name: str):
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    module = importlib.util.module_from_spec(spec)
    assert spec and spec.loader
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


SAMPLE = load_module(ROOT / "sample-data" / "generate_loss_run.py", "generate_loss_run")


def make_workbook(*sheets: tuple[str, list[list]]) -> Workbook:
    return Workbook(
        sheets=tuple(
            Sheet(name=name, rows=tuple(tuple(to_cell(value) for value in row) for row in rows))
            for name, rows in sheets
        )
    )


def loss_run_rows(blank_amount_at: int | None = None) -> list[list]:
    sites = ["Dallas", "Houston", "Austin", "Dallas", "Houston", "Austin", "Dallas", "Houston", "Austin", "Dallas"]
    rows = [["Loc", "DOI", "Incurred"]]
    for index, site in enumerate(sites):
        amount = None if index == blank_amount_at else 1000 + index * 250
        rows.append([site, f"2023-{index + 1:02d}-15", amount])
    return rows


def loaded_state(workbook: Workbook) -> IngestionState:
    state = transition(IngestionState(), FileLoadStarted(token=1, source="memory.xlsx"))
    return transition(state, WorkbookLoaded(token=1, workbook=workbook))


class TransitionTests(unittest.TestCase):
    def test_short_headers_map_and_blank_amount_is_skipped(self):
        state = loaded_state(make_workbook(("Claims", loss_run_rows(blank_amount_at=4))))
        self.assertEqual(state.phase, Phase.SHEET_SELECTED)
        self.assertEqual(state.mapping, {"site_name": 0, "date_of_loss": 1, "total_incurred": 2})

        state = transition(state, MappingConfirmed())
        self.assertEqual(state.phase, Phase.DATA_LOADED)
        self.assertEqual(state.summary.total_rows, 10)
        self.assertEqual(state.summary.valid_rows, 9)
        self.assertEqual(state.summary.skipped_rows, 1)
        self.assertGreaterEqual(state.summary.invalid_amounts, 1)
        self.assertEqual(len(state.records), 9)
        self.assertEqual(state.summary.errors[0].row_index, 6)
        self.assertTrue(state.status.startswith("Parsed 9 valid row(s) of 10 total. 1 row(s) skipped."))

    def test_confirming_twice_gives_the_same_result(self):
        state = loaded_state(make_workbook(("Claims", loss_run_rows(blank_amount_at=2))))
        first = transition(state, MappingConfirmed())
        second = transition(first, MappingConfirmed())
        self.assertEqual(first.records, second.records)
        self.assertEqual(first.summary, second.summary)
        self.assertEqual(first.mapping, second.mapping)
        self.assertEqual(transition(state, MappingConfirmed()), first)

    def test_transition_does_not_mutate_input(self):
        state = loaded_state(make_workbook(("Claims", loss_run_rows())))
        snapshot = replace(state)
        transition(state, MappingConfirmed(overrides={"site_name": 1}))
        self.assertEqual(state, snapshot)

    def test_stale_load_results_are_ignored(self):
        workbook = make_workbook(("Claims", loss_run_rows()))
        state = transition(IngestionState(), FileLoadStarted(token=1, source="first.xlsx"))
        state = transition(state, FileLoadStarted(token=2, source="second.xlsx"))

        stale = transition(state, WorkbookLoaded(token=1, workbook=workbook))
        self.assertIs(stale, state)
        stale_failure = transition(state, WorkbookLoadFailed(token=1, message="boom"))
        self.assertIs(stale_failure, state)

        current = transition(state, WorkbookLoaded(token=2, workbook=workbook))
        self.assertEqual(current.phase, Phase.SHEET_SELECTED)
        self.assertEqual(current.source, "second.xlsx")

    def test_load_failure_returns_to_no_file(self):
        state = transition(IngestionState(), FileLoadStarted(token=1, source="bad.xlsx"))
        state = transition(state, WorkbookLoadFailed(token=1, message="Could not open workbook"))
        self.assertEqual(state.phase, Phase.NO_FILE)
        self.assertEqual(state.status, "Error reading file: Could not open workbook")

    def test_incomplete_mapping_is_refused(self):
        rows = [["Alpha", "Beta", "Gamma"]] + [["foo", "bar", "baz"]] * 5
        state = loaded_state(make_workbook(("Data", rows)))
        refused = transition(state, MappingConfirmed())
        self.assertEqual(refused.phase, Phase.SHEET_SELECTED)
        self.assertTrue(refused.status.startswith("Missing required mappings for:"))
        self.assertIn("Date of Loss", refused.status)
        self.assertEqual(refused.records, ())

    def test_overrides_complete_the_mapping(self):
        rows = [["Alpha", "Beta", "Gamma"]] + [["Dallas", "2024-01-05", "100"]] * 3
        state = loaded_state(make_workbook(("Data", rows)))
        state = transition(state, MappingConfirmed(overrides={"site_name": 0, "date_of_loss": 1, "total_incurred": 2}))
        self.assertEqual(state.phase, Phase.DATA_LOADED)
        self.assertEqual(len(state.records), 3)
        self.assertEqual(state.records[0].total_incurred, 100.0)

    def test_two_overrides_on_one_column_are_refused(self):
        rows = [["Site", "Date of Loss", "Total Incurred", "Ref"]] + [["Dallas", "2024-01-05", "100", "C-0"]] * 3
        state = loaded_state(make_workbook(("Data", rows)))
        refused = transition(state, MappingConfirmed(overrides={"site_name": 0, "claim_number": 0}))
        self.assertEqual(refused.phase, Phase.SHEET_SELECTED)
        self.assertEqual(refused.status, "Fields 'site_name' and 'claim_number' both override column 'Site'.")
        self.assertEqual(refused.overrides, state.overrides)
        self.assertEqual(refused.mapping, state.mapping)
        self.assertEqual(refused.records, ())

    def test_no_valid_rows(self):
        rows = [["Site", "Date of Loss", "Total Incurred"]] + [["Dallas", "N/A", "100"]] * 3
        state = transition(loaded_state(make_workbook(("Data", rows))), MappingConfirmed())
        self.assertEqual(state.phase, Phase.MAPPING_CONFIRMED)
        self.assertEqual(state.status, "No valid rows after parsing. Check that date and incurred values are valid.")
        self.assertEqual(state.summary.skipped_rows, 3)
        self.assertIsNone(state.financial_defaults)

    def test_empty_best_sheet_is_refused(self):
        state = loaded_state(make_workbook(("Blank", [])))
        self.assertEqual(state.phase, Phase.WORKBOOK_LOADED)
        self.assertIn("appears to be empty", state.status)
        self.assertIsNone(state.context)

    def test_workbook_without_sheets(self):
        state = loaded_state(Workbook(sheets=()))
        self.assertEqual(state.phase, Phase.NO_FILE)
        self.assertIn("No sheets found", state.status)


class SessionTests(unittest.TestCase):
    def test_sample_loss_run_end_to_end(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = SAMPLE.build_workbook(Path(tmpdir) / "loss_run_sample.xlsx")
            session = IngestionSession()
            state = session.load_path(path)

        self.assertEqual(state.phase, Phase.SHEET_SELECTED)
        self.assertEqual(state.sheet_name, "Claims Detail")
        self.assertEqual(state.sheet_scores[-1].sheet_name, "Trend")
        self.assertEqual(state.context.header.row_index, 3)
        self.assertEqual(state.context.headers, SAMPLE.HEADERS)
        self.assertIn("Header row detected at row 4 (skipped 3 row(s) at top).", state.status)
        self.assertEqual([list(c.extracted_keys) for c in state.context.composites], [["Cause", "Nature of Injury"]])
        self.assertEqual(
            state.mapping,
            {
                "site_name": 1,
                "date_of_loss": 2,
                "total_incurred": 3,
                "claim_number": 0,
                "body_part": 4,
                "loss_description": 5,
            },
        )

        state = session.confirm_mapping()
        self.assertEqual(state.phase, Phase.DATA_LOADED)
        self.assertEqual(state.summary.total_rows, 10)
        self.assertEqual(state.summary.valid_rows, 8)
        self.assertEqual(state.summary.skipped_rows, 2)
        self.assertEqual([error.row_index for error in state.summary.errors], [13, 14])
        self.assertEqual(state.sites, ("Austin", "Dallas", "Houston"))

        dates = [record.date_of_loss for record in state.records]
        self.assertEqual(dates[1], date(2022, 5, 31))
        self.assertEqual(dates[3], date(2023, 1, 5))
        amounts = [record.total_incurred for record in state.records]
        self.assertAlmostEqual(amounts[3], -250.0)
        self.assertAlmostEqual(amounts[4], 1234.56)
        self.assertEqual(state.records[0].cause_of_loss, "Lifting")
        self.assertIsNone(state.records[1].cause_of_loss)

        self.assertEqual(state.financial_defaults.avg_cost, 5596)
        self.assertEqual(state.financial_defaults.injuries, 3)
        self.assertEqual(state.financial_defaults.years, (2024, 2023, 2022))
        self.assertTrue(state.dimensions["site_comparison"].available)
        self.assertTrue(state.dimensions["cause_of_loss"].available)
        self.assertFalse(state.dimensions["claim_category"].available)

    def test_unknown_sheet_keeps_current_selection(self):
        session = IngestionSession()
        session.begin_load("memory.xlsx")
        session.dispatch(WorkbookLoaded(token=1, workbook=make_workbook(("Claims", loss_run_rows()))))
        state = session.select_sheet("Nope")
        self.assertEqual(state.sheet_name, "Claims")
        self.assertIn("Sheet 'Nope' not found", state.status)

    def test_missing_file_is_reported_not_raised(self):
        session = IngestionSession()
        state = session.load_path(Path("/nonexistent/loss_run.xlsx"))
        self.assertEqual(state.phase, Phase.NO_FILE)
        self.assertTrue(state.status.startswith("Error reading file: File not found"))

    def test_set_override_validates_field_and_column(self):
        session = IngestionSession()
        session.begin_load("memory.xlsx")
        session.dispatch(WorkbookLoaded(token=1, workbook=make_workbook(("Claims", loss_run_rows()))))
        self.assertEqual(session.set_override("region", 0).overrides, {})
        self.assertEqual(session.set_override("site_name", 9).overrides, {})
        self.assertEqual(session.set_override("claim_number", 0).overrides, {"claim_number": 0})
        self.assertEqual(session.set_override("claim_number", None).overrides, {})

    def test_set_override_refuses_a_column_already_overridden(self):
        session = IngestionSession()
        session.begin_load("memory.xlsx")
        session.dispatch(WorkbookLoaded(token=1, workbook=make_workbook(("Claims", loss_run_rows()))))
        session.set_override("site_name", 0)
        state = session.set_override("claim_number", 0)
        self.assertEqual(state.overrides, {"site_name": 0})
        self.assertEqual(state.status, "Fields 'site_name' and 'claim_number' both override column 'Loc'.")

    def test_csv_with_title_line_keeps_every_row(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "titled.csv"
            path.write_text(
                "Acme Manufacturing Loss Run\n"
                "\n"
                "Site,Date of Loss,Total Incurred,Claim Number\n"
                "Dallas,2023-01-05,1000,C-1\n"
                "Austin,2023-02-05,2000,C-2\n"
                "Houston,2023-03-05,3000,C-3\n",
                encoding="utf-8",
            )
            session = IngestionSession()
            session.load_path(path)
            state = session.confirm_mapping()

        self.assertEqual(state.context.header.row_index, 2)
        self.assertEqual(state.mapping, {"site_name": 0, "date_of_loss": 1, "total_incurred": 2, "claim_number": 3})
        self.assertEqual(state.phase, Phase.DATA_LOADED)
        self.assertEqual([record.claim_number for record in state.records], ["C-1", "C-2", "C-3"])
        self.assertEqual(state.summary.total_rows, 3)


class DerivedDataTests(unittest.TestCase):
    def make(self, site: str, year: int, amount: float) -> CanonicalRecord:
        return CanonicalRecord(site_name=site, date_of_loss=date(year, 6, 1), total_incurred=amount)

    def test_sites_and_filter(self):
        records = [self.make("Dallas", 2023, 1), self.make("austin", 2023, 2), self.make("Dallas", 2024, 3)]
        self.assertEqual(populate_sites(records), ("austin", "Dallas"))
        self.assertEqual(len(filter_by_site(records, "all")), 3)
        self.assertEqual(len(filter_by_site(records, None)), 3)
        self.assertEqual([r.total_incurred for r in filter_by_site(records, "Dallas")], [1, 3])

    def test_financial_defaults_use_three_most_recent_years(self):
        records = [
            self.make("Dallas", 2019, 1_000_000),
            self.make("Dallas", 2022, 1000),
            self.make("Dallas", 2023, 2000),
            self.make("Dallas", 2023, 3000),
            self.make("Dallas", 2024, 4000),
        ]
        defaults = financial_defaults(records)
        self.assertEqual(defaults.years, (2024, 2023, 2022))
        self.assertEqual(defaults.avg_cost, 2500)
        self.assertEqual(defaults.injuries, 1)

    def test_financial_defaults_without_dates(self):
        records = [
            CanonicalRecord(site_name="Dallas", date_of_loss=None, total_incurred=100.0),
            CanonicalRecord(site_name="Dallas", date_of_loss=None, total_incurred=201.0),
        ]
        defaults = financial_defaults(records)
        self.assertEqual(defaults.avg_cost, 151)
        self.assertEqual(defaults.injuries, 2)
        self.assertEqual(defaults.years, ())
        self.assertIsNone(financial_defaults([]))


if __name__ == "__main__":
    unittest.main()
