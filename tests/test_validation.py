from __future__ import annotations

import unittest
from datetime import date

from lossrun_doctor.cells import to_cell
from lossrun_doctor.models import RowError
from lossrun_doctor.taxonomy import ErrorKind, summary_counters
from lossrun_doctor.validation import SummaryTally, accumulate_errors, validate_row


HEADERS = ["Site", "Date of Loss", "Total Incurred", "Claim #", "Lost Days", "Cause"]
MAPPING = {
    "site_name": 0,
    "date_of_loss": 1,
    "total_incurred": 2,
    "claim_number": 3,
    "lost_days": 4,
    "cause_of_loss": 5,
}


def row(*values):
    return [to_cell(value) for value in values]


class ValidateRowTests(unittest.TestCase):
    def test_valid_row(self):
        record, errors = validate_row(
            row("Dallas", "01/15/2024", "$1,250.00", "WC-1", "12", "Slip"), MAPPING, HEADERS, 5
        )
        self.assertEqual(errors, [])
        self.assertEqual(record.site_name, "Dallas")
        self.assertEqual(record.date_of_loss, date(2024, 1, 15))
        self.assertEqual(record.total_incurred, 1250.0)
        self.assertEqual(record.claim_number, "WC-1")
        self.assertEqual(record.lost_days, 12.0)
        self.assertEqual(record.cause_of_loss, "Slip")
        self.assertIsNone(record.body_part)

    def test_missing_site_gives_exactly_one_site_error(self):
        record, errors = validate_row(row("  ", "2024-01-15", 100), MAPPING, HEADERS, 7)
        self.assertIsNone(record)
        site_errors = [error for error in errors if error.field == "site_name"]
        self.assertEqual(len(site_errors), 1)
        self.assertEqual(len(errors), 1)
        self.assertEqual(site_errors[0].message, "Missing site name (column 'Site')")
        self.assertEqual(site_errors[0].row_index, 7)
        self.assertEqual(site_errors[0].kind, ErrorKind.MISSING_REQUIRED_FIELD)

    def test_every_required_failure_is_reported(self):
        record, errors = validate_row(row(None, "N/A", "pending"), MAPPING, HEADERS, 9)
        self.assertIsNone(record)
        self.assertEqual([error.field for error in errors], ["site_name", "date_of_loss", "total_incurred"])
        self.assertEqual(errors[1].kind, ErrorKind.PLACEHOLDER_VALUE)
        self.assertEqual(errors[1].raw_value, "N/A")
        self.assertEqual(errors[2].kind, ErrorKind.UNPARSEABLE_CURRENCY)

    def test_short_row_counts_as_missing(self):
        record, errors = validate_row(row("Dallas", "2024-01-15"), MAPPING, HEADERS, 3)
        self.assertIsNone(record)
        self.assertEqual(errors[0].field, "total_incurred")
        self.assertIn("Missing total incurred amount", errors[0].message)

    def test_bad_lost_days_is_a_warning(self):
        record, errors = validate_row(row("Dallas", "2024-01-15", 100, None, "soon"), MAPPING, HEADERS, 4)
        self.assertIsNotNone(record)
        self.assertIsNone(record.lost_days)
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].severity, "warning")
        self.assertEqual(errors[0].field, "lost_days")

    def test_composite_values_fill_blank_fields_only(self):
        record, _ = validate_row(
            row("Dallas", "2024-01-15", 100, None, None, None),
            MAPPING,
            HEADERS,
            4,
            composite_overrides={"cause_of_loss": "Fall", "body_part": "Knee"},
        )
        self.assertEqual(record.cause_of_loss, "Fall")
        self.assertEqual(record.body_part, "Knee")

        record, _ = validate_row(
            row("Dallas", "2024-01-15", 100, None, None, "Slip"),
            MAPPING,
            HEADERS,
            4,
            composite_overrides={"cause_of_loss": "Fall"},
        )
        self.assertEqual(record.cause_of_loss, "Slip")

    def test_composite_lost_days_is_parsed(self):
        mapping = {"site_name": 0, "date_of_loss": 1, "total_incurred": 2}
        record, errors = validate_row(
            row("Dallas", "2024-01-15", 100), mapping, HEADERS, 4, composite_overrides={"lost_days": "14 days"}
        )
        self.assertEqual(record.lost_days, 14.0)
        self.assertEqual(errors, [])


class SummaryTallyTests(unittest.TestCase):
    def test_valid_plus_skipped_equals_total(self):
        tally = SummaryTally()
        rows = [
            row("Dallas", "2024-01-15", 100),
            row("Austin", None, 100),
            row("Houston", "2024-02-01", "-"),
            row("Dallas", "2024-03-01", 50, None, "x"),
        ]
        for index, values in enumerate(rows, start=2):
            tally.add_row(*validate_row(values, MAPPING, HEADERS, index))
        summary = tally.freeze()

        self.assertEqual(summary.total_rows, 4)
        self.assertEqual(summary.valid_rows, 2)
        self.assertEqual(summary.skipped_rows, 2)
        self.assertEqual(summary.valid_rows + summary.skipped_rows, summary.total_rows)
        self.assertEqual(summary.unparsable_dates, 1)
        self.assertEqual(summary.invalid_amounts, 1)
        self.assertEqual(summary.missing_required, 1)
        self.assertEqual(len(summary.errors), 3)
        self.assertEqual(summary.warnings, ('Row 5: lost_days: Unparseable currency: "x"',))

    def test_counters_follow_field_and_message(self):
        self.assertEqual(summary_counters("date_of_loss", "Missing date of loss"), ["unparsable_dates", "missing_required"])
        self.assertEqual(summary_counters("total_incurred", "Unparseable currency"), ["invalid_amounts"])
        self.assertEqual(summary_counters("site_name", "Missing site name"), ["missing_required"])
        self.assertEqual(summary_counters("lost_days", "Bad"), [])

    def test_accumulate_errors_appends(self):
        tally = SummaryTally()
        accumulate_errors(tally, [RowError(2, "site_name", "Missing site name", "")])
        self.assertEqual(tally.counters["missing_required"], 1)
        self.assertEqual(len(tally.errors), 1)
        self.assertEqual(tally.warnings, [])


if __name__ == "__main__":
    unittest.main()
