from __future__ import annotations

import unittest

from lossrun_doctor.cells import EMPTY, Text, to_cell
from lossrun_doctor.composite import (
    composite_field_targets,
    composite_values_for_row,
    detect_composite_fields,
    extract_composite_value,
)


NOTES = [
    to_cell(value)
    for value in (
        "Cause: Lifting",
        "Nature of Injury: Strain",
        "Cause: Slip",
        "Nature of Injury: Laceration",
        None,
        "Cause: Fall",
        "Nature of Injury: Sprain",
        "Nature of Injury: Strain",
        "Cause: Struck",
        "Nature of Injury: Foreign Body",
    )
]


class DetectCompositeFieldsTests(unittest.TestCase):
    def test_recurring_keys_are_reported_sorted(self):
        composites = detect_composite_fields([0], ["Notes"], {0: NOTES})
        self.assertEqual(len(composites), 1)
        composite = composites[0]
        self.assertEqual(composite.column_index, 0)
        self.assertEqual(composite.header_name, "Notes")
        self.assertEqual(list(composite.extracted_keys), ["Cause", "Nature of Injury"])
        self.assertEqual(composite.key_frequency, {"Cause": 4, "Nature of Injury": 5})

    def test_rare_keys_are_dropped(self):
        samples = {0: [Text("Cause: Fall"), Text("Cause: Slip"), Text("Body: Hand"), Text("plain text")]}
        self.assertEqual(detect_composite_fields([0], ["Notes"], samples), [])
        composites = detect_composite_fields([0], ["Notes"], samples, min_key_frequency=2)
        self.assertEqual(list(composites[0].extracted_keys), ["Cause"])
        self.assertEqual(composites[0].key_frequency["Body"], 1)

    def test_times_and_numbers_are_not_keys(self):
        samples = {0: [Text("10:30"), Text("10:45"), Text("11:00"), Text("1: one")]}
        self.assertEqual(detect_composite_fields([0], ["Time"], samples), [])

    def test_blank_header_falls_back_to_column_number(self):
        composites = detect_composite_fields([3], ["A", "B", "C", ""], {3: NOTES})
        self.assertEqual(composites[0].header_name, "Column 3")

    def test_missing_samples_are_skipped(self):
        self.assertEqual(detect_composite_fields([0, 1], ["Notes", "Other"], {1: [EMPTY]}), [])


class ExtractCompositeValueTests(unittest.TestCase):
    def test_matching_key_is_case_insensitive(self):
        self.assertEqual(extract_composite_value("Cause: Fall", "cause"), "Fall")
        self.assertEqual(extract_composite_value(Text("Nature of Injury:  Strain "), "Nature of Injury"), "Strain")

    def test_other_key_or_no_pair(self):
        self.assertIsNone(extract_composite_value("Nature of Injury: Strain", "Cause"))
        self.assertIsNone(extract_composite_value("Fall from ladder", "Cause"))
        self.assertIsNone(extract_composite_value(None, "Cause"))
        self.assertIsNone(extract_composite_value("Cause: Fall", ""))


class CompositeRoutingTests(unittest.TestCase):
    def setUp(self):
        self.composites = detect_composite_fields([5], ["", "", "", "", "", "Notes"], {5: NOTES})

    def test_cause_key_routes_to_unmapped_cause_of_loss(self):
        targets = composite_field_targets(self.composites, {"site_name": 0})
        self.assertEqual(targets, {"cause_of_loss": (5, "Cause")})

    def test_mapped_fields_are_left_alone(self):
        targets = composite_field_targets(self.composites, {"cause_of_loss": 2})
        self.assertEqual(targets, {})

    def test_values_for_row(self):
        targets = {"cause_of_loss": (5, "Cause")}
        row = ["C-1", "Dallas", "2024-01-01", 100, "Back", "Cause: Fall"]
        self.assertEqual(composite_values_for_row(row, targets), {"cause_of_loss": "Fall"})
        self.assertEqual(composite_values_for_row(row[:5], targets), {})
        other = row[:5] + ["Nature of Injury: Strain"]
        self.assertEqual(composite_values_for_row(other, targets), {})


if __name__ == "__main__":
    unittest.main()
