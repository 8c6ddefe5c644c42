"""
Composite "Key: Value" columns.

Some carrier exports pack several attributes into one column, e.g.
"Nature of Injury: Strain" on one row and "Cause: Fall" on the next. Keys
that recur often enough in the sample are reported, and can be routed to
optional canonical fields that no column covers.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterable, Optional

from lossrun_doctor.cells import cell_text
from lossrun_doctor.field_mapping import FIELDS, OPTIONAL_FIELDS
from lossrun_doctor.models import CompositeField, Mapping, SampleMatrix

COMPOSITE_PATTERN = re.compile(r"^([A-Za-z][A-Za-z\s]{2,30}):\s*(.+)$")
DEFAULT_MIN_KEY_FREQUENCY = 3
MIN_KEY_LENGTH = 3


def _split(value: Any) -> Optional[tuple[str, str]]:
    text = cell_text(value)
    if not text:
        return None
    match = COMPOSITE_PATTERN.match(text)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def detect_composite_fields(
    column_indices: Iterable[int],
    headers: list[str],
    samples: SampleMatrix,
    min_key_frequency: int = DEFAULT_MIN_KEY_FREQUENCY,
) -> list[CompositeField]:
    """Columns whose samples carry at least one recurring ``Key: Value`` key."""
    results: list[CompositeField] = []
    for index in column_indices:
        values = samples.get(index)
        if not values:
            continue

        frequency: Counter[str] = Counter()
        for value in values:
            parts = _split(value)
            if parts is None:
                continue
            key = parts[0]
            if len(key) < MIN_KEY_LENGTH or key.isdigit():
                continue
            frequency[key] += 1

        keys = sorted(
            (key for key, count in frequency.items() if count >= min_key_frequency),
            key=lambda key: (key.lower(), key),
        )
        if not keys:
            continue

        header = headers[index] if index < len(headers) and headers[index] else f"Column {index}"
        results.append(
            CompositeField(
                column_index=index,
                header_name=header,
                extracted_keys=tuple(keys),
                key_frequency=dict(frequency),
            )
        )
    return results


def extract_composite_value(value: Any, target_key: str) -> Optional[str]:
    """Value part of a ``Key: Value`` cell when its key is ``target_key`` (case-insensitive)."""
    if not target_key:
        return None
    parts = _split(value)
    if parts is None:
        return None
    key, extracted = parts
    if key.lower() != target_key.lower():
        return None
    return extracted or None


def composite_field_targets(
    composites: Iterable[CompositeField],
    mapping: Mapping,
) -> dict[str, tuple[int, str]]:
    """Route composite keys to unmapped optional fields.

    A key goes to the first optional field whose hint vocabulary overlaps it
    (key contains hint or hint contains key). Fields already mapped to a
    column are left alone. Returns field -> (column index, key).
    """
    targets: dict[str, tuple[int, str]] = {}
    for composite in composites:
        for key in composite.extracted_keys:
            key_lower = key.lower()
            for field_key in OPTIONAL_FIELDS:
                hints = FIELDS[field_key].hints
                if not any(hint in key_lower or key_lower in hint for hint in hints):
                    continue
                if mapping.get(field_key, -1) < 0:
                    targets[field_key] = (composite.column_index, key)
                break
    return targets


def composite_values_for_row(row: list[Any], targets: dict[str, tuple[int, str]]) -> dict[str, str]:
    values: dict[str, str] = {}
    for field_key, (index, key) in targets.items():
        if index >= len(row):
            continue
        extracted = extract_composite_value(row[index], key)
        if extracted:
            values[field_key] = extracted
    return values
