"""
Which optional analysis dimensions the canonical records can support.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from lossrun_doctor.cells import format_number
from lossrun_doctor.models import CanonicalRecord

DIMENSION_KEYS = (
    "cause_of_loss",
    "body_part",
    "claim_category",
    "lost_days",
    "site_comparison",
    "loss_description",
)

MIN_DIMENSION_RECORDS = 3
MIN_DIMENSION_COVERAGE = 0.05


@dataclass(frozen=True)
class DimensionInfo:
    available: bool
    record_count: int
    total_records: int
    coverage: float
    distinct_values: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "record_count": self.record_count,
            "total_records": self.total_records,
            "coverage": round(self.coverage, 4),
            "distinct_values": self.distinct_values,
        }


def dimension_value(key: str, record: CanonicalRecord) -> Optional[str]:
    """Normalized value used for distinct counting; None when not populated."""
    if key == "lost_days":
        if record.lost_days is not None and record.lost_days > 0:
            return format_number(record.lost_days)
        return None
    attribute = "site_name" if key == "site_comparison" else key
    text = (getattr(record, attribute) or "").strip().lower()
    return text or None


def detect_dimensions(records: Iterable[CanonicalRecord]) -> dict[str, DimensionInfo]:
    """A dimension is available once max(3, ceil(5% of records)) rows carry it.

    Site comparison additionally needs more than one distinct site.
    """
    records = list(records)
    total = len(records)
    threshold = max(MIN_DIMENSION_RECORDS, math.ceil(total * MIN_DIMENSION_COVERAGE))

    result: dict[str, DimensionInfo] = {}
    for key in DIMENSION_KEYS:
        values = [value for value in (dimension_value(key, record) for record in records) if value is not None]
        distinct = len(set(values))
        available = total > 0 and len(values) >= threshold
        if key == "site_comparison":
            available = available and distinct > 1
        result[key] = DimensionInfo(
            available=available,
            record_count=len(values),
            total_records=total,
            coverage=len(values) / total if total else 0.0,
            distinct_values=distinct,
        )
    return result
