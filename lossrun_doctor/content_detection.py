"""
Content-based fallback detection.

When no header matches a field, the sampled values of the still-unclaimed
columns are examined instead. Every detector returns a score in 25..44 so a
content guess can never outrank a header match (threshold 50).
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from lossrun_doctor.cells import Cell, Text, cell_text, is_blank
from lossrun_doctor.currency import parse_currency
from lossrun_doctor.dates import parse_date
from lossrun_doctor.models import ContentMatch, SampleMatrix

BASE_SCORE = 25
MAX_BONUS = 20
# Header matches start at 50; content matches must stay strictly below 45.
MAX_CONTENT_SCORE = 44
MIN_SAMPLES = 3

BODY_PART_KEYWORDS = frozenset({
    "back", "knee", "shoulder", "hand", "finger", "arm", "leg", "foot",
    "head", "neck", "wrist", "ankle", "eye", "hip", "elbow", "chest",
    "abdomen", "thumb", "toe", "spine", "lower back", "upper back",
    "multiple", "left", "right", "lower extremity", "upper extremity",
    "torso", "rib", "groin", "pelvis", "jaw", "face", "nose", "ear",
    "skull", "calf", "shin", "forearm", "bicep", "thigh",
})

CAUSE_KEYWORDS = frozenset({
    "strain", "sprain", "slip", "trip", "fall", "struck", "caught",
    "cut", "burn", "overexertion", "repetitive", "motor vehicle",
    "lifting", "laceration", "contusion", "fracture", "puncture",
    "crushing", "abrasion", "inflammation", "dislocation", "hernia",
    "carpal tunnel", "foreign body", "chemical", "exposure", "bite",
    "twist", "push", "pull", "jump", "collision",
})

CATEGORY_KEYWORDS = frozenset({
    "medical only", "med only", "mo", "indemnity", "lost time",
    "temporary total", "temporary partial", "permanent partial",
    "permanent total", "fatality", "report only", "record only",
    "open", "closed", "litigated", "denied", "incident only",
    "first aid", "osha recordable",
})

DIGIT_RE = re.compile(r"\d")


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ── Sample statistics ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NumericStats:
    count: int
    total: int
    median: float
    values: tuple[float, ...]

    @property
    def rate(self) -> float:
        return self.count / self.total if self.total else 0.0


@dataclass(frozen=True)
class Cardinality:
    distinct: int
    total: int
    ratio: float
    avg_length: float
    values: tuple[str, ...]


def count_dates(samples: Iterable[Cell]) -> tuple[int, int]:
    non_empty = [value for value in samples if not is_blank(value)]
    parsed = sum(1 for value in non_empty if parse_date(value).value is not None)
    return parsed, len(non_empty)


def numeric_stats(samples: Iterable[Cell]) -> NumericStats:
    non_empty = [value for value in samples if not is_blank(value)]
    values = []
    for value in non_empty:
        result = parse_currency(value)
        if result.value is not None:
            values.append(result.value)
    ordered = sorted(values)
    median = ordered[len(ordered) // 2] if ordered else 0.0
    return NumericStats(count=len(values), total=len(non_empty), median=median, values=tuple(values))


def analyze_cardinality(samples: Iterable[Cell]) -> Cardinality:
    strings = [text for text in (cell_text(value) for value in samples) if text]
    if not strings:
        return Cardinality(distinct=0, total=0, ratio=0.0, avg_length=0.0, values=())
    distinct = len({text.lower() for text in strings})
    return Cardinality(
        distinct=distinct,
        total=len(strings),
        ratio=distinct / len(strings),
        avg_length=sum(len(text) for text in strings) / len(strings),
        values=tuple(strings),
    )


def keyword_match_rate(values: Iterable[str], keywords: frozenset[str]) -> float:
    values = list(values)
    if not values:
        return 0.0
    matches = 0
    for value in values:
        lower = value.lower()
        if any(keyword in lower for keyword in keywords):
            matches += 1
    return matches / len(values)


def looks_like_identifier(values: Iterable[str]) -> bool:
    """Mostly digit-bearing values with a fairly consistent length."""
    values = list(values)
    if len(values) < 3:
        return False
    with_digits = sum(1 for value in values if DIGIT_RE.search(value))
    lengths = [len(value) for value in values]
    avg_length = sum(lengths) / len(lengths)
    variance = sum((length - avg_length) ** 2 for length in lengths) / len(lengths)
    return with_digits / len(values) > 0.6 and math.sqrt(variance) < avg_length * 0.5


def has_currency_symbol(samples: Iterable[Cell]) -> bool:
    return any(isinstance(value, Text) and "$" in value.value for value in samples)


# ── Detectors ─────────────────────────────────────────────────────────────────

class FieldDetector:
    """Scores candidate columns for one field from their sampled content.

    Subclasses implement ``score_column``, returning None when a column is
    ineligible. The strongest column wins, leftmost on ties.
    """

    field_key = ""
    reason = ""

    def score_column(self, samples: list[Cell]) -> Optional[int]:
        raise NotImplementedError

    def describe(self, samples: list[Cell]) -> str:
        return self.reason

    def strength(self, samples: list[Cell]) -> Optional[float]:
        """What columns are compared on. Defaults to the score itself."""
        return self.score_column(samples)

    def detect(self, samples: SampleMatrix, candidates: Iterable[int]) -> Optional[ContentMatch]:
        best_index = -1
        best_strength = 0.0
        for index in candidates:
            strength = self.strength(samples.get(index) or [])
            if strength is not None and strength > best_strength:
                best_strength = strength
                best_index = index
        if best_index < 0:
            return None
        column = samples.get(best_index) or []
        return ContentMatch(
            column_index=best_index,
            score=min(self.score_column(column), MAX_CONTENT_SCORE),
            reason=self.describe(column),
        )


class CardinalityDetector(FieldDetector):
    """Text-statistics detector: ``BASE_SCORE + min(bonus, MAX_BONUS)``."""

    def bonus(self, card: Cardinality, samples: list[Cell]) -> Optional[int]:
        raise NotImplementedError

    def score_column(self, samples: list[Cell]) -> Optional[int]:
        card = analyze_cardinality(samples)
        if card.total < MIN_SAMPLES:
            return None
        bonus = self.bonus(card, samples)
        if bonus is None:
            return None
        return BASE_SCORE + min(bonus, MAX_BONUS)


class DateOfLossDetector(FieldDetector):
    field_key = "date_of_loss"

    def _rate(self, samples: list[Cell]) -> Optional[float]:
        parsed, total = count_dates(samples)
        if total < MIN_SAMPLES:
            return None
        rate = parsed / total
        return rate if rate >= 0.5 else None

    def score_column(self, samples):
        rate = self._rate(samples)
        if rate is None:
            return None
        return BASE_SCORE + round_half_up(rate * 20)

    def strength(self, samples):
        # raw parse rate; rounded scores tie for 8/9 and 9/10
        return self._rate(samples)

    def describe(self, samples):
        rate = self._rate(samples) or 0.0
        return f"{round_half_up(rate * 100)}% of values parse as dates"


class TotalIncurredDetector(FieldDetector):
    field_key = "total_incurred"
    reason = "Column contains currency-like values (large numbers)"

    def score_column(self, samples):
        stats = numeric_stats(samples)
        if stats.total < MIN_SAMPLES or stats.rate < 0.5:
            return None
        score = BASE_SCORE + round_half_up(stats.rate * 10)
        if stats.median > 100:
            score += 5
        if stats.median > 1000:
            score += 5
        if has_currency_symbol(samples):
            score += 5
        return score


class SiteNameDetector(CardinalityDetector):
    field_key = "site_name"
    reason = "Column contains moderate-cardinality location-like text"

    def bonus(self, card, samples):
        bonus = 0
        if 0.05 <= card.ratio <= 0.5:
            bonus += 10
        if 3 <= card.avg_length <= 50:
            bonus += 10
        if 2 <= card.distinct <= 50:
            bonus += 5
        if numeric_stats(samples).rate < 0.3:
            bonus += 5
        return bonus


class ClaimNumberDetector(CardinalityDetector):
    field_key = "claim_number"
    reason = "Column contains unique identifier-like values"

    def bonus(self, card, samples):
        bonus = 0
        if card.ratio > 0.8:
            bonus += 10
        if looks_like_identifier(card.values):
            bonus += 15
        if 3 <= card.avg_length <= 30:
            bonus += 5
        return bonus if bonus >= 15 else None


class ClaimCategoryDetector(CardinalityDetector):
    field_key = "claim_category"
    reason = "Column contains claim category keywords (MO/Indemnity)"

    def bonus(self, card, samples):
        bonus = 0
        if 2 <= card.distinct <= 10:
            bonus += 10
        rate = keyword_match_rate(card.values, CATEGORY_KEYWORDS)
        if rate > 0.3:
            bonus += 10 + round_half_up(rate * 10)
        if 2 <= card.avg_length <= 30:
            bonus += 5
        return bonus if bonus >= 10 else None


class VocabularyDetector(CardinalityDetector):
    """Keyword match rate above 30% is a hard gate."""

    keywords: frozenset[str] = frozenset()
    max_avg_length = 40

    def bonus(self, card, samples):
        rate = keyword_match_rate(card.values, self.keywords)
        if rate <= 0.3:
            return None
        bonus = 15 + round_half_up(rate * 10)
        if 2 <= card.distinct <= 40:
            bonus += 5
        if 3 <= card.avg_length <= self.max_avg_length:
            bonus += 5
        return bonus


class BodyPartDetector(VocabularyDetector):
    field_key = "body_part"
    reason = "Column values match body part vocabulary"
    keywords = BODY_PART_KEYWORDS


class CauseOfLossDetector(VocabularyDetector):
    field_key = "cause_of_loss"
    reason = "Column values match injury cause vocabulary"
    keywords = CAUSE_KEYWORDS
    max_avg_length = 50


class LostDaysDetector(FieldDetector):
    field_key = "lost_days"
    reason = "Column contains small integer values (day counts)"

    def score_column(self, samples):
        stats = numeric_stats(samples)
        if stats.total < MIN_SAMPLES or stats.rate < 0.5:
            return None
        score = BASE_SCORE + round_half_up(stats.rate * 10)
        if 0 <= stats.median <= 365:
            score += 5
        small = [value for value in stats.values if 0 <= value <= 365 and float(value).is_integer()]
        if stats.values and len(small) / len(stats.values) > 0.6:
            score += 5
        if not has_currency_symbol(samples):
            score += 3
        return score


class LossDescriptionDetector(CardinalityDetector):
    field_key = "loss_description"
    reason = "Column contains long narrative text"

    def bonus(self, card, samples):
        bonus = 0
        if card.ratio > 0.7:
            bonus += 10
        if card.avg_length > 30:
            bonus += 10
        if card.avg_length > 60:
            bonus += 5
        number_rate = numeric_stats(samples).count / card.total
        date_rate = count_dates(samples)[0] / card.total
        if number_rate < 0.2 and date_rate < 0.2:
            bonus += 5
        return bonus if bonus >= 15 else None


# Resolution order: most distinctive content first.
DETECTORS: tuple[FieldDetector, ...] = (
    DateOfLossDetector(),
    TotalIncurredDetector(),
    SiteNameDetector(),
    ClaimNumberDetector(),
    BodyPartDetector(),
    CauseOfLossDetector(),
    ClaimCategoryDetector(),
    LostDaysDetector(),
    LossDescriptionDetector(),
)

DETECTORS_BY_FIELD = {detector.field_key: detector for detector in DETECTORS}
DETECTION_ORDER = tuple(detector.field_key for detector in DETECTORS)


# ── Public API ────────────────────────────────────────────────────────────────

def detect_field_by_content(
    field_key: str,
    samples: SampleMatrix,
    column_count: int,
    claimed: Iterable[int] = (),
) -> Optional[ContentMatch]:
    detector = DETECTORS_BY_FIELD.get(field_key)
    if detector is None:
        return None
    taken = set(claimed)
    candidates = [index for index in range(column_count) if index not in taken]
    if not candidates:
        return None
    return detector.detect(samples, candidates)


def detect_all_unmapped_fields(
    unmapped_fields: Iterable[str],
    samples: SampleMatrix,
    column_count: int,
    claimed: Iterable[int] = (),
) -> dict[str, ContentMatch]:
    """Content matches for ``unmapped_fields`` in priority order.

    Each match claims its column immediately, so no column is handed to two
    fields.
    """
    wanted = set(unmapped_fields)
    taken = set(claimed)
    results: dict[str, ContentMatch] = {}
    for field_key in DETECTION_ORDER:
        if field_key not in wanted:
            continue
        match = detect_field_by_content(field_key, samples, column_count, taken)
        if match is not None:
            results[field_key] = match
            taken.add(match.column_index)
    return results
