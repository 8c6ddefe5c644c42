"""
Header-based field matching.

Each canonical field carries a hint vocabulary. A header is scored against
every hint with decreasing confidence tiers (exact, prefix, suffix, whole
word, substring, fuzzy word overlap), gets +10 for type-indicative wording
and +15 when the sampled column content agrees with the field type.
Anything under 50 is not a match.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional

from lossrun_doctor.column_types import detect_column_type
from lossrun_doctor.models import ContentMatch, FieldDefinition, HeaderMatch, Mapping, SampleMatrix

MATCH_THRESHOLD = 50
TYPE_VOCABULARY_BONUS = 10
SNIFFED_TYPE_BONUS = 15

SEPARATOR_RE = re.compile(r"[_\-\s]+")
NON_WORD_RE = re.compile(r"[^\w\s]", re.ASCII)

DATE_WORD_RE = re.compile(r"\b(date|dt|dte|day|time)\b", re.IGNORECASE)
LOSS_EVENT_WORD_RE = re.compile(r"\b(loss|injury|incident|occur|accident|claim)\b", re.IGNORECASE)
AMOUNT_WORD_RE = re.compile(r"\b(total|sum|amount|cost|paid|incurred|reserve|value|amt)\b", re.IGNORECASE)
PLACE_WORD_RE = re.compile(r"\b(site|location|facility|store|city|place|address)\b", re.IGNORECASE)


# ── Canonical fields ──────────────────────────────────────────────────────────

FIELDS: dict[str, FieldDefinition] = {
    definition.key: definition
    for definition in (
        FieldDefinition(
            key="site_name",
            label="Site / Location",
            description="City or location name used to filter claims.",
            required=True,
            hints=(
                "site", "location", "facility", "store", "city",
                "place", "address", "branch", "plant", "warehouse",
            ),
            field_type="text",
        ),
        FieldDefinition(
            key="date_of_loss",
            label="Date of Loss",
            description="Date the injury/claim occurred.",
            required=True,
            hints=(
                "date of loss", "loss date", "date of injury", "doi", "date loss",
                "incident date", "accident date", "occurrence date", "claim date", "injury date",
            ),
            field_type="date",
        ),
        FieldDefinition(
            key="total_incurred",
            label="Total Incurred",
            description="Total incurred cost (paid + reserves).",
            required=True,
            hints=(
                "total incurred", "net incurred", "all gross incurred", "incurred",
                "total incur", "incurred total", "total loss", "loss amount",
                "claim amount", "total cost", "total paid incurred",
            ),
            field_type="number",
        ),
        FieldDefinition(
            key="claim_number",
            label="Claim Number",
            description="Unique claim identifier.",
            required=False,
            hints=(
                "claim number", "claim #", "cnr", "claim num", "claim id",
                "claim no", "claim#", "case number", "case #", "file number",
            ),
            field_type="text",
        ),
        FieldDefinition(
            key="claim_category",
            label="Claim Category (MO vs Indemnity)",
            description="Medical-only vs indemnity / lost-time classification.",
            required=False,
            hints=(
                "claim type", "derived claim type", "coverage line", "category", "type",
                "classification", "claim category", "mo indemnity", "medical only",
            ),
            field_type="text",
        ),
        FieldDefinition(
            key="body_part",
            label="Body Part",
            description="Primary body part injured.",
            required=False,
            hints=(
                "body part", "part of body", "bodypart", "part body",
                "injury part", "affected part", "anatomy",
            ),
            field_type="text",
        ),
        FieldDefinition(
            key="lost_days",
            label="Lost Work Days",
            description="Number of days lost due to the claim.",
            required=False,
            hints=(
                "lost days", "days lost", "disability days", "lost time days", "lt days",
                "days disability", "work days lost", "days off", "lost work", "time loss days",
            ),
            field_type="number",
        ),
        FieldDefinition(
            key="cause_of_loss",
            label="Loss Category / Cause Bucket",
            description="Categorical classification of the loss (e.g., Slip/Trip, Overexertion, Struck By).",
            required=False,
            hints=(
                "loss category", "cause bucket", "loss bucket", "category", "cause category",
                "loss type", "accident category", "incident category", "injury category",
                "loss classification", "cause classification", "loss code", "cause code",
            ),
            field_type="text",
        ),
        FieldDefinition(
            key="loss_description",
            label="Loss Description",
            description="Text description of the incident.",
            required=False,
            hints=(
                "description", "loss description", "accident description", "incident description",
                "notes", "comments", "narrative", "details", "injury description", "cause description",
            ),
            field_type="text",
        ),
    )
}

REQUIRED_FIELDS = tuple(key for key, definition in FIELDS.items() if definition.required)
OPTIONAL_FIELDS = tuple(key for key, definition in FIELDS.items() if not definition.required)


# ── Scoring ───────────────────────────────────────────────────────────────────

def normalize_string(value: str) -> str:
    """Lowercase, collapse separators to one space, drop punctuation."""
    if not value:
        return ""
    collapsed = SEPARATOR_RE.sub(" ", value.lower())
    return NON_WORD_RE.sub("", collapsed).strip()


def _tier_score(header: str, hint: str) -> int:
    if header == hint:
        return 100
    if header.startswith(hint):
        return 90
    if header.endswith(hint):
        return 85
    if re.search(rf"\b{re.escape(hint)}\b", header):
        return 80
    if hint in header:
        return 60

    hint_words = [word for word in hint.split() if len(word) > 2]
    header_words = header.split()
    matching = [
        hint_word
        for hint_word in hint_words
        if any(header_word in hint_word or hint_word in header_word for header_word in header_words)
    ]
    if hint_words and len(matching) == len(hint_words):
        return 50 + len(matching) * 5
    return 0


def _type_vocabulary_bonus(header: str, field_type: Optional[str]) -> int:
    if field_type == "date":
        hit = DATE_WORD_RE.search(header) and LOSS_EVENT_WORD_RE.search(header)
    elif field_type == "number":
        hit = AMOUNT_WORD_RE.search(header)
    elif field_type == "text":
        hit = PLACE_WORD_RE.search(header)
    else:
        hit = None
    return TYPE_VOCABULARY_BONUS if hit else 0


def calculate_match_score(header: str, hints: Iterable[str], field_type: Optional[str] = None) -> int:
    """Best score of ``header`` across all ``hints``, type bonus included."""
    normalized_header = normalize_string(header)
    bonus = _type_vocabulary_bonus(header, field_type)
    best = 0
    for hint in hints:
        score = _tier_score(normalized_header, normalize_string(hint)) + bonus
        best = max(best, score)
    return best


def find_best_match(
    headers: list[str],
    samples: Optional[SampleMatrix],
    field: FieldDefinition,
    exclude: Optional[set[int]] = None,
) -> Optional[HeaderMatch]:
    """Highest-scoring column for ``field``; leftmost wins ties, None under 50."""
    exclude = exclude or set()
    best_index = -1
    best_score = 0

    for index, header in enumerate(headers):
        if index in exclude or not header or not header.strip():
            continue
        score = calculate_match_score(header, field.hints, field.field_type)
        if samples and samples.get(index):
            if detect_column_type(samples[index]) == field.field_type:
                score += SNIFFED_TYPE_BONUS
        if score > best_score and score >= MATCH_THRESHOLD:
            best_score = score
            best_index = index

    if best_index < 0:
        return None
    return HeaderMatch(column_index=best_index, score=best_score)


def match_headers(
    headers: list[str],
    samples: Optional[SampleMatrix],
    claimed: Iterable[int] = (),
    fields: Optional[Iterable[str]] = None,
) -> dict[str, HeaderMatch]:
    """Header matches for every field, in canonical order, claiming columns as it goes.

    Field order decides, not score: "Loss Type" goes to claim_category
    (hint "type") even though it is an exact cause_of_loss hint. Use an
    override to send it elsewhere.
    """
    taken = set(claimed)
    matches: dict[str, HeaderMatch] = {}
    for key in fields if fields is not None else FIELDS:
        match = find_best_match(headers, samples, FIELDS[key], exclude=taken)
        if match is None:
            continue
        matches[key] = match
        taken.add(match.column_index)
    return matches


# ── Mapping assembly ──────────────────────────────────────────────────────────

def merge_mapping(
    header_matches: dict[str, HeaderMatch],
    content_matches: dict[str, ContentMatch],
    overrides: Optional[Mapping] = None,
) -> Mapping:
    """Merge override > header match > content fallback.

    A column is referenced by at most one field: whichever source claims it
    first in that priority order keeps it.
    """
    mapping: Mapping = {}
    used: set[int] = set()

    def claim(key: str, index: int) -> None:
        if key in mapping or index in used:
            return
        mapping[key] = index
        used.add(index)

    for key, index in (overrides or {}).items():
        claim(key, index)
    for key, match in header_matches.items():
        claim(key, match.column_index)
    for key, match in content_matches.items():
        claim(key, match.column_index)

    return {key: mapping[key] for key in FIELDS if key in mapping}


def missing_required(mapping: Mapping, column_count: int) -> list[str]:
    return [
        key
        for key in REQUIRED_FIELDS
        if key not in mapping or not 0 <= mapping[key] < column_count
    ]


def resolve_column_reference(headers: list[str], reference: Any) -> int:
    """Column index for a header text (case-insensitive) or a 1-based number."""
    if isinstance(reference, bool):
        raise ValueError(f"Invalid column reference: {reference!r}")
    if isinstance(reference, int):
        index = reference - 1
    else:
        text = str(reference).strip()
        if text.isdigit():
            index = int(text) - 1
        else:
            lowered = [header.strip().lower() for header in headers]
            if text.lower() not in lowered:
                raise ValueError(f"No column named {text!r}. Columns: {', '.join(h for h in headers if h)}")
            index = lowered.index(text.lower())
    if not 0 <= index < len(headers):
        raise ValueError(f"Column number {index + 1} is outside 1..{len(headers)}")
    return index


def resolve_overrides(headers: list[str], overrides: dict[str, Any]) -> Mapping:
    resolved: Mapping = {}
    for key, reference in overrides.items():
        if key not in FIELDS:
            raise ValueError(f"Unknown field {key!r}. Known fields: {', '.join(FIELDS)}")
        resolved[key] = resolve_column_reference(headers, reference)
    check_distinct_columns(headers, resolved)
    return resolved


def check_distinct_columns(headers: list[str], overrides: Mapping) -> None:
    """Raise ValueError when two overrides point at the same column."""
    seen: dict[int, str] = {}
    for key, index in overrides.items():
        if index in seen:
            name = headers[index] if 0 <= index < len(headers) and headers[index] else f"#{index + 1}"
            raise ValueError(f"Fields {seen[index]!r} and {key!r} both override column {name!r}.")
        seen[index] = key
