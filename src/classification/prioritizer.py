# src/classification/prioritizer.py — v1
"""State prioritizer — "state before federal" ordering of programs.

Scores how specifically a program targets the applicant's federal state and
orders result sets by (priority score desc, relevance level asc, funding
rate desc). Sorting is stable: programs equal on all three keys keep their
input order.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from typing import Literal, TypeVar

from fundmatch.core.models import ALL_STATES, FundingProgram, RelevanceLevel

P = TypeVar("P", bound=FundingProgram)

Specificity = Literal["state-specific", "multi-state", "national"]

FEDERAL_STATES: dict[str, str] = {
    "BW": "Baden-Württemberg",
    "BY": "Bayern",
    "BE": "Berlin",
    "BB": "Brandenburg",
    "HB": "Bremen",
    "HH": "Hamburg",
    "HE": "Hessen",
    "MV": "Mecklenburg-Vorpommern",
    "NI": "Niedersachsen",
    "NW": "Nordrhein-Westfalen",
    "RP": "Rheinland-Pfalz",
    "SL": "Saarland",
    "SN": "Sachsen",
    "ST": "Sachsen-Anhalt",
    "SH": "Schleswig-Holstein",
    "TH": "Thüringen",
}

SCORE_EXACT_STATE = 100
SCORE_MULTI_STATE = 80
SCORE_ALL_STATES_BY_LEVEL: dict[RelevanceLevel, int] = {
    RelevanceLevel.CORE: 60,
    RelevanceLevel.SUPPLEMENTARY: 40,
    RelevanceLevel.NATIONAL: 20,
}
SCORE_NO_MATCH = 0

VARIABLE_RATE_VALUE = 50.0

_RANGE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*[-–]\s*(\d+(?:[.,]\d+)?)\s*%")
_UP_TO_RE = re.compile(r"(?:bis|max\.?|maximal)\s*(?:zu\s+)?(\d+(?:[.,]\d+)?)\s*%")
_PERCENT_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
_EUR_RE = re.compile(r"€|\beuro?\b")
# German amounts: "10.000", "1.250.000,50", "500"
_AMOUNT_RE = re.compile(r"\d{1,3}(?:\.\d{3})+(?:,\d+)?|\d+(?:,\d+)?")


def level_of(program: FundingProgram) -> RelevanceLevel:
    """Relevance level carried by a classified program; National otherwise."""
    metadata = getattr(program, "metadata", None)
    level = getattr(metadata, "relevance_level", None)
    if isinstance(level, RelevanceLevel):
        return level
    return RelevanceLevel.NATIONAL


def matches_region(program: FundingProgram | None, region: str | None) -> bool:
    """True iff the program lists ``region`` or is available in all states."""
    if program is None or not region:
        return False
    states = program.federal_states
    return region in states or ALL_STATES in states


def priority_score(program: FundingProgram | None, region: str | None) -> int:
    """State-specificity score in {0, 20, 40, 60, 80, 100}."""
    if not matches_region(program, region):
        return SCORE_NO_MATCH

    states = program.federal_states
    if len(states) == 1 and states[0] == region:
        return SCORE_EXACT_STATE

    if ALL_STATES not in states:
        return SCORE_MULTI_STATE

    return SCORE_ALL_STATES_BY_LEVEL.get(level_of(program), SCORE_NO_MATCH)


def sort_by_priority(programs: Iterable[P], region: str | None) -> list[P]:
    """Order programs by priority score, relevance level and funding rate.

    Without a region the input order is returned unchanged.
    """
    items = list(programs)
    if not region:
        return items

    return sorted(
        items,
        key=lambda p: (
            -priority_score(p, region),
            int(level_of(p)),
            -parse_funding_rate(p.funding_rate),
        ),
    )


def parse_funding_rate(text: str | None) -> float:
    """Turn a free-form funding-rate string into a comparable 0..100 value.

    "60-80%" -> 80, "bis 90%" -> 90, "75%" -> 75. A percentage wins over
    an amount in the same string. EUR amounts without one are log-scaled
    as min(100, log10(amount + 1) * 20), anything else that is non-empty
    ("variabel", "nach Vereinbarung") -> 50, empty -> 0.
    """
    if not text or not isinstance(text, str):
        return 0.0

    lowered = text.lower().strip()
    if not lowered:
        return 0.0

    match = _RANGE_RE.search(lowered)
    if match:
        return max(_to_float(match.group(1)), _to_float(match.group(2)))

    match = _UP_TO_RE.search(lowered)
    if match:
        return _to_float(match.group(1))

    match = _PERCENT_RE.search(lowered)
    if match:
        return _to_float(match.group(1))

    if _EUR_RE.search(lowered):
        amount = _parse_amount(lowered)
        if amount is None:
            return VARIABLE_RATE_VALUE
        return min(100.0, math.log10(amount + 1) * 20)

    return VARIABLE_RATE_VALUE


def _to_float(number: str) -> float:
    return float(number.replace(",", "."))


def _parse_amount(text: str) -> float | None:
    match = _AMOUNT_RE.search(text)
    if not match:
        return None
    return float(match.group(0).replace(".", "").replace(",", "."))


# === Grouping & statistics ===


def programs_by_specificity(
    programs: Iterable[P], region: str | None, specificity: Specificity | str
) -> list[P]:
    """Filter programs by how narrowly they are scoped.

    state-specific: explicit regions including ``region``;
    multi-state: two or more explicit regions including ``region``;
    national: available in all states. Unknown specificity keeps everything.
    """
    result: list[P] = []
    for program in programs:
        states = program.federal_states
        nationwide = ALL_STATES in states
        if specificity == "state-specific":
            keep = not nationwide and region in states
        elif specificity == "multi-state":
            keep = not nationwide and len(states) > 1 and region in states
        elif specificity == "national":
            keep = nationwide
        else:
            keep = True
        if keep:
            result.append(program)
    return result


def classify_by_origin(program: FundingProgram | None) -> dict[str, object]:
    """Map a program onto the Core / Supplementary / National program groups."""
    if program is None:
        return {"type": "unknown", "level": None, "confidence": 0.0, "description": ""}

    level = level_of(program)
    metadata = getattr(program, "metadata", None)
    region_specific = bool(getattr(metadata, "is_region_specific", False))

    if level == RelevanceLevel.CORE or region_specific:
        return {
            "type": "Core_Programs",
            "level": 1,
            "confidence": 0.9,
            "description": "Bundeslandspezifische Programme",
        }
    if level == RelevanceLevel.SUPPLEMENTARY:
        return {
            "type": "Supplementary_Programs",
            "level": 2,
            "confidence": 0.8,
            "description": "Landesumgesetzte Bundes-/EU-Programme",
        }
    if level == RelevanceLevel.NATIONAL and program.is_all_states:
        return {
            "type": "National_Programs",
            "level": 3,
            "confidence": 0.7,
            "description": "Echte bundesweite Programme",
        }
    return {
        "type": "National_Programs",
        "level": 3,
        "confidence": 0.5,
        "description": "Standard bundesweite Programme",
    }


def state_statistics(programs: Sequence[FundingProgram], region: str | None) -> dict[str, int]:
    """Counts by scope, availability in ``region`` and program group."""
    stats = {
        "total": len(programs),
        "state_specific": 0,
        "multi_state": 0,
        "national": 0,
        "available": 0,
        "not_available": 0,
        "core_programs": 0,
        "supplementary_programs": 0,
        "national_programs": 0,
    }
    group_keys = {
        "Core_Programs": "core_programs",
        "Supplementary_Programs": "supplementary_programs",
        "National_Programs": "national_programs",
    }

    for program in programs:
        states = program.federal_states
        if ALL_STATES in states:
            stats["national"] += 1
        elif len(states) == 1:
            stats["state_specific"] += 1
        else:
            stats["multi_state"] += 1

        if matches_region(program, region):
            stats["available"] += 1
        else:
            stats["not_available"] += 1

        group = classify_by_origin(program)["type"]
        if group in group_keys:
            stats[group_keys[group]] += 1

    return stats


def is_valid_federal_state(code: str | None) -> bool:
    return bool(code) and code in FEDERAL_STATES


def federal_state_name(code: str | None) -> str:
    """Full state name for a two-letter code, "" if unknown."""
    if not code:
        return ""
    return FEDERAL_STATES.get(code, "")
