# src/classification/classifier.py — v1
"""Relevance classifier — assigns every funding program one relevance tier.

Pure, stateless rule engine over fixed keyword tables. Decision procedure
(first match wins):

  1. Excluded (4)       exclusion keyword present AND not playground-relevant
  2. Core (1)           region-specific program (state list or state indicator)
  3. Supplementary (2)  EU/federal program implemented nationwide ("all")
  4. National (3)       everything else

All matching is case-insensitive substring matching. Every input, including
None and partial records, maps to exactly one tier; nothing raises.
"""

from __future__ import annotations

from typing import Any

from fundmatch.core.models import ALL_STATES, FundingProgram, RelevanceLevel

DOMAIN_TAG = "playground"

DOMAIN_KEYWORDS = frozenset({
    "spielplatz", "playground", "spielgerät", "spielfläche", "kinderspielplatz",
    "spielbereich", "spielanlage", "outdoor-fitness", "bewegungspark",
    "mehrgenerationenspielplatz", "inklusiver spielplatz",
    "barrierefreier spielplatz",
})

DOMAIN_MEASURES = frozenset({"newBuild", "renovation", "accessibility"})

EXCLUSION_KEYWORDS = frozenset({
    "hochschule", "universität", "forschung", "wissenschaft", "studium",
    "digitalisierung", "breitband", "internet", "software", "it-infrastruktur",
    "landwirtschaft", "agrar", "forstwirtschaft", "fischerei",
    "industrie 4.0", "künstliche intelligenz", "blockchain",
    "wasserwirtschaft", "hochwasserschutz", "deichbau",
    "verkehrsinfrastruktur", "straßenbau", "schienenverkehr",
    "energieeffizienz", "photovoltaik", "windenergie", "wärmepumpe",
})

STATE_SPECIFIC_INDICATORS = frozenset({
    "landesförderprogramm", "landesprogramm", "landesförderung",
    "bayern", "baden-württemberg", "nordrhein-westfalen", "niedersachsen",
    "hessen", "rheinland-pfalz", "schleswig-holstein", "brandenburg",
    "sachsen", "sachsen-anhalt", "thüringen", "mecklenburg-vorpommern",
    "saarland", "bremen", "hamburg", "berlin",
})

EU_FEDERAL_INDICATORS = frozenset({
    "efre", "eler", "esf", "europäischer fonds", "eu-förderung",
    "bundesförderung", "bundesprogramm", "gak", "städtebauförderung",
    "nationale projekte", "modellvorhaben", "bundesmittel",
})

_LEVEL_INFO: dict[RelevanceLevel, dict[str, str]] = {
    RelevanceLevel.CORE: {
        "name": "Core Programs",
        "description": "Bundeslandspezifische Programme",
        "priority": "Highest",
    },
    RelevanceLevel.SUPPLEMENTARY: {
        "name": "Supplementary Programs",
        "description": "Landesumgesetzte Bundes-/EU-Programme",
        "priority": "Medium-High",
    },
    RelevanceLevel.NATIONAL: {
        "name": "National Programs",
        "description": "Echte bundesweite Programme",
        "priority": "Medium",
    },
    RelevanceLevel.EXCLUDED: {
        "name": "Excluded Programs",
        "description": "Unrelevante Programme",
        "priority": "Excluded",
    },
}


def classify_program(program: FundingProgram | None) -> RelevanceLevel:
    """Classify a program into one of the four relevance tiers.

    Args:
        program: Program to classify. None or an unnamed program is Excluded.

    Returns:
        The program's RelevanceLevel.
    """
    if program is None or not program.name:
        return RelevanceLevel.EXCLUDED

    if should_exclude(program):
        return RelevanceLevel.EXCLUDED

    if is_region_specific(program):
        return RelevanceLevel.CORE

    if is_supra_regional_implementation(program):
        return RelevanceLevel.SUPPLEMENTARY

    return RelevanceLevel.NATIONAL


def is_domain_relevant(program: FundingProgram | None) -> bool:
    """True if text, type tags or measures point at playground funding."""
    if program is None:
        return False

    if _contains_any(searchable_text(program), DOMAIN_KEYWORDS):
        return True

    if DOMAIN_TAG in program.type:
        return True

    return not DOMAIN_MEASURES.isdisjoint(program.measures)


def is_region_specific(program: FundingProgram | None) -> bool:
    """True if restricted to explicit regions or the text names a state."""
    if program is None:
        return False

    states = program.federal_states
    if states and ALL_STATES not in states:
        return True

    return _contains_any(searchable_text(program), STATE_SPECIFIC_INDICATORS)


def should_exclude(program: FundingProgram | None) -> bool:
    """True if an exclusion keyword matches and the program is not domain-relevant."""
    if program is None:
        return True

    has_exclusion = _contains_any(searchable_text(program), EXCLUSION_KEYWORDS)
    return has_exclusion and not is_domain_relevant(program)


def is_supra_regional_implementation(program: FundingProgram | None) -> bool:
    """True for nationwide programs carrying an EU/federal implementation marker."""
    if program is None:
        return False

    if ALL_STATES not in program.federal_states:
        return False

    if not _contains_any(searchable_text(program), EU_FEDERAL_INDICATORS):
        return False

    return not is_region_specific(program)


def searchable_text(program: FundingProgram) -> str:
    """Lower-cased concatenation of all text and tag fields."""
    parts = [
        program.name,
        program.description,
        program.source,
        " ".join(program.type),
        " ".join(program.measures),
        " ".join(program.federal_states),
    ]
    return " ".join(parts).lower()


def _contains_any(text: str, keywords: frozenset[str]) -> bool:
    return any(keyword in text for keyword in keywords)


# === Level helpers ===


def is_valid_relevance_level(level: Any) -> bool:
    try:
        RelevanceLevel(level)
    except (ValueError, TypeError):
        return False
    return not isinstance(level, bool)


def relevance_level_name(level: Any) -> str:
    """Human-readable tier name ("Unknown Level" for invalid input)."""
    if not is_valid_relevance_level(level):
        return "Unknown Level"
    return _LEVEL_INFO[RelevanceLevel(level)]["name"]


def describe_relevance_levels() -> dict[int, dict[str, str]]:
    """All tiers with name, description and priority label."""
    return {int(level): dict(info) for level, info in _LEVEL_INFO.items()}
