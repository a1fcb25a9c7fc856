# src/classification/metadata.py — v1
"""Derived relevance metadata and metadata validation.

derive_metadata() turns a program into a full RelevanceMetadata snapshot
(tier, facets, origin, implementation level, success-rate estimate).
validate_metadata() checks a raw mapping, e.g. a value read back from an
injected cache backend, and applies per-field fallbacks.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, get_args

from pydantic import BaseModel, Field

from fundmatch.classification.classifier import (
    DOMAIN_TAG,
    classify_program,
    is_domain_relevant,
    is_region_specific,
)
from fundmatch.core.models import (
    ALL_STATES,
    FundingProgram,
    ImplementationLevel,
    ProgramOrigin,
    RelevanceLevel,
    RelevanceMetadata,
)

_EU_NAME_MARKERS = ("LEADER", "ELER", "EFRE", "ESF")
_MIXED_NAME_MARKERS = ("Stiftung", "LOTTO", "Aktion Mensch")
_REGIONAL_NAME_MARKERS = ("Regional", "LEADER")
_LOCAL_NAME_MARKERS = ("kommunal", "Gemeinde")
_DOMAIN_NAME_MARKERS = ("Spielplatz", "Kinderhilfswerk", "Spielraum")

_VALID_ORIGINS: tuple[str, ...] = get_args(ProgramOrigin)
_VALID_IMPLEMENTATION_LEVELS: tuple[str, ...] = get_args(ImplementationLevel)

SUCCESS_RATE_CAP = 90.0


def derive_metadata(program: FundingProgram | None) -> RelevanceMetadata:
    """Classify a program and derive all metadata fields."""
    if program is None:
        return RelevanceMetadata(relevance_level=RelevanceLevel.EXCLUDED, success_rate=20)

    level = classify_program(program)
    return RelevanceMetadata(
        relevance_level=level,
        is_region_specific=is_region_specific(program),
        domain_funding_history=is_domain_relevant(program),
        origin=determine_program_origin(program),
        implementation_level=determine_implementation_level(program),
        success_rate=estimate_success_rate(program, level),
        last_update=datetime.now(timezone.utc),
    )


def _is_single_state(program: FundingProgram) -> bool:
    states = program.federal_states
    return len(states) == 1 and states[0] != ALL_STATES


def determine_program_origin(program: FundingProgram) -> ProgramOrigin:
    if any(marker in program.name for marker in _EU_NAME_MARKERS):
        return "eu"
    if _is_single_state(program):
        return "state"
    if any(marker in program.name for marker in _MIXED_NAME_MARKERS):
        return "mixed"
    return "federal"


def determine_implementation_level(program: FundingProgram) -> ImplementationLevel:
    if _is_single_state(program):
        return "state"
    if any(marker in program.name for marker in _REGIONAL_NAME_MARKERS):
        return "regional"
    if any(marker in program.name for marker in _LOCAL_NAME_MARKERS):
        return "local"
    return "national"


def estimate_success_rate(program: FundingProgram, level: RelevanceLevel) -> float:
    """Heuristic approval-likelihood estimate in percent, capped at 90."""
    if level == RelevanceLevel.EXCLUDED:
        return 20.0

    if _is_single_state(program):
        rate = 75.0
    elif level == RelevanceLevel.SUPPLEMENTARY:
        rate = 65.0
    else:
        rate = 50.0

    if DOMAIN_TAG in program.type:
        rate += 10
    if any(marker in program.name for marker in _DOMAIN_NAME_MARKERS):
        rate += 15

    return min(rate, SUCCESS_RATE_CAP)


# === Validation ===


class MetadataValidationResult(BaseModel):
    """Outcome of validating a raw metadata mapping."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)
    sanitized: RelevanceMetadata

    @property
    def has_fallbacks(self) -> bool:
        return bool(self.warnings)


_REQUIRED_FIELDS = (
    "relevance_level",
    "is_region_specific",
    "domain_funding_history",
    "origin",
    "implementation_level",
    "success_rate",
)


def validate_metadata(data: Mapping[str, Any] | RelevanceMetadata | None) -> MetadataValidationResult:
    """Validate every metadata field, substituting safe fallbacks.

    Fallbacks: level -> National, flags -> False, origin -> federal,
    implementation level -> national, success rate -> 50 (or clamped to
    [0, 100] when numeric but out of range).
    """
    if isinstance(data, RelevanceMetadata):
        return MetadataValidationResult(is_valid=True, sanitized=data)

    if not isinstance(data, Mapping):
        return MetadataValidationResult(
            is_valid=False,
            errors=["metadata must be a mapping"],
            missing_fields=list(_REQUIRED_FIELDS),
            warnings=["Applied fallback values for all fields"],
            sanitized=RelevanceMetadata(),
        )

    errors: list[str] = []
    warnings: list[str] = []
    missing = [f for f in _REQUIRED_FIELDS if data.get(f) is None]

    level, err = _check_level(data.get("relevance_level"))
    _record("relevance_level", level, err, errors, warnings)

    region_specific, err = _check_bool(data.get("is_region_specific"), "is_region_specific")
    _record("is_region_specific", region_specific, err, errors, warnings)

    domain_history, err = _check_bool(data.get("domain_funding_history"), "domain_funding_history")
    _record("domain_funding_history", domain_history, err, errors, warnings)

    origin, err = _check_choice(data.get("origin"), _VALID_ORIGINS, "federal", "origin")
    _record("origin", origin, err, errors, warnings)

    impl, err = _check_choice(
        data.get("implementation_level"), _VALID_IMPLEMENTATION_LEVELS, "national", "implementation_level"
    )
    _record("implementation_level", impl, err, errors, warnings)

    rate, err = _check_success_rate(data.get("success_rate"))
    _record("success_rate", rate, err, errors, warnings)

    last_update = data.get("last_update")
    if not isinstance(last_update, (datetime, str)):
        last_update = datetime.now(timezone.utc)

    try:
        sanitized = RelevanceMetadata(
            relevance_level=level,
            is_region_specific=region_specific,
            domain_funding_history=domain_history,
            origin=origin,
            implementation_level=impl,
            success_rate=rate,
            last_update=last_update,
        )
    except ValueError:
        # Unparseable timestamp string
        sanitized = RelevanceMetadata(
            relevance_level=level,
            is_region_specific=region_specific,
            domain_funding_history=domain_history,
            origin=origin,
            implementation_level=impl,
            success_rate=rate,
        )
        warnings.append("Applied fallback value for last_update")

    return MetadataValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        missing_fields=missing,
        sanitized=sanitized,
    )


def _record(
    field: str, value: Any, error: str | None, errors: list[str], warnings: list[str]
) -> None:
    if error:
        errors.append(f"{field}: {error}")
        warnings.append(f"Applied fallback value for {field}: {value}")


def _check_level(value: Any) -> tuple[RelevanceLevel, str | None]:
    if value is None:
        return RelevanceLevel.NATIONAL, "relevance level is required"
    if isinstance(value, bool):
        return RelevanceLevel.NATIONAL, "relevance level must be an integer"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return RelevanceLevel.NATIONAL, "relevance level must be an integer"
    if not number.is_integer():
        return RelevanceLevel.NATIONAL, "relevance level must be an integer"
    if number < 1 or number > 4:
        return RelevanceLevel(int(max(1, min(4, number)))), "relevance level must be between 1 and 4"
    return RelevanceLevel(int(number)), None


def _check_bool(value: Any, name: str) -> tuple[bool, str | None]:
    if value is None:
        return False, f"{name} is required"
    if not isinstance(value, bool):
        return False, f"{name} must be a boolean"
    return value, None


def _check_choice(
    value: Any, choices: tuple[str, ...], fallback: str, name: str
) -> tuple[str, str | None]:
    if value is None:
        return fallback, f"{name} is required"
    if not isinstance(value, str):
        return fallback, f"{name} must be a string"
    lowered = value.lower()
    if lowered not in choices:
        return fallback, f"{name} must be one of: {', '.join(choices)}"
    return lowered, None


def _check_success_rate(value: Any) -> tuple[float, str | None]:
    if value is None:
        return 50.0, "success rate is required"
    if isinstance(value, bool):
        return 50.0, "success rate must be a number"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 50.0, "success rate must be a number"
    if number != number:  # NaN
        return 50.0, "success rate must be a number"
    if number < 0 or number > 100:
        return max(0.0, min(100.0, number)), "success rate must be between 0 and 100"
    return number, None
