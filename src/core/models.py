# src/core/models.py — v2
"""Shared Pydantic domain models used across modules.

FundingProgram is supplied by the (external) dataset layer; RelevanceMetadata
is derived by the classifier and is what the cache stores.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALL_STATES = "all"

ProgramOrigin = Literal["federal", "state", "eu", "mixed"]
ImplementationLevel = Literal["national", "state", "regional", "local"]


class RelevanceLevel(IntEnum):
    """Relevance tier. Lower value = higher priority."""

    CORE = 1
    SUPPLEMENTARY = 2
    NATIONAL = 3
    EXCLUDED = 4


# === PROGRAMS ===


class FundingProgram(BaseModel):
    """A funding program record.

    Inputs are coerced defensively: missing strings become "", missing tag
    lists become [], and a bare string is wrapped into a one-element list.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = ""
    type: list[str] = Field(default_factory=list)
    federal_states: list[str] = Field(default_factory=list, alias="federalStates")
    measures: list[str] = Field(default_factory=list)
    funding_rate: str = Field(default="", alias="fundingRate")
    description: str = ""
    source: str = ""

    @field_validator("name", "funding_rate", "description", "source", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("type", "federal_states", "measures", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        if isinstance(v, (list, tuple, set, frozenset)):
            return [str(item) for item in v if item is not None]
        return [str(v)]

    @property
    def is_all_states(self) -> bool:
        return ALL_STATES in self.federal_states


# === RELEVANCE ===


class RelevanceMetadata(BaseModel):
    """Derived relevance facts attached to a program."""

    relevance_level: RelevanceLevel = RelevanceLevel.NATIONAL
    is_region_specific: bool = False
    domain_funding_history: bool = False
    origin: ProgramOrigin = "federal"
    implementation_level: ImplementationLevel = "national"
    success_rate: float = 50.0
    last_update: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("success_rate", mode="before")
    @classmethod
    def _clamp_success_rate(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 50.0
        return max(0.0, min(100.0, value))

    @property
    def is_excluded(self) -> bool:
        return self.relevance_level == RelevanceLevel.EXCLUDED


class ClassifiedProgram(FundingProgram):
    """A FundingProgram merged with its RelevanceMetadata."""

    metadata: RelevanceMetadata

    @property
    def relevance_level(self) -> RelevanceLevel:
        return self.metadata.relevance_level

    @classmethod
    def from_program(
        cls, program: FundingProgram, metadata: RelevanceMetadata
    ) -> ClassifiedProgram:
        data = program.model_dump(by_alias=False)
        data.pop("metadata", None)
        return cls(**data, metadata=metadata.model_copy(deep=True))


class UserCriteria(BaseModel):
    """What an applicant is looking for."""

    model_config = ConfigDict(populate_by_name=True)

    federal_state: str | None = Field(default=None, alias="federalState")
    project_type: str | None = Field(default=None, alias="projectType")
    measures: list[str] = Field(default_factory=list)
