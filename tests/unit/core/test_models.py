# tests/unit/core/test_models.py — v2
"""Tests for core/models.py — program and metadata models."""

from __future__ import annotations

from fundmatch.core.models import (
    ClassifiedProgram,
    FundingProgram,
    RelevanceLevel,
    RelevanceMetadata,
    UserCriteria,
)


class TestFundingProgram:
    def test_camel_case_aliases(self):
        p = FundingProgram(name="X", federalStates=["BY"], fundingRate="50%")
        assert p.federal_states == ["BY"]
        assert p.funding_rate == "50%"

    def test_snake_case_names(self):
        p = FundingProgram(name="X", federal_states=["NW"])
        assert p.federal_states == ["NW"]

    def test_none_lists_become_empty(self):
        p = FundingProgram(name="X", type=None, federalStates=None, measures=None)
        assert p.type == []
        assert p.federal_states == []
        assert p.measures == []

    def test_scalar_string_wrapped(self):
        p = FundingProgram(name="X", federalStates="all", type="playground")
        assert p.federal_states == ["all"]
        assert p.type == ["playground"]
        assert p.is_all_states

    def test_missing_strings_default_empty(self):
        p = FundingProgram(name=None)
        assert p.name == ""
        assert p.description == ""

    def test_extra_fields_kept(self):
        p = FundingProgram(name="X", contact="info@example.org")
        assert p.model_dump()["contact"] == "info@example.org"


class TestRelevanceMetadata:
    def test_defaults(self):
        m = RelevanceMetadata()
        assert m.relevance_level == RelevanceLevel.NATIONAL
        assert m.origin == "federal"
        assert m.success_rate == 50.0

    def test_success_rate_clamped(self):
        assert RelevanceMetadata(success_rate=150).success_rate == 100.0
        assert RelevanceMetadata(success_rate=-3).success_rate == 0.0

    def test_bad_success_rate_falls_back(self):
        assert RelevanceMetadata(success_rate="n/a").success_rate == 50.0

    def test_level_from_int(self):
        m = RelevanceMetadata(relevance_level=4)
        assert m.relevance_level is RelevanceLevel.EXCLUDED
        assert m.is_excluded


class TestClassifiedProgram:
    def test_from_program(self):
        p = FundingProgram(name="X", federalStates=["BY"])
        c = ClassifiedProgram.from_program(p, RelevanceMetadata(relevance_level=1))
        assert c.name == "X"
        assert c.federal_states == ["BY"]
        assert c.relevance_level == RelevanceLevel.CORE

    def test_reclassify_replaces_metadata(self):
        p = FundingProgram(name="X")
        c = ClassifiedProgram.from_program(p, RelevanceMetadata(relevance_level=1))
        again = ClassifiedProgram.from_program(c, RelevanceMetadata(relevance_level=3))
        assert again.relevance_level == RelevanceLevel.NATIONAL

    def test_metadata_is_copied(self):
        meta = RelevanceMetadata(relevance_level=1)
        c = ClassifiedProgram.from_program(FundingProgram(name="X"), meta)
        c.metadata.success_rate = 5.0
        assert c.metadata is not meta
        assert meta.success_rate == 50.0


class TestUserCriteria:
    def test_aliases(self):
        c = UserCriteria.model_validate({"federalState": "BY", "projectType": "playground"})
        assert c.federal_state == "BY"
        assert c.project_type == "playground"
        assert c.measures == []
