# tests/unit/classification/test_classifier.py — v1
"""Tests for classification/classifier.py — relevance tier rules."""

from __future__ import annotations

import pytest

from fundmatch.classification.classifier import (
    classify_program,
    describe_relevance_levels,
    is_domain_relevant,
    is_region_specific,
    is_supra_regional_implementation,
    is_valid_relevance_level,
    relevance_level_name,
    searchable_text,
    should_exclude,
)
from fundmatch.core.models import FundingProgram, RelevanceLevel


class TestScenarios:
    def test_bavarian_playground_is_core(self, bavarian_playground):
        assert classify_program(bavarian_playground) == RelevanceLevel.CORE
        assert is_region_specific(bavarian_playground) is True

    def test_efre_program_is_supplementary(self, efre_program):
        assert classify_program(efre_program) == RelevanceLevel.SUPPLEMENTARY

    def test_university_digitalisation_is_excluded(self, excluded_program):
        assert classify_program(excluded_program) == RelevanceLevel.EXCLUDED

    def test_plain_nationwide_program_is_national(self, national_foundation):
        assert classify_program(national_foundation) == RelevanceLevel.NATIONAL


class TestExclusion:
    def test_domain_relevance_overrides_exclusion(self):
        p = FundingProgram(
            name="Forschung Spielplatz der Zukunft", federalStates=["all"]
        )
        assert should_exclude(p) is False
        assert classify_program(p) != RelevanceLevel.EXCLUDED

    def test_domain_measure_overrides_exclusion(self):
        p = FundingProgram(name="Breitband Ausbau", federalStates=["all"], measures=["accessibility"])
        assert is_domain_relevant(p)
        assert not should_exclude(p)

    @pytest.mark.parametrize(
        "program",
        [
            FundingProgram(name="Photovoltaik Bayern", federalStates=["BY"]),
            FundingProgram(name="Agrar EFRE", federalStates=["all"]),
            FundingProgram(name="X", description="Förderung für Windenergie", federalStates=["NW"]),
        ],
    )
    def test_exclusion_dominates(self, program):
        assert should_exclude(program)
        assert classify_program(program) == RelevanceLevel.EXCLUDED

    def test_none_is_excluded(self):
        assert classify_program(None) == RelevanceLevel.EXCLUDED
        assert should_exclude(None) is True

    def test_unnamed_is_excluded(self):
        assert classify_program(FundingProgram(federalStates=["BY"])) == RelevanceLevel.EXCLUDED


class TestRegionSpecific:
    def test_state_indicator_in_text(self):
        p = FundingProgram(name="Landesprogramm Spielflächen", federalStates=["all"])
        assert is_region_specific(p)
        assert classify_program(p) == RelevanceLevel.CORE

    def test_all_scope_without_indicator(self, national_foundation):
        assert not is_region_specific(national_foundation)

    def test_empty_states_not_region_specific(self):
        assert not is_region_specific(FundingProgram(name="Ohne Länder"))

    def test_supra_regional_requires_all_scope(self):
        p = FundingProgram(name="Bundesprogramm Spielplatz", federalStates=["HB", "NI"])
        assert not is_supra_regional_implementation(p)
        assert classify_program(p) == RelevanceLevel.CORE

    def test_case_insensitive(self):
        p = FundingProgram(name="SPIELPLATZ-OFFENSIVE", federalStates=["all"], source="BUNDESMITTEL")
        assert is_domain_relevant(p)
        assert classify_program(p) == RelevanceLevel.SUPPLEMENTARY


class TestDeterminism:
    def test_total_and_repeatable(self, sample_programs):
        for program in sample_programs:
            first = classify_program(program)
            assert first in set(RelevanceLevel)
            assert classify_program(program) == first

    def test_searchable_text_includes_tags(self, multi_state_program):
        text = searchable_text(multi_state_program)
        assert "playground" in text
        assert "renovation" in text
        assert text == text.lower()


class TestLevelHelpers:
    def test_valid_levels(self):
        assert all(is_valid_relevance_level(i) for i in (1, 2, 3, 4))

    @pytest.mark.parametrize("value", [0, 5, "x", None, True])
    def test_invalid_levels(self, value):
        assert not is_valid_relevance_level(value)

    def test_level_names(self):
        assert relevance_level_name(1) == "Core Programs"
        assert relevance_level_name(99) == "Unknown Level"

    def test_describe_levels(self):
        levels = describe_relevance_levels()
        assert set(levels) == {1, 2, 3, 4}
        assert levels[4]["priority"] == "Excluded"
