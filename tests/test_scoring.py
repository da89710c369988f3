"""
Tests for the scoring engine: per-dimension accumulation, tie-break, confidence,
SAIS extras and the interim preview.
"""

import pytest
from conftest import binary, distribution

from mbti_assess.schemas.response import parse_responses
from mbti_assess.utils.scoring import (
    assign_positional_dimensions,
    build_interim_result,
    calculate,
    calculate_confidence,
    calculate_interim,
    determine_preference,
    round_half_up,
)


def by_dimension(result):
    return {s.dimension: s for s in result.dimension_scores}


class TestSaisEndToEnd:
    def test_esfj_example(self, esfj_sais_responses):
        result = calculate("s-1", parse_responses(esfj_sais_responses), "sais")
        scores = by_dimension(result)

        assert result.mbti_type == "ESFJ"
        assert (scores["E/I"].raw_score_a, scores["E/I"].raw_score_b) == (12, 3)
        assert (scores["S/N"].raw_score_a, scores["S/N"].raw_score_b) == (13, 2)
        assert (scores["T/F"].raw_score_a, scores["T/F"].raw_score_b) == (3, 12)
        assert (scores["J/P"].raw_score_a, scores["J/P"].raw_score_b) == (13, 2)
        assert [s.confidence for s in result.dimension_scores] == [80, 87, 80, 87]
        assert result.overall_confidence == 84
        assert result.total_responses == 12
        assert result.is_interim is False

    def test_consciousness_fields(self, esfj_sais_responses):
        result = calculate("s-1", parse_responses(esfj_sais_responses), "sais")
        ei = by_dimension(result)["E/I"]
        assert ei.total_possible_points == 15
        assert ei.consciousness_percentage == 80
        assert ei.consciousness_domain

        profile = result.consciousness_profile
        assert profile is not None
        assert profile.energy_source_pattern.preference == "E"
        assert profile.decision_making_center.preference == "F"
        assert profile.life_structure_preference.percentage == 87

    def test_arabic_domain_names(self, esfj_sais_responses):
        en = calculate("s-1", parse_responses(esfj_sais_responses), "sais", language="en")
        ar = calculate("s-1", parse_responses(esfj_sais_responses), "sais", language="ar")
        assert en.dimension_scores[0].consciousness_domain != ar.dimension_scores[0].consciousness_domain

    def test_non_sais_has_no_consciousness_data(self, core_responses):
        result = calculate("s-1", parse_responses(core_responses), "scenarios")
        assert result.consciousness_profile is None
        assert all(s.total_possible_points is None for s in result.dimension_scores)

    def test_distributions_ignored_outside_sais(self):
        responses = parse_responses([distribution("1", "E/I", 5, 0)])
        scores = by_dimension(calculate("s-1", responses, "traits"))
        assert (scores["E/I"].raw_score_a, scores["E/I"].raw_score_b) == (0, 0)


class TestTieBreak:
    def test_exact_tie_goes_to_second_pole(self):
        responses = parse_responses([binary("1", "E/I", "A"), binary("2", "E/I", "B")])
        ei = by_dimension(calculate("s-1", responses, "scenarios"))["E/I"]
        assert ei.preference == "I"
        assert ei.confidence == 50

    @pytest.mark.parametrize("dimension,expected", [("E/I", "I"), ("S/N", "N"), ("T/F", "F"), ("J/P", "P")])
    def test_zero_information(self, dimension, expected):
        assert determine_preference(dimension, 0, 0) == expected

    def test_empty_response_set(self):
        result = calculate("s-1", [], "scenarios")
        assert result.mbti_type == "INFP"
        assert result.overall_confidence == 50
        assert all(s.confidence == 50 for s in result.dimension_scores)


class TestConfidence:
    def test_bounds(self):
        assert calculate_confidence(0, 0) == 50
        assert calculate_confidence(1, 1) == 50
        assert calculate_confidence(3, 0) == 100
        assert calculate_confidence(2, 1) == 67

    def test_half_rounds_up(self):
        assert round_half_up(83.5) == 84
        assert round_half_up(82.5) == 83
        assert round_half_up(82.4) == 82


def test_deterministic(esfj_sais_responses):
    first = calculate("s-1", parse_responses(esfj_sais_responses), "sais")
    second = calculate("s-1", parse_responses(esfj_sais_responses), "sais")
    assert first == second


class TestInterim:
    def test_positional_dimensions_only_fill_gaps(self):
        raw = [
            {"questionId": "1", "mbtiDimension": "J/P"},
            {"questionId": "2"},
            {"questionId": "3", "mbtiDimension": ""},
            {"questionId": "4"},
            {"questionId": "5"},
        ]
        tagged = assign_positional_dimensions(raw)
        assert [r["mbtiDimension"] for r in tagged] == ["J/P", "S/N", "T/F", "J/P"]
        assert "mbtiDimension" not in raw[1]

    def test_interim_uses_first_four(self, core_responses):
        extra = binary("c5", "E/I", "B")
        result = calculate_interim(parse_responses(core_responses + [extra]), "s-1")
        assert result.is_interim is True
        assert result.methodology == "scenarios"
        assert result.total_responses == 4
        assert result.mbti_type == "ENTP"

    def test_confidence_cap_and_insights(self, core_responses):
        result = calculate_interim(parse_responses(core_responses), "s-1")
        assert result.overall_confidence == 65
        assert calculate("s-1", parse_responses(core_responses), "scenarios").overall_confidence == 100

        interim = build_interim_result(result, "en")
        assert interim.confidence == 65
        assert interim.overall_confidence == 65
        assert all(s.confidence <= 65 for s in interim.dimension_scores)
        assert len(interim.insights) == 3
        assert interim.disclaimer

    def test_arabic_content(self, core_responses):
        result = calculate_interim(parse_responses(core_responses), "s-1")
        en = build_interim_result(result, "en")
        ar = build_interim_result(result, "ar")
        assert en.insights != ar.insights
        assert en.disclaimer != ar.disclaimer

    def test_unknown_language_falls_back_to_english(self, core_responses):
        result = calculate_interim(parse_responses(core_responses), "s-1")
        assert build_interim_result(result, "fr").insights == build_interim_result(result, "en").insights
