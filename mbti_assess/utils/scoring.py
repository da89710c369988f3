from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple, Union

from mbti_assess.config import (
    DIMENSIONS,
    INTERIM_CONFIDENCE_CAP,
    INTERIM_MAX_INSIGHTS,
    SAIS_POINTS_PER_QUESTION,
)
from mbti_assess.schemas.response import BinaryResponse, DistributionResponse
from mbti_assess.schemas.scoring import (
    ConsciousnessDimension,
    ConsciousnessProfile,
    DimensionScore,
    InterimResult,
    ScoringResult,
)
from mbti_assess.utils.content_loader import (
    interim_disclaimer,
    interim_insight,
    load_sais_domains,
    localized,
    normalize_language,
)

Response = Union[BinaryResponse, DistributionResponse]

# Pole letters per dimension: option A -> first letter, option B -> second
POLES: Dict[str, Tuple[str, str]] = {
    "E/I": ("E", "I"),
    "S/N": ("S", "N"),
    "T/F": ("T", "F"),
    "J/P": ("J", "P"),
}

# Dimensions surfaced as interim insights, in order
INTERIM_INSIGHT_DIMENSIONS = ("E/I", "S/N", "T/F")


# --------------------- Per-dimension rules ---------------------

def round_half_up(value: float) -> int:
    # Halves round up (83.5 -> 84), not to even
    return int(math.floor(value + 0.5))


def accumulate(responses: Sequence[Response], methodology: str) -> Tuple[int, int]:
    """
    Sums the A/B sides for one dimension:
      - sais + distribution: points are added as-is;
      - binary (any methodology): one vote for the selected side.
    Distribution responses outside sais do not count.
    """
    score_a = 0
    score_b = 0
    for r in responses:
        if isinstance(r, DistributionResponse):
            if methodology == "sais":
                score_a += r.distribution_a
                score_b += r.distribution_b
        elif r.selected_option == "A":
            score_a += 1
        else:
            score_b += 1
    return score_a, score_b


def determine_preference(dimension: str, score_a: int, score_b: int) -> str:
    # A strict majority is required for the first pole; ties (0:0 included) go to the second
    first, second = POLES[dimension]
    return first if score_a > score_b else second


def calculate_confidence(score_a: int, score_b: int) -> int:
    total = score_a + score_b
    if total == 0:
        return 50
    return round_half_up(max(score_a, score_b) / total * 100)


def _consciousness_fields(
    dimension: str,
    preference: str,
    score_a: int,
    score_b: int,
    distribution_count: int,
    language: str,
) -> Dict[str, Optional[Union[int, str]]]:
    total_possible = distribution_count * SAIS_POINTS_PER_QUESTION
    winning = score_a if preference == POLES[dimension][0] else score_b
    percentage = round_half_up(winning / total_possible * 100) if total_possible else 0
    domain = localized(load_sais_domains()[dimension].get("name"), language)
    return {
        "consciousness_percentage": percentage,
        "consciousness_domain": domain,
        "total_possible_points": total_possible,
    }


def _consciousness_profile(scores: List[DimensionScore], language: str) -> ConsciousnessProfile:
    domains = load_sais_domains()

    def part(dimension: str) -> ConsciousnessDimension:
        score = next(s for s in scores if s.dimension == dimension)
        pole = domains[dimension].get(score.preference) or {}
        return ConsciousnessDimension(
            dimension=dimension,
            preference=score.preference,
            percentage=score.consciousness_percentage or 0,
            domain_name=localized(pole.get("name"), language) or score.preference,
            description=localized(pole.get("description"), language),
        )

    return ConsciousnessProfile(
        energy_source_pattern=part("E/I"),
        awareness_style=part("S/N"),
        decision_making_center=part("T/F"),
        life_structure_preference=part("J/P"),
    )


# --------------------- Main calculation ---------------------

def calculate(
    session_id: str,
    responses: Sequence[Response],
    methodology: str,
    is_interim: bool = False,
    language: str = "en",
) -> ScoringResult:
    """
    Pure scoring of a validated response set.
      1) per dimension (E/I, S/N, T/F, J/P) accumulate A/B;
      2) preference by strict majority, ties to the second pole;
      3) confidence = round(max / total * 100), 50 without data;
      4) type = the four letters in fixed order, overall = rounded mean.
    Interim results never report a confidence above INTERIM_CONFIDENCE_CAP.
    Does not re-validate: methodology and response shapes are checked upstream.
    """
    language = normalize_language(language)
    dimension_scores: List[DimensionScore] = []

    for dimension in DIMENSIONS:
        subset = [r for r in responses if r.mbti_dimension == dimension]
        score_a, score_b = accumulate(subset, methodology)
        preference = determine_preference(dimension, score_a, score_b)
        confidence = calculate_confidence(score_a, score_b)
        if is_interim:
            confidence = min(confidence, INTERIM_CONFIDENCE_CAP)

        extra = {}
        if methodology == "sais":
            distribution_count = sum(1 for r in subset if isinstance(r, DistributionResponse))
            extra = _consciousness_fields(dimension, preference, score_a, score_b, distribution_count, language)

        dimension_scores.append(DimensionScore(
            dimension=dimension,
            raw_score_a=score_a,
            raw_score_b=score_b,
            preference=preference,
            confidence=confidence,
            **extra,
        ))

    overall = round_half_up(sum(s.confidence for s in dimension_scores) / len(dimension_scores))

    return ScoringResult(
        session_id=session_id,
        mbti_type="".join(s.preference for s in dimension_scores),
        dimension_scores=dimension_scores,
        overall_confidence=overall,
        methodology=methodology,
        is_interim=is_interim,
        total_responses=len(responses),
        consciousness_profile=_consciousness_profile(dimension_scores, language) if methodology == "sais" else None,
    )


# --------------------- Interim (core questions only) ---------------------

def assign_positional_dimensions(raw_responses: List[dict]) -> List[dict]:
    """
    Takes at most the first 4 raw responses and fills a missing mbtiDimension from
    the position (0 -> E/I, 1 -> S/N, 2 -> T/F, 3 -> J/P). Explicit tags win.
    Returns copies; the input is left untouched.
    """
    result: List[dict] = []
    for i, raw in enumerate(raw_responses[: len(DIMENSIONS)]):
        item = dict(raw)
        if not item.get("mbtiDimension"):
            item["mbtiDimension"] = DIMENSIONS[i]
        result.append(item)
    return result


def calculate_interim(responses: Sequence[Response], session_id: Optional[str] = None) -> ScoringResult:
    """Scores at most the first 4 responses as a scenarios-style interim result."""
    head = list(responses[: len(DIMENSIONS)])
    sid = session_id if session_id is not None else (head[0].session_id if head else "")
    return calculate(sid, head, "scenarios", is_interim=True)


def generate_interim_insights(scores: Sequence[DimensionScore], language: str) -> List[str]:
    insights: List[str] = []
    for dimension in INTERIM_INSIGHT_DIMENSIONS:
        score = next((s for s in scores if s.dimension == dimension), None)
        if score is None:
            continue
        text = interim_insight(dimension, score.preference, language)
        if text:
            insights.append(text)
    return insights[:INTERIM_MAX_INSIGHTS]


def build_interim_result(result: ScoringResult, language: str = "en") -> InterimResult:
    """Caps confidence for the 4-question preview and attaches insights + disclaimer."""
    language = normalize_language(language)
    capped = [
        s.model_copy(update={"confidence": min(s.confidence, INTERIM_CONFIDENCE_CAP)})
        for s in result.dimension_scores
    ]
    confidence = min(result.overall_confidence, INTERIM_CONFIDENCE_CAP)
    return InterimResult(
        **result.model_dump(exclude={"dimension_scores", "overall_confidence"}),
        dimension_scores=capped,
        overall_confidence=confidence,
        confidence=confidence,
        insights=generate_interim_insights(result.dimension_scores, language),
        disclaimer=interim_disclaimer(language),
    )
