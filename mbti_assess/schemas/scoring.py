from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mbti_assess.schemas.response import Dimension, Methodology


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationIssue(_CamelModel):
    field: str
    message: str
    code: str


class ValidationResult(_CamelModel):
    is_valid: bool
    errors: List[ValidationIssue] = []
    distribution_totals: Optional[Dict[str, int]] = None


class DimensionScore(_CamelModel):
    dimension: Dimension
    raw_score_a: int      # E, S, T, J
    raw_score_b: int      # I, N, F, P
    preference: str
    confidence: int
    consciousness_percentage: Optional[int] = None
    consciousness_domain: Optional[str] = None
    total_possible_points: Optional[int] = None


class ConsciousnessDimension(_CamelModel):
    dimension: Dimension
    preference: str
    percentage: int
    domain_name: str
    description: str


class ConsciousnessProfile(_CamelModel):
    energy_source_pattern: ConsciousnessDimension
    awareness_style: ConsciousnessDimension
    decision_making_center: ConsciousnessDimension
    life_structure_preference: ConsciousnessDimension


class ScoringResult(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str
    mbti_type: str
    dimension_scores: List[DimensionScore]
    overall_confidence: int
    methodology: Methodology
    is_interim: bool
    total_responses: int
    consciousness_profile: Optional[ConsciousnessProfile] = None


class MBTIResults(ScoringResult):
    calculated_at: datetime
    cache_hit: bool = False


class InterimResult(ScoringResult):
    confidence: int
    insights: List[str] = []
    disclaimer: str = ""


# --------------------- Requests ---------------------

class CalculateRequest(_CamelModel):
    """Raw payload; responses stay untyped until sanitized and validated."""
    session_id: Optional[str] = None
    responses: Optional[Any] = None
    methodology: Optional[str] = None
    is_interim: bool = False


class InterimRequest(_CamelModel):
    session_id: Optional[str] = None
    responses: Optional[Any] = None
    language: str = "en"


class APIResponse(_CamelModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
