from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from mbti_assess.config import DIMENSIONS, METHODOLOGIES, SAIS_COMBINATIONS, SAIS_POINTS_PER_QUESTION
from mbti_assess.schemas.response import parse_response
from mbti_assess.schemas.scoring import ValidationIssue, ValidationResult


# --------------------- Sanitization ---------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_id(value: Any) -> str:
    return "" if value is None else str(value)


def _clamp_points(value: Any) -> Optional[Any]:
    if not _is_number(value):
        return None
    return max(0, min(SAIS_POINTS_PER_QUESTION, value))


def sanitize_responses(responses: List[Any]) -> List[Dict[str, Any]]:
    """
    Normalizes raw response dicts before validation:
      - questionId / sessionId / responseId become strings;
      - numeric distribution values are clamped into 0..5, anything else is dropped.
    Non-dict items become empty dicts so validation can report them field by field.
    """
    sanitized: List[Dict[str, Any]] = []
    for raw in responses or []:
        item = dict(raw) if isinstance(raw, dict) else {}
        item["questionId"] = _as_id(item.get("questionId"))
        item["sessionId"] = _as_id(item.get("sessionId"))
        item["responseId"] = _as_id(item.get("responseId"))
        if item.get("timestamp") is None:
            item.pop("timestamp", None)
        for key in ("distributionA", "distributionB"):
            clamped = _clamp_points(item.get(key))
            if clamped is None:
                item.pop(key, None)
            else:
                item[key] = clamped
        sanitized.append(item)
    return sanitized


# --------------------- Checks ---------------------

def is_valid_dimension(dimension: Any) -> bool:
    return dimension in DIMENSIONS


def validate_methodology(methodology: Any) -> bool:
    return methodology in METHODOLOGIES


def is_valid_sais_combination(distribution_a: Any, distribution_b: Any) -> bool:
    return any(distribution_a == a and distribution_b == b for a, b in SAIS_COMBINATIONS)


def _issue(field: str, message: str, code: str) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, code=code)


def _validate_single(response: Dict[str, Any], index: int) -> List[ValidationIssue]:
    errors: List[ValidationIssue] = []
    prefix = f"responses[{index}]"

    if not response.get("questionId"):
        errors.append(_issue(f"{prefix}.questionId", "Question ID is required", "MISSING_QUESTION_ID"))

    if not response.get("sessionId"):
        errors.append(_issue(f"{prefix}.sessionId", "Session ID is required", "MISSING_SESSION_ID"))

    dimension = response.get("mbtiDimension")
    if not dimension:
        errors.append(_issue(f"{prefix}.mbtiDimension", "MBTI dimension is required", "MISSING_DIMENSION"))
    elif not is_valid_dimension(dimension):
        errors.append(_issue(f"{prefix}.mbtiDimension", "Invalid MBTI dimension", "INVALID_DIMENSION"))

    response_type = response.get("responseType")
    if not response_type:
        errors.append(_issue(f"{prefix}.responseType", "Response type is required", "MISSING_RESPONSE_TYPE"))
    elif response_type == "binary":
        if response.get("selectedOption") not in ("A", "B"):
            errors.append(_issue(
                f"{prefix}.selectedOption",
                "Binary response must have selectedOption as A or B",
                "INVALID_BINARY_OPTION",
            ))
    elif response_type == "distribution":
        if "distributionA" not in response or "distributionB" not in response:
            errors.append(_issue(
                f"{prefix}.distribution",
                "Distribution responses must have both distributionA and distributionB",
                "MISSING_DISTRIBUTION",
            ))
    else:
        errors.append(_issue(
            f"{prefix}.responseType",
            "Response type must be binary or distribution",
            "INVALID_RESPONSE_TYPE",
        ))

    return errors


def _validate_sais_distributions(responses: List[Dict[str, Any]]) -> List[ValidationIssue]:
    errors: List[ValidationIssue] = []
    for response in responses:
        if response.get("responseType") != "distribution":
            continue
        a = response.get("distributionA", 0)
        b = response.get("distributionB", 0)
        field = f"question-{response.get('questionId')}"

        total = a + b if _is_number(a) and _is_number(b) else None
        if total != SAIS_POINTS_PER_QUESTION:
            errors.append(_issue(
                field,
                f"SAIS distribution must total exactly {SAIS_POINTS_PER_QUESTION}, got {total}",
                "INVALID_SAIS_TOTAL",
            ))
        if not is_valid_sais_combination(a, b):
            errors.append(_issue(
                field,
                f"Invalid SAIS distribution combination: {a}/{b}",
                "INVALID_SAIS_COMBINATION",
            ))
    return errors


def _validate_shape(response: Dict[str, Any], index: int) -> List[ValidationIssue]:
    # Whatever the field checks let through must still build a typed response
    try:
        parse_response(response)
    except ValidationError as e:
        return [
            _issue(
                f"responses[{index}]." + ".".join(str(p) for p in err["loc"][1:] or err["loc"]),
                err["msg"],
                "INVALID_RESPONSE",
            )
            for err in e.errors()
        ]
    return []


def validate_responses(responses: List[Dict[str, Any]], methodology: str) -> ValidationResult:
    """
    Checks a sanitized response set. Never raises: every violation is reported as
    {field, message, code} so callers can block progression or assert on the code.
    """
    if not responses:
        return ValidationResult(
            is_valid=False,
            errors=[_issue("responses", "No responses provided", "EMPTY_RESPONSES")],
        )

    errors: List[ValidationIssue] = []
    for i, response in enumerate(responses):
        single = _validate_single(response, i)
        errors.extend(single)
        if not single:
            errors.extend(_validate_shape(response, i))

    if methodology == "sais":
        errors.extend(_validate_sais_distributions(responses))

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_sais_responses(responses: List[Dict[str, Any]]) -> ValidationResult:
    """validate_responses for SAIS plus the per-question point totals."""
    base = validate_responses(responses, "sais")
    totals: Dict[str, int] = {}
    for response in responses or []:
        if response.get("responseType") == "distribution":
            a = response.get("distributionA", 0)
            b = response.get("distributionB", 0)
            if _is_number(a) and _is_number(b):
                totals[str(response.get("questionId"))] = a + b
    return ValidationResult(is_valid=base.is_valid, errors=base.errors, distribution_totals=totals)
