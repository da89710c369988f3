from __future__ import annotations

from fastapi import APIRouter, Depends

from mbti_assess.config import CORE_QUESTIONS_COUNT
from mbti_assess.dependencies import Services, get_services
from mbti_assess.routers.common import dump, fail, ok
from mbti_assess.schemas.response import parse_responses
from mbti_assess.schemas.scoring import CalculateRequest, InterimRequest, MBTIResults
from mbti_assess.utils.log import bind_context, get_logger, set_session_id
from mbti_assess.utils.scoring import assign_positional_dimensions, build_interim_result, calculate, calculate_interim
from mbti_assess.utils.scoring_cache import cache_key
from mbti_assess.utils.validation import sanitize_responses, validate_methodology, validate_responses

logger = get_logger(__name__)

router = APIRouter(prefix="/assessment", tags=["Assessment"])


@router.post("/calculate")
def calculate_results(payload: CalculateRequest, services: Services = Depends(get_services)):
    if not payload.session_id or payload.responses is None or not payload.methodology:
        return fail(400, "Missing required fields: sessionId, responses, methodology")
    if not isinstance(payload.responses, list):
        return fail(400, "responses must be an array")
    if not validate_methodology(payload.methodology):
        return fail(400, "Invalid methodology. Must be one of: scenarios, traits, sais")

    set_session_id(payload.session_id)
    bind_context(methodology=payload.methodology)
    cache = services.scoring_cache
    cache.purge_expired()

    key = cache_key(payload.session_id, payload.methodology, payload.is_interim, payload.responses)
    cached = cache.get(key)
    if cached is not None:
        logger.debug("Scoring cache hit")
        return ok(dump(cached.model_copy(update={"cache_hit": True})))

    sanitized = sanitize_responses(payload.responses)
    validation = validate_responses(sanitized, payload.methodology)
    if not validation.is_valid:
        return fail(400, "Invalid responses", data={"errors": [dump(e) for e in validation.errors]})

    result = calculate(
        payload.session_id,
        parse_responses(sanitized),
        payload.methodology,
        is_interim=payload.is_interim,
    )
    results = MBTIResults(**result.model_dump(), calculated_at=services.clock(), cache_hit=False)
    cache.set(key, results)
    logger.info("Results calculated", extra={"mbti_type": results.mbti_type, "methodology": results.methodology})
    return ok(dump(results))


@router.post("/calculate-interim")
def calculate_interim_results(payload: InterimRequest, services: Services = Depends(get_services)):
    if not services.settings.interim_api_enabled:
        return fail(503, "Interim results are temporarily unavailable", fallback=True, redirect="/assessment/calculate")

    if not payload.session_id or not isinstance(payload.responses, list):
        return fail(400, "Missing required fields: sessionId, responses")

    set_session_id(payload.session_id)
    core = [r for r in payload.responses if isinstance(r, dict) and r.get("questionType") == "core"]
    if len(core) != CORE_QUESTIONS_COUNT or len(payload.responses) != CORE_QUESTIONS_COUNT:
        return fail(
            400,
            f"Invalid core responses count. Expected {CORE_QUESTIONS_COUNT}, got {len(core)}",
        )

    tagged = assign_positional_dimensions(sanitize_responses(core))
    for item in tagged:
        item["sessionId"] = item.get("sessionId") or payload.session_id
    validation = validate_responses(tagged, "scenarios")
    if not validation.is_valid:
        return fail(400, "Invalid responses", data={"errors": [dump(e) for e in validation.errors]})

    result = calculate_interim(parse_responses(tagged), payload.session_id)
    interim = build_interim_result(result, payload.language)
    return ok(dump(interim))
