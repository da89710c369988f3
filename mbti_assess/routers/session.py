from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from mbti_assess.dependencies import Services, get_services
from mbti_assess.routers.common import dump, fail, ok
from mbti_assess.schemas.scoring import MBTIResults
from mbti_assess.schemas.session import ImportRequest, InterimLanguageRequest, SelectFormatRequest, StartSessionRequest
from mbti_assess.utils.assessment import EXPIRED, NOT_FOUND
from mbti_assess.utils.log import bind_context, get_logger, set_session_id

logger = get_logger(__name__)

router = APIRouter(prefix="/session", tags=["Session"])


# --------------------- Lifecycle ---------------------

@router.post("/start")
def start_session(payload: Optional[StartSessionRequest] = None, services: Services = Depends(get_services)):
    language = payload.language if payload else "en"
    state = services.assessments.start(language=language)
    set_session_id(state["sessionId"])
    services.watch(state["sessionId"])
    return ok({"state": state, "session": services.lifecycle.summary(state["sessionId"])}, status_code=201)


@router.post("/{session_id}/format")
def select_format(session_id: str, payload: SelectFormatRequest, services: Services = Depends(get_services)):
    set_session_id(session_id)
    bind_context(methodology=payload.methodology)
    try:
        state = services.assessments.select_format(session_id, payload.methodology)
    except ValueError as e:
        return fail(400, str(e))
    services.watch(session_id)
    return ok({"state": state, "session": services.lifecycle.summary(session_id)})


@router.post("/{session_id}/activity")
def record_activity(session_id: str, services: Services = Depends(get_services)):
    set_session_id(session_id)
    services.assessments.touch(session_id)
    services.watch(session_id)
    return ok(services.lifecycle.summary(session_id))


@router.get("/{session_id}")
def get_session(session_id: str, services: Services = Depends(get_services)):
    set_session_id(session_id)
    return ok({
        "state": services.assessments.get_state(session_id),
        "session": services.assessments.summary(session_id),
    })


# --------------------- Responses / scoring ---------------------

@router.post("/{session_id}/responses")
def record_response(session_id: str, payload: Dict[str, Any] = Body(...),
                    services: Services = Depends(get_services)):
    set_session_id(session_id)
    validation, state = services.assessments.record_response(session_id, payload)
    if not validation.is_valid:
        return fail(400, "Invalid response", data={"errors": [dump(e) for e in validation.errors]})
    services.watch(session_id)
    return ok({"state": state, "progress": state["progress"]})


@router.post("/{session_id}/interim")
def interim_results(session_id: str, payload: Optional[InterimLanguageRequest] = None,
                    services: Services = Depends(get_services)):
    set_session_id(session_id)
    language = payload.language if payload else None
    return ok(dump(services.assessments.interim(session_id, language)))


@router.post("/{session_id}/submit")
def submit_assessment(session_id: str, services: Services = Depends(get_services)):
    set_session_id(session_id)
    result = services.assessments.submit(session_id)
    results = MBTIResults(**result.model_dump(), calculated_at=services.clock())
    return ok(dump(results))


# --------------------- Recovery / cleanup ---------------------

@router.get("/{session_id}/recover")
def recover_session(session_id: str, services: Services = Depends(get_services)):
    set_session_id(session_id)
    outcome = services.assessments.recover(session_id)
    if outcome.status == NOT_FOUND:
        return fail(404, "No saved assessment for this session", data={"status": outcome.status})
    if outcome.status == EXPIRED:
        return fail(410, "Saved assessment has expired", data={"status": outcome.status, "tier": outcome.tier})
    services.watch(session_id)
    return ok({"status": outcome.status, "tier": outcome.tier, "state": outcome.state})


@router.delete("/{session_id}")
def delete_session(session_id: str, services: Services = Depends(get_services)):
    set_session_id(session_id)
    return ok({"deleted": services.delete_session(session_id)})


@router.get("/{session_id}/export")
def export_session(session_id: str, services: Services = Depends(get_services)):
    services.assessments.autosave.flush(session_id)
    exported = services.sais_storage.export_assessment(session_id)
    if exported is None:
        return fail(404, "No saved assessment for this session")
    return ok({"exported": exported})


@router.post("/import")
def import_session(payload: ImportRequest, services: Services = Depends(get_services)):
    if not services.sais_storage.import_assessment(payload.exported):
        return fail(400, "Malformed export")
    return ok({"imported": True})
