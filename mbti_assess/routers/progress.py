from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from mbti_assess.dependencies import Services, get_services
from mbti_assess.routers.common import fail, ok
from mbti_assess.schemas.session import ProgressSaveRequest
from mbti_assess.utils.log import get_logger, set_session_id

logger = get_logger(__name__)

router = APIRouter(prefix="/assessment/progress", tags=["Progress"])


@router.post("")
def save_progress(payload: ProgressSaveRequest, services: Services = Depends(get_services)):
    set_session_id(payload.session_id)
    data = payload.session_data.model_dump(by_alias=True, mode="json")
    saved = services.progress.persist_session(payload.session_id, data)
    return ok({"sessionId": payload.session_id, "saved": saved["success"], "expiresAt": saved["expiresAt"]})


@router.get("")
def recover_progress(session_id: Optional[str] = Query(None, alias="sessionId"),
                     services: Services = Depends(get_services)):
    if not session_id:
        return fail(400, "sessionId is required")
    set_session_id(session_id)

    recovered = services.progress.recover_session(session_id)
    if recovered["sessionData"] is None and not recovered["isExpired"]:
        return fail(404, "Session not found")
    return ok(recovered)


@router.delete("")
def delete_progress(session_id: Optional[str] = Query(None, alias="sessionId"),
                    services: Services = Depends(get_services)):
    if not session_id:
        return fail(400, "sessionId is required")
    set_session_id(session_id)
    return ok({"deleted": services.delete_session(session_id)})
