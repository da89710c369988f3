from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict

from mbti_assess.utils.kv_store import KeyValueStore, cleanup_expired_sessions
from mbti_assess.utils.log import get_logger
from mbti_assess.utils.session_lifecycle import timeout_for_phase
from mbti_assess.utils.timing import utcnow

logger = get_logger(__name__)


class ProgressStore:
    """
    Server-side progress backups keyed by session id. An entry lives 48h once a
    format was picked and 3h before that; expired entries are swept lazily on
    every call instead of by a background job.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def sweep(self) -> int:
        return cleanup_expired_sessions(self.store, self.clock())

    def persist_session(self, session_id: str, session_data: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock()
        phase = "extended" if session_data.get("selectedFormat") else "core"
        expires_at = now + timeout_for_phase(phase)

        data = dict(session_data)
        data.setdefault("startTime", now.isoformat())
        data["coreResponses"] = data.get("coreResponses") or []
        data["extendedResponses"] = data.get("extendedResponses") or []

        self.store.set(session_id, data, expires_at=expires_at, saved_at=now)
        self.sweep()
        logger.info("Progress saved", extra={"phase": phase})
        return {"success": True, "expiresAt": expires_at.isoformat()}

    def recover_session(self, session_id: str) -> Dict[str, Any]:
        """
        Returns {sessionData, lastSaved, isExpired}. An expired backup is deleted on
        the way out but still reported as expired, not as missing.
        """
        entry = self.store.get(session_id)
        if entry is None:
            self.sweep()
            return {"sessionData": None, "lastSaved": None, "isExpired": False}

        expired = entry.expires_at is not None and self.clock() > entry.expires_at
        if expired:
            self.store.delete(session_id)
            self.sweep()
            return {"sessionData": None, "lastSaved": entry.saved_at.isoformat(), "isExpired": True}

        self.sweep()
        return {"sessionData": entry.value, "lastSaved": entry.saved_at.isoformat(), "isExpired": False}

    def delete_session(self, session_id: str) -> Dict[str, Any]:
        deleted = self.store.delete(session_id)
        return {"deleted": deleted}
