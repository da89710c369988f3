from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from mbti_assess.config import (
    CORE_QUESTIONS_COUNT,
    PROGRESS_MILESTONES,
    QUESTION_POOLS,
    TOTAL_QUESTIONS,
)
from mbti_assess.errors import PhaseViolation, SessionExpired, SessionNotFound
from mbti_assess.schemas.response import DistributionResponse, dump_response, parse_response, parse_responses
from mbti_assess.schemas.scoring import InterimResult, ScoringResult, ValidationIssue, ValidationResult
from mbti_assess.utils.autosave import DebouncedSaver
from mbti_assess.utils.compression import SAISStorage
from mbti_assess.utils.content_loader import normalize_language
from mbti_assess.utils.kv_store import KeyValueStore
from mbti_assess.utils.log import get_logger
from mbti_assess.utils.progress_store import ProgressStore
from mbti_assess.utils.scoring import build_interim_result, calculate, calculate_interim, round_half_up
from mbti_assess.utils.session_lifecycle import SessionLifecycle, SessionRecord
from mbti_assess.utils.timing import utcnow
from mbti_assess.utils.validation import sanitize_responses, validate_methodology, validate_responses

logger = get_logger(__name__)

RECOVERED = "restored"
EXPIRED = "expired"
NOT_FOUND = "not_found"


@dataclass
class RecoveryOutcome:
    status: str                      # restored | expired | not_found
    state: Optional[Dict[str, Any]] = None
    tier: Optional[str] = None


# --------------------- State helpers ---------------------

def initial_state(session_id: str, language: str, now: datetime) -> Dict[str, Any]:
    return {
        "sessionId": session_id,
        "currentStep": "core-questions",
        "language": language,
        "responses": [],
        "coreResponses": [],
        "extendedResponses": [],
        "selectedFormat": None,
        "progress": 0,
        "isComplete": False,
        "startTime": now.isoformat(),
        "completionTime": None,
        "calculatedType": None,
        "confidence": None,
        "interimResults": None,
        "formatProgress": None,
        "results": None,
    }


def _replace_or_append(items: List[Dict[str, Any]], response: Dict[str, Any]) -> List[Dict[str, Any]]:
    # Re-answering overwrites in place; the question keeps its original position
    for i, existing in enumerate(items):
        if existing.get("questionId") == response["questionId"]:
            return items[:i] + [response] + items[i + 1:]
    return items + [response]


def calculate_progress(state: Dict[str, Any]) -> int:
    core = len(state.get("coreResponses") or [])
    fmt = state.get("selectedFormat")
    if not fmt or not state.get("formatProgress"):
        return round_half_up(core / CORE_QUESTIONS_COUNT * PROGRESS_MILESTONES["core_complete"])
    done = core + len(state.get("extendedResponses") or [])
    total = state["formatProgress"]["totalQuestions"]
    return min(PROGRESS_MILESTONES["assessment_complete"], round_half_up(done / total * 100))


# --------------------- Service ---------------------

class AssessmentService:
    """
    Runs one assessment per session id:
      response -> validation -> phase check -> live state -> debounced persistence,
    and scoring on submission boundaries (interim after the core questions, final
    after the chosen format). The live state is a plain JSON-able dict.
    """

    def __init__(
        self,
        live: KeyValueStore,
        lifecycle: SessionLifecycle,
        storage: SAISStorage,
        saver_factory: Callable[[Callable[[str, Dict[str, Any]], Any]], DebouncedSaver],
        clock: Callable[[], datetime] = utcnow,
        progress: Optional[ProgressStore] = None,
    ):
        self.live = live
        self.progress = progress
        self.lifecycle = lifecycle
        self.storage = storage
        self.clock = clock
        self.autosave = saver_factory(self.persist)
        self._lock = threading.RLock()

    # ---------- persistence ----------

    def persist(self, session_id: str, state: Dict[str, Any]) -> bool:
        """Writes a snapshot (with the session record) through every storage tier."""
        snapshot = {k: v for k, v in state.items() if k != "responses"}
        record = self.lifecycle.get(session_id)
        if record is not None:
            snapshot["session"] = record.to_dict()
        ok = self.storage.store_assessment(session_id, snapshot)
        if not ok:
            logger.error("Snapshot could not be written to any tier", extra={"key": session_id})
        return ok

    def _commit(self, state: Dict[str, Any], flush: bool = False) -> Dict[str, Any]:
        session_id = state["sessionId"]
        self.live.set(session_id, state, saved_at=self.clock())
        self.autosave.request_save(session_id, state, state.get("selectedFormat"))
        if flush:
            self.autosave.flush(session_id)
        return state

    @staticmethod
    def _snapshot_record(data: Dict[str, Any]) -> Optional[SessionRecord]:
        if not isinstance(data.get("session"), dict):
            return None
        try:
            return SessionRecord.from_dict(data["session"])
        except (KeyError, ValueError, TypeError):
            return None

    def _missing(self, session_id: str) -> Exception:
        """
        Picks the error for a session with no live state. Once the expiry window
        has closed the persisted record still answers, so an expired session is
        never reported as unknown.
        """
        record = self.lifecycle.get(session_id)
        if record is None:
            found = self.storage.retrieve_assessment(session_id)
            record = self._snapshot_record(found[0]) if found else None
        if record is not None and self.lifecycle.is_expired(record):
            return SessionExpired(f"Session {session_id} has expired")
        return SessionNotFound(f"Session {session_id} not found")

    def _load(self, session_id: str) -> Dict[str, Any]:
        entry = self.live.get(session_id)
        if entry is None:
            raise self._missing(session_id)
        if self.lifecycle.is_expired(session_id=session_id):
            raise SessionExpired(f"Session {session_id} has expired")
        return entry.value

    # ---------- lifecycle ----------

    def start(self, language: str = "en", session_id: Optional[str] = None) -> Dict[str, Any]:
        session_id = session_id or str(uuid4())
        with self._lock:
            self.lifecycle.initialize(session_id, "core")
            state = initial_state(session_id, normalize_language(language), self.clock())
            return self._commit(state)

    def get_state(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            return self._load(session_id)

    def select_format(self, session_id: str, methodology: str) -> Dict[str, Any]:
        if not validate_methodology(methodology):
            raise ValueError("Invalid methodology. Must be one of: scenarios, traits, sais")
        with self._lock:
            state = self._load(session_id)
            if state.get("selectedFormat") and state["selectedFormat"] != methodology:
                raise PhaseViolation("A format has already been selected for this session")
            if self.lifecycle.transition_to_extended(session_id) is None:
                raise SessionNotFound(f"Session {session_id} not found")

            state["selectedFormat"] = methodology
            state["formatProgress"] = {
                "totalQuestions": TOTAL_QUESTIONS[methodology],
                "currentQuestionIndex": len(state.get("extendedResponses") or []),
                "completedQuestions": CORE_QUESTIONS_COUNT,
                "questionPool": QUESTION_POOLS[methodology],
            }
            state["progress"] = PROGRESS_MILESTONES["format_selected"]
            state["currentStep"] = "questions"
            return self._commit(state, flush=True)

    def touch(self, session_id: str) -> SessionRecord:
        record = self.lifecycle.record_activity(session_id)
        if record is None:
            if self.lifecycle.get(session_id) is None:
                raise self._missing(session_id)
            raise SessionExpired(f"Session {session_id} has expired")
        return record

    def summary(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            state = self._load(session_id)
            return {
                **self.lifecycle.summary(session_id),
                "sessionId": session_id,
                "currentStep": state.get("currentStep"),
                "selectedFormat": state.get("selectedFormat"),
                "progress": state.get("progress"),
                "answered": len(state.get("responses") or []),
                "stateConsistent": self.lifecycle.validate_state(state),
            }

    # ---------- responses ----------

    def record_response(self, session_id: str, raw: Dict[str, Any]) -> Tuple[ValidationResult, Dict[str, Any]]:
        """
        Validates one raw response and stores it, replacing any earlier answer to
        the same question. Extended responses are refused in core phase.
        Returns the validation result and the (possibly unchanged) state.
        """
        with self._lock:
            state = self._load(session_id)

            item = sanitize_responses([{**(raw or {}), "sessionId": (raw or {}).get("sessionId") or session_id}])[0]
            if item["sessionId"] != session_id:
                issue = ValidationIssue(
                    field="responses[0].sessionId",
                    message="Response belongs to a different session",
                    code="SESSION_MISMATCH",
                )
                return ValidationResult(is_valid=False, errors=[issue]), state

            methodology = state.get("selectedFormat") or "scenarios"
            validation = validate_responses([item], methodology)
            if not validation.is_valid:
                return validation, state

            response = parse_response(item)
            if methodology == "sais" and response.question_type == "extended" and not isinstance(response, DistributionResponse):
                issue = ValidationIssue(
                    field="responses[0].responseType",
                    message="SAIS questions take a point distribution",
                    code="INVALID_RESPONSE_TYPE",
                )
                return ValidationResult(is_valid=False, errors=[issue]), state
            if response.question_type == "extended" and not self.lifecycle.is_extended_phase(session_id):
                raise PhaseViolation("Extended responses require a selected format")

            stored = dump_response(response)
            phase_key = "coreResponses" if response.question_type == "core" else "extendedResponses"
            state["responses"] = _replace_or_append(state.get("responses") or [], stored)
            state[phase_key] = _replace_or_append(state.get(phase_key) or [], stored)
            # A question lives in one phase list only
            other_key = "extendedResponses" if phase_key == "coreResponses" else "coreResponses"
            state[other_key] = [r for r in state.get(other_key) or [] if r.get("questionId") != stored["questionId"]]

            if state.get("formatProgress"):
                extended = len(state.get("extendedResponses") or [])
                state["formatProgress"] = {
                    **state["formatProgress"],
                    "currentQuestionIndex": extended,
                    "completedQuestions": CORE_QUESTIONS_COUNT + extended,
                }
            state["progress"] = calculate_progress(state)

            self.lifecycle.record_activity(session_id)
            return validation, self._commit(state)

    # ---------- scoring ----------

    def interim(self, session_id: str, language: Optional[str] = None) -> InterimResult:
        with self._lock:
            state = self._load(session_id)
            core = state.get("coreResponses") or []
            if len(core) != CORE_QUESTIONS_COUNT:
                raise PhaseViolation(
                    f"Invalid core responses count. Expected {CORE_QUESTIONS_COUNT}, got {len(core)}"
                )
            lang = normalize_language(language or state.get("language"))
            result = build_interim_result(calculate_interim(parse_responses(core), session_id), lang)

            state["interimResults"] = {
                "mbtiType": result.mbti_type,
                "confidence": result.confidence,
                "insights": result.insights,
                "disclaimer": result.disclaimer,
            }
            state["currentStep"] = "interim-results"
            self._commit(state, flush=True)
            return result

    def submit(self, session_id: str) -> ScoringResult:
        """Scores every stored response with the chosen format and caches the result in the state."""
        with self._lock:
            state = self._load(session_id)
            methodology = state.get("selectedFormat")
            if not methodology:
                raise PhaseViolation("Select a format before submitting")

            responses = parse_responses(state.get("responses") or [])
            result = calculate(session_id, responses, methodology, language=state.get("language") or "en")

            now = self.clock()
            state["calculatedType"] = result.mbti_type
            state["confidence"] = result.overall_confidence
            state["results"] = {
                "mbtiType": result.mbti_type,
                "scores": {s.dimension: s.confidence for s in result.dimension_scores},
                "confidence": result.overall_confidence,
                "methodology": methodology,
            }
            state["isComplete"] = True
            state["currentStep"] = "results"
            state["completionTime"] = now.isoformat()
            state["progress"] = PROGRESS_MILESTONES["assessment_complete"]
            self._commit(state, flush=True)
            logger.info("Assessment scored", extra={"mbti_type": result.mbti_type, "methodology": methodology})
            return result

    # ---------- recovery / cleanup ----------

    def recover(self, session_id: str) -> RecoveryOutcome:
        """
        Looks the session up in persistent storage. A live, unexpired snapshot is
        restored as current; an expired one is reported as such, distinct from
        nothing found.
        """
        with self._lock:
            self.autosave.flush(session_id)
            found = self.storage.retrieve_assessment(session_id)
            if found is None:
                return RecoveryOutcome(status=NOT_FOUND)

            data, tier = found
            record = self.lifecycle.get(session_id) or self._snapshot_record(data)

            if self.lifecycle.is_expired(record):
                logger.info("Persisted session has expired", extra={"tier": tier})
                return RecoveryOutcome(status=EXPIRED, tier=tier)

            if self.lifecycle.get(session_id) is None:
                self.lifecycle.store.set(session_id, record.to_dict(), expires_at=record.expires_at)
                self.lifecycle.start_auto_extension(session_id)

            state = {k: v for k, v in data.items() if k != "session"}
            state["coreResponses"] = state.get("coreResponses") or []
            state["extendedResponses"] = state.get("extendedResponses") or []
            state["responses"] = state["coreResponses"] + state["extendedResponses"]
            self.live.set(session_id, state, saved_at=self.clock())

            if not self.lifecycle.validate_state(state):
                logger.warning("Recovered state does not match session phase", extra={"tier": tier})
            return RecoveryOutcome(status=RECOVERED, state=state, tier=tier)

    def clear(self, session_id: str) -> bool:
        """
        Drops the session everywhere: pending save, live state, lifecycle record,
        every storage tier with the compressed side key, and the progress backup.
        """
        with self._lock:
            self.autosave.discard(session_id)
            existed = self.live.delete(session_id)
            existed = self.lifecycle.clear(session_id) or existed
            existed = self.storage.retrieve_assessment(session_id) is not None or existed
            self.storage.cleanup(session_id)
            if self.progress is not None:
                existed = self.progress.delete_session(session_id)["deleted"] or existed
            return existed

    def expire(self, session_id: str) -> bool:
        """
        Called once the expiry window has closed: a final snapshot is written, the
        live state dropped. Persisted data stays so recovery can report it expired.
        """
        with self._lock:
            record = self.lifecycle.get(session_id)
            if record is None or not self.lifecycle.is_expired(record):
                return False
            # Last snapshot carries the final session record
            entry = self.live.get(session_id)
            self.autosave.discard(session_id)
            if entry is not None:
                self.persist(session_id, entry.value)
            self.live.delete(session_id)
            self.lifecycle.clear(session_id)
            logger.info("Session expired")
            return True

    def restart(self, session_id: str) -> Dict[str, Any]:
        """Clears the session and starts a fresh one in the same language."""
        language = "en"
        entry = self.live.get(session_id)
        if entry is not None:
            language = entry.value.get("language") or "en"
        self.clear(session_id)
        return self.start(language=language)
