from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from mbti_assess.config import (
    CORE_SESSION_TIMEOUT,
    EXPIRATION_WARNING,
    EXTENDED_SESSION_TIMEOUT,
    SESSION_EXTENSION_INTERVAL,
)
from mbti_assess.utils.kv_store import KeyValueStore
from mbti_assess.utils.log import get_logger
from mbti_assess.utils.timing import Scheduler, utcnow

logger = get_logger(__name__)

PHASES = ("core", "extended")
FORMAT_STEPS = {"questions", "results", "coaching"}


# --------------------- Record ---------------------

@dataclass
class SessionRecord:
    session_id: str
    phase: str
    created_at: datetime
    last_active_at: datetime
    expires_at: datetime
    extended_phase_started_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "phase": self.phase,
            "createdAt": self.created_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "extendedPhaseStartedAt": (
                self.extended_phase_started_at.isoformat() if self.extended_phase_started_at else None
            ),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SessionRecord":
        """Raises KeyError / ValueError / TypeError on malformed data."""
        phase = data["phase"]
        if phase not in PHASES:
            raise ValueError(f"Unknown session phase: {phase}")
        started = data.get("extendedPhaseStartedAt")
        return SessionRecord(
            session_id=str(data["sessionId"]),
            phase=phase,
            created_at=datetime.fromisoformat(data["createdAt"]),
            last_active_at=datetime.fromisoformat(data["lastActiveAt"]),
            expires_at=datetime.fromisoformat(data["expiresAt"]),
            extended_phase_started_at=datetime.fromisoformat(started) if started else None,
        )


def timeout_for_phase(phase: str) -> timedelta:
    return EXTENDED_SESSION_TIMEOUT if phase == "extended" else CORE_SESSION_TIMEOUT


def format_time_remaining(remaining: timedelta) -> str:
    total = int(remaining.total_seconds())
    if total <= 0:
        return "Expired"
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


# --------------------- Lifecycle ---------------------

class SessionLifecycle:
    """
    Phase-based session timing: core (3h) -> extended (48h), one way only.
    Expiry is never stored as a state; it is the predicate now > expires_at,
    re-evaluated on every read.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utcnow,
        scheduler: Optional[Scheduler] = None,
    ):
        self.store = store
        self.clock = clock
        self.scheduler = scheduler
        self._extension_timers: Dict[str, Any] = {}

    # ---------- storage ----------

    def get(self, session_id: str) -> Optional[SessionRecord]:
        entry = self.store.get(session_id)
        if entry is None:
            return None
        try:
            return SessionRecord.from_dict(entry.value)
        except (KeyError, ValueError, TypeError):
            logger.warning("Corrupt session record treated as missing", extra={"key": session_id})
            return None

    def _save(self, record: SessionRecord) -> None:
        self.store.set(record.session_id, record.to_dict(), expires_at=record.expires_at, saved_at=self.clock())

    # ---------- transitions ----------

    def initialize(self, session_id: str, phase: str = "core") -> SessionRecord:
        if phase not in PHASES:
            raise ValueError(f"Unknown session phase: {phase}")
        now = self.clock()
        record = SessionRecord(
            session_id=session_id,
            phase=phase,
            created_at=now,
            last_active_at=now,
            expires_at=now + timeout_for_phase(phase),
            extended_phase_started_at=now if phase == "extended" else None,
        )
        self._save(record)
        self.start_auto_extension(session_id)
        logger.info("Session initialized", extra={"phase": phase})
        return record

    def transition_to_extended(self, session_id: str) -> Optional[SessionRecord]:
        """
        core -> extended: stamps extended_phase_started_at and resets the window to
        now + 48h. Returns None when there is no live session with this id.
        An already extended session is returned unchanged.
        """
        record = self.get(session_id)
        if record is None or record.session_id != session_id or self.is_expired(record):
            return None
        if record.phase == "extended":
            return record

        now = self.clock()
        record.phase = "extended"
        record.extended_phase_started_at = now
        record.last_active_at = now
        record.expires_at = now + EXTENDED_SESSION_TIMEOUT
        self._save(record)
        logger.info("Session moved to extended phase")
        return record

    def update_activity(self, session_id: str) -> Optional[SessionRecord]:
        """
        Sliding keep-alive: an extended session that saw activity within the last
        5 minutes gets expires_at = now + 48h. Core sessions never slide.
        No-op (None) for a missing or already expired session.
        """
        record = self.get(session_id)
        if record is None or self.is_expired(record):
            return None

        now = self.clock()
        if record.phase == "extended" and now - record.last_active_at < SESSION_EXTENSION_INTERVAL:
            record.expires_at = now + EXTENDED_SESSION_TIMEOUT
            self._save(record)
        return record

    def record_activity(self, session_id: str) -> Optional[SessionRecord]:
        """Marks user activity now, then applies the keep-alive rule."""
        record = self.get(session_id)
        if record is None or self.is_expired(record):
            return None
        record.last_active_at = self.clock()
        self._save(record)
        return self.update_activity(session_id)

    # ---------- predicates / accessors ----------

    def is_expired(self, record: Optional[SessionRecord] = None, session_id: Optional[str] = None) -> bool:
        # No data at all counts as expired
        if record is None and session_id is not None:
            record = self.get(session_id)
        if record is None:
            return True
        return self.clock() > record.expires_at

    def current_phase(self, session_id: str) -> Optional[str]:
        record = self.get(session_id)
        return record.phase if record else None

    def is_extended_phase(self, session_id: str) -> bool:
        return self.current_phase(session_id) == "extended"

    def time_remaining(self, session_id: str) -> timedelta:
        record = self.get(session_id)
        if record is None or self.is_expired(record):
            return timedelta(0)
        return max(timedelta(0), record.expires_at - self.clock())

    def validate_state(self, assessment_state: Dict[str, Any]) -> bool:
        """
        Cross-checks an assessment state against its session: same id, not expired,
        and the phase matches whether a format was chosen and the step is past
        format selection.
        """
        session_id = assessment_state.get("sessionId")
        record = self.get(session_id) if session_id else None
        if record is None or record.session_id != session_id:
            return False
        if self.is_expired(record):
            return False

        has_selected_format = (
            assessment_state.get("selectedFormat") is not None
            and assessment_state.get("currentStep") in FORMAT_STEPS
        )
        if has_selected_format:
            return record.phase == "extended"
        return record.phase == "core"

    def summary(self, session_id: str) -> Dict[str, Any]:
        record = self.get(session_id)
        if record is None or self.is_expired(record):
            return {"isActive": False, "phase": None, "timeRemaining": "0h 0m", "expiresAt": None}

        remaining = self.time_remaining(session_id)
        hours, rest = divmod(int(remaining.total_seconds()), 3600)
        return {
            "isActive": True,
            "phase": record.phase,
            "timeRemaining": f"{hours}h {rest // 60}m",
            "expiresAt": record.expires_at.isoformat(),
        }

    # ---------- cleanup ----------

    def clear(self, session_id: str) -> bool:
        self.stop_auto_extension(session_id)
        return self.store.delete(session_id)

    def cleanup_expired_session(self, session_id: str) -> bool:
        record = self.get(session_id)
        if record is not None and self.is_expired(record):
            return self.clear(session_id)
        return False

    # ---------- keep-alive poll ----------

    def start_auto_extension(self, session_id: str) -> None:
        """
        Polls update_activity every 5 minutes while the session is alive. This is a
        convenience only: correctness rests on the expiry predicate.
        """
        if self.scheduler is None:
            return
        self.stop_auto_extension(session_id)
        delay = SESSION_EXTENSION_INTERVAL.total_seconds()

        def tick():
            self._extension_timers.pop(session_id, None)
            if self.update_activity(session_id) is not None:
                self._extension_timers[session_id] = self.scheduler.schedule(delay, tick)

        self._extension_timers[session_id] = self.scheduler.schedule(delay, tick)

    def stop_auto_extension(self, session_id: str) -> None:
        handle = self._extension_timers.pop(session_id, None)
        if handle is not None and self.scheduler is not None:
            self.scheduler.cancel(handle)


# --------------------- Expiry monitor ---------------------

class ExpirationMonitor:
    """Fires on_warning 10 minutes before expiry and on_expiration at expiry."""

    def __init__(self, scheduler: Scheduler, clock: Callable[[], datetime] = utcnow):
        self.scheduler = scheduler
        self.clock = clock
        self._timers: Dict[str, Dict[str, Any]] = {}

    def monitor(
        self,
        session_id: str,
        expires_at: datetime,
        on_warning: Optional[Callable[[], Any]] = None,
        on_expiration: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.clear(session_id)
        remaining = (expires_at - self.clock()).total_seconds()

        if remaining <= 0:
            if on_expiration:
                on_expiration()
            return

        timers: Dict[str, Any] = {}
        warning_delay = remaining - EXPIRATION_WARNING.total_seconds()
        if on_warning and warning_delay > 0:
            def warn():
                self._timers.get(session_id, {}).pop("warning", None)
                on_warning()
            timers["warning"] = self.scheduler.schedule(warning_delay, warn)

        if on_expiration:
            def expire():
                self._timers.pop(session_id, None)
                on_expiration()
            timers["expiration"] = self.scheduler.schedule(remaining, expire)

        self._timers[session_id] = timers

    def clear(self, session_id: str) -> None:
        for handle in self._timers.pop(session_id, {}).values():
            self.scheduler.cancel(handle)

    def cleanup(self) -> None:
        for session_id in list(self._timers):
            self.clear(session_id)
