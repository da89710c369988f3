from __future__ import annotations

import copy
import threading
from typing import Any, Callable, Dict, Optional

from mbti_assess.utils.log import get_logger
from mbti_assess.utils.timing import Scheduler

logger = get_logger(__name__)


class DebouncedSaver:
    """
    Coalesces rapid state changes per session: each request replaces the pending
    snapshot and restarts the quiet period, so only the latest complete state is
    written. SAIS point allocation fires often, hence its shorter window.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        save: Callable[[str, Dict[str, Any]], Any],
        sais_delay_ms: int = 500,
        default_delay_ms: int = 2000,
    ):
        self.scheduler = scheduler
        self.save = save
        self.sais_delay_ms = sais_delay_ms
        self.default_delay_ms = default_delay_ms
        self._lock = threading.Lock()
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._handles: Dict[str, Any] = {}

    def delay_for(self, methodology: Optional[str]) -> float:
        ms = self.sais_delay_ms if methodology == "sais" else self.default_delay_ms
        return ms / 1000.0

    def request_save(self, session_id: str, state: Dict[str, Any], methodology: Optional[str] = None) -> None:
        # Snapshot now; later mutation of the caller's dict must not leak into the write
        snapshot = copy.deepcopy(state)
        with self._lock:
            self._pending[session_id] = snapshot
            old = self._handles.pop(session_id, None)
        if old is not None:
            self.scheduler.cancel(old)
        handle = self.scheduler.schedule(self.delay_for(methodology), lambda: self.flush(session_id))
        with self._lock:
            self._handles[session_id] = handle

    def flush(self, session_id: str) -> bool:
        """Writes the pending snapshot now, if any. Returns True when something was written."""
        with self._lock:
            snapshot = self._pending.pop(session_id, None)
            handle = self._handles.pop(session_id, None)
        if handle is not None:
            self.scheduler.cancel(handle)
        if snapshot is None:
            return False
        try:
            self.save(session_id, snapshot)
        except Exception:
            logger.exception("Autosave failed", extra={"key": session_id})
            return False
        return True

    def flush_all(self) -> int:
        with self._lock:
            session_ids = list(self._pending)
        return sum(1 for sid in session_ids if self.flush(sid))

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._pending.pop(session_id, None)
            handle = self._handles.pop(session_id, None)
        if handle is not None:
            self.scheduler.cancel(handle)

    def has_pending(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._pending
