from __future__ import annotations

import hashlib
import json
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from mbti_assess.utils.timing import utcnow


def cache_key(session_id: str, methodology: str, is_interim: bool, responses: Any) -> str:
    """Digest of the whole request; two requests share a key only if every byte matches."""
    body = json.dumps(
        {"sessionId": session_id, "methodology": methodology, "isInterim": is_interim, "responses": responses},
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class ScoringCache:
    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[datetime, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            stored_at, value = hit
            if self.clock() - stored_at >= self.ttl:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self.clock(), value)

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            stale = [k for k, (at, _) in self._entries.items() if now - at >= self.ttl]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
