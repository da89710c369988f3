from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from mbti_assess.models.session import SessionEntry
from mbti_assess.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class StoredEntry:
    key: str
    value: Dict[str, Any]
    saved_at: datetime
    expires_at: Optional[datetime] = None


class KeyValueStore(ABC):
    """get / set / delete / list_expired. Expiry is data, never enforced on read."""

    @abstractmethod
    def get(self, key: str) -> Optional[StoredEntry]:
        ...

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], expires_at: Optional[datetime] = None,
            saved_at: Optional[datetime] = None) -> StoredEntry:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def list_expired(self, now: datetime) -> List[str]:
        ...


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, StoredEntry] = {}

    def get(self, key: str) -> Optional[StoredEntry]:
        with self._lock:
            entry = self._items.get(key)
            return copy.deepcopy(entry) if entry else None

    def set(self, key, value, expires_at=None, saved_at=None) -> StoredEntry:
        entry = StoredEntry(
            key=key,
            value=copy.deepcopy(value),
            saved_at=saved_at or datetime.utcnow(),
            expires_at=expires_at,
        )
        with self._lock:
            self._items[key] = entry
        return copy.deepcopy(entry)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def list_expired(self, now: datetime) -> List[str]:
        with self._lock:
            return [k for k, e in self._items.items() if e.expires_at is not None and e.expires_at < now]


class SqlKeyValueStore(KeyValueStore):
    """Same contract on top of the session_entries table, one namespace per store."""

    def __init__(self, session_factory: Callable[[], Session] | sessionmaker, namespace: str):
        self._session_factory = session_factory
        self.namespace = namespace

    def _to_entry(self, row: SessionEntry) -> StoredEntry:
        return StoredEntry(key=row.key, value=row.value, saved_at=row.saved_at, expires_at=row.expires_at)

    def get(self, key: str) -> Optional[StoredEntry]:
        with self._session_factory() as db:
            row = db.get(SessionEntry, (self.namespace, key))
            return self._to_entry(row) if row else None

    def set(self, key, value, expires_at=None, saved_at=None) -> StoredEntry:
        saved_at = saved_at or datetime.utcnow()
        with self._session_factory() as db:
            row = db.get(SessionEntry, (self.namespace, key))
            if row is None:
                row = SessionEntry(namespace=self.namespace, key=key)
                db.add(row)
            row.value = value
            row.saved_at = saved_at
            row.expires_at = expires_at
            db.commit()
            db.refresh(row)
            return self._to_entry(row)

    def delete(self, key: str) -> bool:
        with self._session_factory() as db:
            row = db.get(SessionEntry, (self.namespace, key))
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def list_expired(self, now: datetime) -> List[str]:
        with self._session_factory() as db:
            rows = (
                db.query(SessionEntry.key)
                .filter(SessionEntry.namespace == self.namespace)
                .filter(SessionEntry.expires_at.isnot(None))
                .filter(SessionEntry.expires_at < now)
                .all()
            )
            return [k for (k,) in rows]


def cleanup_expired_sessions(store: KeyValueStore, now: datetime) -> int:
    """Deletes every key the store reports as expired; returns how many went."""
    cleaned = 0
    for key in store.list_expired(now):
        if store.delete(key):
            cleaned += 1
    if cleaned:
        logger.info("Removed expired entries", extra={"count": cleaned})
    return cleaned
