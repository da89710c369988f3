from __future__ import annotations

import json
import math
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mbti_assess.errors import StorageError, StorageQuotaExceeded, StorageUnavailable
from mbti_assess.models.storage import StorageItem
from mbti_assess.utils.log import get_logger

logger = get_logger(__name__)


# --------------------- Backends ---------------------

class StorageBackend(ABC):
    """
    One storage tier holding serialized strings. Implementations raise StorageError
    subclasses; the tiered orchestrator is the only place that catches them.
    keys() is ordered oldest first so eviction can drop the oldest half.
    """
    name: str = "backend"

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def health_check(self) -> bool:
        probe = "__storage_test__"
        try:
            self.set(probe, "test")
            self.remove(probe)
            return True
        except StorageError:
            return False


class MemoryBackend(StorageBackend):
    """Last-resort tier: survives neither restarts nor process exit."""
    name = "memory"

    def __init__(self, max_items: int = 0, name: Optional[str] = None):
        self.max_items = max_items
        if name:
            self.name = name
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, str]" = OrderedDict()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if key not in self._items and self.max_items and len(self._items) >= self.max_items:
                raise StorageQuotaExceeded(f"memory quota of {self.max_items} items reached")
            self._items.pop(key, None)
            self._items[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class FileBackend(StorageBackend):
    """
    Scratch-directory tier: one JSON file per key, written to a temp file and moved
    into place with os.replace so a reader never sees a torn write.
    """
    name = "scratch"

    def __init__(self, directory: str | Path, max_items: int = 0):
        self.directory = Path(directory)
        self.max_items = max_items
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + ".json")

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"scratch directory unavailable: {e}") from e

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"scratch read failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._ensure_dir()
            path = self._path(key)
            if self.max_items and not path.exists() and len(self.keys()) >= self.max_items:
                raise StorageQuotaExceeded(f"scratch quota of {self.max_items} items reached")
            try:
                fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".part")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp, path)
            except OSError as e:
                raise StorageUnavailable(f"scratch write failed: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageUnavailable(f"scratch remove failed: {e}") from e

    def keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        try:
            files = [p for p in self.directory.glob("*.json") if p.is_file()]
            files.sort(key=lambda p: p.stat().st_mtime_ns)
        except OSError as e:
            raise StorageUnavailable(f"scratch listing failed: {e}") from e
        return [unquote(p.name[: -len(".json")]) for p in files]


class SqlBackend(StorageBackend):
    """Durable tier on the storage_items table."""
    name = "database"

    def __init__(self, session_factory: Callable[[], Session] | sessionmaker, max_items: int = 0):
        self._session_factory = session_factory
        self.max_items = max_items

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                row = db.get(StorageItem, key)
                return row.value if row else None
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"database read failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as db:
                row = db.get(StorageItem, key)
                if row is None:
                    if self.max_items and db.query(StorageItem).count() >= self.max_items:
                        raise StorageQuotaExceeded(f"database quota of {self.max_items} items reached")
                    row = StorageItem(key=key)
                    db.add(row)
                row.value = value
                row.updated_at = datetime.utcnow()
                db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"database write failed: {e}") from e

    def remove(self, key: str) -> None:
        try:
            with self._session_factory() as db:
                row = db.get(StorageItem, key)
                if row is not None:
                    db.delete(row)
                    db.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"database remove failed: {e}") from e

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as db:
                rows = db.query(StorageItem.key).order_by(StorageItem.updated_at.asc()).all()
                return [k for (k,) in rows]
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"database listing failed: {e}") from e


# --------------------- Orchestration ---------------------

@dataclass
class StorageResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    layer: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class TieredStorage:
    """
    Ordered list of backends, most durable first. Writes go to every tier and
    succeed if at least one tier accepted the value; reads return the first hit
    and report which tier served it.
    """

    def __init__(self, backends: List[StorageBackend]):
        if not backends:
            raise ValueError("TieredStorage needs at least one backend")
        self.backends = backends

    # ---------- write ----------

    def _evict_oldest_half(self, backend: StorageBackend) -> None:
        try:
            keys = backend.keys()
            for key in keys[: math.ceil(len(keys) / 2)]:
                backend.remove(key)
            logger.warning("Evicted oldest entries after quota error",
                           extra={"tier": backend.name, "evicted": math.ceil(len(keys) / 2)})
        except StorageError as e:
            logger.warning("Eviction failed", extra={"tier": backend.name, "error": str(e)})

    def _write_tier(self, backend: StorageBackend, key: str, value: str) -> Optional[str]:
        try:
            backend.set(key, value)
            return None
        except StorageQuotaExceeded:
            # One eviction pass, one retry
            self._evict_oldest_half(backend)
            try:
                backend.set(key, value)
                return None
            except StorageError as e:
                return f"quota exceeded after cleanup ({e})"
        except StorageError as e:
            return str(e)

    def set_item(self, key: str, value: Any) -> StorageResult:
        serialized = json.dumps(value, ensure_ascii=False, default=str)
        saved_to: List[str] = []
        errors: List[str] = []

        for backend in self.backends:
            error = self._write_tier(backend, key, serialized)
            if error is None:
                saved_to.append(backend.name)
            else:
                errors.append(f"{backend.name}: {error}")
                logger.warning("Storage tier write failed", extra={"tier": backend.name, "error": error})

        success = bool(saved_to)
        return StorageResult(
            success=success,
            data={
                "savedTo": len(saved_to),
                "tiers": saved_to,
                "layers": "all" if len(saved_to) == len(self.backends) else "partial",
            },
            error=None if success else "; ".join(errors),
            errors=errors,
        )

    # ---------- read ----------

    def get_item(self, key: str) -> StorageResult:
        for backend in self.backends:
            try:
                raw = backend.get(key)
            except StorageError as e:
                logger.warning("Storage tier read failed", extra={"tier": backend.name, "error": str(e)})
                continue
            if raw is None:
                continue
            try:
                return StorageResult(success=True, data=json.loads(raw), layer=backend.name)
            except ValueError:
                logger.warning("Corrupt payload skipped", extra={"tier": backend.name, "key": key})
                continue
        return StorageResult(success=False, error="Item not found in any storage layer")

    def get_raw(self, key: str) -> Optional[str]:
        """First non-empty serialized value, without decoding."""
        for backend in self.backends:
            try:
                raw = backend.get(key)
            except StorageError:
                continue
            if raw is not None:
                return raw
        return None

    def set_raw(self, key: str, raw: str) -> StorageResult:
        saved_to: List[str] = []
        errors: List[str] = []
        for backend in self.backends:
            error = self._write_tier(backend, key, raw)
            if error is None:
                saved_to.append(backend.name)
            else:
                errors.append(f"{backend.name}: {error}")
        return StorageResult(success=bool(saved_to), data={"savedTo": len(saved_to), "tiers": saved_to},
                             error=None if saved_to else "; ".join(errors), errors=errors)

    # ---------- remove ----------

    def remove_item(self, key: str) -> StorageResult:
        removed = 0
        for backend in self.backends:
            try:
                backend.remove(key)
                removed += 1
            except StorageError as e:
                logger.warning("Storage tier remove failed", extra={"tier": backend.name, "error": str(e)})
        return StorageResult(success=True, data={"removedFrom": removed})

    def clear(self) -> StorageResult:
        cleared = 0
        for backend in self.backends:
            try:
                for key in backend.keys():
                    backend.remove(key)
                cleared += 1
            except StorageError as e:
                logger.warning("Storage tier clear failed", extra={"tier": backend.name, "error": str(e)})
        return StorageResult(success=True, data={"clearedLayers": cleared})

    # ---------- introspection ----------

    def keys(self) -> List[str]:
        seen: Dict[str, None] = {}
        for backend in self.backends:
            try:
                for key in backend.keys():
                    seen.setdefault(key, None)
            except StorageError:
                continue
        return list(seen)

    def check_health(self) -> Dict[str, bool]:
        return {backend.name: backend.health_check() for backend in self.backends}
