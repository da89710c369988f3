from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from mbti_assess.config import Settings, settings as default_settings
from mbti_assess.utils.assessment import AssessmentService
from mbti_assess.utils.autosave import DebouncedSaver
from mbti_assess.utils.compression import SAISStorage
from mbti_assess.utils.kv_store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from mbti_assess.utils.log import get_logger
from mbti_assess.utils.progress_store import ProgressStore
from mbti_assess.utils.scoring_cache import ScoringCache
from mbti_assess.utils.session_lifecycle import ExpirationMonitor, SessionLifecycle
from mbti_assess.utils.storage import FileBackend, MemoryBackend, SqlBackend, StorageBackend, TieredStorage
from mbti_assess.utils.timing import Scheduler, ThreadingScheduler, utcnow

logger = get_logger(__name__)


class Services:
    """Everything the routers need, built once per app (or per test)."""

    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], datetime],
        scheduler: Scheduler,
        backends: List[StorageBackend],
        lifecycle_store: KeyValueStore,
        progress_store: KeyValueStore,
    ):
        self.settings = settings
        self.clock = clock
        self.scheduler = scheduler

        self.storage = TieredStorage(backends)
        self.sais_storage = SAISStorage(self.storage, clock=clock)
        self.lifecycle = SessionLifecycle(lifecycle_store, clock=clock, scheduler=scheduler)
        self.monitor = ExpirationMonitor(scheduler, clock=clock)
        self.progress = ProgressStore(progress_store, clock=clock)
        self.scoring_cache = ScoringCache(settings.scoring_cache_ttl_seconds, clock=clock)

        self.assessments = AssessmentService(
            live=InMemoryKeyValueStore(),
            lifecycle=self.lifecycle,
            storage=self.sais_storage,
            saver_factory=lambda save: DebouncedSaver(
                scheduler,
                save,
                sais_delay_ms=settings.autosave_delay_sais_ms,
                default_delay_ms=settings.autosave_delay_default_ms,
            ),
            clock=clock,
            progress=self.progress,
        )

    def watch(self, session_id: str) -> None:
        """(Re)arms the expiry monitor with the session's current deadline."""
        record = self.lifecycle.get(session_id)
        if record is None:
            return
        self.monitor.monitor(
            session_id,
            record.expires_at,
            on_warning=lambda: logger.warning("Session expires in 10 minutes", extra={"key": session_id}),
            on_expiration=lambda: self._on_expiration(session_id),
        )

    def _on_expiration(self, session_id: str) -> None:
        if self.assessments.expire(session_id):
            return
        record = self.lifecycle.get(session_id)
        if record is None:
            return
        if record.expires_at <= self.clock():
            # Expiry is strictly after the deadline; look again a second later
            self.scheduler.schedule(1, lambda: self._on_expiration(session_id))
        else:
            # The window slid since the timer was armed
            self.watch(session_id)

    def delete_session(self, session_id: str) -> bool:
        """Single delete path for every route: timers, live state, tiers and the progress backup."""
        self.monitor.clear(session_id)
        return self.assessments.clear(session_id)

    def shutdown(self) -> None:
        self.assessments.autosave.flush_all()
        self.monitor.cleanup()
        if isinstance(self.scheduler, ThreadingScheduler):
            self.scheduler.shutdown()


def build_services(
    session_factory: sessionmaker,
    settings: Settings = default_settings,
    clock: Callable[[], datetime] = utcnow,
    scheduler: Optional[Scheduler] = None,
    backends: Optional[List[StorageBackend]] = None,
) -> Services:
    if backends is None:
        backends = [
            SqlBackend(session_factory),
            FileBackend(settings.scratch_dir),
            MemoryBackend(max_items=settings.memory_max_items),
        ]
    return Services(
        settings=settings,
        clock=clock,
        scheduler=scheduler or ThreadingScheduler(),
        backends=backends,
        lifecycle_store=SqlKeyValueStore(session_factory, "lifecycle"),
        progress_store=SqlKeyValueStore(session_factory, "progress"),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency; tests replace it through app.dependency_overrides."""
    global _services
    if _services is None:
        from mbti_assess.database import SessionLocal
        _services = build_services(SessionLocal)
    return _services


def shutdown_services() -> None:
    global _services
    if _services is not None:
        _services.shutdown()
        _services = None
