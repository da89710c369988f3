from __future__ import annotations

import heapq
import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.utcnow()


class VirtualClock:
    """Manually advanced clock; call it like utcnow()."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now += delta

    def set(self, moment: datetime) -> None:
        self._now = moment


class Scheduler(ABC):
    """schedule(delay, fn) -> handle; cancel(handle). Delays are in seconds."""

    @abstractmethod
    def schedule(self, delay: float, fn: Callable[[], Any]) -> Any:
        ...

    @abstractmethod
    def cancel(self, handle: Any) -> None:
        ...


class ThreadingScheduler(Scheduler):
    def __init__(self):
        self._lock = threading.Lock()
        self._timers: Dict[int, threading.Timer] = {}
        self._ids = itertools.count(1)

    def schedule(self, delay: float, fn: Callable[[], Any]) -> int:
        handle = next(self._ids)

        def run():
            with self._lock:
                self._timers.pop(handle, None)
            fn()

        timer = threading.Timer(max(0.0, delay), run)
        timer.daemon = True
        with self._lock:
            self._timers[handle] = timer
        timer.start()
        return handle

    def cancel(self, handle: Any) -> None:
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for t in timers:
            t.cancel()


class VirtualScheduler(Scheduler):
    """
    Test scheduler driven by a VirtualClock. Nothing runs until advance() moves
    time past a task's due instant; tasks run in due order.
    """

    def __init__(self, clock: Optional[VirtualClock] = None):
        self.clock = clock or VirtualClock()
        self._queue: List[Tuple[datetime, int, Callable[[], Any]]] = []
        self._cancelled: set = set()
        self._ids = itertools.count(1)

    def schedule(self, delay: float, fn: Callable[[], Any]) -> int:
        handle = next(self._ids)
        due = self.clock() + timedelta(seconds=max(0.0, delay))
        heapq.heappush(self._queue, (due, handle, fn))
        return handle

    def cancel(self, handle: Any) -> None:
        self._cancelled.add(handle)

    @property
    def pending(self) -> int:
        return sum(1 for _, h, _ in self._queue if h not in self._cancelled)

    def advance(self, delta: timedelta) -> None:
        target = self.clock() + delta
        while self._queue and self._queue[0][0] <= target:
            due, handle, fn = heapq.heappop(self._queue)
            if handle in self._cancelled:
                self._cancelled.discard(handle)
                continue
            self.clock.set(due)
            fn()
        self.clock.set(target)
