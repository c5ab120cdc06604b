"""FIFO admission control for heavyweight jobs.

``threading.Semaphore`` does not promise which waiter wakes first, so the
limiter keeps its own queue: a released slot is handed directly to the
oldest waiter and never becomes free in between.

There is no timeout. A task that never finishes keeps its slot, and the
callers behind it keep waiting.
"""

import contextlib
import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    def __init__(self, max_concurrent: int = 2, name: str = "jobs") -> None:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = int(max_concurrent)
        self.name = name
        self._lock = threading.Lock()
        self._active = 0
        self._peak = 0
        self._waiters: Deque[threading.Event] = deque()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "max_concurrent": self.max_concurrent,
                "active": self._active,
                "waiting": len(self._waiters),
                "peak": self._peak,
            }

    def acquire(self) -> None:
        with self._lock:
            if self._active < self.max_concurrent and not self._waiters:
                self._active += 1
                self._peak = max(self._peak, self._active)
                return
            turn = threading.Event()
            self._waiters.append(turn)
        # release() counts the slot for us before setting the event
        turn.wait()

    def release(self) -> None:
        with self._lock:
            if self._waiters:
                self._waiters.popleft().set()
                return
            if self._active <= 0:
                raise RuntimeError(f"{self.name} limiter released more often than acquired")
            self._active -= 1

    @contextlib.contextmanager
    def slot(self, label: Optional[str] = None):
        label = label or self.name
        start = time.time()
        self.acquire()
        waited = time.time() - start
        if waited >= 1:
            logger.info("[%s] Waited %.1fs for a %s slot", label, waited, self.name)
        try:
            yield
        finally:
            self.release()

    def run(self, task: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run `task` once a slot is free; its exception propagates to this caller only."""
        with self.slot():
            return task(*args, **kwargs)
