"""Realtime event fan-out for the admin dashboard.

Producers call ``emit(event, payload)`` and move on. Each subscriber owns a
bounded queue; when it is full the event is dropped for that subscriber,
which reconciles from the next full snapshot it fetches.
"""

import json
import logging
import queue
import threading
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

FILES_UPDATED = "files_updated"
STATS_METRICS_UPDATED = "stats_metrics_updated"
ACTIVITY = "activity"

SUBSCRIBER_QUEUE_SIZE = 100
KEEPALIVE_SECONDS = 15.0

Event = Tuple[str, Dict[str, Any]]


class EventSink(Protocol):
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullEventSink:
    """Discards events."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        return None


class RecordingEventSink:
    """Keeps every emitted event in memory."""

    def __init__(self) -> None:
        self.events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event, payload))

    def names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.events]


class RealtimeBroker:
    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: List["queue.Queue[Event]"] = []
        self._lock = threading.Lock()
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> "queue.Queue[Event]":
        q: "queue.Queue[Event]" = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            self._subscribers.append(q)
        logger.debug("[realtime] Subscriber added (%s total)", self.subscriber_count)
        return q

    def unsubscribe(self, q: "queue.Queue[Event]") -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait((event, payload))
            except queue.Full:
                self.dropped += 1
                logger.debug("[realtime] Subscriber queue full; dropped %s", event)

    def stream(self, keepalive: float = KEEPALIVE_SECONDS, limit: Optional[int] = None) -> Iterator[str]:
        """Yield server-sent-event frames for one subscriber until the client goes away.

        `limit` stops after that many events (used by tests).
        """
        q = self.subscribe()
        sent = 0
        try:
            yield ": connected\n\n"
            while limit is None or sent < limit:
                try:
                    event, payload = q.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event, payload)
                sent += 1
        finally:
            self.unsubscribe(q)


def format_sse(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"
