"""Append-only activity feed for the admin dashboard."""

from __future__ import annotations

import logging
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from convertflix.services.realtime import ACTIVITY, EventSink, NullEventSink
from convertflix.storage.store import JsonStore

logger = logging.getLogger(__name__)

ACTIVITIES_OBJECT = "activities"
_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_activity_id() -> str:
    """`<epoch ms>-<6 base36 chars>`."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sort_key(entry: Dict[str, Any]) -> datetime:
    return parse_timestamp(entry.get("timestamp")) or datetime.min.replace(tzinfo=timezone.utc)


class ActivityRecorder:
    def __init__(self, store: JsonStore, events: Optional[EventSink] = None) -> None:
        self.store = store
        self.events = events or NullEventSink()

    def append(
        self,
        activity_type: Optional[str] = None,
        message: str = "",
        severity: str = "info",
        user_id: str = "anonymous",
        meta: Optional[Dict[str, Any]] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        """Store one entry, filling in id and timestamp, and emit it."""
        entry: Dict[str, Any] = dict(extra)
        entry.update(
            {
                "id": extra.get("id") or new_activity_id(),
                "type": activity_type or "file_upload",
                "message": message or "",
                "timestamp": extra.get("timestamp") or utc_now_iso(),
                "userId": user_id or "",
                "severity": severity or "info",
                "meta": meta or {},
            }
        )

        def _apply(entries: List[Dict[str, Any]]) -> None:
            entries.append(entry)

        self.store.update(ACTIVITIES_OBJECT, [], _apply)
        self.events.emit(ACTIVITY, entry)
        return entry

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entries newest first by timestamp."""
        entries = self.store.read(ACTIVITIES_OBJECT, [])
        if not isinstance(entries, list):
            return []
        entries = sorted(entries, key=_sort_key, reverse=True)
        if limit is not None:
            entries = entries[: max(0, int(limit))]
        return entries

    def prune_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=max(0, int(days)))

        def _apply(entries: List[Dict[str, Any]]) -> int:
            if not isinstance(entries, list):
                return 0
            kept = [e for e in entries if (parse_timestamp(e.get("timestamp")) or cutoff) >= cutoff]
            removed = len(entries) - len(kept)
            entries[:] = kept
            return removed

        removed = self.store.update(ACTIVITIES_OBJECT, [], _apply)
        if removed:
            logger.info("[activity] Pruned %s entr(ies) older than %s days", removed, days)
        return removed
