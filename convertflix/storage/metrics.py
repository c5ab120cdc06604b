"""Persistent dashboard counters: lifetime totals plus one bucket per UTC day.

Lifetime counters only ever grow. Day buckets are the windowed view of the
same events; retention prunes them without touching the lifetime totals.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from convertflix.services.realtime import FILES_UPDATED, STATS_METRICS_UPDATED, EventSink, NullEventSink
from convertflix.storage.store import JsonStore

logger = logging.getLogger(__name__)

METRICS_OBJECT = "metrics"
MAX_DAY_BUCKETS = 90


def default_metrics() -> Dict[str, Any]:
    return {
        "lifetimeFiles": 0,
        "lifetimeBytes": 0,
        "lifetimeConverted": 0,
        "lifetimeCompressed": 0,
        "byDay": {},
    }


def empty_bucket() -> Dict[str, int]:
    return {"files": 0, "bytes": 0, "converted": 0, "compressed": 0}


def day_key(when: Optional[datetime] = None) -> str:
    """UTC calendar date of `when` as YYYY-MM-DD (naive datetimes are taken as UTC)."""
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).date().isoformat()


def _normalize(raw: Any) -> Dict[str, Any]:
    metrics = default_metrics()
    if isinstance(raw, dict):
        for key in ("lifetimeFiles", "lifetimeBytes", "lifetimeConverted", "lifetimeCompressed"):
            metrics[key] = int(raw.get(key) or 0)
        by_day = raw.get("byDay") or {}
        if isinstance(by_day, dict):
            for key, bucket in by_day.items():
                merged = empty_bucket()
                if isinstance(bucket, dict):
                    merged.update({k: int(bucket.get(k) or 0) for k in merged})
                metrics["byDay"][key] = merged
    return metrics


class MetricsStore:
    def __init__(self, store: JsonStore, events: Optional[EventSink] = None) -> None:
        self.store = store
        self.events = events or NullEventSink()

    def get_snapshot(self) -> Dict[str, Any]:
        return _normalize(self.store.read(METRICS_OBJECT, default_metrics()))

    def record_file_processed(
        self,
        size_bytes: int,
        kind: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Count one processed file in the lifetime totals and its day bucket.

        `kind` is "converted" or "compressed"; anything else counts only
        towards files and bytes.
        """
        size_bytes = max(0, int(size_bytes or 0))
        key = day_key(when)

        def _apply(raw: Dict[str, Any]) -> Dict[str, Any]:
            metrics = _normalize(raw)
            metrics["lifetimeFiles"] += 1
            metrics["lifetimeBytes"] += size_bytes
            bucket = metrics["byDay"].setdefault(key, empty_bucket())
            bucket["files"] += 1
            bucket["bytes"] += size_bytes
            if kind == "converted":
                metrics["lifetimeConverted"] += 1
                bucket["converted"] += 1
            elif kind == "compressed":
                metrics["lifetimeCompressed"] += 1
                bucket["compressed"] += 1

            # keep only the most recent buckets
            keys = sorted(metrics["byDay"])
            for old in keys[:-MAX_DAY_BUCKETS]:
                del metrics["byDay"][old]

            raw.clear()
            raw.update(metrics)
            return metrics

        snapshot = self.store.update(METRICS_OBJECT, default_metrics(), _apply)
        logger.debug("[metrics] Recorded %s bytes (%s) on %s", size_bytes, kind or "other", key)

        self.events.emit(STATS_METRICS_UPDATED, snapshot)
        self.events.emit(FILES_UPDATED, {"reason": "file_processed"})
        return snapshot

    def prune_older_than(self, days: int, today: Optional[date] = None) -> int:
        """Drop day buckets dated before ``today - days``; returns how many went."""
        today = today or datetime.now(timezone.utc).date()
        cutoff = (today - timedelta(days=max(0, int(days)))).isoformat()

        def _apply(raw: Dict[str, Any]) -> int:
            metrics = _normalize(raw)
            stale = [key for key in metrics["byDay"] if key < cutoff]
            for key in stale:
                del metrics["byDay"][key]
            raw.clear()
            raw.update(metrics)
            return len(stale)

        removed = self.store.update(METRICS_OBJECT, default_metrics(), _apply)
        if removed:
            logger.info("[metrics] Pruned %s day bucket(s) older than %s", removed, cutoff)
        return removed

    def window_totals(self, days: int, today: Optional[date] = None) -> Dict[str, int]:
        """Sum of the day buckets within the last `days` days, today included."""
        today = today or datetime.now(timezone.utc).date()
        first = (today - timedelta(days=max(1, int(days)) - 1)).isoformat()
        last = today.isoformat()
        totals = empty_bucket()
        for key, bucket in self.get_snapshot()["byDay"].items():
            if first <= key <= last:
                for field_name in totals:
                    totals[field_name] += bucket[field_name]
        return totals

    def today(self, today: Optional[date] = None) -> Dict[str, int]:
        key = (today or datetime.now(timezone.utc).date()).isoformat()
        return dict(self.get_snapshot()["byDay"].get(key, empty_bucket()))
