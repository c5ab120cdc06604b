"""Retention: delete aged uploads and prune history older than the window.

Runs once at startup and then daily at a fixed local wall-clock hour. The
window (``autoDeleteDays``) is read from the settings provider on every run
so admin changes apply to the next sweep without a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from convertflix.services.realtime import FILES_UPDATED, EventSink, NullEventSink
from convertflix.storage.activity import ActivityRecorder
from convertflix.storage.metrics import MetricsStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class SweepResult:
    deleted_count: int = 0
    deleted_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"deletedCount": self.deleted_count, "deletedNames": list(self.deleted_names)}


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from `now` to the next `hour`:00 local time (strictly in the future)."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class RetentionSweeper:
    def __init__(
        self,
        upload_folder: Path,
        metrics: MetricsStore,
        activities: ActivityRecorder,
        days_provider: Callable[[], int],
        events: Optional[EventSink] = None,
        sweep_hour: int = 3,
    ) -> None:
        self.upload_folder = Path(upload_folder)
        self.metrics = metrics
        self.activities = activities
        self.days_provider = days_provider
        self.events = events or NullEventSink()
        self.sweep_hour = sweep_hour
        self._sweep_lock = threading.Lock()
        self.last_run: Optional[float] = None

    def sweep_uploads(self, max_age_days: float, now: Optional[float] = None) -> SweepResult:
        """Delete regular files whose mtime is older than `max_age_days`.

        A file that cannot be stat'ed or deleted is logged and skipped.
        """
        now = now if now is not None else time.time()
        cutoff = now - max_age_days * SECONDS_PER_DAY
        result = SweepResult()

        if not self.upload_folder.exists():
            return result

        try:
            entries = sorted(self.upload_folder.iterdir())
        except OSError as e:
            logger.error(f"[retention] Cleanup scan error: {e}")
            return result

        for path in entries:
            if path.name.startswith("."):
                continue
            try:
                if not path.is_file() or path.stat().st_mtime >= cutoff:
                    continue
            except OSError:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"[retention] Could not delete {path.name}: {e}")
                continue
            result.deleted_count += 1
            result.deleted_names.append(path.name)
            logger.info(f"[retention] Cleaned up: {path.name}")

        if result.deleted_count:
            self.events.emit(FILES_UPDATED, {"deleted": list(result.deleted_names)})
        return result

    def sweep_data(self, max_age_days: int) -> Dict[str, int]:
        """Prune metrics day buckets and activity entries outside the window."""
        pruned_days = self.metrics.prune_older_than(max_age_days)
        pruned_activities = self.activities.prune_older_than(max_age_days)
        return {"prunedDays": pruned_days, "prunedActivities": pruned_activities}

    def run_once(self) -> Dict[str, object]:
        with self._sweep_lock:
            days = int(self.days_provider())
            uploads = self.sweep_uploads(days)
            data = self.sweep_data(days)
            self.last_run = time.time()
        if uploads.deleted_count or any(data.values()):
            logger.info(
                "[retention] Sweep (%s days): %s file(s), %s day bucket(s), %s activit(ies) removed",
                days, uploads.deleted_count, data["prunedDays"], data["prunedActivities"],
            )
        return {"days": days, **uploads.to_dict(), **data}

    def run_forever(self, stop: threading.Event) -> None:
        """Sweep now, then at every next `sweep_hour` until `stop` is set."""
        while not stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"[retention] Sweep failed: {e}")
            delay = seconds_until_next_run(datetime.now(), self.sweep_hour)
            logger.info("[retention] Next sweep in %.0f minutes", delay / 60)
            if stop.wait(delay):
                break
