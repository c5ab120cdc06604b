"""In-memory registry of jobs and their pipeline state.

Tracks every job from intake to completion so the admin API can list what
is queued, encoding or finished. Finished jobs expire after JOB_TTL_SECONDS.
"""

import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Constants
JOB_TTL_SECONDS: int = 3600  # Jobs expire after 1 hour
EXPIRY_INTERVAL_SECONDS: int = 300

QUEUED = "queued"
ADMITTED = "admitted"
ENCODING = "encoding"
SELECTING = "selecting"
CLEANING = "cleaning"
RECORDING = "recording"
COMPLETED = "completed"
FAILED = "failed"

JOB_STATES = (QUEUED, ADMITTED, ENCODING, SELECTING, CLEANING, RECORDING, COMPLETED, FAILED)
TERMINAL_STATES = (COMPLETED, FAILED)

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """Represents one media job."""

    job_id: str
    kind: str
    operation: str  # "compress" or "convert"
    filename: str
    status: str = QUEUED
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobRegistry:
    def __init__(self, ttl_seconds: int = JOB_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, kind: str, operation: str, filename: str) -> Job:
        """Register a new job in the Queued state.

        Returns:
            The Job (its ID has 16 hex characters).
        """
        job_id = uuid.uuid4().hex[:16]
        job = Job(job_id=job_id, kind=kind, operation=operation, filename=filename)
        with self._lock:
            self._jobs[job_id] = job
        logger.info(f"[{job_id}] Job created ({operation} {kind}: {filename})")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def transition(
        self,
        job_id: str,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Move a job to `status`, attaching a result or error when given."""
        if status not in JOB_STATES:
            raise ValueError(f"Unknown job state: {status}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.status = status
            job.updated_at = time.time()
            if result is not None:
                job.result = result
            if error is not None:
                job.error = error

        if status in TERMINAL_STATES:
            logger.info(f"[{job_id}] Status updated: {status}")
        else:
            logger.debug(f"[{job_id}] Status updated: {status}")

    def count_in_state(self, status: str) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.status == status)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            counts = {state: 0 for state in JOB_STATES}
            for job in self._jobs.values():
                counts[job.status] += 1
            return counts

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Jobs newest first, as plain dicts."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
            if limit is not None:
                jobs = jobs[:limit]
            return [job.to_dict() for job in jobs]

    def expire(self, now: Optional[float] = None) -> int:
        """Drop finished jobs older than the TTL; returns how many went."""
        cutoff = (now if now is not None else time.time()) - self.ttl_seconds
        with self._lock:
            expired = [
                jid for jid, job in self._jobs.items()
                if job.status in TERMINAL_STATES and job.updated_at < cutoff
            ]
            for jid in expired:
                del self._jobs[jid]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired jobs")
        return len(expired)

    def run_expiry_loop(self, stop: threading.Event, interval: float = EXPIRY_INTERVAL_SECONDS) -> None:
        """Background loop: expire jobs every `interval` seconds until `stop` is set."""
        while not stop.wait(interval):
            try:
                self.expire()
            except Exception as e:
                logger.exception(f"Job expiry failed: {e}")
