"""Shared utility functions for the media processing service.

Contains:
- env_* helpers: typed environment lookups with safe fallbacks
- get_effective_cpu_count: CPU budget respecting cgroup quotas
- unique_upload_name: collision-resistant names for the shared uploads folder
- safe_unlink: best-effort delete with a single delayed retry on transient locks
- memory_snapshot: resident memory of this process
"""

import errno
import logging
import os
import random
import threading
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# errno values that mean "someone else still holds the file" rather than "gone"
TRANSIENT_DELETE_ERRNOS = {errno.EBUSY, errno.EPERM, errno.EACCES}



def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def get_file_size_mb(path: Path) -> float:
    """Get file size in megabytes.

    Args:
        path: Path to the file.

    Returns:
        File size in MB.
    """
    return path.stat().st_size / (1024 * 1024)


def _read_cgroup_quota() -> Optional[int]:
    # cgroup v2
    cpu_max = Path("/sys/fs/cgroup/cpu.max")
    if cpu_max.exists():
        try:
            quota_str, period_str = cpu_max.read_text().strip().split()[:2]
            if quota_str != "max" and int(quota_str) > 0 and int(period_str) > 0:
                return max(1, int(int(quota_str) / int(period_str)))
        except (OSError, ValueError):
            return None

    # cgroup v1
    quota_path = Path("/sys/fs/cgroup/cpu/cpu.cfs_quota_us")
    period_path = Path("/sys/fs/cgroup/cpu/cpu.cfs_period_us")
    if quota_path.exists() and period_path.exists():
        try:
            quota = int(quota_path.read_text().strip())
            period = int(period_path.read_text().strip())
            if quota > 0 and period > 0:
                return max(1, int(quota / period))
        except (OSError, ValueError):
            return None
    return None


def get_effective_cpu_count(default: int = 1) -> int:
    """Return effective CPU count, respecting affinity and cgroup quotas."""
    count = os.cpu_count() or default
    try:
        affinity = os.sched_getaffinity(0)
        if affinity:
            count = min(count, len(affinity))
    except (AttributeError, OSError):
        pass

    quota = _read_cgroup_quota()
    if quota:
        count = min(count, quota)
    return max(default, count)


def unique_upload_name(suffix: str, prefix: str = "file") -> str:
    """Build `<prefix>-<epoch ms>-<9 random digits><suffix>`.

    Concurrent jobs share one uploads folder, so names carry both a timestamp
    and a random component.
    """
    stamp = int(time.time() * 1000)
    rand = random.randint(0, 999_999_999)
    return f"{prefix}-{stamp}-{rand}{suffix}"


def safe_unlink(path: Path, retry_delay: float = 0.5, label: str = "cleanup") -> bool:
    """Delete a file without ever raising.

    Returns True when the file is gone now. A transient lock (EBUSY/EPERM/
    EACCES) schedules one more attempt after `retry_delay` seconds on a
    timer thread; other failures are only logged.
    """
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as exc:
        if exc.errno in TRANSIENT_DELETE_ERRNOS and retry_delay > 0:
            logger.warning("[%s] %s is locked (%s); retrying in %.1fs", label, path.name, exc, retry_delay)
            timer = threading.Timer(retry_delay, _retry_unlink, args=(path, label))
            timer.daemon = True
            timer.start()
        else:
            logger.warning("[%s] Could not delete %s: %s", label, path.name, exc)
        return False


def _retry_unlink(path: Path, label: str) -> None:
    try:
        path.unlink(missing_ok=True)
        logger.info("[%s] Deleted %s on retry", label, path.name)
    except OSError as exc:
        logger.warning("[%s] Giving up on %s: %s", label, path.name, exc)


def memory_snapshot() -> dict:
    """Resident set size of this process in bytes (0 when unavailable)."""
    status = Path("/proc/self/status")
    rss = 0
    if status.exists():
        try:
            for line in status.read_text().splitlines():
                if line.startswith("VmRSS:"):
                    rss = int(line.split()[1]) * 1024
                    break
        except (OSError, ValueError, IndexError):
            rss = 0
    if not rss:
        try:
            import resource

            # ru_maxrss is KiB on Linux; close enough as a peak figure elsewhere
            rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024
        except (ImportError, OSError):
            rss = 0
    return {"rss": rss}
