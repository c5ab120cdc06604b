"""Runtime bootstrap for the retention daemon and job-registry expiry."""

from __future__ import annotations

import logging
import threading

from convertflix.services.runtime import Runtime

logger = logging.getLogger(__name__)

_bootstrap_lock = threading.Lock()
_bootstrap_started = False
_stop_event = threading.Event()


def bootstrap_runtime(runtime: Runtime) -> None:
    """Start background services once per process."""
    global _bootstrap_started
    with _bootstrap_lock:
        if _bootstrap_started:
            return

        threading.Thread(
            target=runtime.sweeper.run_forever,
            args=(_stop_event,),
            daemon=True,
            name="retention-daemon",
        ).start()
        threading.Thread(
            target=runtime.registry.run_expiry_loop,
            args=(_stop_event,),
            daemon=True,
            name="job-expiry",
        ).start()
        _bootstrap_started = True
        logger.info("Started retention daemon (daily at %02d:00) and job expiry thread",
                    runtime.settings.retention_sweep_hour)


def is_bootstrapped() -> bool:
    """Expose runtime bootstrap state for diagnostics/tests."""
    return _bootstrap_started
