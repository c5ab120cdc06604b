"""Flask views for the admin dashboard: stats, feeds, settings, retention, health."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from flask import current_app, jsonify, request

from convertflix.core.exceptions import InvalidRequestError
from convertflix.core.settings import describe_settings
from convertflix.engine.tools import get_ffmpeg_command, get_ghostscript_command
from convertflix.services.runtime import get_runtime
from convertflix.services.tool_service import require_auth

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 50
MAX_ACTIVITY_LIMIT = 500
PROCESSED_PREFIXES = ("compressed-", "converted-")


def scan_uploads(upload_folder: Path) -> Dict[str, Any]:
    """File count, bytes and processed-file ratio of the uploads folder."""
    total_files = 0
    total_bytes = 0
    processed = 0
    today_count = 0
    today = datetime.now(timezone.utc).date()

    try:
        entries = list(upload_folder.iterdir()) if upload_folder.exists() else []
    except OSError as e:
        logger.error(f"[stats] Upload folder scan error: {e}")
        entries = []

    for path in entries:
        if path.name.startswith("."):
            continue
        try:
            st = path.stat()
        except OSError:
            continue
        if not path.is_file():
            continue
        total_files += 1
        total_bytes += st.st_size
        if path.name.startswith(PROCESSED_PREFIXES):
            processed += 1
        if datetime.fromtimestamp(st.st_mtime, timezone.utc).date() == today:
            today_count += 1

    return {
        "totalFiles": total_files,
        "totalStorage": total_bytes,
        "processedFiles": processed,
        "filesModifiedToday": today_count,
        "conversionRate": round(processed / total_files * 100, 2) if total_files else 0.0,
        "averageFileSize": round(total_bytes / total_files) if total_files else 0,
    }


def build_health_snapshot() -> Dict[str, Any]:
    """Build a lightweight snapshot for the health endpoint."""
    runtime = get_runtime()
    ffmpeg_cmd = get_ffmpeg_command()
    gs_cmd = get_ghostscript_command()

    return {
        "status": "healthy" if ffmpeg_cmd and gs_cmd else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "tools": {
            "ffmpeg": {"available": ffmpeg_cmd is not None, "command": ffmpeg_cmd or "missing"},
            "ghostscript": {"available": gs_cmd is not None, "command": gs_cmd or "missing"},
        },
        "instance_id": os.environ.get("HOSTNAME", "local"),
        "limiter": runtime.limiter.stats(),
        "jobs": runtime.registry.counts(),
        "storage": {
            "upload_folder": str(runtime.settings.upload_folder.resolve()),
            "retention_days": runtime.settings_store.auto_delete_days(),
            "last_sweep": runtime.sweeper.last_run,
        },
        "config": describe_settings(runtime.settings),
    }


# Routes
def health():
    """Health check endpoint with tool availability and limiter occupancy."""
    return jsonify(build_health_snapshot())


@require_auth
def stats():
    runtime = get_runtime()
    snapshot = runtime.metrics.get_snapshot()
    days = runtime.settings_store.auto_delete_days()
    window = runtime.metrics.window_totals(days)
    return jsonify({
        "success": True,
        "lifetime": {
            "files": snapshot["lifetimeFiles"],
            "bytes": snapshot["lifetimeBytes"],
            "converted": snapshot["lifetimeConverted"],
            "compressed": snapshot["lifetimeCompressed"],
        },
        "today": runtime.metrics.today(),
        "window": {"days": days, **window},
        "byDay": snapshot["byDay"],
        "uploads": scan_uploads(runtime.settings.upload_folder),
        "jobs": runtime.registry.counts(),
        "limiter": runtime.limiter.stats(),
    })


@require_auth
def activities():
    raw_limit = request.args.get("limit", DEFAULT_ACTIVITY_LIMIT)
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        raise InvalidRequestError("limit must be a whole number")
    limit = max(1, min(MAX_ACTIVITY_LIMIT, limit))
    return jsonify({"success": True, "activities": get_runtime().activities.list(limit)})


@require_auth
def jobs():
    registry = get_runtime().registry
    return jsonify({"success": True, "counts": registry.counts(), "jobs": registry.list(limit=100)})


@require_auth
def get_settings():
    return jsonify({"success": True, "settings": get_runtime().settings_store.get()})


@require_auth
def update_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestError("Send the settings as a JSON object")
    updated = get_runtime().settings_store.update(data)
    return jsonify({"success": True, "settings": updated})


@require_auth
def run_retention():
    result = get_runtime().sweeper.run_once()
    return jsonify({"success": True, **result})


@require_auth
def stream():
    """Server-sent events: files_updated, stats_metrics_updated, activity."""
    broker = get_runtime().broker
    return current_app.response_class(
        broker.stream(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
