"""Centralized runtime settings with validation and effective-value reporting."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from convertflix.core.utils import env_float, env_int, get_effective_cpu_count
from convertflix.engine.presets import PRESET_ALIASES, SPEED_PRESETS

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_MAX_CONCURRENT_JOBS = 2
DEFAULT_RETENTION_DAYS = 7


@dataclass(frozen=True)
class SizeLimits:
    """Per-kind upload ceilings in MB."""

    image_mb: float = 50.0
    video_mb: float = 500.0
    audio_mb: float = 100.0
    pdf_mb: float = 200.0

    def for_kind(self, kind: str) -> float:
        return float(getattr(self, f"{kind}_mb", 0.0) or 0.0)


@dataclass(frozen=True)
class RuntimeSettings:
    upload_folder: Path
    data_folder: Path
    max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS
    default_preset: str = "fast"
    size_limits: SizeLimits = field(default_factory=SizeLimits)
    image_max_pixels: int = 40_000_000
    pdf_lightweight_max_mb: float = 150.0
    ffmpeg_threads: int = 2
    gs_threads: int = 1
    tool_timeout_seconds: float = 0.0
    tool_timeout_per_mb: float = 0.0
    retention_days: int = DEFAULT_RETENTION_DAYS
    retention_sweep_hour: int = 3
    delete_retry_delay: float = 0.5
    base_url: str = ""
    api_token: Optional[str] = None


def _parse_positive_int(raw: Optional[str], *, name: str) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning("[settings] Invalid %s=%s; using default", name, raw)
        return None
    if value <= 0:
        logger.warning("[settings] Non-positive %s=%s; using default", name, raw)
        return None
    return value


def resolve_folder(env_name: str, fallback: str) -> Path:
    """Resolve a storage folder from the environment, defaulting beside the repo."""
    override = os.environ.get(env_name)
    if override:
        return Path(override).expanduser()
    return REPO_ROOT / fallback


def resolve_compute_plan(effective_cpu: Optional[int] = None) -> Dict[str, Any]:
    """Build a CPU-safe plan for job slots and native tool threads."""
    if effective_cpu is None:
        effective_cpu = get_effective_cpu_count()
    effective_cpu = max(1, int(effective_cpu))

    env_jobs = _parse_positive_int(os.environ.get("MAX_CONCURRENT_JOBS"), name="MAX_CONCURRENT_JOBS")
    max_jobs = env_jobs or max(1, min(DEFAULT_MAX_CONCURRENT_JOBS, effective_cpu))

    env_ffmpeg = _parse_positive_int(os.environ.get("FFMPEG_THREADS"), name="FFMPEG_THREADS")
    ffmpeg_threads = env_ffmpeg or max(1, min(4, effective_cpu))
    gs_threads = max(1, env_int("GS_NUM_RENDERING_THREADS", 1))

    return {
        "effective_cpu": effective_cpu,
        "max_concurrent_jobs": max_jobs,
        "env_concurrent_jobs": env_jobs,
        "ffmpeg_threads": ffmpeg_threads,
        "gs_threads": gs_threads,
    }


@lru_cache(maxsize=1)
def get_runtime_settings() -> RuntimeSettings:
    plan = resolve_compute_plan()

    default_preset = (os.environ.get("DEFAULT_SPEED_PRESET") or "fast").strip().lower()
    default_preset = PRESET_ALIASES.get(default_preset, default_preset)
    if default_preset not in SPEED_PRESETS:
        logger.warning("[settings] Invalid DEFAULT_SPEED_PRESET=%s; using fast", default_preset)
        default_preset = "fast"

    raw_hour = env_int("RETENTION_SWEEP_HOUR", 3)
    if not 0 <= raw_hour <= 23:
        logger.warning("[settings] RETENTION_SWEEP_HOUR=%s out of range; using 3", raw_hour)
        raw_hour = 3

    retention_days = env_int("RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
    if retention_days <= 0:
        logger.warning("[settings] Non-positive RETENTION_DAYS=%s; using %s", retention_days, DEFAULT_RETENTION_DAYS)
        retention_days = DEFAULT_RETENTION_DAYS

    limits = SizeLimits(
        image_mb=max(0.1, env_float("MAX_IMAGE_MB", 50.0)),
        video_mb=max(0.1, env_float("MAX_VIDEO_MB", 500.0)),
        audio_mb=max(0.1, env_float("MAX_AUDIO_MB", 100.0)),
        pdf_mb=max(0.1, env_float("MAX_PDF_MB", 200.0)),
    )

    return RuntimeSettings(
        upload_folder=resolve_folder("UPLOAD_FOLDER", "uploads"),
        data_folder=resolve_folder("DATA_FOLDER", "data"),
        max_concurrent_jobs=plan["max_concurrent_jobs"],
        default_preset=default_preset,
        size_limits=limits,
        image_max_pixels=max(1, env_int("IMAGE_MAX_PIXELS", 40_000_000)),
        pdf_lightweight_max_mb=max(0.0, env_float("PDF_LIGHTWEIGHT_MAX_MB", 150.0)),
        ffmpeg_threads=plan["ffmpeg_threads"],
        gs_threads=plan["gs_threads"],
        tool_timeout_seconds=max(0.0, env_float("TOOL_TIMEOUT_SECONDS", 0.0)),
        tool_timeout_per_mb=max(0.0, env_float("TOOL_TIMEOUT_PER_MB", 0.0)),
        retention_days=retention_days,
        retention_sweep_hour=raw_hour,
        delete_retry_delay=max(0.0, env_float("DELETE_RETRY_DELAY_SECONDS", 0.5)),
        base_url=os.environ.get("BASE_URL", "").rstrip("/"),
        api_token=os.environ.get("API_TOKEN") or None,
    )


def describe_settings(settings: RuntimeSettings) -> Dict[str, Any]:
    """Flatten settings for the startup log and the health endpoint."""
    return {
        "upload_folder": str(settings.upload_folder),
        "data_folder": str(settings.data_folder),
        "max_concurrent_jobs": settings.max_concurrent_jobs,
        "default_preset": settings.default_preset,
        "size_limits_mb": {
            kind: settings.size_limits.for_kind(kind) for kind in ("image", "video", "audio", "pdf")
        },
        "image_max_pixels": settings.image_max_pixels,
        "pdf_lightweight_max_mb": settings.pdf_lightweight_max_mb,
        "ffmpeg_threads": settings.ffmpeg_threads,
        "gs_threads": settings.gs_threads,
        "tool_timeout_seconds": settings.tool_timeout_seconds or "off",
        "retention_days": settings.retention_days,
        "retention_sweep_hour": settings.retention_sweep_hour,
        "auth": "token" if settings.api_token else "open",
    }
