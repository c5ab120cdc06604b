"""Wires the processing core together for one Flask app."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from flask import Flask, current_app

from convertflix.core.settings import RuntimeSettings
from convertflix.engine.audio import AudioEncoder
from convertflix.engine.candidates import CandidateEncoder, KindEncoder
from convertflix.engine.image import ImageEncoder
from convertflix.engine.pdf import PdfEncoder
from convertflix.engine.video import VideoEncoder
from convertflix.services.realtime import RealtimeBroker
from convertflix.storage.activity import ActivityRecorder
from convertflix.storage.metrics import MetricsStore
from convertflix.storage.retention import RetentionSweeper
from convertflix.storage.settings_store import SettingsStore
from convertflix.storage.store import JsonStore
from convertflix.workers.executor import JobExecutor
from convertflix.workers.job_registry import JobRegistry
from convertflix.workers.limiter import ConcurrencyLimiter

logger = logging.getLogger(__name__)

EXTENSION_KEY = "convertflix"


@dataclass
class Runtime:
    settings: RuntimeSettings
    broker: RealtimeBroker
    store: JsonStore
    settings_store: SettingsStore
    metrics: MetricsStore
    activities: ActivityRecorder
    limiter: ConcurrencyLimiter
    registry: JobRegistry
    encoder: CandidateEncoder
    executor: JobExecutor
    sweeper: RetentionSweeper


def default_encoders(settings: RuntimeSettings) -> Dict[str, KindEncoder]:
    return {
        "image": ImageEncoder(max_pixels=settings.image_max_pixels),
        "video": VideoEncoder(
            threads=settings.ffmpeg_threads,
            timeout_seconds=settings.tool_timeout_seconds,
            timeout_per_mb=settings.tool_timeout_per_mb,
        ),
        "audio": AudioEncoder(
            threads=settings.ffmpeg_threads,
            timeout_seconds=settings.tool_timeout_seconds,
            timeout_per_mb=settings.tool_timeout_per_mb,
        ),
        "pdf": PdfEncoder(
            lightweight_max_mb=settings.pdf_lightweight_max_mb,
            gs_threads=settings.gs_threads,
            timeout_seconds=settings.tool_timeout_seconds,
            timeout_per_mb=settings.tool_timeout_per_mb,
        ),
    }


def build_runtime(settings: RuntimeSettings, encoders: Optional[Dict[str, KindEncoder]] = None) -> Runtime:
    settings.upload_folder.mkdir(parents=True, exist_ok=True)
    broker = RealtimeBroker()
    store = JsonStore(settings.data_folder)
    settings_store = SettingsStore(
        store,
        default_retention_days=settings.retention_days,
        default_preset=settings.default_preset,
    )
    metrics = MetricsStore(store, events=broker)
    activities = ActivityRecorder(store, events=broker)
    limiter = ConcurrencyLimiter(settings.max_concurrent_jobs)
    registry = JobRegistry()
    encoder = CandidateEncoder(encoders if encoders is not None else default_encoders(settings))
    executor = JobExecutor(
        encoder,
        limiter,
        metrics,
        activities,
        registry=registry,
        default_preset=settings_store.default_preset,
        retry_delay=settings.delete_retry_delay,
    )
    sweeper = RetentionSweeper(
        settings.upload_folder,
        metrics,
        activities,
        days_provider=settings_store.auto_delete_days,
        events=broker,
        sweep_hour=settings.retention_sweep_hour,
    )
    return Runtime(
        settings=settings,
        broker=broker,
        store=store,
        settings_store=settings_store,
        metrics=metrics,
        activities=activities,
        limiter=limiter,
        registry=registry,
        encoder=encoder,
        executor=executor,
        sweeper=sweeper,
    )


def attach(app: Flask, runtime: Runtime) -> None:
    app.extensions[EXTENSION_KEY] = runtime


def get_runtime() -> Runtime:
    return current_app.extensions[EXTENSION_KEY]
