"""Job execution: admission, encoding, selection, cleanup and recording.

State machine per job::

    queued -> admitted -> encoding -> selecting -> cleaning -> recording -> completed
                             \\            \\
                              +------------+--> failed

Metrics and activity are written once per completed job and never on a
failure path.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from convertflix.core.exceptions import MediaProcessingError, ProcessingError
from convertflix.core.utils import memory_snapshot, safe_unlink
from convertflix.engine import presets
from convertflix.engine.candidates import (
    Candidate,
    CandidateEncoder,
    ChosenOutput,
    candidate_from_path,
    cleanup_candidates,
    select_best,
)
from convertflix.storage.activity import ActivityRecorder
from convertflix.storage.metrics import MetricsStore
from convertflix.workers import job_registry
from convertflix.workers.job_registry import JobRegistry
from convertflix.workers.limiter import ConcurrencyLimiter

logger = logging.getLogger(__name__)

COMPRESS = "compress"
CONVERT = "convert"


@dataclass(frozen=True)
class JobRequest:
    input_path: Path
    kind: str
    original_extension: str = ""
    requested_preset: Optional[str] = None
    header_preset: Optional[str] = None
    size_bytes: Optional[int] = None
    operation: str = COMPRESS
    target_format: Optional[str] = None
    original_name: str = ""
    user_id: str = "anonymous"


@dataclass(frozen=True)
class JobResult:
    job_id: str
    operation: str
    kind: str
    preset: str
    original_size: int
    final_size: int
    savings_percent: str
    output_path: Path
    format_tag: str
    is_original: bool
    elapsed_ms: int
    memory_before: Dict[str, int] = field(default_factory=dict)
    memory_after: Dict[str, int] = field(default_factory=dict)
    target_format: Optional[str] = None

    @property
    def download_relative_path(self) -> str:
        return f"/uploads/{self.output_path.name}"

    @property
    def message(self) -> str:
        label = self.kind.upper() if self.kind == "pdf" else self.kind.capitalize()
        if self.operation == CONVERT:
            return f"{label} converted to {(self.target_format or '').upper()} successfully"
        if self.is_original:
            return f"{label} is already well compressed; original file kept"
        return f"{label} compressed successfully"

    def to_response(self, base_url: str = "") -> Dict[str, Any]:
        """JSON body returned to the HTTP caller."""
        relative = self.download_relative_path
        body: Dict[str, Any] = {
            "success": True,
            "message": self.message,
            "jobId": self.job_id,
            "originalSize": self.original_size,
            "compressedSize": self.final_size,
            "savingsPercent": self.savings_percent,
            "savings": self.savings_percent,
            "downloadRelativePath": relative,
            "downloadUrl": f"{base_url.rstrip('/')}{relative}" if base_url else relative,
            "preset": self.preset,
            "format": self.format_tag,
            "elapsedMs": self.elapsed_ms,
        }
        if self.operation == CONVERT:
            body["convertedSize"] = self.final_size
        return body


def format_savings(original_size: int, final_size: int) -> str:
    """Savings percent with two decimals, never below zero."""
    if original_size <= 0:
        return "0.00"
    pct = (original_size - final_size) / original_size * 100
    return f"{max(0.0, pct):.2f}"


class JobExecutor:
    def __init__(
        self,
        encoder: CandidateEncoder,
        limiter: ConcurrencyLimiter,
        metrics: MetricsStore,
        activities: ActivityRecorder,
        registry: Optional[JobRegistry] = None,
        default_preset: Callable[[], str] = lambda: presets.FALLBACK_PRESET,
        retry_delay: float = 0.5,
    ) -> None:
        self.encoder = encoder
        self.limiter = limiter
        self.metrics = metrics
        self.activities = activities
        self.registry = registry or JobRegistry()
        self.default_preset = default_preset
        self.retry_delay = retry_delay

    def execute(self, request: JobRequest) -> JobResult:
        """Run one job to completion.

        Raises:
            UnsupportedFormatError: before queueing, for an unsupported kind/target.
            ProcessingError: no deliverable could be produced.
        """
        self.encoder.validate(request.kind, request.operation, request.target_format)

        job = self.registry.create(request.kind, request.operation, request.original_name or request.input_path.name)
        job_id = job.job_id
        try:
            with self.limiter.slot(job_id):
                self.registry.transition(job_id, job_registry.ADMITTED)
                result = self._run(job_id, request)
        except MediaProcessingError as e:
            self.registry.transition(job_id, job_registry.FAILED, error=e.message)
            logger.warning(f"[{job_id}] Job failed: {e.message}")
            raise
        except Exception as e:
            self.registry.transition(job_id, job_registry.FAILED, error=str(e))
            logger.exception(f"[{job_id}] Unexpected failure: {e}")
            raise ProcessingError.for_file(request.original_name or request.input_path.name) from e

        self.registry.transition(job_id, job_registry.COMPLETED, result=result.to_response())
        return result

    def _run(self, job_id: str, request: JobRequest) -> JobResult:
        start = time.time()
        memory_before = memory_snapshot()
        input_path = request.input_path
        display_name = request.original_name or input_path.name

        try:
            original_size = input_path.stat().st_size
        except OSError as e:
            raise ProcessingError.for_file(display_name, "the uploaded file is missing") from e

        preset = presets.effective_preset(request.requested_preset, request.header_preset, self.default_preset())
        params = presets.resolve(request.kind, preset)
        logger.info(
            f"[{job_id}] {request.operation} {request.kind} {display_name} "
            f"({original_size / (1024 * 1024):.2f}MB, preset {preset})"
        )

        self.registry.transition(job_id, job_registry.ENCODING)
        work_dir = input_path.parent
        stem = input_path.stem
        try:
            if request.operation == CONVERT:
                candidates = self.encoder.produce_conversion(
                    input_path, request.kind, request.target_format or "", work_dir, stem,
                )
            else:
                candidates = self.encoder.produce_candidates(input_path, request.kind, params, work_dir, stem)
        except Exception:
            self._discard_partial(job_id, work_dir, stem)
            raise

        self.registry.transition(job_id, job_registry.SELECTING)
        try:
            chosen = self._choose(request, candidates, input_path, original_size, display_name)
        except Exception:
            cleanup_candidates(candidates, retry_delay=self.retry_delay, label=job_id)
            raise

        self.registry.transition(job_id, job_registry.CLEANING)
        keep = None if chosen.is_original else chosen.path
        leftovers = cleanup_candidates(candidates, keep=keep, retry_delay=self.retry_delay, label=job_id)
        if not chosen.is_original and chosen.path.resolve() != input_path.resolve():
            # the deliverable replaces the upload
            safe_unlink(input_path, retry_delay=self.retry_delay, label=job_id)
        if leftovers:
            logger.warning(f"[{job_id}] {len(leftovers)} candidate file(s) could not be removed yet")

        self.registry.transition(job_id, job_registry.RECORDING)
        savings = format_savings(original_size, chosen.size_bytes)
        elapsed_ms = int((time.time() - start) * 1000)
        result = JobResult(
            job_id=job_id,
            operation=request.operation,
            kind=request.kind,
            preset=preset,
            original_size=original_size,
            final_size=chosen.size_bytes,
            savings_percent=savings,
            output_path=chosen.path,
            format_tag=chosen.format_tag,
            is_original=chosen.is_original,
            elapsed_ms=elapsed_ms,
            memory_before=memory_before,
            memory_after=memory_snapshot(),
            target_format=request.target_format,
        )
        try:
            self._record(result, request)
        except Exception as e:
            # the upload is already replaced by the deliverable; the job still completes
            logger.exception(f"[{job_id}] Could not record metrics/activity: {e}")

        logger.info(
            f"[{job_id}] Done in {elapsed_ms}ms: {original_size} -> {chosen.size_bytes} bytes "
            f"({savings}% saved, {'original kept' if chosen.is_original else chosen.format_tag})"
        )
        return result

    def _choose(
        self,
        request: JobRequest,
        candidates: List[Candidate],
        input_path: Path,
        original_size: int,
        display_name: str,
    ) -> ChosenOutput:
        if request.operation == CONVERT:
            produced = [c for c in (candidate_from_path(c.path, c.format_tag) for c in candidates) if c]
            if not produced:
                raise ProcessingError.for_file(
                    display_name, f"conversion to {(request.target_format or '').upper()} failed",
                )
            best = produced[0]
            return ChosenOutput(best.path, best.size_bytes, best.format_tag, is_original=False)

        best = select_best(candidates, original_size)
        if best is not None:
            return ChosenOutput(best.path, best.size_bytes, best.format_tag, is_original=False)

        # nothing beat the upload; it becomes the deliverable untouched
        original = candidate_from_path(input_path, request.original_extension.lstrip(".") or request.kind)
        if original is None:
            raise ProcessingError.for_file(display_name, "no output was produced and the original is gone")
        return ChosenOutput(original.path, original.size_bytes, original.format_tag, is_original=True)

    def _record(self, result: JobResult, request: JobRequest) -> None:
        metric_kind = "converted" if result.operation == CONVERT else "compressed"
        self.metrics.record_file_processed(result.original_size, metric_kind)

        if result.operation == CONVERT:
            message = (
                f"{result.kind.capitalize()} converted to {(result.target_format or '').upper()}: "
                f"{result.output_path.name}"
            )
        else:
            message = f"{result.kind.capitalize()} compressed: {result.output_path.name} savings {result.savings_percent}%"
        self.activities.append(
            activity_type=f"{result.kind}_{result.operation}",
            message=message,
            severity="info",
            user_id=request.user_id,
            meta={
                "jobId": result.job_id,
                "originalSize": result.original_size,
                "compressedSize": result.final_size,
                "preset": result.preset,
                "elapsedMs": result.elapsed_ms,
            },
        )

    def _discard_partial(self, job_id: str, work_dir: Path, stem: str) -> None:
        """Remove whatever an aborted encode stage left behind for this upload."""
        for pattern in (f"compressed-{stem}-*", f"compressed-{stem}.*", f"converted-{stem}.*"):
            for path in work_dir.glob(pattern):
                safe_unlink(path, retry_delay=self.retry_delay, label=job_id)
