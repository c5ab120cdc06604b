"""Video strategies: single-pass CRF encode with one more aggressive retry."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import List, Optional

from convertflix.core.exceptions import UnsupportedFormatError
from convertflix.engine.candidates import Candidate, attempt
from convertflix.engine.presets import VideoParams
from convertflix.engine.tools import compute_timeout, require_ffmpeg, run_tool

logger = logging.getLogger(__name__)

# containers that accept H.264 + AAC as-is; anything else is re-wrapped as mp4
H264_CONTAINERS = (".mp4", ".mov", ".m4v", ".mkv")
MOV_FAMILY = (".mp4", ".mov", ".m4v", ".m4a")
CONVERT_TARGETS: tuple[str, ...] = ("mp4", "avi", "mov", "wmv", "flv")
CONVERT_CRF = 18


class VideoEncoder:
    kind = "video"
    convert_targets = CONVERT_TARGETS

    def __init__(self, threads: int = 2, timeout_seconds: float = 0.0, timeout_per_mb: float = 0.0) -> None:
        self.threads = max(1, int(threads))
        self.timeout_seconds = timeout_seconds
        self.timeout_per_mb = timeout_per_mb

    def _timeout(self, input_path: Path) -> Optional[float]:
        return compute_timeout(input_path, self.timeout_seconds, self.timeout_per_mb)

    def _encode_cmd(self, input_path: Path, output_path: Path, preset: str, crf: int, audio_bitrate: str) -> List[str]:
        cmd = [
            require_ffmpeg(),
            "-y",
            "-hide_banner",
            "-i", str(input_path),
            "-c:v", "libx264",
            "-preset", preset,
            "-crf", str(crf),
            "-pix_fmt", "yuv420p",
            "-threads", str(self.threads),
            "-c:a", "aac",
            "-b:a", audio_bitrate,
        ]
        if output_path.suffix.lower() in MOV_FAMILY:
            cmd += ["-movflags", "+faststart"]
        cmd.append(str(output_path))
        return cmd

    def _encode(self, input_path: Path, output_path: Path, preset: str, crf: int, audio_bitrate: str) -> Path:
        cmd = self._encode_cmd(input_path, output_path, preset, crf, audio_bitrate)
        return run_tool(cmd, output_path, label="video", timeout=self._timeout(input_path))

    def compress(self, input_path: Path, work_dir: Path, stem: str, params: VideoParams) -> List[Candidate]:
        suffix = input_path.suffix.lower()
        container = suffix if suffix in H264_CONTAINERS else ".mp4"
        original_size = input_path.stat().st_size

        first_out = work_dir / f"compressed-{stem}{container}"
        logger.info(
            "[video] Encoding %s with x264 %s crf %s", input_path.name, params.encoder_preset, params.crf,
        )
        first = attempt(
            "video",
            first_out,
            "h264",
            partial(self._encode, input_path, first_out, params.encoder_preset, params.crf, params.audio_bitrate),
        )
        candidates = [first] if first is not None else []
        if first is not None and first.size_bytes < original_size:
            return candidates

        # one retry from the source, faster preset and higher CRF
        retry_out = work_dir / f"compressed-{stem}-retry{container}"
        logger.info(
            "[video] %s did not shrink; retrying with %s crf %s",
            input_path.name, params.retry_preset, params.retry_crf,
        )
        retry = attempt(
            "video:retry",
            retry_out,
            "h264",
            partial(self._encode, input_path, retry_out, params.retry_preset, params.retry_crf, params.audio_bitrate),
        )
        if retry is not None:
            candidates.append(retry)
        return candidates

    def _remux(self, input_path: Path, output_path: Path) -> Path:
        cmd = [require_ffmpeg(), "-y", "-hide_banner", "-i", str(input_path), "-c", "copy", str(output_path)]
        return run_tool(cmd, output_path, label="video:remux", timeout=self._timeout(input_path))

    def _reencode(self, input_path: Path, output_path: Path) -> Path:
        cmd = [
            require_ffmpeg(),
            "-y",
            "-hide_banner",
            "-i", str(input_path),
            "-c:v", "libx264",
            "-preset", "slow",
            "-crf", str(CONVERT_CRF),
            "-threads", str(self.threads),
            "-c:a", "aac",
        ]
        if output_path.suffix.lower() in MOV_FAMILY:
            cmd += ["-movflags", "+faststart"]
        cmd.append(str(output_path))
        return run_tool(cmd, output_path, label="video:convert", timeout=self._timeout(input_path))

    def convert(self, input_path: Path, work_dir: Path, stem: str, target_format: str) -> List[Candidate]:
        target = target_format.lower()
        if target not in CONVERT_TARGETS:
            raise UnsupportedFormatError.for_target("video", target, CONVERT_TARGETS)

        out = work_dir / f"converted-{stem}.{target}"
        candidate = attempt("video:remux", out, target, partial(self._remux, input_path, out))
        if candidate is None:
            logger.info("[video] Stream copy into %s failed; re-encoding", target)
            candidate = attempt("video:convert", out, target, partial(self._reencode, input_path, out))
        return [candidate] if candidate else []
