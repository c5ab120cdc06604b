"""Audio strategies: bitrate-targeted AAC transcode and format conversion."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import List, Optional

from convertflix.core.exceptions import UnsupportedFormatError
from convertflix.engine.candidates import Candidate, attempt
from convertflix.engine.presets import AudioParams
from convertflix.engine.tools import compute_timeout, require_ffmpeg, run_tool

logger = logging.getLogger(__name__)

CONVERT_TARGETS: tuple[str, ...] = ("mp3", "wav", "flac", "aac", "m4a", "ogg")

# target -> ffmpeg codec arguments
CONVERT_CODECS = {
    "mp3": ["-c:a", "libmp3lame", "-q:a", "0"],
    "wav": ["-c:a", "pcm_s16le"],
    "flac": ["-c:a", "flac"],
    "aac": ["-c:a", "aac", "-b:a", "192k"],
    "m4a": ["-c:a", "aac", "-b:a", "192k", "-movflags", "+faststart"],
    "ogg": ["-c:a", "libopus", "-b:a", "160k"],
}


class AudioEncoder:
    kind = "audio"
    convert_targets = CONVERT_TARGETS

    def __init__(self, threads: int = 2, timeout_seconds: float = 0.0, timeout_per_mb: float = 0.0) -> None:
        self.threads = max(1, int(threads))
        self.timeout_seconds = timeout_seconds
        self.timeout_per_mb = timeout_per_mb

    def _timeout(self, input_path: Path) -> Optional[float]:
        return compute_timeout(input_path, self.timeout_seconds, self.timeout_per_mb)

    def _transcode(self, input_path: Path, output_path: Path, codec_args: List[str], label: str) -> Path:
        cmd = [
            require_ffmpeg(),
            "-y",
            "-hide_banner",
            "-i", str(input_path),
            "-vn",
            "-threads", str(self.threads),
            *codec_args,
            str(output_path),
        ]
        return run_tool(cmd, output_path, label=label, timeout=self._timeout(input_path))

    def compress(self, input_path: Path, work_dir: Path, stem: str, params: AudioParams) -> List[Candidate]:
        out = work_dir / f"compressed-{stem}.m4a"
        logger.info("[audio] Encoding %s to AAC %s", input_path.name, params.bitrate)
        codec_args = ["-c:a", "aac", "-b:a", params.bitrate, "-movflags", "+faststart"]
        candidate = attempt("audio", out, "aac", partial(self._transcode, input_path, out, codec_args, "audio"))
        return [candidate] if candidate else []

    def convert(self, input_path: Path, work_dir: Path, stem: str, target_format: str) -> List[Candidate]:
        target = target_format.lower()
        if target not in CONVERT_TARGETS:
            raise UnsupportedFormatError.for_target("audio", target, CONVERT_TARGETS)

        out = work_dir / f"converted-{stem}.{target}"
        candidate = attempt(
            f"audio:convert:{target}",
            out,
            target,
            partial(self._transcode, input_path, out, CONVERT_CODECS[target], "audio:convert"),
        )
        if candidate is None and target == "mp3":
            raise UnsupportedFormatError(
                "MP3 encoding not supported on this server build. Try AAC or OGG.", status_code=400,
            )
        return [candidate] if candidate else []
