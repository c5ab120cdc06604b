"""PDF strategies: PyPDF2 structural resave, then Ghostscript when savings are low.

Order of work for one compression job:

1. Lightweight resave (skipped above ``pdf_lightweight_max_mb``): every page
   is copied into a fresh writer with content streams recompressed.
2. If the preset allows a heavy pass and the resave failed, was skipped, or
   saved less than the preset threshold, Ghostscript ``pdfwrite`` runs with
   downsampling tuned to the preset.
3. The quality preset tries one more aggressive Ghostscript pass when the
   first still misses the threshold.

Every pass that succeeds is kept as a candidate; selection happens later.
"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import List, Optional

from PyPDF2 import PdfReader, PdfWriter

from convertflix.core.exceptions import UnsupportedFormatError
from convertflix.core.utils import get_file_size_mb
from convertflix.engine.candidates import Candidate, attempt
from convertflix.engine.presets import PdfParams
from convertflix.engine.tools import compute_timeout, require_ghostscript, run_tool

logger = logging.getLogger(__name__)

MONO_IMAGE_RESOLUTION = 180


def savings_pct(original_size: int, new_size: int) -> float:
    if original_size <= 0:
        return 0.0
    return (original_size - new_size) / original_size * 100


def lightweight_resave(input_path: Path, output_path: Path) -> Path:
    """Rewrite the PDF through PyPDF2 with compressed content streams.

    Raises:
        ValueError: the file is encrypted or PyPDF2 cannot parse it.
    """
    try:
        with open(input_path, "rb") as f:
            reader = PdfReader(f, strict=False)
            if reader.is_encrypted:
                raise ValueError("PDF is password-protected")
            writer = PdfWriter()
            for page in reader.pages:
                added = writer.add_page(page)
                added.compress_content_streams()
            if reader.metadata:
                writer.add_metadata(dict(reader.metadata))
            with open(output_path, "wb") as out_f:
                writer.write(out_f)
    except ValueError:
        output_path.unlink(missing_ok=True)
        raise
    except Exception as e:
        # PyPDF2 surfaces malformed objects as AttributeError/KeyError/TypeError, not only PyPdfError
        output_path.unlink(missing_ok=True)
        raise ValueError(f"PyPDF2 could not rewrite the file: {e}") from e
    return output_path


def build_ghostscript_cmd(
    gs_cmd: str,
    input_path: Path,
    output_path: Path,
    pdf_settings: str,
    resolution: int,
    threads: int = 1,
) -> List[str]:
    return [
        gs_cmd,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={pdf_settings}",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
        "-dDownsampleColorImages=true",
        "-dColorImageDownsampleType=/Bicubic",
        f"-dColorImageResolution={resolution}",
        "-dDownsampleGrayImages=true",
        "-dGrayImageDownsampleType=/Bicubic",
        f"-dGrayImageResolution={resolution}",
        "-dDownsampleMonoImages=true",
        f"-dMonoImageResolution={MONO_IMAGE_RESOLUTION}",
        f"-dNumRenderingThreads={max(1, int(threads))}",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


class PdfEncoder:
    kind = "pdf"
    convert_targets: tuple[str, ...] = ()

    def __init__(
        self,
        lightweight_max_mb: float = 150.0,
        gs_threads: int = 1,
        timeout_seconds: float = 0.0,
        timeout_per_mb: float = 0.0,
    ) -> None:
        self.lightweight_max_mb = lightweight_max_mb
        self.gs_threads = gs_threads
        self.timeout_seconds = timeout_seconds
        self.timeout_per_mb = timeout_per_mb

    def _ghostscript(self, input_path: Path, output_path: Path, pdf_settings: str, resolution: int) -> Path:
        cmd = build_ghostscript_cmd(
            require_ghostscript(), input_path, output_path, pdf_settings, resolution, self.gs_threads,
        )
        timeout = compute_timeout(input_path, self.timeout_seconds, self.timeout_per_mb)
        return run_tool(cmd, output_path, label="pdf:gs", timeout=timeout)

    def _heavy(
        self, source: Path, work_dir: Path, stem: str, pdf_settings: str, resolution: int,
    ) -> Optional[Candidate]:
        tag = pdf_settings.strip("/")
        out = work_dir / f"compressed-{stem}-gs-{tag}.pdf"
        logger.info("[pdf] Ghostscript %s at %s dpi on %s", pdf_settings, resolution, source.name)
        return attempt(f"pdf:gs:{tag}", out, "pdf", partial(self._ghostscript, source, out, pdf_settings, resolution))

    def compress(self, input_path: Path, work_dir: Path, stem: str, params: PdfParams) -> List[Candidate]:
        original_size = input_path.stat().st_size
        size_mb = get_file_size_mb(input_path)
        candidates: List[Candidate] = []

        light: Optional[Candidate] = None
        if size_mb > self.lightweight_max_mb:
            logger.info(
                "[pdf] Skipping lightweight resave for %s (%.1fMB > %.0fMB)",
                input_path.name, size_mb, self.lightweight_max_mb,
            )
        else:
            light_out = work_dir / f"compressed-{stem}.pdf"
            light = attempt("pdf:light", light_out, "pdf", partial(lightweight_resave, input_path, light_out))
            if light is not None:
                candidates.append(light)

        best_size = min([c.size_bytes for c in candidates] + [original_size])
        if not params.heavy_pass:
            return candidates
        if light is not None and savings_pct(original_size, best_size) >= params.savings_threshold_pct:
            logger.info(
                "[pdf] Lightweight resave saved %.1f%% (threshold %.0f%%); no heavy pass",
                savings_pct(original_size, best_size), params.savings_threshold_pct,
            )
            return candidates

        # Ghostscript reads the resaved copy when it already shrank the file
        source = light.path if light is not None and light.size_bytes < original_size else input_path
        heavy = self._heavy(source, work_dir, stem, params.gs_settings, params.gs_resolution)
        if heavy is not None:
            candidates.append(heavy)
            best_size = min(best_size, heavy.size_bytes)

        if params.aggressive_retry and savings_pct(original_size, best_size) < params.savings_threshold_pct:
            aggressive = self._heavy(
                source, work_dir, stem, params.aggressive_gs_settings, params.aggressive_resolution,
            )
            if aggressive is not None:
                candidates.append(aggressive)
        return candidates

    def validate_target(self, target_format: str) -> None:
        raise UnsupportedFormatError.coming_soon("PDF to image conversion")

    def convert(self, input_path: Path, work_dir: Path, stem: str, target_format: str) -> List[Candidate]:
        self.validate_target(target_format)
        return []
