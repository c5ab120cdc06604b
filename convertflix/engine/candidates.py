"""Candidate production and selection.

A job runs one or more encode strategies; every strategy that succeeds
leaves a Candidate file in the working directory. The selector keeps the
smallest candidate strictly smaller than the original and everything else
is deleted before the job reports completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from convertflix.core.exceptions import MediaProcessingError, ToolInvocationError, UnsupportedFormatError
from convertflix.core.utils import safe_unlink
from convertflix.engine.presets import EncodeParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    path: Path
    size_bytes: int
    format_tag: str


@dataclass(frozen=True)
class ChosenOutput:
    path: Path
    size_bytes: int
    format_tag: str
    is_original: bool


class KindEncoder(Protocol):
    """Capability wrapping the native tool(s) for one media kind."""

    kind: str

    def compress(self, input_path: Path, work_dir: Path, stem: str, params: EncodeParams) -> List[Candidate]:
        ...

    def convert(self, input_path: Path, work_dir: Path, stem: str, target_format: str) -> List[Candidate]:
        ...


def candidate_from_path(path: Path, format_tag: str) -> Optional[Candidate]:
    """Wrap an encoder output, or None if it is missing or empty on disk."""
    try:
        size = path.stat().st_size
    except OSError:
        return None
    if size <= 0:
        return None
    return Candidate(path=path, size_bytes=size, format_tag=format_tag)


def attempt(label: str, output_path: Path, format_tag: str, fn: Callable[[], object]) -> Optional[Candidate]:
    """Run one encode strategy; a tool or I/O failure yields no candidate."""
    try:
        fn()
    except ToolInvocationError as e:
        logger.warning("[%s] Strategy failed: %s", label, e.message)
        output_path.unlink(missing_ok=True)
        return None
    except MediaProcessingError:
        output_path.unlink(missing_ok=True)
        raise
    except (OSError, ValueError) as e:
        # Pillow raises OSError/ValueError for unencodable modes and missing codecs
        logger.warning("[%s] Strategy failed: %s", label, e)
        output_path.unlink(missing_ok=True)
        return None
    return candidate_from_path(output_path, format_tag)


def select_best(candidates: Iterable[Candidate], original_size: int) -> Optional[Candidate]:
    """Smallest candidate strictly smaller than the original, or None.

    Sizes are re-read from disk; a candidate that vanished does not qualify.
    """
    best: Optional[Candidate] = None
    for candidate in candidates:
        current = candidate_from_path(candidate.path, candidate.format_tag)
        if current is None or current.size_bytes >= original_size:
            continue
        if best is None or current.size_bytes < best.size_bytes:
            best = current
    return best


def cleanup_candidates(
    candidates: Iterable[Candidate],
    keep: Optional[Path] = None,
    retry_delay: float = 0.5,
    label: str = "cleanup",
) -> List[Path]:
    """Delete every candidate except `keep`; returns the paths still on disk."""
    leftovers: List[Path] = []
    keep_resolved = keep.resolve() if keep is not None else None
    seen = set()
    for candidate in candidates:
        resolved = candidate.path.resolve()
        if resolved == keep_resolved or resolved in seen:
            continue
        seen.add(resolved)
        if not safe_unlink(candidate.path, retry_delay=retry_delay, label=label):
            leftovers.append(candidate.path)
    return leftovers


class CandidateEncoder:
    """Dispatches a job to the encoder registered for its kind."""

    def __init__(self, encoders: Dict[str, KindEncoder]) -> None:
        self._encoders = dict(encoders)

    def encoder_for(self, kind: str) -> KindEncoder:
        encoder = self._encoders.get(kind)
        if encoder is None:
            raise UnsupportedFormatError.for_kind(kind)
        return encoder

    def produce_candidates(
        self,
        input_path: Path,
        kind: str,
        params: EncodeParams,
        work_dir: Path,
        stem: str,
    ) -> List[Candidate]:
        candidates = self.encoder_for(kind).compress(input_path, work_dir, stem, params)
        return [c for c in candidates if c is not None]

    def produce_conversion(
        self,
        input_path: Path,
        kind: str,
        target_format: str,
        work_dir: Path,
        stem: str,
    ) -> List[Candidate]:
        candidates = self.encoder_for(kind).convert(input_path, work_dir, stem, target_format)
        return [c for c in candidates if c is not None]

    def validate(self, kind: str, operation: str = "compress", target_format: Optional[str] = None) -> None:
        """Reject unsupported kind/target combinations before any work starts.

        Raises:
            UnsupportedFormatError: unknown kind, or a target the encoder cannot write.
        """
        encoder = self.encoder_for(kind)
        if operation != "convert":
            return
        validator = getattr(encoder, "validate_target", None)
        if validator is not None:
            validator(target_format or "")
            return
        targets = tuple(getattr(encoder, "convert_targets", ()))
        target = (target_format or "").lower()
        if target not in targets:
            raise UnsupportedFormatError.for_target(kind, target or "(none)", targets)
