"""External native tool discovery and invocation (ffmpeg, Ghostscript)."""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from convertflix.core.exceptions import ToolInvocationError

logger = logging.getLogger(__name__)

GHOSTSCRIPT_NAMES = ("gs", "gswin64c", "gswin32c")
FFMPEG_NAMES = ("ffmpeg",)


def get_ghostscript_command() -> Optional[str]:
    """Get Ghostscript binary name for current platform."""
    for name in GHOSTSCRIPT_NAMES:
        if shutil.which(name):
            return name
    return None


def get_ffmpeg_command() -> Optional[str]:
    for name in FFMPEG_NAMES:
        if shutil.which(name):
            return name
    return None


def require_ffmpeg() -> str:
    cmd = get_ffmpeg_command()
    if not cmd:
        raise ToolInvocationError.missing("ffmpeg")
    return cmd


def require_ghostscript() -> str:
    cmd = get_ghostscript_command()
    if not cmd:
        raise ToolInvocationError.missing("Ghostscript")
    return cmd


def compute_timeout(input_path: Path, base_seconds: float, per_mb_seconds: float) -> Optional[float]:
    """Timeout for one tool call; None means wait for the process indefinitely."""
    if base_seconds <= 0:
        return None
    try:
        size_mb = input_path.stat().st_size / (1024 * 1024)
    except OSError:
        size_mb = 0.0
    return max(base_seconds, size_mb * per_mb_seconds)


def translate_ghostscript_error(stderr: str, return_code: int) -> str:
    """Translate Ghostscript stderr to a short message; logs the full stderr."""
    logger.error(f"Ghostscript failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()
    if 'invalidfileaccess' in stderr_lower or 'password' in stderr_lower:
        return "PDF is password-protected or locked"
    if 'typecheck' in stderr_lower or 'rangecheck' in stderr_lower:
        return "PDF has corrupted internal data"
    if any(x in stderr_lower for x in ['undefined', 'ioerror', 'syntaxerror', 'eofread']):
        return "PDF structure is damaged"
    return f"Ghostscript exited with code {return_code}"


def translate_ffmpeg_error(stderr: str, return_code: int) -> str:
    """Translate ffmpeg stderr to a short message; logs the tail of stderr."""
    tail = "\n".join((stderr or "").strip().splitlines()[-15:])
    logger.error(f"ffmpeg failed (exit code {return_code}). Last lines:\n{tail}")

    stderr_lower = (stderr or "").lower()
    if "unknown encoder" in stderr_lower or "encoder not found" in stderr_lower:
        return "Encoder not available in this ffmpeg build"
    if "invalid data found" in stderr_lower or "moov atom not found" in stderr_lower:
        return "Input media is damaged or not a supported format"
    if "could not find tag for codec" in stderr_lower or "not currently supported in container" in stderr_lower:
        return "Codec cannot be stored in the requested container"
    return f"ffmpeg exited with code {return_code}"


def run_tool(
    cmd: List[str],
    output_path: Path,
    *,
    label: str,
    timeout: Optional[float] = None,
) -> Path:
    """Run an external tool that writes `output_path`.

    Returns the output path once it exists with a non-zero size.

    Raises:
        ToolInvocationError: tool missing, non-zero exit, timeout or no output.
    """
    tool = Path(cmd[0]).name
    output_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("[%s] Running: %s", label, " ".join(cmd))

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ToolInvocationError.missing(tool) from e
    except subprocess.TimeoutExpired as e:
        output_path.unlink(missing_ok=True)
        raise ToolInvocationError.timed_out(tool, timeout or 0) from e
    except OSError as e:
        raise ToolInvocationError(f"{tool} could not be started: {e}", tool=tool) from e

    if result.returncode != 0:
        output_path.unlink(missing_ok=True)
        if tool.startswith("gs"):
            message = translate_ghostscript_error(result.stderr, result.returncode)
        else:
            message = translate_ffmpeg_error(result.stderr, result.returncode)
        raise ToolInvocationError(message, tool=tool, return_code=result.returncode)

    try:
        size = output_path.stat().st_size
    except OSError as e:
        raise ToolInvocationError(f"{tool} did not create {output_path.name}", tool=tool) from e
    if size == 0:
        output_path.unlink(missing_ok=True)
        raise ToolInvocationError(f"{tool} produced an empty file", tool=tool)
    return output_path
