"""Custom exceptions for media processing jobs.

All error messages are written in plain English so users know exactly
what went wrong and how to fix it.
"""

from typing import Optional


class MediaProcessingError(Exception):
    """Base exception for all media processing errors."""

    error_type: str = "MediaProcessingError"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        # Allow subclasses to override status codes
        if hasattr(self, "status_code_override"):
            try:
                self.status_code = int(getattr(self, "status_code_override"))  # type: ignore[attr-defined]
            except (TypeError, ValueError):
                pass


class UnsupportedFormatError(MediaProcessingError):
    """The requested operation is not available for this kind/format.

    User-friendly message examples:
    - "Converting video to 'mkv' is not supported. Choose one of: mp4, avi, mov."
    - "PDF to image conversion is coming soon!"
    """

    error_type: str = "UnsupportedFormatError"
    status_code: int = 415

    def __init__(self, message: str, status_code: int = 415) -> None:
        self.status_code_override = status_code
        super().__init__(message)

    @staticmethod
    def for_kind(kind: str) -> "UnsupportedFormatError":
        return UnsupportedFormatError(
            f"'{kind}' files are not supported. Upload an image, video, audio or PDF file."
        )

    @staticmethod
    def for_target(kind: str, target: str, allowed: tuple) -> "UnsupportedFormatError":
        return UnsupportedFormatError(
            f"Converting {kind} to '{target}' is not supported. "
            f"Choose one of: {', '.join(allowed)}."
        )

    @staticmethod
    def coming_soon(what: str) -> "UnsupportedFormatError":
        return UnsupportedFormatError(f"{what} is coming soon!", status_code=501)


class ToolInvocationError(MediaProcessingError):
    """An external encoder process failed, timed out or is not installed.

    Raised by the tool runner and contained by the candidate strategies:
    a failed strategy simply produces no candidate.
    """

    error_type: str = "ToolInvocationError"
    status_code: int = 500

    def __init__(self, message: str, tool: str = "", return_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.tool = tool
        self.return_code = return_code

    @staticmethod
    def missing(tool: str) -> "ToolInvocationError":
        return ToolInvocationError(f"{tool} is not installed on this server", tool=tool)

    @staticmethod
    def timed_out(tool: str, seconds: float) -> "ToolInvocationError":
        return ToolInvocationError(f"{tool} timed out after {seconds:.0f}s", tool=tool)


class ProcessingError(MediaProcessingError):
    """Catch-all for jobs that could not produce any deliverable file."""

    error_type: str = "ProcessingError"
    status_code: int = 500

    @staticmethod
    def for_file(filename: str, detail: str = "") -> "ProcessingError":
        base_msg = f"'{filename}' could not be processed."
        if detail:
            return ProcessingError(f"{base_msg} Issue: {detail}")
        return ProcessingError(f"{base_msg} Please try again or use a different copy of the file.")


class FileTooLargeError(MediaProcessingError):
    """Upload exceeds the per-kind size ceiling."""

    error_type: str = "FileTooLarge"
    status_code: int = 413

    @staticmethod
    def for_kind(kind: str, size_mb: float, limit_mb: float) -> "FileTooLargeError":
        return FileTooLargeError(
            f"File too large: {size_mb:.1f}MB (limit {limit_mb:.0f}MB for {kind} files)"
        )


class InvalidRequestError(MediaProcessingError):
    """Malformed request (missing file, bad form field)."""

    error_type: str = "InvalidRequest"
    status_code: int = 400
