"""Application configuration loading."""

from __future__ import annotations

from dataclasses import dataclass

from convertflix.core.settings import RuntimeSettings

# multipart overhead on top of the largest per-kind ceiling
FORM_OVERHEAD_BYTES = 1024 * 1024


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the Flask app."""

    max_content_length: int


def load_runtime_config(settings: RuntimeSettings) -> RuntimeConfig:
    """Derive Flask config from the runtime settings."""
    limits = settings.size_limits
    largest_mb = max(limits.image_mb, limits.video_mb, limits.audio_mb, limits.pdf_mb)
    return RuntimeConfig(max_content_length=int(largest_mb * 1024 * 1024) + FORM_OVERHEAD_BYTES)
