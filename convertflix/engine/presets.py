"""Speed presets: map turbo/fast/balanced/quality onto concrete encoder settings.

Everything here is a pure function of its inputs so the same request always
resolves to the same parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

SPEED_PRESETS: tuple[str, ...] = ("turbo", "fast", "balanced", "quality")
PRESET_ALIASES = {"ultrafast": "turbo"}
FALLBACK_PRESET = "fast"
MEDIA_KINDS: tuple[str, ...] = ("image", "video", "audio", "pdf")

# x264 presets from fastest to slowest; the video retry steps one entry left.
X264_SPEED_ORDER: tuple[str, ...] = (
    "ultrafast", "superfast", "veryfast", "faster", "fast", "medium", "slow", "slower", "veryslow",
)
MAX_CRF = 51


@dataclass(frozen=True)
class ImageParams:
    preset: str
    jpeg_quality: int
    jpeg_optimize: bool
    jpeg_progressive: bool
    png_compress_level: int
    png_optimize: bool
    webp_quality: int
    webp_method: int  # Pillow effort 0 (fast) .. 6 (slow)
    avif_quality: int
    avif_speed: int  # libavif speed 0 (slow) .. 10 (fast)


@dataclass(frozen=True)
class VideoParams:
    preset: str
    encoder_preset: str
    crf: int
    retry_preset: str
    retry_crf: int
    audio_bitrate: str = "128k"


@dataclass(frozen=True)
class AudioParams:
    preset: str
    bitrate: str


@dataclass(frozen=True)
class PdfParams:
    preset: str
    savings_threshold_pct: float
    heavy_pass: bool
    gs_settings: str
    gs_resolution: int
    aggressive_retry: bool = False
    aggressive_gs_settings: str = "/screen"
    aggressive_resolution: int = 96


EncodeParams = Union[ImageParams, VideoParams, AudioParams, PdfParams]


_IMAGE = {
    "turbo": dict(jpeg_quality=50, jpeg_optimize=False, jpeg_progressive=False, png_compress_level=3,
                  png_optimize=False, webp_quality=55, webp_method=0, avif_quality=30, avif_speed=9),
    "fast": dict(jpeg_quality=55, jpeg_optimize=True, jpeg_progressive=False, png_compress_level=6,
                 png_optimize=False, webp_quality=60, webp_method=2, avif_quality=35, avif_speed=8),
    "balanced": dict(jpeg_quality=62, jpeg_optimize=True, jpeg_progressive=True, png_compress_level=8,
                     png_optimize=True, webp_quality=70, webp_method=4, avif_quality=40, avif_speed=6),
    "quality": dict(jpeg_quality=72, jpeg_optimize=True, jpeg_progressive=True, png_compress_level=9,
                    png_optimize=True, webp_quality=78, webp_method=6, avif_quality=50, avif_speed=4),
}

_VIDEO = {
    "turbo": ("ultrafast", 30),
    "fast": ("veryfast", 28),
    "balanced": ("medium", 26),
    "quality": ("slow", 23),
}

_AUDIO = {
    "turbo": "96k",
    "fast": "112k",
    "balanced": "128k",
    "quality": "160k",
}

_PDF = {
    "turbo": dict(savings_threshold_pct=0.0, heavy_pass=False, gs_settings="/ebook", gs_resolution=150),
    "fast": dict(savings_threshold_pct=10.0, heavy_pass=True, gs_settings="/ebook", gs_resolution=150),
    "balanced": dict(savings_threshold_pct=20.0, heavy_pass=True, gs_settings="/ebook", gs_resolution=110),
    "quality": dict(savings_threshold_pct=30.0, heavy_pass=True, gs_settings="/ebook", gs_resolution=110,
                    aggressive_retry=True, aggressive_gs_settings="/screen", aggressive_resolution=96),
}


def normalize_preset(raw: Optional[str]) -> Optional[str]:
    """Return the canonical preset name, or None when `raw` is not a preset."""
    if raw is None:
        return None
    name = str(raw).strip().lower()
    name = PRESET_ALIASES.get(name, name)
    return name if name in SPEED_PRESETS else None


def effective_preset(
    param: Optional[str] = None,
    header: Optional[str] = None,
    default: Optional[str] = None,
) -> str:
    """Pick the preset for one request: parameter, then header, then server default.

    Unrecognized values at any level are skipped; a bad server default
    falls back to "fast".
    """
    for candidate in (param, header, default):
        name = normalize_preset(candidate)
        if name:
            return name
    return FALLBACK_PRESET


def _faster_x264_preset(name: str) -> str:
    try:
        idx = X264_SPEED_ORDER.index(name)
    except ValueError:
        return "veryfast"
    return X264_SPEED_ORDER[max(0, idx - 1)]


def resolve(kind: str, requested: Optional[str] = None, default: Optional[str] = None) -> EncodeParams:
    """Map (kind, preset) to the parameter bundle for that kind.

    Raises:
        ValueError: for an unknown kind.
    """
    preset = effective_preset(requested, None, default)

    if kind == "image":
        return ImageParams(preset=preset, **_IMAGE[preset])
    if kind == "video":
        encoder_preset, crf = _VIDEO[preset]
        return VideoParams(
            preset=preset,
            encoder_preset=encoder_preset,
            crf=crf,
            retry_preset=_faster_x264_preset(encoder_preset),
            retry_crf=min(MAX_CRF, crf + 4),
        )
    if kind == "audio":
        return AudioParams(preset=preset, bitrate=_AUDIO[preset])
    if kind == "pdf":
        return PdfParams(preset=preset, **_PDF[preset])
    raise ValueError(f"Unknown media kind: {kind}")


def bitrate_to_bps(bitrate: str) -> int:
    """'128k' -> 128000, '2M' -> 2000000, '64000' -> 64000."""
    text = str(bitrate).strip().lower()
    multiplier = 1
    if text.endswith("k"):
        multiplier, text = 1000, text[:-1]
    elif text.endswith("m"):
        multiplier, text = 1_000_000, text[:-1]
    return int(float(text) * multiplier)
