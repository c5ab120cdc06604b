"""Image strategies built on Pillow."""

from __future__ import annotations

import logging
import math
from functools import partial
from pathlib import Path
from typing import List, Optional

from PIL import Image, ImageOps

from convertflix.core.exceptions import UnsupportedFormatError
from convertflix.engine.candidates import Candidate, attempt
from convertflix.engine.presets import ImageParams

logger = logging.getLogger(__name__)

# source extension -> Pillow format used for the same-format candidate
SAME_FORMAT = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".avif": "AVIF",
}
FORMAT_SUFFIX = {"JPEG": ".jpg", "PNG": ".png", "WEBP": ".webp", "AVIF": ".avif"}

CONVERT_TARGETS: tuple[str, ...] = ("jpg", "jpeg", "png", "webp", "gif", "bmp", "tiff", "avif", "ico")
ICON_SIZE = (32, 32)

# modes each writer stores as-is; anything else (CMYK, YCbCr, LAB, F...) goes through RGB(A)
PNG_MODES = ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16")
WEBP_MODES = ("RGB", "RGBA")
TIFF_MODES = ("1", "L", "LA", "P", "RGB", "RGBA", "CMYK", "YCbCr", "I", "I;16", "F")
GIF_MODES = ("1", "L", "LA", "P", "RGB", "RGBA")
RGB_FAMILY = {"RGB", "RGBA", "P"}

# sources up to this multiple of the pixel ceiling are decoded and downscaled;
# Pillow still raises DecompressionBombError beyond twice MAX_IMAGE_PIXELS
DECODE_HEADROOM = 8


def encoder_available(fmt: str) -> bool:
    Image.init()
    return fmt.upper() in Image.SAVE


def bounded_size(width: int, height: int, max_pixels: int) -> tuple[int, int]:
    """Proportional size with width*height <= max_pixels; never upscales."""
    if width * height <= max_pixels:
        return width, height
    scale = math.sqrt(max_pixels / float(width * height))
    return max(1, int(width * scale)), max(1, int(height * scale))


def _flatten_alpha(img: Image.Image) -> Image.Image:
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _storable(img: Image.Image, modes: tuple[str, ...]) -> Image.Image:
    if img.mode in modes:
        return img
    return img.convert("RGBA" if "A" in img.getbands() or img.mode == "P" else "RGB")


def _save(img: Image.Image, out: Path, fmt: str, params: ImageParams) -> None:
    if fmt == "JPEG":
        _flatten_alpha(img).save(
            out,
            format="JPEG",
            quality=params.jpeg_quality,
            optimize=params.jpeg_optimize,
            progressive=params.jpeg_progressive,
        )
    elif fmt == "PNG":
        _storable(img, PNG_MODES).save(
            out, format="PNG", optimize=params.png_optimize, compress_level=params.png_compress_level,
        )
    elif fmt == "WEBP":
        _storable(img, WEBP_MODES).save(out, format="WEBP", quality=params.webp_quality, method=params.webp_method)
    elif fmt == "AVIF":
        _storable(img, WEBP_MODES).save(out, format="AVIF", quality=params.avif_quality, speed=params.avif_speed)
    else:
        raise ValueError(f"No image encoder for {fmt}")


class ImageEncoder:
    """Same-format recompression plus alternate-format candidates."""

    kind = "image"
    convert_targets = CONVERT_TARGETS

    def __init__(self, max_pixels: int = 40_000_000) -> None:
        self.max_pixels = max(1, int(max_pixels))
        decode_limit = self.max_pixels * DECODE_HEADROOM
        if Image.MAX_IMAGE_PIXELS is not None and Image.MAX_IMAGE_PIXELS < decode_limit:
            logger.info("[image] Raising Pillow decode limit to %s px", decode_limit)
            Image.MAX_IMAGE_PIXELS = decode_limit

    def _open_bounded(self, input_path: Path) -> Optional[Image.Image]:
        try:
            img = Image.open(input_path)
        except (OSError, Image.DecompressionBombError) as e:
            logger.warning("[image] Cannot decode %s: %s", input_path.name, e)
            return None

        if getattr(img, "is_animated", False):
            logger.info("[image] %s is animated; keeping the original", input_path.name)
            img.close()
            return None

        width, height = img.size
        target = bounded_size(width, height, self.max_pixels)
        if target != (width, height) and img.format == "JPEG":
            # decode at a reduced scale instead of materialising every pixel
            img.draft("RGB", target)

        try:
            img.load()
            transposed = ImageOps.exif_transpose(img)
            if transposed is not img:
                img.close()
                img = transposed
        except OSError as e:
            logger.warning("[image] Cannot decode %s: %s", input_path.name, e)
            img.close()
            return None

        target = bounded_size(img.width, img.height, self.max_pixels)
        if target != img.size:
            logger.info(
                "[image] Downscaling %s from %sx%s to %sx%s (ceiling %s px)",
                input_path.name, img.width, img.height, target[0], target[1], self.max_pixels,
            )
            img = img.resize(target, Image.Resampling.LANCZOS)
        return img

    def _plan(self, suffix: str, params: ImageParams) -> List[str]:
        same = SAME_FORMAT.get(suffix, "JPEG")
        plan = [same]
        alternates = ["WEBP", "AVIF"] if params.preset == "quality" else ["WEBP"]
        for alt in alternates:
            if alt == same:
                alt = "JPEG" if same != "JPEG" else alt
            if alt not in plan:
                plan.append(alt)
        return [fmt for fmt in plan if encoder_available(fmt)]

    def compress(self, input_path: Path, work_dir: Path, stem: str, params: ImageParams) -> List[Candidate]:
        img = self._open_bounded(input_path)
        if img is None:
            return []

        candidates: List[Candidate] = []
        try:
            for fmt in self._plan(input_path.suffix.lower(), params):
                out = work_dir / f"compressed-{stem}-{fmt.lower()}{FORMAT_SUFFIX[fmt]}"
                candidate = attempt(f"image:{fmt.lower()}", out, fmt.lower(), partial(_save, img, out, fmt, params))
                if candidate is not None:
                    candidates.append(candidate)
        finally:
            img.close()
        return candidates

    def convert(self, input_path: Path, work_dir: Path, stem: str, target_format: str) -> List[Candidate]:
        target = target_format.lower()
        if target not in CONVERT_TARGETS:
            raise UnsupportedFormatError.for_target("image", target, CONVERT_TARGETS)

        out = work_dir / f"converted-{stem}.{target}"

        def _convert() -> None:
            with Image.open(input_path) as src:
                img = ImageOps.exif_transpose(src)
                exif = img.info.get("exif")
                icc = img.info.get("icc_profile")

                def _extra(stored: Image.Image, with_exif: bool = False) -> dict:
                    extra = {}
                    # a CMYK or grey profile would mislabel the RGB pixels it was converted to
                    if icc and (stored.mode == img.mode or {stored.mode, img.mode} <= RGB_FAMILY):
                        extra["icc_profile"] = icc
                    if with_exif and exif:
                        extra["exif"] = exif
                    return extra

                if target in ("jpg", "jpeg"):
                    stored = _flatten_alpha(img)
                    stored.save(out, format="JPEG", quality=100, progressive=True, **_extra(stored, True))
                elif target == "png":
                    stored = _storable(img, PNG_MODES)
                    stored.save(out, format="PNG", compress_level=0, **_extra(stored))
                elif target == "webp":
                    stored = _storable(img, WEBP_MODES)
                    stored.save(out, format="WEBP", quality=100, **_extra(stored, True))
                elif target == "tiff":
                    stored = _storable(img, TIFF_MODES)
                    stored.save(out, format="TIFF", **_extra(stored))
                elif target == "avif":
                    _storable(img, WEBP_MODES).save(out, format="AVIF", quality=100)
                elif target == "ico":
                    _storable(img, PNG_MODES).save(out, format="ICO", sizes=[ICON_SIZE])
                elif target == "gif":
                    _storable(img, GIF_MODES).convert("P", palette=Image.Palette.ADAPTIVE).save(out, format="GIF")
                else:
                    img.convert("RGB").save(out, format=target.upper())

        candidate = attempt(f"image:convert:{target}", out, target, _convert)
        return [candidate] if candidate else []
