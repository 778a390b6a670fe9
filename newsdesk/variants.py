"""Derive resized WebP/JPEG variants from an uploaded original using Pillow."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageOps

from . import tinify_client
from .storage import variant_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantProfile:
    name: str
    quality: int
    width: Optional[int] = None
    height: Optional[int] = None


IMAGE_VARIANTS: Dict[str, VariantProfile] = {
    "thumbnail": VariantProfile("thumbnail", 80, 150, 150),
    "small": VariantProfile("small", 85, 400, 300),
    "medium": VariantProfile("medium", 85, 800, 600),
    "large": VariantProfile("large", 90, 1200, 900),
    "original": VariantProfile("original", 95),
}

# format name -> (file extension, Pillow encoder, mime type)
OUTPUT_FORMATS: Dict[str, Tuple[str, str, str]] = {
    "webp": ("webp", "WEBP", "image/webp"),
    "jpeg": ("jpg", "JPEG", "image/jpeg"),
}


@dataclass
class GeneratedVariant:
    name: str
    format: str
    filename: str
    path: Path
    width: int
    height: int
    quality: int
    size_bytes: int


@dataclass
class SourceInfo:
    width: int
    height: int
    format: Optional[str]
    mode: str
    has_alpha: bool
    density: Optional[float]


def should_resize(source: Tuple[int, int], target: Tuple[int, int]) -> bool:
    return source[0] > target[0] or source[1] > target[1]


def negotiate_format(accept: Optional[str]) -> str:
    return "webp" if accept and "image/webp" in accept else "jpeg"


def compression_ratio(original_size: int, compressed_size: int) -> str:
    if original_size <= 0:
        return "0.0%"
    return f"{(original_size - compressed_size) / original_size * 100:.1f}%"


def read_source_info(path: Path) -> SourceInfo:
    """Open ``path`` and report its dimensions; raises ``PIL.UnidentifiedImageError`` for non-images."""
    with Image.open(path) as img:
        dpi = img.info.get("dpi")
        return SourceInfo(
            width=img.width,
            height=img.height,
            format=img.format.lower() if img.format else None,
            mode=img.mode,
            has_alpha="A" in img.getbands() or "transparency" in img.info,
            density=float(dpi[0]) if dpi else None,
        )


def resize_cover(img: Image.Image, profile: VariantProfile) -> Image.Image:
    """Fill the profile's box around the centre without ever enlarging the source.

    A source larger than the box on both axes is scaled and cropped to the box
    exactly. A source larger on one axis only is cropped to the box's aspect
    ratio at its own scale. Smaller sources pass through.
    """
    if profile.width is None or profile.height is None:
        return img
    if not should_resize(img.size, (profile.width, profile.height)):
        return img
    if img.width >= profile.width and img.height >= profile.height:
        return ImageOps.fit(img, (profile.width, profile.height), method=Image.LANCZOS, centering=(0.5, 0.5))
    ratio = profile.width / profile.height
    crop_width = min(img.width, round(img.height * ratio))
    crop_height = min(img.height, round(img.width / ratio))
    left = (img.width - crop_width) // 2
    top = (img.height - crop_height) // 2
    return img.crop((left, top, left + crop_width, top + crop_height))


def encode(img: Image.Image, fmt: str, quality: int) -> bytes:
    _, encoder, _ = OUTPUT_FORMATS[fmt]
    buffer = BytesIO()
    if fmt == "jpeg":
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(buffer, format=encoder, quality=quality, progressive=True, optimize=True)
    else:
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.save(buffer, format=encoder, quality=quality, method=4)
    return buffer.getvalue()


# raised by Pillow for files it cannot identify, truncated data or oversized dimensions
DECODE_ERRORS = (OSError, Image.DecompressionBombError)


def load_source(path: Path) -> Image.Image:
    """Fully decode ``path`` with EXIF orientation applied; raises one of ``DECODE_ERRORS``."""
    with Image.open(path) as opened:
        source = ImageOps.exif_transpose(opened)
        source.load()
    return source


def generate_variants(
    source_path: Path,
    filename: str,
    output_dir: Path,
    written: Optional[List[Path]] = None,
) -> List[GeneratedVariant]:
    return render_variants(load_source(source_path), filename, output_dir, written=written)


def render_variants(
    source: Image.Image,
    filename: str,
    output_dir: Path,
    written: Optional[List[Path]] = None,
) -> List[GeneratedVariant]:
    """Write every configured variant in both output formats.

    A variant that fails to encode is logged and left out of the result, so a
    partial list is a valid outcome. Every path is appended to ``written``
    before it is created so the caller can clean up after any failure.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    generated: List[GeneratedVariant] = []

    for profile in IMAGE_VARIANTS.values():
        try:
            resized = resize_cover(source, profile)
        except (OSError, ValueError):
            logger.exception("Error resizing %s variant of %s", profile.name, filename)
            continue
        for fmt, (ext, _, _) in OUTPUT_FORMATS.items():
            name = variant_filename(filename, profile.name, ext)
            path = output_dir / name
            try:
                data = encode(resized, fmt, profile.quality)
                if written is not None:
                    written.append(path)
                if profile.name == "original" and tinify_client.is_enabled():
                    data = tinify_client.compress(data)
                path.write_bytes(data)
            except (OSError, ValueError):
                logger.exception("Error encoding %s %s variant of %s", fmt, profile.name, filename)
                path.unlink(missing_ok=True)
                continue
            generated.append(
                GeneratedVariant(
                    name=profile.name,
                    format=fmt,
                    filename=name,
                    path=path,
                    width=resized.width,
                    height=resized.height,
                    quality=profile.quality,
                    size_bytes=len(data),
                )
            )
    return generated
