"""Re-encode oversized images as JPEG under a byte budget."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Sequence

from PIL import Image, ImageOps

from attachment_shrinker.core.errors import ImageProcessingError

IMAGE_EXTENSIONS = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".heic",
        ".heif",
        ".webp",
        ".avif",
        ".tiff",
        ".tif",
    }
)

QUALITY_STEPS: tuple[int, ...] = (80, 60, 40)
RESIZE_STEPS: tuple[int, ...] = (3000, 2000, 1500)
JPEG_EXTENSION = ".jpg"

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_WHITE = (255, 255, 255)


def is_image_file(file_name: str) -> bool:
    """Classify by lowercase extension only; content is never sniffed."""
    _, dot, ext = file_name.lower().rpartition(".")
    return bool(dot) and f".{ext}" in IMAGE_EXTENSIONS


def to_jpeg_name(file_name: str) -> str:
    if _EXTENSION_RE.search(file_name):
        return _EXTENSION_RE.sub(JPEG_EXTENSION, file_name)
    return f"{file_name}{JPEG_EXTENSION}"


@dataclass(slots=True)
class CompressionOutcome:
    original_size_bytes: int
    compressed_size_bytes: int
    original_name: str
    new_name: str
    quality: int
    resized_to: int | None = None
    best_effort: bool = False

    @property
    def saved_bytes(self) -> int:
        return self.original_size_bytes - self.compressed_size_bytes

    def to_dict(self) -> dict[str, object]:
        return {
            "original_size_bytes": self.original_size_bytes,
            "compressed_size_bytes": self.compressed_size_bytes,
            "original_name": self.original_name,
            "new_name": self.new_name,
            "quality": self.quality,
            "resized_to": self.resized_to,
            "best_effort": self.best_effort,
        }


@dataclass(slots=True)
class CompressedImage:
    data: bytes
    outcome: CompressionOutcome


class CompressionEngine:
    """Drive the codec through a fixed ladder of quality and resize steps.

    Phase A re-encodes the unresized image at each quality step not above the
    requested start quality. Phase B, reached only when phase A never fits the
    budget, shrinks the longest side through the resize steps at the lowest
    quality. The first candidate that fits wins. When none fits, the last
    candidate is returned flagged ``best_effort``.
    """

    def __init__(
        self,
        quality_steps: Sequence[int] = QUALITY_STEPS,
        resize_steps: Sequence[int] = RESIZE_STEPS,
    ) -> None:
        if not quality_steps:
            raise ValueError("quality_steps must not be empty")
        self.quality_steps = tuple(quality_steps)
        self.resize_steps = tuple(resize_steps)

    @property
    def lowest_quality(self) -> int:
        return self.quality_steps[-1]

    def compress(
        self,
        data: bytes,
        file_name: str,
        max_size_bytes: int,
        start_quality: int,
    ) -> CompressedImage | None:
        original_size = len(data)
        if original_size <= max_size_bytes or not is_image_file(file_name):
            return None

        image = load_image(data)
        candidate: bytes | None = None
        quality = self.lowest_quality
        resized_to: int | None = None

        for quality in self.quality_steps:
            if quality > start_quality:
                continue
            candidate = encode_jpeg(image, quality)
            if len(candidate) <= max_size_bytes:
                return _result(candidate, original_size, file_name, quality, None, best_effort=False)

        width, height = image.size
        longest_side = max(width, height)
        quality = self.lowest_quality
        for max_dimension in self.resize_steps:
            if longest_side <= max_dimension:
                continue
            resized_to = max_dimension
            candidate = encode_jpeg(resize_longest_side(image, max_dimension), quality)
            if len(candidate) <= max_size_bytes:
                return _result(candidate, original_size, file_name, quality, resized_to, best_effort=False)

        if candidate is None:
            return None
        return _result(candidate, original_size, file_name, quality, resized_to, best_effort=True)


def load_image(data: bytes) -> Image.Image:
    """Decode, apply EXIF orientation and flatten to a JPEG-compatible mode."""
    try:
        with Image.open(io.BytesIO(data)) as raw:
            raw.load()
            image = ImageOps.exif_transpose(raw)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageProcessingError(f"Cannot decode image: {exc}") from exc
    return _to_jpeg_mode(image)


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
    except (OSError, ValueError) as exc:
        raise ImageProcessingError(f"Cannot encode JPEG at quality {quality}: {exc}") from exc
    return buffer.getvalue()


def resize_longest_side(image: Image.Image, max_dimension: int) -> Image.Image:
    width, height = image.size
    if width >= height:
        size = (max_dimension, max(1, round(height * max_dimension / width)))
    else:
        size = (max(1, round(width * max_dimension / height)), max_dimension)
    return image.resize(size, Image.Resampling.LANCZOS)


def _to_jpeg_mode(image: Image.Image) -> Image.Image:
    has_alpha = image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)
    if has_alpha:
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, _WHITE)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode not in ("RGB", "L"):
        return image.convert("RGB")
    return image


def _result(
    data: bytes,
    original_size: int,
    file_name: str,
    quality: int,
    resized_to: int | None,
    *,
    best_effort: bool,
) -> CompressedImage:
    return CompressedImage(
        data=data,
        outcome=CompressionOutcome(
            original_size_bytes=original_size,
            compressed_size_bytes=len(data),
            original_name=file_name,
            new_name=to_jpeg_name(file_name),
            quality=quality,
            resized_to=resized_to,
            best_effort=best_effort,
        ),
    )


_DEFAULT_ENGINE = CompressionEngine()


def compress_to_budget(
    data: bytes,
    file_name: str,
    max_size_bytes: int,
    start_quality: int,
) -> CompressedImage | None:
    """Compress with the default ladder."""
    return _DEFAULT_ENGINE.compress(data, file_name, max_size_bytes, start_quality)


__all__ = [
    "IMAGE_EXTENSIONS",
    "QUALITY_STEPS",
    "RESIZE_STEPS",
    "CompressionEngine",
    "CompressionOutcome",
    "CompressedImage",
    "compress_to_budget",
    "encode_jpeg",
    "is_image_file",
    "load_image",
    "resize_longest_side",
    "to_jpeg_name",
]
