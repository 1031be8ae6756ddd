"""
Embedded images.

Photos are stored inline in each record as ``data:<mime>;base64,<payload>``
URLs. This module reads image files into that form (optionally downscaling
them to keep the stored collection small) and decodes them again for export.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import mimetypes
import re
from pathlib import Path

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_DATA_URL_PATTERN = re.compile(
    r"^data:(?P<mime>image/[A-Za-z0-9.+-]+)(?P<params>(?:;[^;,]*)*?);base64,(?P<data>.*)$",
    re.DOTALL,
)

# Preferred file extensions for common image types
_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tif",
    "image/heic": "heic",
    "image/svg+xml": "svg",
}

# Formats we re-encode when downscaling; anything else is kept as-is
_RESIZABLE_FORMATS = ("JPEG", "PNG", "WEBP")

# Multi-picture JPEGs from phone cameras are plain JPEG to viewers
_FORMAT_ALIASES = {"MPO": "JPEG"}


class ImageReadError(Exception):
    """A file could not be read as an image."""


def is_embedded_image(payload: str) -> bool:
    """Check if payload is a base64 ``data:image/...`` URL."""
    return isinstance(payload, str) and bool(_DATA_URL_PATTERN.match(payload))


def encode_data_url(data: bytes, mime: str) -> str:
    """Encode raw image bytes as a data URL."""
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(payload: str) -> tuple[str, bytes]:
    """Decode a data URL into (mime type, raw bytes).

    Raises:
        ValueError: If payload is not a base64 image data URL.
    """
    match = _DATA_URL_PATTERN.match(payload) if isinstance(payload, str) else None
    if not match:
        raise ValueError("Not a base64 image data URL")
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e
    return match.group("mime").lower(), data


def mime_type(payload: str) -> str | None:
    """Return the MIME type of a data URL, or None if it is not one."""
    match = _DATA_URL_PATTERN.match(payload) if isinstance(payload, str) else None
    return match.group("mime").lower() if match else None


def extension_for(mime: str) -> str:
    """File extension (without dot) for an image MIME type."""
    mime = mime.lower()
    if mime in _EXTENSIONS:
        return _EXTENSIONS[mime]
    guessed = mimetypes.guess_extension(mime)
    if guessed:
        return guessed.lstrip(".")
    return mime.split("/", 1)[-1].split("+", 1)[0] or "img"


def _downscale(img: Image.Image, max_size: int) -> bytes:
    """Resize img to fit max_size on the long edge and re-encode it."""
    fmt = _FORMAT_ALIASES.get(img.format, img.format)
    # Convert RGBA to RGB if needed (for JPEG)
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        rgb_img = Image.new("RGB", img.size, (255, 255, 255))
        if img.mode == "RGBA":
            rgb_img.paste(img, mask=img.split()[3])
        else:
            rgb_img.paste(img.convert("RGB"))
        img = rgb_img

    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    if fmt == "JPEG":
        img.save(buffer, format=fmt, quality=85, optimize=True)
    else:
        img.save(buffer, format=fmt)
    return buffer.getvalue()


def load_image_bytes(data: bytes, max_size: int = 0, name: str = "<bytes>") -> str:
    """Turn raw image bytes into a data URL.

    Args:
        data: Image file contents.
        max_size: If positive, downscale so neither side exceeds this many pixels.
        name: Used in error messages.

    Raises:
        ImageReadError: If the bytes are not a recognizable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = _FORMAT_ALIASES.get(img.format, img.format)
            mime = Image.MIME.get(fmt) if fmt else None
            if mime is None:
                raise ImageReadError(f"{name}: unsupported image format {fmt!r}")

            if max_size > 0 and max(img.size) > max_size and fmt in _RESIZABLE_FORMATS:
                img.load()
                data = _downscale(img, max_size)
                logger.debug("Downscaled %s to fit %dpx", name, max_size)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageReadError(f"{name}: not a readable image ({e})") from e

    return encode_data_url(data, mime)


def read_image_file(path: Path | str, max_size: int = 0) -> str:
    """Read an image file into a data URL.

    Raises:
        ImageReadError: If the file is missing or not an image.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ImageReadError(f"{path}: {e.strerror or e}") from e
    return load_image_bytes(data, max_size=max_size, name=path.name)


async def read_image(path: Path | str, max_size: int = 0) -> str:
    """Read one image file without blocking the event loop."""
    return await asyncio.to_thread(read_image_file, path, max_size)


async def read_images(paths: list[Path | str], max_size: int = 0) -> tuple[list[str], list[str]]:
    """Read several image files concurrently.

    Each file is read by its own task. Results are gathered independently and
    returned in selection order once all reads have finished.

    Returns:
        Tuple of (data URLs of readable images, error messages for the rest).
    """
    results = await asyncio.gather(
        *(read_image(path, max_size) for path in paths),
        return_exceptions=True,
    )

    images: list[str] = []
    errors: list[str] = []
    for path, result in zip(paths, results):
        if isinstance(result, ImageReadError):
            logger.warning("Skipping image %s", result)
            errors.append(str(result))
        elif isinstance(result, BaseException):
            raise result
        else:
            images.append(result)
    return images, errors
