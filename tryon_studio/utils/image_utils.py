"""Image processing utilities: data URLs, hashing and JPEG normalization."""

import asyncio
import base64
import binascii
import hashlib
import io
import logging
import re
from typing import Iterable, List, Optional, Tuple

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from ..config import DEFAULT_JPEG_QUALITY, MIN_REFERENCE_PAYLOAD_CHARS
from ..errors import ConversionFailed, UnsupportedFormat

logger = logging.getLogger(__name__)

# HEIC/HEIF decoding goes through pillow-heif's Pillow plugin
register_heif_opener()

CANONICAL_MIME = "image/jpeg"
LEGACY_MIME_TYPES = ("image/heic", "image/heif")
SUPPORTED_MIME_TYPES = LEGACY_MIME_TYPES + (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
)

_DATA_URL_RE = re.compile(r"^data:([^;,]+)(;base64)?,(.+)$", re.DOTALL)


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split a base64 data URL into its mime type and decoded bytes.

    Args:
        data_url: String of the form ``data:<mime>;base64,<payload>``

    Returns:
        Tuple of (lower-cased mime type, raw bytes)
    """
    if not data_url or not isinstance(data_url, str):
        raise UnsupportedFormat("Invalid data URL: must be a non-empty string")

    match = _DATA_URL_RE.match(data_url.strip())
    if not match or not match.group(2):
        raise UnsupportedFormat("Invalid data URL format: expected data:<mime>;base64,<payload>")

    mime = match.group(1).lower()
    try:
        raw = base64.b64decode(match.group(3))
    except (binascii.Error, ValueError) as e:
        raise ConversionFailed(f"Invalid base64 payload: {e}", mime=mime) from e
    return mime, raw


def to_data_url(mime: str, data: bytes) -> str:
    """Encode raw bytes as a base64 data URL."""
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def ensure_data_url(value: str, default_mime: str = "image/png") -> str:
    """Wrap raw base64 in a data URL; data URLs pass through untouched."""
    if value.startswith("data:"):
        return value
    return f"data:{default_mime};base64,{value}"


def payload_of(data_url: str) -> str:
    """Return the base64 payload of a data URL (or the input if it has none)."""
    if "," in data_url:
        return data_url.split(",", 1)[1]
    return data_url


def content_hash(data_url: str) -> str:
    """
    Stable cache key for an image.

    Only the payload is hashed so that prefix differences such as
    ``image/jpg`` vs ``image/jpeg`` map to the same key.
    """
    return hashlib.sha256(payload_of(data_url).encode("ascii", errors="ignore")).hexdigest()


def is_legacy_format(mime: Optional[str]) -> bool:
    """True for the HEIC/HEIF family, which must never pass through undecoded."""
    return bool(mime) and mime.lower() in LEGACY_MIME_TYPES


def mime_of(data_url: str) -> Optional[str]:
    """Best-effort mime type of a data URL without decoding the payload."""
    match = _DATA_URL_RE.match(data_url or "")
    return match.group(1).lower() if match else None


def describe_image(data_url: str) -> str:
    """Short log-friendly description (never the full payload)."""
    return f"{mime_of(data_url) or 'unknown'} len={len(data_url or '')}"


def decode_image(data: bytes) -> Image.Image:
    """
    Decode image bytes to an RGB PIL Image with EXIF orientation applied.

    Transparent pixels are flattened onto white.
    """
    image = Image.open(io.BytesIO(data))
    image.load()
    image = ImageOps.exif_transpose(image)

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def data_url_to_pil(data_url: str) -> Image.Image:
    """Decode a data URL into an RGB PIL Image."""
    _, raw = parse_data_url(data_url)
    return decode_image(raw)


def resize_image(
    image: Image.Image,
    max_size: Tuple[int, int] = (1024, 1024),
) -> Image.Image:
    """
    Resize an image to fit within max_size while preserving aspect ratio.

    Never upscales: images already inside the box are returned as-is.
    """
    image.thumbnail(max_size, Image.Resampling.LANCZOS)
    return image


def pil_to_jpeg_bytes(image: Image.Image, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def pil_to_data_url(image: Image.Image, quality: int = DEFAULT_JPEG_QUALITY) -> str:
    """Encode a PIL Image as a canonical JPEG data URL."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    return to_data_url(CANONICAL_MIME, pil_to_jpeg_bytes(image, quality))


def image_size(data_url: str) -> Tuple[int, int]:
    """Return (width, height) of a data URL image, reading only its header."""
    _, raw = parse_data_url(data_url)
    with Image.open(io.BytesIO(raw)) as image:
        width, height = image.size
        orientation = image.getexif().get(0x0112, 1)
    # EXIF orientations 5-8 swap the axes once transposed
    if orientation in (5, 6, 7, 8):
        return height, width
    return width, height


def _is_upright_jpeg(data: bytes) -> bool:
    """True for a decodable JPEG that needs no EXIF rotation."""
    try:
        with Image.open(io.BytesIO(data)) as candidate:
            if candidate.format != "JPEG":
                return False
            if candidate.getexif().get(0x0112, 1) != 1:
                return False
            candidate.verify()
        return True
    except Exception as e:
        logger.warning(f"JPEG integrity check failed, re-encoding: {e}")
        return False


def normalize_image(
    data_url: str,
    max_dim: Optional[int] = None,
    quality: Optional[int] = None,
) -> str:
    """
    Convert a data URL to a canonical JPEG data URL.

    Supported inputs: HEIC/HEIF, JPEG, PNG and WebP.

    Args:
        data_url: Input image as a base64 data URL
        max_dim: Longest side after an aspect-preserving fit-inside resize
            (never upscales). None keeps the original size.
        quality: JPEG quality (1-100). None means "no change requested";
            re-encoding then uses the default quality of 85.

    Returns:
        ``data:image/jpeg;base64,...`` string. An intact, upright JPEG with neither
        option requested is returned unchanged.

    Raises:
        UnsupportedFormat: The mime type is not supported.
        ConversionFailed: The image could not be decoded or re-encoded.
    """
    mime, raw = parse_data_url(data_url)

    if mime not in SUPPORTED_MIME_TYPES:
        raise UnsupportedFormat(
            f"Unsupported image format: {mime}. Supported formats: {', '.join(SUPPORTED_MIME_TYPES)}",
            mime=mime,
        )

    if mime in ("image/jpeg", "image/jpg") and max_dim is None and quality is None:
        if _is_upright_jpeg(raw):
            if mime == CANONICAL_MIME:
                return data_url
            return f"data:{CANONICAL_MIME};base64,{payload_of(data_url)}"

    try:
        image = decode_image(raw)
    except Exception as e:
        if is_legacy_format(mime):
            logger.error(f"HEIC/HEIF conversion failed for {describe_image(data_url)}: {e}")
            raise ConversionFailed(
                f"HEIC conversion failed, please use JPG/PNG images instead: {e}", mime=mime
            ) from e
        raise ConversionFailed(f"Failed to convert {mime} to JPEG: {e}", mime=mime) from e

    if is_legacy_format(mime):
        logger.info(f"Converted {mime} to JPEG ({image.width}x{image.height})")

    if max_dim:
        image = resize_image(image, (max_dim, max_dim))

    try:
        return pil_to_data_url(image, quality or DEFAULT_JPEG_QUALITY)
    except Exception as e:
        raise ConversionFailed(f"Failed to encode JPEG: {e}", mime=mime) from e


async def normalize_many(
    data_urls: Iterable[str],
    max_dim: Optional[int] = None,
    quality: Optional[int] = None,
) -> List[str]:
    """Normalize several images concurrently in worker threads."""
    return list(
        await asyncio.gather(
            *(asyncio.to_thread(normalize_image, url, max_dim, quality) for url in data_urls)
        )
    )


def reference_problem(value: object, min_payload: int = MIN_REFERENCE_PAYLOAD_CHARS) -> Optional[str]:
    """
    Describe why a value is not a usable reference image.

    Returns:
        None if the value is a base64 image data URL with a non-trivial
        payload, otherwise a short reason.
    """
    if not value or not isinstance(value, str):
        return "must be a non-empty string"
    if not value.startswith("data:image/"):
        return "must be a data URL starting with 'data:image/'"
    if ";base64," not in value:
        return "data URL must include ';base64,'"
    if len(payload_of(value)) < min_payload:
        return "base64 data is empty or too short"
    return None
