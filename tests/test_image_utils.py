"""Tests for data URL handling and JPEG normalization."""

import asyncio
import base64
import io

import pytest
from PIL import Image

from tryon_studio.errors import ConversionFailed, UnsupportedFormat
from tryon_studio.utils.image_utils import (
    content_hash,
    data_url_to_pil,
    ensure_data_url,
    image_size,
    mime_of,
    normalize_image,
    normalize_many,
    parse_data_url,
    reference_problem,
)


def _encode(image: Image.Image, fmt: str, mime: str) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return f"data:{mime};base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"


def test_parse_data_url_returns_mime_and_bytes(png_url: str) -> None:
    mime, raw = parse_data_url(png_url)
    assert mime == "image/png"
    assert raw.startswith(b"\x89PNG")


def test_parse_data_url_rejects_plain_strings() -> None:
    with pytest.raises(UnsupportedFormat):
        parse_data_url("not a data url")


def test_ensure_data_url_wraps_raw_base64() -> None:
    assert ensure_data_url("abcd") == "data:image/png;base64,abcd"
    assert ensure_data_url("data:image/jpeg;base64,abcd") == "data:image/jpeg;base64,abcd"


def test_content_hash_ignores_mime_prefix(jpeg_url: str) -> None:
    relabeled = jpeg_url.replace("image/jpeg", "image/jpg", 1)
    assert content_hash(jpeg_url) == content_hash(relabeled)


def test_normalize_png_to_jpeg(png_url: str) -> None:
    result = normalize_image(png_url)
    assert mime_of(result) == "image/jpeg"
    assert data_url_to_pil(result).size == (300, 300)


def test_normalize_is_idempotent_in_mime(png_url: str, image_factory) -> None:
    webp = image_factory(3, fmt="WEBP")
    for source in (png_url, webp, image_factory(1)):
        once = normalize_image(source, max_dim=256, quality=80)
        twice = normalize_image(once, max_dim=256, quality=80)
        assert mime_of(once) == mime_of(twice) == "image/jpeg"
        assert data_url_to_pil(twice).mode == "RGB"


def test_normalize_jpeg_fast_path_returns_input(jpeg_url: str) -> None:
    assert normalize_image(jpeg_url) == jpeg_url


def test_normalize_jpeg_applies_exif_rotation() -> None:
    exif = Image.Exif()
    exif[0x0112] = 6
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), (200, 30, 30)).save(buffer, format="JPEG", exif=exif)
    rotated = f"data:image/jpeg;base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"

    result = normalize_image(rotated)

    assert result != rotated
    assert data_url_to_pil(result).size == (20, 40)


def test_normalize_relabels_image_jpg(jpeg_url: str) -> None:
    legacy = jpeg_url.replace("image/jpeg", "image/jpg", 1)
    result = normalize_image(legacy)
    assert result.startswith("data:image/jpeg;base64,")
    assert content_hash(result) == content_hash(jpeg_url)


def test_normalize_resizes_longest_side(image_factory) -> None:
    result = normalize_image(image_factory(0, width=2000, height=1000), max_dim=1024, quality=80)
    assert image_size(result) == (1024, 512)


def test_normalize_never_upscales(image_factory) -> None:
    result = normalize_image(image_factory(0, width=200, height=100), max_dim=1024)
    assert image_size(result) == (200, 100)


def test_normalize_flattens_transparency_onto_white() -> None:
    image = Image.new("RGBA", (50, 50), (255, 0, 0, 0))
    result = data_url_to_pil(normalize_image(_encode(image, "PNG", "image/png")))
    red, green, blue = result.getpixel((25, 25))
    assert min(red, green, blue) > 240


def test_normalize_rejects_unsupported_mime() -> None:
    with pytest.raises(UnsupportedFormat):
        normalize_image("data:image/bmp;base64,Qk0=")


def test_normalize_heic_garbage_names_heic() -> None:
    payload = base64.b64encode(b"definitely not a heic file").decode("ascii")
    with pytest.raises(ConversionFailed) as excinfo:
        normalize_image(f"data:image/heic;base64,{payload}")
    assert "HEIC" in str(excinfo.value)
    assert excinfo.value.status_code == 400


def test_normalize_many_keeps_order(image_factory) -> None:
    sources = [image_factory(i, width=100 + i, height=50) for i in range(3)]
    results = asyncio.run(normalize_many(sources, max_dim=1024, quality=80))
    assert [image_size(r)[0] for r in results] == [100, 101, 102]


def test_reference_problem(jpeg_url: str) -> None:
    assert reference_problem(jpeg_url) is None
    assert reference_problem("") is not None
    assert "data:image/" in reference_problem("https://example.com/a.jpg")
    assert "too short" in reference_problem("data:image/jpeg;base64," + "A" * 40)
