"""Tests for auto patches and user detail patches."""

import asyncio

import pytest

from tryon_studio.errors import CropFailed
from tryon_studio.utils.cache import ExpiringLRUCache
from tryon_studio.utils.image_utils import data_url_to_pil, image_size
from tryon_studio.utils.patches import (
    CropRect,
    DetailCrop,
    clamp_rect,
    extract_auto_patches,
    extract_detail_patch,
    extract_many_auto_patches,
    pad_rect,
    process_detail_crops,
)


@pytest.mark.parametrize(
    "rect",
    [
        CropRect(0, 0, 32, 32),
        CropRect(50, 100, 200, 80),
        CropRect(0, 0, 400, 600),
        CropRect(368, 568, 32, 32),
    ],
)
def test_detail_patch_is_target_size(image_factory, rect: CropRect) -> None:
    patch = extract_detail_patch(image_factory(1), rect, target_size=640)
    assert image_size(patch) == (640, 640)


def test_detail_patch_custom_target_size(jpeg_url: str) -> None:
    patch = extract_detail_patch(jpeg_url, CropRect(10, 10, 100, 50), target_size=256)
    assert data_url_to_pil(patch).size == (256, 256)


def test_detail_patch_on_undecodable_image_raises() -> None:
    with pytest.raises(CropFailed):
        extract_detail_patch("data:image/jpeg;base64,AAAA", CropRect(0, 0, 32, 32))


def test_clamp_rect_stays_in_bounds_with_min_size() -> None:
    rect = clamp_rect(CropRect(390, 590, 5, 5), 400, 600)
    assert rect == CropRect(368, 568, 32, 32)

    rect = clamp_rect(CropRect(-20, -20, 1000, 1000), 400, 600)
    assert rect == CropRect(0, 0, 400, 600)


def test_pad_rect_grows_within_bounds() -> None:
    assert pad_rect(CropRect(100, 100, 100, 50), 400, 600, 10) == CropRect(90, 95, 120, 60)
    assert pad_rect(CropRect(0, 0, 100, 100), 105, 105, 10) == CropRect(0, 0, 105, 105)


def test_auto_patches_count_and_size(jpeg_url: str) -> None:
    patches = extract_auto_patches(jpeg_url, count=2)
    assert len(patches) == 2
    assert all(image_size(p) == (640, 640) for p in patches)
    assert extract_auto_patches(jpeg_url, count=0) == []


def test_auto_patches_swallow_decode_errors() -> None:
    assert extract_auto_patches("data:image/jpeg;base64,AAAA", count=2) == []


def test_process_detail_crops_skips_failures(jpeg_url: str) -> None:
    crops = [
        DetailCrop(jpeg_url, CropRect(0, 0, 64, 64)),
        DetailCrop("data:image/jpeg;base64,AAAA", CropRect(0, 0, 64, 64)),
        DetailCrop(jpeg_url, CropRect(100, 100, 64, 64)),
    ]
    patches = asyncio.run(process_detail_crops(crops))
    assert len(patches) == 2


def test_many_auto_patches_respects_total_cap(image_factory) -> None:
    images = [image_factory(i) for i in range(4)]
    patches = asyncio.run(extract_many_auto_patches(images, patches_per_image=2, max_total=3))
    assert len(patches) == 3


def test_many_auto_patches_uses_cache(image_factory) -> None:
    cache = ExpiringLRUCache(max_size=10)
    images = [image_factory(7)]
    first = asyncio.run(extract_many_auto_patches(images, patches_per_image=1, max_total=1, cache=cache))
    assert len(cache) == 1

    second = asyncio.run(extract_many_auto_patches(images, patches_per_image=1, max_total=1, cache=cache))
    assert second == first


def test_many_auto_patches_zero_budget(jpeg_url: str) -> None:
    assert asyncio.run(extract_many_auto_patches([jpeg_url], patches_per_image=2, max_total=0)) == []
