"""Crop-and-magnify patches that emphasize fine garment detail.

Two kinds of patch are produced:

- auto patches: fixed heuristic regions (chest, center) where logos and
  prints usually sit on garment photos;
- detail patches: a user-drawn rectangle, padded and magnified.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageOps

from ..config import (
    AUTO_PATCH_REGIONS,
    DETAIL_PADDING_PERCENT,
    MIN_CROP_SIZE,
    PATCH_JPEG_QUALITY,
    PATCH_MAX_CONCURRENCY,
    PATCH_SIZE,
    PATCH_SOURCE_MAX_DIM,
)
from ..errors import CropFailed
from .cache import ExpiringLRUCache
from .image_utils import content_hash, data_url_to_pil, pil_to_data_url, resize_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropRect:
    """Rectangle in source-image pixel coordinates."""

    x: int
    y: int
    w: int
    h: int

    def box(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.w, self.y + self.h)

    def scaled(self, factor_x: float, factor_y: float) -> "CropRect":
        return CropRect(
            x=int(round(self.x * factor_x)),
            y=int(round(self.y * factor_y)),
            w=int(round(self.w * factor_x)),
            h=int(round(self.h * factor_y)),
        )


@dataclass(frozen=True)
class DetailCrop:
    """A user-specified region of interest on one wardrobe image."""

    image: str
    rect: CropRect


def _region_box(
    width: int, height: int, left: float, top: float, rel_w: float, rel_h: float
) -> Tuple[int, int, int, int]:
    x = int(width * left)
    y = int(height * top)
    return (x, y, x + max(1, int(width * rel_w)), y + max(1, int(height * rel_h)))


def extract_auto_patches(image_data_url: str, count: int = 2) -> List[str]:
    """
    Generate heuristic detail patches for one garment image.

    Args:
        image_data_url: Normalized garment image
        count: Number of patches (0-2), taken from AUTO_PATCH_REGIONS in order

    Returns:
        List of 640x640 JPEG data URLs; empty if extraction fails
    """
    count = max(0, min(count, len(AUTO_PATCH_REGIONS)))
    if count == 0:
        return []

    try:
        image = resize_image(
            data_url_to_pil(image_data_url), (PATCH_SOURCE_MAX_DIM, PATCH_SOURCE_MAX_DIM)
        )
        patches = []
        for name, left, top, rel_w, rel_h in AUTO_PATCH_REGIONS[:count]:
            region = image.crop(_region_box(image.width, image.height, left, top, rel_w, rel_h))
            patch = ImageOps.fit(region, (PATCH_SIZE, PATCH_SIZE), Image.Resampling.LANCZOS)
            patches.append(pil_to_data_url(patch, PATCH_JPEG_QUALITY))
        return patches
    except Exception as e:
        logger.warning(f"Auto patch extraction failed, skipping image: {e}")
        return []


def clamp_rect(rect: CropRect, width: int, height: int, min_size: int = MIN_CROP_SIZE) -> CropRect:
    """
    Clamp a rectangle to the image bounds with a minimum size per side.

    Sides shorter than ``min_size`` are grown (shifting the origin back when
    needed) unless the image itself is smaller.
    """

    def clamp_axis(start: int, length: int, limit: int) -> Tuple[int, int]:
        start = min(max(0, int(start)), max(0, limit - 1))
        length = min(int(length), limit - start)
        if length < min_size:
            length = min(min_size, limit)
            start = min(start, limit - length)
        return start, length

    x, w = clamp_axis(rect.x, rect.w, width)
    y, h = clamp_axis(rect.y, rect.h, height)
    return CropRect(x=x, y=y, w=w, h=h)


def pad_rect(rect: CropRect, width: int, height: int, padding_percent: float) -> CropRect:
    """Grow a rectangle by a percentage of its own size on each side, within bounds."""
    pad_x = int(rect.w * padding_percent / 100)
    pad_y = int(rect.h * padding_percent / 100)
    x = max(0, rect.x - pad_x)
    y = max(0, rect.y - pad_y)
    return CropRect(
        x=x,
        y=y,
        w=min(width - x, rect.w + pad_x * 2),
        h=min(height - y, rect.h + pad_y * 2),
    )


def extract_detail_patch(
    image_data_url: str,
    rect: CropRect,
    target_size: int = PATCH_SIZE,
    padding_percent: float = DETAIL_PADDING_PERCENT,
) -> str:
    """
    Crop and magnify a user-selected region.

    Args:
        image_data_url: Source image as a data URL
        rect: Region in source pixel coordinates
        target_size: Output side length in pixels
        padding_percent: Extra margin per side, as a percentage of the rect size

    Returns:
        ``target_size`` x ``target_size`` JPEG data URL, contain-fit on white

    Raises:
        CropFailed: The image could not be decoded or cropped
    """
    try:
        image = data_url_to_pil(image_data_url)
        region = clamp_rect(rect, image.width, image.height)
        region = pad_rect(region, image.width, image.height, padding_percent)
        cropped = image.crop(region.box())
        patch = ImageOps.pad(
            cropped,
            (target_size, target_size),
            method=Image.Resampling.LANCZOS,
            color=(255, 255, 255),
        )
        return pil_to_data_url(patch, PATCH_JPEG_QUALITY)
    except Exception as e:
        logger.error(f"Detail patch extraction failed for rect={rect}: {e}")
        raise CropFailed(f"Failed to crop patch: {e}") from e


async def process_detail_crops(
    crops: Sequence[DetailCrop],
    target_size: int = PATCH_SIZE,
) -> List[str]:
    """Extract detail patches concurrently, omitting the ones that fail."""
    results = await asyncio.gather(
        *(
            asyncio.to_thread(extract_detail_patch, crop.image, crop.rect, target_size)
            for crop in crops
        ),
        return_exceptions=True,
    )

    patches = []
    for result in results:
        if isinstance(result, BaseException):
            logger.warning(f"Failed to process one detail crop, skipping: {result}")
            continue
        patches.append(result)
    return patches


def _patch_cache_key(image_data_url: str, count: int) -> str:
    return f"{content_hash(image_data_url)}:{count}"


async def _auto_patches_for(
    image_data_url: str,
    count: int,
    cache: Optional[ExpiringLRUCache],
) -> List[str]:
    key = _patch_cache_key(image_data_url, count) if cache is not None else None
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return list(cached)

    patches = await asyncio.to_thread(extract_auto_patches, image_data_url, count)
    if cache is not None and patches:
        cache.set(key, list(patches))
    return patches


async def extract_many_auto_patches(
    images: Sequence[str],
    patches_per_image: int = 2,
    max_total: int = 8,
    max_concurrency: int = PATCH_MAX_CONCURRENCY,
    cache: Optional[ExpiringLRUCache] = None,
) -> List[str]:
    """
    Generate auto patches for several images with bounded concurrency.

    Images are processed in groups of ``max_concurrency``; processing stops
    as soon as ``max_total`` patches have been collected.

    Args:
        images: Normalized garment images, most important first
        patches_per_image: Patches per image (0-2)
        max_total: Cap across the whole batch
        max_concurrency: Images decoded at once
        cache: Optional cache memoizing each image's patches

    Returns:
        Up to ``max_total`` patch data URLs, in image order
    """
    collected: List[str] = []
    if patches_per_image <= 0 or max_total <= 0:
        return collected

    group_size = max(1, max_concurrency)
    for start in range(0, len(images), group_size):
        if len(collected) >= max_total:
            break
        group = images[start:start + group_size]
        group_results = await asyncio.gather(
            *(_auto_patches_for(image, patches_per_image, cache) for image in group)
        )
        for patches in group_results:
            remaining = max_total - len(collected)
            if remaining <= 0:
                break
            collected.extend(patches[:remaining])

    return collected
