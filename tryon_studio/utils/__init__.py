"""Utils package for Try-On Studio."""

from .cache import CacheJanitor, ExpiringLRUCache
from .image_utils import (
    content_hash,
    normalize_image,
    resize_image,
    pil_to_data_url,
    data_url_to_pil,
)
from .patches import CropRect, DetailCrop, extract_auto_patches, extract_detail_patch

__all__ = [
    "CacheJanitor",
    "ExpiringLRUCache",
    "content_hash",
    "normalize_image",
    "resize_image",
    "pil_to_data_url",
    "data_url_to_pil",
    "CropRect",
    "DetailCrop",
    "extract_auto_patches",
    "extract_detail_patch",
]
