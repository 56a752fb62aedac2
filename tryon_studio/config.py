"""Configuration for the Try-On Studio backend."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file from the project root, then the package directory
load_dotenv(Path(__file__).parent.parent / ".env")
load_dotenv(Path(__file__).parent / ".env")

# Upstream defaults
DEFAULT_REFERENCE_MODEL = "doubao-seedream-4-5-251128"
DEFAULT_AUTH_TYPE = "bearer"
CHAT_TEMPERATURE = 0.7
DETAIL_ANALYSIS_TEMPERATURE = 0.1
VISION_TIMEOUT_SECONDS = 60
IMAGE_TIMEOUT_SECONDS = 180
UPSTREAM_MAX_ATTEMPTS = 3

# Normalization settings (longest side in px, JPEG quality)
DEFAULT_JPEG_QUALITY = 85
CLOTHING_MAX_DIM = 1024
BODY_MAX_DIM = 1024
FACE_MAX_DIM = 512
CROP_SOURCE_MAX_DIM = 1024
REFERENCE_JPEG_QUALITY = 80

# Patch settings
PATCH_SIZE = 640
PATCH_JPEG_QUALITY = 85
PATCH_SOURCE_MAX_DIM = 1024
MIN_CROP_SIZE = 32
DETAIL_PADDING_PERCENT = 10
PATCH_MAX_CONCURRENCY = 2

# Heuristic auto-patch regions as (name, left, top, width, height) fractions.
# Chest first: logos and prints sit there on most garment photos.
AUTO_PATCH_REGIONS = (
    ("chest", 0.20, 0.15, 0.60, 0.40),
    ("center", 0.25, 0.25, 0.50, 0.50),
)

# Budget settings
PREVIEW_MAX_IMAGES = 5
MAX_IMAGES_PER_REQUEST = 4
MAX_ANALYSIS_IMAGES = 4
MIN_REFERENCE_PAYLOAD_CHARS = 100

# Cache settings
CACHE_MAX_ENTRIES = 100
CACHE_TTL_SECONDS = 24 * 60 * 60
CACHE_CLEANUP_INTERVAL_SECONDS = 60 * 60

# Environment variable names for the fields of Settings
ENV_NAMES = {
    "api_key": "ARK_API_KEY",
    "base_url": "ARK_BASE_URL",
    "chat_model": "ARK_CHAT_MODEL",
    "image_model": "ARK_IMAGE_MODEL",
    "reference_model": "ARK_SEEDREAM_MODEL",
    "auth_type": "ARK_AUTH_TYPE",
}


@dataclass
class Settings:
    """Runtime settings for the upstream service and HTTP server.

    Missing credentials are not an error at load time: each endpoint checks
    the fields it needs with :meth:`missing` and reports them by env name.
    """

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    chat_model: Optional[str] = None
    image_model: Optional[str] = None
    reference_model: str = DEFAULT_REFERENCE_MODEL
    auth_type: str = DEFAULT_AUTH_TYPE
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    cache_max_entries: int = CACHE_MAX_ENTRIES
    cache_ttl_seconds: float = CACHE_TTL_SECONDS

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (after .env loading)."""
        base_url = os.getenv("ARK_BASE_URL")
        return cls(
            api_key=os.getenv("ARK_API_KEY"),
            base_url=base_url.rstrip("/") if base_url else None,
            chat_model=os.getenv("ARK_CHAT_MODEL"),
            image_model=os.getenv("ARK_IMAGE_MODEL"),
            reference_model=os.getenv("ARK_SEEDREAM_MODEL") or DEFAULT_REFERENCE_MODEL,
            auth_type=(os.getenv("ARK_AUTH_TYPE") or DEFAULT_AUTH_TYPE).lower(),
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cache_max_entries=int(os.getenv("CACHE_MAX_ENTRIES", str(CACHE_MAX_ENTRIES))),
            cache_ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", str(CACHE_TTL_SECONDS))),
        )

    def missing(self, *fields: str) -> List[str]:
        """Return the env names of the given fields that are not set."""
        return [ENV_NAMES.get(name, name.upper()) for name in fields if not getattr(self, name)]
