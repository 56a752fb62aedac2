"""Vision analysis of garment photos through the upstream chat model."""

import asyncio
import hashlib
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..config import (
    CHAT_TEMPERATURE,
    DETAIL_ANALYSIS_TEMPERATURE,
    MAX_ANALYSIS_IMAGES,
    VISION_TIMEOUT_SECONDS,
)
from ..errors import AnalysisFailed, TryOnStudioError
from ..models import ClothingSummary, EnrichmentResult, GarmentDetailRecord
from ..prompts.analyzer import DETAIL_ANALYSIS_PROMPT, GARMENT_CLASSIFICATION_PROMPT
from ..utils.cache import ExpiringLRUCache
from ..utils.image_utils import content_hash, ensure_data_url
from .ark_client import ArkClient, extract_message_text

logger = logging.getLogger(__name__)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


def extract_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of model output.

    Tries the raw text, then the text without markdown code fences, then the
    outermost ``{...}`` block.

    Raises:
        AnalysisFailed: No JSON object could be recovered
    """
    text = (text or "").strip()
    candidates = [text]
    if text.startswith("```"):
        unfenced = re.sub(r"^```(?:json)?\s*\n?", "", text)
        candidates.append(re.sub(r"\n?```\s*$", "", unfenced))
    match = _JSON_BLOCK_RE.search(text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise AnalysisFailed(f"No JSON object in model output: {text[:200]}")


def image_content(image: str) -> Dict[str, Any]:
    """Chat message part carrying one image."""
    return {"type": "image_url", "image_url": {"url": ensure_data_url(image)}}


def details_cache_key(images: Sequence[str]) -> str:
    digest = hashlib.sha256()
    for image in images:
        digest.update(content_hash(image).encode("ascii"))
    return digest.hexdigest()


class AnalyzerService:
    """Service for garment vision analysis (detail lock and wardrobe tagging)."""

    def __init__(
        self,
        client: ArkClient,
        cache: Optional[ExpiringLRUCache] = None,
        timeout: float = VISION_TIMEOUT_SECONDS,
    ):
        """
        Initialize analyzer service.

        Args:
            client: Upstream API client
            cache: Cache for garment detail records, keyed by image content
            timeout: Per-call timeout in seconds
        """
        self.client = client
        self.cache = cache
        self.timeout = timeout

    def _ask(self, images: Sequence[str], instruction: str, temperature: float) -> str:
        messages: List[Dict[str, Any]] = [
            {
                "role": "user",
                "content": [image_content(image) for image in images]
                + [{"type": "text", "text": instruction}],
            }
        ]
        data = self.client.chat_completion(
            messages, temperature=temperature, timeout=self.timeout
        )
        return extract_message_text(data)

    def analyze_details_sync(self, images: Sequence[str]) -> EnrichmentResult[GarmentDetailRecord]:
        """
        Extract garment details (logos, pattern, colors, material, hardware).

        Best effort: any failure returns an empty record flagged as recovered
        instead of raising.

        Args:
            images: Normalized garment images; only the first 4 are sent

        Returns:
            EnrichmentResult wrapping a GarmentDetailRecord
        """
        selected = list(images[:MAX_ANALYSIS_IMAGES])
        if not selected:
            return EnrichmentResult.ok(GarmentDetailRecord())

        key = details_cache_key(selected)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Garment details from cache")
                return EnrichmentResult.ok(cached)

        try:
            text = self._ask(selected, DETAIL_ANALYSIS_PROMPT, DETAIL_ANALYSIS_TEMPERATURE)
            record = GarmentDetailRecord.model_validate(extract_json(text))
        except (TryOnStudioError, ValidationError) as e:
            logger.warning(f"Garment detail analysis failed, continuing without detail lock: {e}")
            return EnrichmentResult.fallback(GarmentDetailRecord(), e)
        except Exception as e:
            logger.error(f"Unexpected error analyzing garment details: {e}", exc_info=True)
            return EnrichmentResult.fallback(GarmentDetailRecord(), e)

        logger.info(f"Garment details analyzed: {len(record.garments)} garments")
        if self.cache is not None:
            self.cache.set(key, record)
        return EnrichmentResult.ok(record)

    async def analyze_details(self, images: Sequence[str]) -> EnrichmentResult[GarmentDetailRecord]:
        """Async wrapper around :meth:`analyze_details_sync`."""
        return await asyncio.to_thread(self.analyze_details_sync, images)

    def classify_garment(self, image: str) -> EnrichmentResult[ClothingSummary]:
        """
        Name, categorize and tag one wardrobe photo.

        Args:
            image: Image data URL (or raw base64)

        Returns:
            EnrichmentResult wrapping a ClothingSummary; placeholder values
            when the call or the parsing fails
        """
        try:
            text = self._ask([image], GARMENT_CLASSIFICATION_PROMPT, CHAT_TEMPERATURE)
            logger.info(f"Classification response length={len(text)}")
            parsed = extract_json(text)
        except TryOnStudioError as e:
            logger.warning(f"Garment classification failed, using placeholder: {e}")
            return EnrichmentResult.fallback(ClothingSummary(), e)
        except Exception as e:
            logger.error(f"Unexpected error classifying garment: {e}", exc_info=True)
            return EnrichmentResult.fallback(ClothingSummary(), e)

        tags = parsed.get("tags")
        return EnrichmentResult.ok(
            ClothingSummary(
                name=str(parsed.get("name") or "Unknown Clothing"),
                category=str(parsed.get("category") or "General"),
                tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
            )
        )
