"""Try-on generation pipeline: normalize, enrich, budget, prompt, generate."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

from ..config import (
    BODY_MAX_DIM,
    CLOTHING_MAX_DIM,
    CROP_SOURCE_MAX_DIM,
    FACE_MAX_DIM,
    REFERENCE_JPEG_QUALITY,
    Settings,
)
from ..errors import ConfigurationError, ImageNormalizationError
from ..models import EnrichmentResult, GarmentDetailRecord
from ..pipeline.budget import (
    BODY,
    FACE,
    ReferenceBudget,
    build_preview_references,
    build_refine_references,
    plan_refine,
    rank_wardrobe,
)
from ..pipeline.request_adapter import (
    Fidelity,
    build_payload,
    extract_generated_image,
    map_fidelity,
    select_model,
)
from ..prompts.tryon import build_prompt
from ..schemas import GenerateImageRequest
from ..utils.cache import ExpiringLRUCache
from ..utils.image_utils import describe_image, image_size, is_legacy_format, mime_of, normalize_image
from ..utils.patches import DetailCrop, extract_many_auto_patches, process_detail_crops
from .analyzer_service import AnalyzerService
from .ark_client import ArkClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EnrichmentBundle:
    """Joined results of the three concurrent enrichment tasks."""

    user_patches: EnrichmentResult[List[str]]
    auto_patches: EnrichmentResult[List[str]]
    garment_details: EnrichmentResult[GarmentDetailRecord]


@dataclass
class GenerationResult:
    image: str
    metadata: Dict[str, Any] = field(default_factory=dict)


async def _none() -> None:
    return None


async def _empty_list() -> List[str]:
    return []


async def _empty_details() -> GarmentDetailRecord:
    return GarmentDetailRecord()


async def guarded(name: str, task: Awaitable[Any], fallback: T) -> EnrichmentResult[T]:
    """Await an enrichment task; any failure becomes the fallback value."""
    try:
        value = await task
    except Exception as e:
        logger.warning(f"{name} failed, continuing without it: {e}")
        return EnrichmentResult.fallback(fallback, e)
    if isinstance(value, EnrichmentResult):
        return value
    return EnrichmentResult.ok(value)


class TryOnService:
    """Service for try-on image generation."""

    def __init__(
        self,
        settings: Settings,
        client: ArkClient,
        analyzer: AnalyzerService,
        patches_cache: Optional[ExpiringLRUCache] = None,
    ):
        """
        Initialize the try-on service.

        Args:
            settings: Runtime settings (models, credentials)
            client: Upstream API client
            analyzer: Garment detail analyzer
            patches_cache: Cache for auto patches, keyed by image content
        """
        self.settings = settings
        self.client = client
        self.analyzer = analyzer
        self.patches_cache = patches_cache

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    async def _normalize(self, image: str, max_dim: int, label: str) -> str:
        try:
            return await asyncio.to_thread(normalize_image, image, max_dim, REFERENCE_JPEG_QUALITY)
        except ImageNormalizationError as e:
            if is_legacy_format(e.mime or mime_of(image)):
                raise
            logger.warning(f"Normalizing {label} failed, using original ({describe_image(image)}): {e}")
            return image

    async def _normalize_all(self, images: Sequence[str], max_dim: int, label: str) -> List[str]:
        return list(
            await asyncio.gather(
                *(self._normalize(image, max_dim, f"{label} {i}") for i, image in enumerate(images))
            )
        )

    async def _normalize_crop(self, crop: DetailCrop, index: int) -> DetailCrop:
        normalized = await self._normalize(crop.image, CROP_SOURCE_MAX_DIM, f"detail crop {index}")
        if normalized == crop.image:
            return crop
        try:
            before = await asyncio.to_thread(image_size, crop.image)
            after = await asyncio.to_thread(image_size, normalized)
        except Exception as e:
            logger.warning(f"Could not measure detail crop {index}, keeping its rectangle: {e}")
            return DetailCrop(image=normalized, rect=crop.rect)
        if before == after:
            return DetailCrop(image=normalized, rect=crop.rect)
        rect = crop.rect.scaled(after[0] / before[0], after[1] / before[1])
        return DetailCrop(image=normalized, rect=rect)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, request: GenerateImageRequest) -> GenerationResult:
        """
        Run the full try-on pipeline for one request.

        Args:
            request: Validated generation request

        Returns:
            GenerationResult with the generated image and request metadata

        Raises:
            ConfigurationError: Credentials or model not configured
            ConversionFailed: A HEIC/HEIF image could not be converted
            InvalidReferenceImage: A budgeted reference is malformed
            UpstreamError: The generation call failed
        """
        missing = self.settings.missing("api_key", "base_url", "image_model")
        if missing:
            raise ConfigurationError(missing)

        is_preview = request.mode == "preview"
        requested = Fidelity(request.fidelity)
        fidelity = Fidelity.MEDIUM if is_preview else requested

        clothing, body, faces, crops = await asyncio.gather(
            self._normalize_all(request.clothing_images, CLOTHING_MAX_DIM, "clothing image"),
            self._normalize(request.body_ref_image, BODY_MAX_DIM, "body reference")
            if request.body_ref_image
            else _none(),
            self._normalize_all(request.face_images, FACE_MAX_DIM, "face image"),
            asyncio.gather(
                *(
                    self._normalize_crop(payload.to_crop(), i)
                    for i, payload in enumerate(request.clothing_detail_crops)
                )
            ),
        )
        crops = list(crops)
        logger.info(
            f"Normalized inputs: clothing={len(clothing)} body={bool(body)} "
            f"faces={len(faces)} crops={len(crops)}"
        )

        if is_preview:
            budget, bundle = await self._preview(request, clothing, body, crops)
        else:
            budget, bundle = await self._refine(fidelity, clothing, body, faces, crops)

        details = bundle.garment_details.value
        prompt = build_prompt(
            request.prompt,
            body_ref=body if budget.count(BODY) else None,
            clothing_refs=clothing,
            face_refs=faces if budget.count(FACE) else None,
            garment_details=details,
        )

        model = select_model(
            self.settings.image_model,
            bool(budget.images),
            self.settings.reference_model,
        )
        payload = build_payload(model, prompt, budget.images, fidelity, request.n)
        logger.info(
            f"Mode: {request.mode}, model: {model}, fidelity: {fidelity.value} "
            f"(requested: {requested.value}), image inputs: {len(budget.images)}"
        )

        data = await asyncio.to_thread(self.client.generate_image, payload)
        image = extract_generated_image(data)

        return GenerationResult(
            image=image,
            metadata={
                "mode": request.mode,
                "model": model,
                "fidelity": fidelity.value,
                "requestedFidelity": requested.value,
                "hasClothingDetails": not details.is_empty,
                "userDetailPatchCount": budget.user_patch_count,
                "autoPatchCount": budget.auto_patch_count,
                "totalImageInputs": len(budget.images),
            },
        )

    async def _enrich(
        self,
        user_patches: Awaitable[List[str]],
        auto_patches: Awaitable[List[str]],
        garment_details: Awaitable[Any],
    ) -> EnrichmentBundle:
        results = await asyncio.gather(
            guarded("Detail crop extraction", user_patches, []),
            guarded("Auto patch generation", auto_patches, []),
            guarded("Garment detail analysis", garment_details, GarmentDetailRecord()),
        )
        return EnrichmentBundle(*results)

    async def _preview(
        self,
        request: GenerateImageRequest,
        clothing: List[str],
        body: Optional[str],
        crops: List[DetailCrop],
    ) -> Tuple[ReferenceBudget, EnrichmentBundle]:
        entries = rank_wardrobe(clothing, request.clothing_categories, crops)

        if entries and not crops:
            auto_task = extract_many_auto_patches(
                [entries[0].image], patches_per_image=1, max_total=1, cache=self.patches_cache
            )
        else:
            auto_task = _empty_list()

        # Detail patches are cut on demand by the budgeter in preview
        bundle = await self._enrich(_empty_list(), auto_task, _empty_details())
        budget = await build_preview_references(
            entries,
            auto_patches=bundle.auto_patches.value,
            body_ref=body,
            include_body_ref=request.include_body_ref_in_preview,
        )
        return budget, bundle

    async def _refine(
        self,
        fidelity: Fidelity,
        clothing: List[str],
        body: Optional[str],
        faces: List[str],
        crops: List[DetailCrop],
    ) -> Tuple[ReferenceBudget, EnrichmentBundle]:
        plan = plan_refine(
            fidelity,
            map_fidelity(fidelity),
            user_crop_count=len(crops),
            clothing_count=len(clothing),
            has_body=bool(body),
            face_count=len(faces),
        )
        logger.info(f"Refine plan: {plan}")

        user_task = process_detail_crops(crops) if plan.use_user_patches else _empty_list()

        if plan.auto_patches_per_image > 0 and plan.max_auto_patches > 0:
            auto_task = extract_many_auto_patches(
                clothing,
                patches_per_image=plan.auto_patches_per_image,
                max_total=plan.max_auto_patches,
                cache=self.patches_cache,
            )
        else:
            auto_task = _empty_list()

        if fidelity == Fidelity.HIGH and clothing:
            details_task = self.analyzer.analyze_details(clothing)
        else:
            details_task = _empty_details()

        bundle = await self._enrich(user_task, auto_task, details_task)
        budget = build_refine_references(
            plan,
            user_patches=bundle.user_patches.value,
            auto_patches=bundle.auto_patches.value,
            full_images=clothing,
            body_ref=body,
            face_refs=faces,
        )
        return budget, bundle
