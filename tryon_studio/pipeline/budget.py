"""Reference budgeting: which images go to the generator, and in what order.

Preview spends a 5-slot budget on breadth across garments. Refine spends a
fidelity-dependent budget on depth: user detail patches, auto patches, full
wardrobe images, body, then faces.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..config import PATCH_SIZE, PREVIEW_MAX_IMAGES
from ..errors import CropFailed
from ..utils.image_utils import content_hash
from ..utils.patches import DetailCrop, extract_detail_patch
from .request_adapter import Fidelity, FidelityProfile

logger = logging.getLogger(__name__)

# Lower number = more visually important
CATEGORY_PRIORITY = {
    "上衣": 1,
    "top": 1,
    "tops": 1,
    "shirt": 1,
    "t-shirt": 1,
    "dress": 1,
    "外套": 2,
    "jacket": 2,
    "coat": 2,
    "outerwear": 2,
    "下装": 3,
    "bottom": 3,
    "bottoms": 3,
    "pants": 3,
    "jeans": 3,
    "skirt": 3,
    "shorts": 3,
    "鞋": 4,
    "shoes": 4,
    "sneakers": 4,
    "boots": 4,
    "配饰": 5,
    "accessories": 5,
    "accessory": 5,
    "bag": 5,
    "hat": 5,
}
UNKNOWN_CATEGORY_PRIORITY = 10

# Slot kinds recorded in ReferenceBudget.sources
DETAIL_PATCH = "detail_patch"
AUTO_PATCH = "auto_patch"
FULL_IMAGE = "full_image"
BODY = "body"
FACE = "face"


def category_priority(category: Optional[str]) -> int:
    if not category:
        return UNKNOWN_CATEGORY_PRIORITY
    return CATEGORY_PRIORITY.get(category.strip().casefold(), UNKNOWN_CATEGORY_PRIORITY)


@dataclass
class WardrobeEntry:
    """One wardrobe item as seen by the budgeter."""

    index: int
    image: str
    category: Optional[str] = None
    crop: Optional[DetailCrop] = None

    @property
    def priority(self) -> int:
        return category_priority(self.category)


@dataclass
class ReferenceBudget:
    """Ordered reference images plus where each one came from."""

    cap: int
    images: List[str] = field(default_factory=list)
    sources: List[Tuple[str, Optional[int]]] = field(default_factory=list)

    @property
    def full(self) -> bool:
        return len(self.images) >= self.cap

    def add(self, image: str, kind: str, item_index: Optional[int] = None) -> bool:
        if self.full:
            return False
        self.images.append(image)
        self.sources.append((kind, item_index))
        return True

    def count(self, kind: str) -> int:
        return sum(1 for source_kind, _ in self.sources if source_kind == kind)

    @property
    def user_patch_count(self) -> int:
        return self.count(DETAIL_PATCH)

    @property
    def auto_patch_count(self) -> int:
        return self.count(AUTO_PATCH)


def match_detail_crops(
    images: Sequence[str],
    crops: Sequence[DetailCrop],
) -> List[Optional[DetailCrop]]:
    """
    Attach user detail crops to wardrobe images.

    A crop goes to the item whose image has the same content hash; crops that
    match nothing fall back to the item at the same position. Each item gets
    at most one crop and each crop is used at most once.

    Returns:
        One entry per image: its crop, or None
    """
    assigned: List[Optional[DetailCrop]] = [None] * len(images)
    by_hash = {}
    for index, image in enumerate(images):
        by_hash.setdefault(content_hash(image), []).append(index)

    unmatched = []
    for position, crop in enumerate(crops):
        for index in by_hash.get(content_hash(crop.image), []):
            if assigned[index] is None:
                assigned[index] = crop
                break
        else:
            unmatched.append((position, crop))

    for position, crop in unmatched:
        if position < len(assigned) and assigned[position] is None:
            assigned[position] = crop
        else:
            logger.info(f"Detail crop {position} matches no wardrobe item, ignoring")
    return assigned


def rank_wardrobe(
    images: Sequence[str],
    categories: Optional[Sequence[Optional[str]]] = None,
    crops: Optional[Sequence[DetailCrop]] = None,
) -> List[WardrobeEntry]:
    """Build wardrobe entries sorted by category priority, stable on input order."""
    categories = list(categories or [])
    assigned = match_detail_crops(images, crops or [])
    entries = [
        WardrobeEntry(
            index=index,
            image=image,
            category=categories[index] if index < len(categories) else None,
            crop=assigned[index],
        )
        for index, image in enumerate(images)
    ]
    return sorted(entries, key=lambda entry: entry.priority)


async def build_preview_references(
    entries: Sequence[WardrobeEntry],
    auto_patches: Sequence[str] = (),
    body_ref: Optional[str] = None,
    include_body_ref: bool = False,
    cap: int = PREVIEW_MAX_IMAGES,
    target_size: int = PATCH_SIZE,
) -> ReferenceBudget:
    """
    Select preview references under a tight cap.

    Order: user detail patches, full images of items without a patch, one
    auto patch (only when no item has a crop), then the body reference when
    opted in. An item never contributes both a patch and a full image.

    Args:
        entries: Ranked wardrobe entries (see rank_wardrobe)
        auto_patches: Auto patches of the top-ranked item
        body_ref: Normalized body reference
        include_body_ref: Caller opted in to sending the body reference
        cap: Maximum number of references
        target_size: Detail patch side length

    Returns:
        ReferenceBudget with at most ``cap`` images
    """
    budget = ReferenceBudget(cap=cap)
    patched = set()

    for entry in entries:
        if entry.crop is None:
            continue
        if budget.full:
            logger.info(f"Preview budget full, dropping detail crop of item {entry.index}")
            continue
        try:
            patch = await asyncio.to_thread(
                extract_detail_patch, entry.crop.image, entry.crop.rect, target_size
            )
        except CropFailed as e:
            logger.warning(f"Detail patch for item {entry.index} failed, using full image: {e}")
            continue
        budget.add(patch, DETAIL_PATCH, entry.index)
        patched.add(entry.index)

    for entry in entries:
        if entry.index in patched:
            continue
        if not budget.add(entry.image, FULL_IMAGE, entry.index):
            logger.info(
                f"Preview budget full, dropping item {entry.index} (category={entry.category})"
            )

    has_crops = any(entry.crop is not None for entry in entries)
    if not has_crops and auto_patches:
        budget.add(auto_patches[0], AUTO_PATCH)

    if include_body_ref and body_ref:
        if not budget.add(body_ref, BODY):
            logger.info("Preview budget full, dropping body reference")

    logger.info(
        f"Preview references: {len(budget.images)} "
        f"(detail={budget.user_patch_count}, auto={budget.auto_patch_count})"
    )
    return budget


@dataclass(frozen=True)
class RefinePlan:
    """Refine-mode budget derived from fidelity and what the request carries."""

    use_user_patches: bool
    auto_patches_per_image: int
    max_auto_patches: int
    cap: int
    single_full_image: bool = False


def plan_refine(
    fidelity: Fidelity,
    profile: FidelityProfile,
    user_crop_count: int = 0,
    clothing_count: int = 0,
    has_body: bool = False,
    face_count: int = 0,
) -> RefinePlan:
    """
    Narrow the nominal image cap for refine mode.

    medium: target 3 images; with user crops, no auto patches and only the
    first full wardrobe image. high: target 5; with user crops, a single auto
    patch in total. low: nominal cap, no patches.
    """
    fidelity = Fidelity(fidelity)
    use_user_patches = user_crop_count > 0 and fidelity in (Fidelity.MEDIUM, Fidelity.HIGH)
    per_image = profile.patches_per_image if clothing_count else 0
    remaining = max(
        0,
        profile.max_total_images
        - user_crop_count
        - clothing_count
        - (1 if has_body else 0)
        - face_count,
    )

    if fidelity == Fidelity.MEDIUM:
        return RefinePlan(
            use_user_patches=use_user_patches,
            auto_patches_per_image=0 if use_user_patches else per_image,
            max_auto_patches=0 if use_user_patches else min(remaining, 2),
            cap=min(3, profile.max_total_images),
            single_full_image=use_user_patches,
        )
    if fidelity == Fidelity.HIGH:
        return RefinePlan(
            use_user_patches=use_user_patches,
            auto_patches_per_image=min(per_image, 1) if use_user_patches else per_image,
            max_auto_patches=1 if use_user_patches else remaining,
            cap=min(5, profile.max_total_images),
        )
    return RefinePlan(
        use_user_patches=False,
        auto_patches_per_image=per_image,
        max_auto_patches=remaining if per_image else 0,
        cap=profile.max_total_images,
    )


def assemble_refine_references(
    user_patches: Sequence[str],
    auto_patches: Sequence[str],
    full_images: Sequence[str],
    body_ref: Optional[str] = None,
    face_refs: Sequence[str] = (),
    cap: int = 8,
) -> ReferenceBudget:
    """Fill the budget in fixed priority order until the cap is hit."""
    budget = ReferenceBudget(cap=cap)
    pools = [
        (DETAIL_PATCH, list(user_patches)),
        (AUTO_PATCH, list(auto_patches)),
        (FULL_IMAGE, list(full_images)),
        (BODY, [body_ref] if body_ref else []),
        (FACE, list(face_refs)),
    ]

    dropped = 0
    for kind, pool in pools:
        for index, image in enumerate(pool):
            item_index = index if kind == FULL_IMAGE else None
            if not budget.add(image, kind, item_index):
                dropped += 1
    if dropped:
        logger.info(f"Refine budget cap {cap} reached, dropped {dropped} references")
    return budget


def build_refine_references(
    plan: RefinePlan,
    user_patches: Sequence[str],
    auto_patches: Sequence[str],
    full_images: Sequence[str],
    body_ref: Optional[str] = None,
    face_refs: Sequence[str] = (),
) -> ReferenceBudget:
    """Apply the plan's reductions, then assemble the refine references."""
    if plan.single_full_image and user_patches:
        full_images = list(full_images[:1])
    return assemble_refine_references(
        user_patches,
        list(auto_patches)[: plan.max_auto_patches],
        full_images,
        body_ref=body_ref,
        face_refs=face_refs,
        cap=plan.cap,
    )
