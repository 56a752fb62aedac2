"""Tests for reference ranking and the preview/refine budgets."""

import asyncio

import pytest

from tryon_studio.pipeline.budget import (
    AUTO_PATCH,
    BODY,
    DETAIL_PATCH,
    FACE,
    FULL_IMAGE,
    UNKNOWN_CATEGORY_PRIORITY,
    assemble_refine_references,
    build_preview_references,
    build_refine_references,
    category_priority,
    match_detail_crops,
    plan_refine,
    rank_wardrobe,
)
from tryon_studio.pipeline.request_adapter import Fidelity, map_fidelity
from tryon_studio.utils.patches import CropRect, DetailCrop


def _preview(entries, **kwargs):
    return asyncio.run(build_preview_references(entries, **kwargs))


def test_category_priority_lookup() -> None:
    assert category_priority("上衣") == 1
    assert category_priority(" Top ") == 1
    assert category_priority("JACKET") == 2
    assert category_priority("下装") == 3
    assert category_priority("shoes") == 4
    assert category_priority("配饰") == 5
    assert category_priority("cape") == UNKNOWN_CATEGORY_PRIORITY
    assert category_priority(None) == UNKNOWN_CATEGORY_PRIORITY


def test_rank_wardrobe_is_stable_by_priority(image_factory) -> None:
    images = [image_factory(i, 60, 60) for i in range(5)]
    entries = rank_wardrobe(images, ["shoes", "top", None, "top", "pants"])
    assert [e.index for e in entries] == [1, 3, 4, 0, 2]


def test_match_detail_crops_by_content_then_position(image_factory) -> None:
    images = [image_factory(i, 60, 60) for i in range(3)]
    rect = CropRect(0, 0, 32, 32)
    by_content = DetailCrop(images[2], rect)
    unknown = DetailCrop(image_factory(9, 60, 60), rect)

    assigned = match_detail_crops(images, [by_content, unknown])
    assert assigned[2] is by_content
    assert assigned[1] is unknown
    assert assigned[0] is None


def test_match_detail_crops_uses_each_crop_once(image_factory) -> None:
    image = image_factory(0, 60, 60)
    crop = DetailCrop(image, CropRect(0, 0, 32, 32))
    assigned = match_detail_crops([image, image], [crop])
    assert assigned.count(crop) == 1


def test_preview_six_items_keeps_five_highest_priority(image_factory) -> None:
    images = [image_factory(i, 80, 80) for i in range(6)]
    categories = ["配饰", "top", "shoes", "jacket", "pants", "top"]
    budget = _preview(rank_wardrobe(images, categories))

    assert len(budget.images) == 5
    assert budget.images == [images[1], images[5], images[3], images[4], images[2]]
    assert images[0] not in budget.images


def test_preview_never_exceeds_five(image_factory) -> None:
    images = [image_factory(i, 80, 80) for i in range(8)]
    crops = [DetailCrop(images[i], CropRect(0, 0, 40, 40)) for i in range(3)]
    budget = _preview(
        rank_wardrobe(images, ["top"] * 8, crops),
        auto_patches=[images[0]],
        body_ref=image_factory(20, 80, 80),
        include_body_ref=True,
    )
    assert len(budget.images) == 5


def test_preview_item_contributes_patch_or_full_image_not_both(image_factory) -> None:
    images = [image_factory(i, 120, 120) for i in range(3)]
    crop = DetailCrop(images[1], CropRect(10, 10, 50, 50))
    budget = _preview(rank_wardrobe(images, ["top", "pants", "shoes"], [crop]))

    assert budget.sources[0] == (DETAIL_PATCH, 1)
    item_indices = [index for _, index in budget.sources]
    assert item_indices.count(1) == 1
    assert images[1] not in budget.images
    assert budget.user_patch_count == 1


def test_preview_auto_patch_only_without_crops(image_factory) -> None:
    images = [image_factory(i, 120, 120) for i in range(2)]
    patch = image_factory(30, 64, 64)

    without_crops = _preview(rank_wardrobe(images), auto_patches=[patch])
    assert without_crops.sources[-1] == (AUTO_PATCH, None)
    assert without_crops.auto_patch_count == 1

    crop = DetailCrop(images[0], CropRect(0, 0, 40, 40))
    with_crops = _preview(rank_wardrobe(images, crops=[crop]), auto_patches=[patch])
    assert with_crops.auto_patch_count == 0


def test_preview_body_ref_only_when_opted_in(image_factory) -> None:
    images = [image_factory(0, 80, 80)]
    body = image_factory(11, 80, 80)

    assert body not in _preview(rank_wardrobe(images), body_ref=body).images
    opted_in = _preview(rank_wardrobe(images), body_ref=body, include_body_ref=True)
    assert opted_in.images[-1] == body
    assert opted_in.sources[-1] == (BODY, None)


def test_preview_failed_crop_falls_back_to_full_image(image_factory) -> None:
    images = [image_factory(0, 80, 80)]
    broken = DetailCrop("data:image/jpeg;base64,AAAA", CropRect(0, 0, 40, 40))
    entries = rank_wardrobe(images, crops=[broken])
    budget = _preview(entries)
    assert budget.sources == [(FULL_IMAGE, 0)]


@pytest.mark.parametrize(
    "fidelity, crops, expected_cap, expected_auto",
    [
        (Fidelity.MEDIUM, 1, 3, 0),
        (Fidelity.MEDIUM, 0, 3, 2),
        (Fidelity.HIGH, 1, 5, 1),
        (Fidelity.LOW, 1, 8, 0),
    ],
)
def test_plan_refine(fidelity, crops, expected_cap, expected_auto) -> None:
    plan = plan_refine(fidelity, map_fidelity(fidelity), user_crop_count=crops, clothing_count=2)
    assert plan.cap == expected_cap
    assert plan.max_auto_patches == expected_auto
    assert plan.use_user_patches == (crops > 0 and fidelity != Fidelity.LOW)


def test_plan_refine_high_without_crops_uses_remaining_slots() -> None:
    plan = plan_refine(Fidelity.HIGH, map_fidelity(Fidelity.HIGH), clothing_count=2, has_body=True, face_count=1)
    assert plan.auto_patches_per_image == 2
    assert plan.max_auto_patches == 4


def test_refine_priority_order() -> None:
    budget = assemble_refine_references(
        user_patches=["u1"],
        auto_patches=["a1", "a2"],
        full_images=["f1"],
        body_ref="b",
        face_refs=["x1"],
        cap=8,
    )
    assert budget.images == ["u1", "a1", "a2", "f1", "b", "x1"]
    assert [kind for kind, _ in budget.sources] == [
        DETAIL_PATCH, AUTO_PATCH, AUTO_PATCH, FULL_IMAGE, BODY, FACE,
    ]


def test_refine_medium_with_user_patch_stays_within_three() -> None:
    plan = plan_refine(Fidelity.MEDIUM, map_fidelity(Fidelity.MEDIUM), user_crop_count=1, clothing_count=3, has_body=True)
    budget = build_refine_references(
        plan,
        user_patches=["u1"],
        auto_patches=["a1"],
        full_images=["f1", "f2", "f3"],
        body_ref="b",
    )
    assert budget.images == ["u1", "f1", "b"]


def test_refine_high_with_user_patch_caps_auto_patches_at_one() -> None:
    plan = plan_refine(Fidelity.HIGH, map_fidelity(Fidelity.HIGH), user_crop_count=1, clothing_count=2)
    budget = build_refine_references(
        plan,
        user_patches=["u1"],
        auto_patches=["a1", "a2", "a3"],
        full_images=["f1", "f2"],
    )
    assert budget.images == ["u1", "a1", "f1", "f2"]
