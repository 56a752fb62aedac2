"""Try-on prompt assembly: reference sections plus the garment detail lock."""

from typing import List, Optional, Sequence

from ..models import GarmentDetailRecord

SCENE_PREAMBLE = (
    "A realistic full-body fashion photograph of a real person. "
    "Single person, full body, neutral standing pose, photographic realism, natural lighting. "
)

MANDATORY_REFERENCE_CLAUSE = (
    "\n\n[IMPORTANT] The provided reference images MUST be used to preserve garment details. "
    "Reproduce them strictly as shown in the references."
)

BODY_SECTION = (
    "\n\n=== BODY REFERENCE ==="
    "\nStrictly follow the body reference image for body proportions and build."
    "\nKeep body proportions consistent with the body reference."
)

CLOTHING_SECTION = (
    "\n\n=== CLOTHING REFERENCES ==="
    "\nKeep colors, patterns, logos, materials, buttons and stitching exactly as in the reference images."
    "\n[DO NOT REDESIGN THE GARMENTS]. Do not modify them or add elements that are not in the references."
    "\nLogo text must stay exactly the same; never change or remove it."
    "\nPattern spacing and style must stay exactly the same."
    "\nButton and stitching details must stay exactly the same."
)

FACE_SECTION = (
    "\n\n=== FACE REFERENCE ==="
    "\nKeep facial resemblance, while garment accuracy remains the top priority."
)

NEGATIVE_CONSTRAINTS = (
    "\n\nDo NOT change logo text."
    "\nDo NOT alter stripe/pattern spacing."
    "\nDo NOT redesign garment cuts."
    "\nNo color hue shift."
)

MAX_DETAIL_LOCK_ITEMS = 8


def detail_lock_items(details: GarmentDetailRecord) -> List[str]:
    """
    Turn analyzed garment details into hard constraints.

    Per garment, in priority order: logo text, logo positions not already
    mentioned, pattern, up to two colors, material, hardware. Capped at
    MAX_DETAIL_LOCK_ITEMS across all garments.
    """
    items: List[str] = []
    for garment in details.garments:
        for logo in garment.logos:
            if logo.text:
                position = f" at {logo.position}" if logo.position else ""
                items.append(f'Logo text: "{logo.text}"{position}')
        for logo in garment.logos:
            if logo.position and not any(logo.position in item for item in items):
                items.append(f"Logo position: {logo.position}")
        if garment.pattern:
            items.append(f"Pattern: {garment.pattern} (exact spacing)")
        if garment.dominant_colors:
            items.append(f"Colors: {', '.join(garment.dominant_colors[:2])}")
        if garment.material:
            items.append(f"Material: {garment.material}")
        if garment.hardware:
            items.append(f"Hardware: {', '.join(garment.hardware)}")
    return items[:MAX_DETAIL_LOCK_ITEMS]


def build_prompt(
    base_instruction: str,
    body_ref: Optional[str] = None,
    clothing_refs: Optional[Sequence[str]] = None,
    face_refs: Optional[Sequence[str]] = None,
    garment_details: Optional[GarmentDetailRecord] = None,
) -> str:
    """
    Build the full generation prompt.

    Sections are ordered by priority: body, clothing, then face. The detail
    lock and the fixed negative constraints close the prompt.

    Args:
        base_instruction: The user's own instruction text
        body_ref: Body reference image, if any
        clothing_refs: Clothing reference images, if any
        face_refs: Face reference images, if any
        garment_details: Output of the garment detail analysis

    Returns:
        Prompt text; identical inputs always give identical output
    """
    prompt = SCENE_PREAMBLE + base_instruction

    if clothing_refs:
        prompt += MANDATORY_REFERENCE_CLAUSE
    if body_ref:
        prompt += BODY_SECTION
    if clothing_refs:
        prompt += CLOTHING_SECTION
    if face_refs:
        prompt += FACE_SECTION

    if garment_details is not None and not garment_details.is_empty:
        prompt += "\n\nDETAIL LOCK (strict):"
        for item in detail_lock_items(garment_details):
            prompt += f"\n- {item}"

    return prompt + NEGATIVE_CONSTRAINTS
