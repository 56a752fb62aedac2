"""Maps fidelity to generation parameters and builds the upstream payload."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ..config import DEFAULT_REFERENCE_MODEL, MAX_IMAGES_PER_REQUEST, MIN_REFERENCE_PAYLOAD_CHARS
from ..errors import InvalidReferenceImage, UpstreamError
from ..utils.image_utils import describe_image, reference_problem

logger = logging.getLogger(__name__)


class Fidelity(str, Enum):
    """How strictly garment details must be preserved (speed vs. accuracy)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class FidelityProfile:
    size: str
    patches_per_image: int
    max_total_images: int


# The nominal image cap is a ceiling; the budgeter narrows it per mode.
# The reference-capable model has no 1K output, so medium already uses 2K.
FIDELITY_PROFILES = {
    Fidelity.LOW: FidelityProfile(size="1K", patches_per_image=0, max_total_images=8),
    Fidelity.MEDIUM: FidelityProfile(size="2K", patches_per_image=1, max_total_images=8),
    Fidelity.HIGH: FidelityProfile(size="2K", patches_per_image=2, max_total_images=8),
}


def map_fidelity(fidelity: "Fidelity | str" = Fidelity.MEDIUM) -> FidelityProfile:
    """Look up size, auto-patch count per garment and the nominal image cap."""
    try:
        return FIDELITY_PROFILES[Fidelity(fidelity)]
    except ValueError:
        return FIDELITY_PROFILES[Fidelity.LOW]


def select_model(
    default_model: str,
    has_reference_images: bool,
    reference_model: Optional[str] = None,
) -> str:
    """Use the reference-capable model whenever any reference image is sent."""
    if has_reference_images:
        return reference_model or DEFAULT_REFERENCE_MODEL
    return default_model


def validate_reference_images(
    images: Sequence[Any],
    min_payload: int = MIN_REFERENCE_PAYLOAD_CHARS,
) -> None:
    """
    Check that every image is a well-formed base64 image data URL.

    Raises:
        InvalidReferenceImage: On the first malformed image
    """
    for index, image in enumerate(images):
        problem = reference_problem(image, min_payload)
        if problem:
            logger.error(f"Invalid reference image at index {index}: {problem}")
            raise InvalidReferenceImage(
                f"Invalid image format at index {index}: {problem}", index=index
            )


def build_payload(
    model: str,
    prompt: str,
    images: Sequence[str],
    fidelity: "Fidelity | str" = Fidelity.MEDIUM,
    count: int = 1,
) -> Dict[str, Any]:
    """
    Build the ``/images/generations`` request body.

    Args:
        model: Model identifier
        prompt: Full prompt text
        images: Ordered reference images (field name ``image`` upstream)
        fidelity: Output resolution tier
        count: Number of outputs, clamped to 1-4

    Returns:
        JSON-serializable payload

    Raises:
        InvalidReferenceImage: If any image is malformed
    """
    validate_reference_images(images)

    payload: Dict[str, Any] = {
        "model": model,
        "prompt": prompt,
        "n": max(1, min(int(count or 1), MAX_IMAGES_PER_REQUEST)),
        "response_format": "b64_json",
        "watermark": False,
        "sequential_image_generation": "disabled",
        "size": map_fidelity(fidelity).size,
    }
    if images:
        payload["image"] = list(images)
        logger.info(f"Added {len(images)} images to payload, first: {describe_image(images[0])}")
    return payload


def extract_generated_image(data: Dict[str, Any]) -> str:
    """
    Pull the first generated image out of an upstream response.

    Returns:
        A PNG data URL for base64 results, or the hosted URL

    Raises:
        UpstreamError: If the response holds no usable image
    """
    images = data.get("data") or []
    if not images:
        raise UpstreamError(500, "No image generated", raw=data)

    first = images[0] or {}
    if first.get("b64_json"):
        return f"data:image/png;base64,{first['b64_json']}"
    if first.get("url"):
        return first["url"]
    raise UpstreamError(500, "Invalid image response format", raw=data)
