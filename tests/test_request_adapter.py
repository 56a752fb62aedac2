"""Tests for fidelity mapping, model selection and payload building."""

import pytest

from tryon_studio.config import DEFAULT_REFERENCE_MODEL
from tryon_studio.errors import InvalidReferenceImage, UpstreamError
from tryon_studio.pipeline.request_adapter import (
    Fidelity,
    build_payload,
    extract_generated_image,
    map_fidelity,
    select_model,
)


def test_fidelity_table() -> None:
    low, medium, high = (map_fidelity(f) for f in ("low", "medium", "high"))
    assert (low.size, low.patches_per_image, low.max_total_images) == ("1K", 0, 8)
    assert (medium.size, medium.patches_per_image) == ("2K", 1)
    assert (high.size, high.patches_per_image) == ("2K", 2)
    assert low.patches_per_image <= medium.patches_per_image <= high.patches_per_image


def test_select_model() -> None:
    assert select_model("text-to-image", False) == "text-to-image"
    assert select_model("text-to-image", True) == DEFAULT_REFERENCE_MODEL
    assert select_model("text-to-image", True, "custom-ref") == "custom-ref"


def test_build_payload_fields(jpeg_url: str) -> None:
    payload = build_payload("model-x", "a prompt", [jpeg_url], Fidelity.HIGH, count=9)
    assert payload["model"] == "model-x"
    assert payload["n"] == 4
    assert payload["size"] == "2K"
    assert payload["response_format"] == "b64_json"
    assert payload["watermark"] is False
    assert payload["sequential_image_generation"] == "disabled"
    assert payload["image"] == [jpeg_url]


def test_build_payload_without_images_omits_image_field() -> None:
    payload = build_payload("model-x", "a prompt", [], "low", count=0)
    assert "image" not in payload
    assert payload["n"] == 1
    assert payload["size"] == "1K"


@pytest.mark.parametrize(
    "bad",
    [
        "data:image/jpeg;base64," + "A" * 40,
        "https://example.com/shirt.jpg",
        "data:image/jpeg," + "A" * 200,
        "",
    ],
)
def test_build_payload_rejects_malformed_images(jpeg_url: str, bad: str) -> None:
    with pytest.raises(InvalidReferenceImage) as excinfo:
        build_payload("model-x", "p", [jpeg_url, bad])
    assert excinfo.value.index == 1
    assert excinfo.value.status_code == 400


def test_extract_generated_image() -> None:
    assert extract_generated_image({"data": [{"b64_json": "QUJD"}]}) == "data:image/png;base64,QUJD"
    assert extract_generated_image({"data": [{"url": "https://cdn/x.png"}]}) == "https://cdn/x.png"


@pytest.mark.parametrize("response", [{}, {"data": []}, {"data": [{"revised_prompt": "x"}]}])
def test_extract_generated_image_failures(response) -> None:
    with pytest.raises(UpstreamError) as excinfo:
        extract_generated_image(response)
    assert excinfo.value.status_code == 500
