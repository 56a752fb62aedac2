"""Shared fixtures: synthetic images and a fake upstream client."""

import base64
import io
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image, ImageDraw

from tryon_studio.config import Settings


def make_image(width: int = 400, height: int = 600, color=(200, 40, 40)) -> Image.Image:
    image = Image.new("RGB", (width, height), color)
    # A block so patches are not uniform
    ImageDraw.Draw(image).rectangle(
        (width // 4, height // 4, width // 2, height // 2), fill=(20, 20, 160)
    )
    return image


def to_data_url(image: Image.Image, fmt: str = "JPEG", mime: Optional[str] = None) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    mime = mime or f"image/{fmt.lower()}"
    return f"data:{mime};base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"


@pytest.fixture
def jpeg_url() -> str:
    return to_data_url(make_image())


@pytest.fixture
def png_url() -> str:
    return to_data_url(make_image(300, 300, (10, 180, 90)), fmt="PNG")


@pytest.fixture
def image_factory():
    """Build distinct JPEG data URLs (one color per index)."""

    def build(
        index: int = 0,
        width: int = 400,
        height: int = 600,
        fmt: str = "JPEG",
        mime: Optional[str] = None,
    ) -> str:
        color = ((index * 37) % 256, (index * 91) % 256, (index * 53) % 256)
        return to_data_url(make_image(width, height, color), fmt=fmt, mime=mime)

    return build


class FakeArkClient:
    """Records calls instead of talking to the upstream API."""

    def __init__(
        self,
        settings: Settings,
        chat_text: str = '{"garments": []}',
        image_response: Optional[Dict[str, Any]] = None,
        chat_error: Optional[Exception] = None,
        image_error: Optional[Exception] = None,
    ):
        self.settings = settings
        self.chat_text = chat_text
        self.image_response = image_response or {"data": [{"b64_json": "aGVsbG8="}]}
        self.chat_error = chat_error
        self.image_error = image_error
        self.chat_calls: List[Dict[str, Any]] = []
        self.image_calls: List[Dict[str, Any]] = []

    def chat_completion(self, messages, model=None, temperature=0.7, timeout=60):
        self.chat_calls.append({"messages": messages, "model": model, "temperature": temperature})
        if self.chat_error:
            raise self.chat_error
        return {"choices": [{"message": {"role": "assistant", "content": self.chat_text}}]}

    def generate_image(self, payload, timeout=180):
        self.image_calls.append(payload)
        if self.image_error:
            raise self.image_error
        return self.image_response


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-key",
        base_url="https://ark.example.com/api/v3",
        chat_model="chat-model",
        image_model="image-model",
        reference_model="reference-model",
    )


@pytest.fixture
def fake_client(settings) -> FakeArkClient:
    return FakeArkClient(settings)


@pytest.fixture
def client_factory(settings):
    """Build a FakeArkClient with custom responses."""

    def build(**kwargs) -> FakeArkClient:
        return FakeArkClient(settings, **kwargs)

    return build
