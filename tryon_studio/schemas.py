"""Request payloads for the HTTP API (camelCase on the wire)."""

from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import CHAT_TEMPERATURE
from .pipeline.request_adapter import Fidelity
from .utils.patches import CropRect, DetailCrop


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CropRectangle(ApiModel):
    x: float
    y: float
    w: float
    h: float

    def to_rect(self) -> CropRect:
        return CropRect(x=int(self.x), y=int(self.y), w=int(self.w), h=int(self.h))


class DetailCropPayload(ApiModel):
    """A user-drawn detail crop; older clients send ``imageDataUrl``."""

    image: str = Field(validation_alias=AliasChoices("image", "imageDataUrl"))
    rect: CropRectangle

    def to_crop(self) -> DetailCrop:
        return DetailCrop(image=self.image, rect=self.rect.to_rect())


class GenerateImageRequest(ApiModel):
    """Request payload for try-on image generation."""

    prompt: str = Field(..., min_length=1, description="User instruction text")
    mode: Literal["preview", "refine"] = "preview"
    clothing_images: List[str] = Field(default_factory=list, alias="clothingImages")
    clothing_categories: List[Optional[str]] = Field(
        default_factory=list, alias="clothingCategories"
    )
    clothing_detail_crops: List[DetailCropPayload] = Field(
        default_factory=list, alias="clothingDetailCrops"
    )
    body_ref_image: Optional[str] = Field(None, alias="bodyRefImage")
    include_body_ref_in_preview: bool = Field(False, alias="includeBodyRefInPreview")
    face_images: List[str] = Field(default_factory=list, alias="faceImages")
    fidelity: Fidelity = Fidelity.MEDIUM
    n: int = Field(1, description="Number of images, clamped to 1-4")


class AnalyzeRequest(ApiModel):
    """Request payload for classifying one wardrobe photo."""

    image_base64: str = Field(..., min_length=1, alias="imageBase64")


class ChatMessage(ApiModel):
    role: str
    content: str


class ChatRequest(ApiModel):
    """Request payload for the stylist chat proxy."""

    messages: List[ChatMessage] = Field(..., min_length=1)
    system: Optional[str] = None
    temperature: float = CHAT_TEMPERATURE
