"""Domain models shared across the pipeline."""

import logging
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# Pydantic models for vision responses
# ============================================================================


def _as_list(value: Any) -> List[Any]:
    """Vision output sometimes gives null or a bare value where a list belongs."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [item for item in value if item is not None]
    return [value]


class GarmentLogo(BaseModel):
    """A logo or printed text visible on a garment."""

    text: Optional[str] = Field(default=None, description="Exact logo text if visible")
    position: Optional[str] = Field(default=None, description="left chest/right sleeve/back/etc")
    color: Optional[str] = Field(default=None, description="Text color")


class Garment(BaseModel):
    """Attributes extracted for one garment."""

    category: Optional[str] = None
    dominant_colors: List[str] = Field(default_factory=list, description="Up to 2 dominant colors")
    pattern: Optional[str] = None
    material: Optional[str] = None
    logos: List[GarmentLogo] = Field(default_factory=list)
    hardware: List[str] = Field(default_factory=list)
    unique_details: List[str] = Field(default_factory=list)

    @field_validator("dominant_colors", "hardware", "unique_details", mode="before")
    @classmethod
    def _coerce_text_list(cls, value: Any) -> List[str]:
        return [str(item) for item in _as_list(value)]

    @field_validator("logos", mode="before")
    @classmethod
    def _coerce_logos(cls, value: Any) -> List[Any]:
        logos = []
        for item in _as_list(value):
            if isinstance(item, str):
                logos.append({"text": item})
            elif isinstance(item, dict):
                logos.append(item)
        return logos


class GarmentDetailRecord(BaseModel):
    """Structured garment details used to build the prompt's detail lock."""

    garments: List[Garment] = Field(default_factory=list)

    @field_validator("garments", mode="before")
    @classmethod
    def _drop_malformed_garments(cls, value: Any) -> List[Garment]:
        garments = []
        for item in _as_list(value):
            try:
                garments.append(Garment.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed garment from analysis: {e.error_count()} errors")
        return garments

    @property
    def is_empty(self) -> bool:
        return not self.garments


class ClothingSummary(BaseModel):
    """Result of classifying one uploaded wardrobe photo."""

    name: str = "Unknown Clothing"
    category: str = "General"
    tags: List[str] = Field(default_factory=list)


class ClothingItem(ClothingSummary):
    """A wardrobe entry: an uploaded photo plus its classification."""

    id: str
    image: str


# ============================================================================
# Enrichment results
# ============================================================================


@dataclass
class EnrichmentResult(Generic[T]):
    """
    Outcome of a best-effort enrichment step.

    ``recovered`` is True when the step failed and ``value`` is the safe
    fallback rather than a real result.
    """

    value: T
    recovered: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "EnrichmentResult[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: object) -> "EnrichmentResult[T]":
        return cls(value=value, recovered=True, error=str(error))
