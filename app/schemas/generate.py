"""
Generate Schemas
Pydantic models for generation API requests and responses.
"""

from enum import Enum
from typing import Optional, List, Union
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

# Gemini supports: 1:1, 2:3, 3:2, 3:4, 4:3, 4:5, 5:4, 9:16, 16:9, 21:9
SUPPORTED_ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")


class ModelTierName(str, Enum):
    """Model tier enum."""
    FLASH = "flash"
    PRO = "pro"
    ULTRA = "ultra"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase field names."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class StyleReference(CamelModel):
    """A style reference image that can be toggled off in the style editor."""
    url: str
    is_active: bool = True


class StylePreset(CamelModel):
    """Style preset snapshot sent with a generation request."""
    name: Optional[str] = None
    image_url: Optional[str] = None
    reference_images: List[Union[str, StyleReference]] = []
    avoid: List[str] = []

    def active_reference_urls(self) -> List[str]:
        """Active reference URLs in order; falls back to the single image_url."""
        urls = []
        for ref in self.reference_images:
            if isinstance(ref, str):
                urls.append(ref)
            elif ref.is_active:
                urls.append(ref.url)
        if not self.reference_images and self.image_url:
            urls.append(self.image_url)
        return urls


class SubjectContext(CamelModel):
    """The product or person the image is about."""
    image_url: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    preserve_likeness: bool = False
    promotion: Optional[str] = None
    price: Optional[str] = None
    target_audience: Optional[str] = None


class GenerateRequest(CamelModel):
    """Schema for generation request."""
    business_id: str
    prompt: str = Field(..., min_length=1)
    aspect_ratio: str = "1:1"
    style_id: Optional[str] = None
    subject_id: Optional[str] = None
    model_tier: ModelTierName = ModelTierName.PRO
    subject_context: Optional[SubjectContext] = None
    style_preset: Optional[StylePreset] = None

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect_ratio(cls, v):
        if v not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio {v!r}")
        return v


class GenerateResponse(CamelModel):
    """Schema for generation response."""
    job_id: str
    status: str
