"""
Gemini "Nano Banana" Image Generation Service
Uses native Gemini image generation models. One call per job: retries are
never made here, since each attempt is billed by the provider.
Documentation: https://ai.google.dev/gemini-api/docs/image-generation
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from google import genai
from google.genai import types

from app.core.config import settings
from app.models.job import ModelTier
from app.services.content_assembler import ImagePart, Part, TextPart
from app.workers.base import GenerationTransportError, NoImageInResponse

logger = logging.getLogger(__name__)


@dataclass
class GenerationConstraints:
    """Output constraints for one generation call."""
    aspect_ratio: str = "1:1"
    model_tier: str = ModelTier.PRO


@dataclass
class GeneratedImage:
    """Raw image returned by the model."""
    data: bytes
    mime_type: str
    model: str
    elapsed_seconds: float = 0.0
    text: Optional[str] = None  # Any commentary the model returned alongside


class GeminiImageService:
    """Service for image generation using Gemini models."""

    def __init__(self, client: Optional[genai.Client] = None):
        self.client = client or genai.Client(
            api_key=settings.GEMINI_API_KEY,
            http_options=types.HttpOptions(timeout=settings.GEMINI_TIMEOUT_SECONDS * 1000),
        )
        self.models = {
            ModelTier.FLASH: settings.GEMINI_MODEL_FLASH,
            ModelTier.PRO: settings.GEMINI_MODEL_PRO,
            ModelTier.ULTRA: settings.GEMINI_MODEL_ULTRA,
        }
        self.image_sizes = {
            ModelTier.FLASH: settings.IMAGE_SIZE_FLASH,
            ModelTier.PRO: settings.IMAGE_SIZE_PRO,
            ModelTier.ULTRA: settings.IMAGE_SIZE_ULTRA,
        }

    def model_for(self, model_tier: str) -> str:
        return self.models.get(model_tier, settings.GEMINI_MODEL_PRO)

    def build_config(self, constraints: GenerationConstraints) -> types.GenerateContentConfig:
        """Response modalities plus aspect ratio and resolution tier."""
        image_size = self.image_sizes.get(constraints.model_tier) or None
        return types.GenerateContentConfig(
            response_modalities=["TEXT", "IMAGE"],
            image_config=types.ImageConfig(
                aspect_ratio=constraints.aspect_ratio,
                image_size=image_size,
            ),
        )

    @staticmethod
    def to_contents(parts: List[Part]) -> List[types.Part]:
        contents = []
        for part in parts:
            if isinstance(part, ImagePart):
                contents.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
            elif isinstance(part, TextPart):
                contents.append(types.Part.from_text(text=part.text))
        return contents

    async def generate(self, parts: List[Part], constraints: GenerationConstraints) -> GeneratedImage:
        """
        Generate one image from assembled parts.

        Raises:
            GenerationTransportError: the call itself failed
            NoImageInResponse: the model answered without an image
        """
        model = self.model_for(constraints.model_tier)
        config = self.build_config(constraints)
        logger.info(
            f"[Gemini] Generating with {model} "
            f"(aspect={constraints.aspect_ratio}, size={config.image_config.image_size or 'default'}, "
            f"parts={len(parts)})"
        )

        start = time.monotonic()
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=self.to_contents(parts),
                config=config,
            )
        except Exception as e:
            logger.error(f"[Gemini] Transport failure after {time.monotonic() - start:.1f}s: {e}")
            raise GenerationTransportError(f"Gemini request failed: {e}")
        elapsed = time.monotonic() - start

        return self.extract_image(response, model, elapsed)

    @staticmethod
    def extract_image(response, model: str, elapsed: float = 0.0) -> GeneratedImage:
        """Pick the first image part out of a generate_content response."""
        texts = []
        finish_reason = None
        safety = []

        for candidate in response.candidates or []:
            finish_reason = finish_reason or candidate.finish_reason
            for rating in candidate.safety_ratings or []:
                if getattr(rating, "blocked", False):
                    safety.append(f"{rating.category}={rating.probability}")
            content = candidate.content
            if not content or not content.parts:
                continue
            for part in content.parts:
                if part.text:
                    texts.append(part.text)
                blob = part.inline_data
                if blob is not None and blob.data:
                    mime_type = blob.mime_type or "image/png"
                    if mime_type.startswith("image/"):
                        logger.info(f"[Gemini] Image received ({len(blob.data)} bytes) in {elapsed:.1f}s")
                        return GeneratedImage(
                            data=blob.data,
                            mime_type=mime_type,
                            model=model,
                            elapsed_seconds=elapsed,
                            text="\n".join(texts) or None,
                        )

        feedback = getattr(response, "prompt_feedback", None)
        if finish_reason is None and feedback is not None and feedback.block_reason:
            finish_reason = feedback.block_reason

        message = "No image in response"
        if finish_reason:
            message += f" (finish reason: {finish_reason})"
        if safety:
            message += f" | Safety: {', '.join(safety)}"
        if texts:
            logger.warning(f"[Gemini] Model replied with text only: {' '.join(texts)[:200]}")
        raise NoImageInResponse(message, details={"finish_reason": str(finish_reason) if finish_reason else None})


__all__ = ["GenerationConstraints", "GeneratedImage", "GeminiImageService"]
