"""
Content Assembler
Turns a prompt and a set of reference image URLs into the ordered list of
text and image parts sent to the generation model.

Order is: prompt text, then each image followed by a label naming its role
(subject, brand mark, style reference N). The model attributes roles from
these labels, so the order is part of the contract.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import httpx
from PIL import Image, ImageOps

from app.core.config import settings
from app.schemas.generate import StylePreset, SubjectContext
from app.workers.base import (
    AssemblyFailure,
    NonRetryableError,
    RetryableError,
    with_retry,
)

logger = logging.getLogger(__name__)

VECTOR_MIME_TYPES = ("image/svg+xml",)


class ReferenceRole:
    """Roles a reference image can play in the request."""
    SUBJECT = "subject"
    BRAND_MARK = "brand_mark"
    STYLE = "style"


@dataclass
class TextPart:
    text: str


@dataclass
class ImagePart:
    data: bytes
    mime_type: str
    role: str = ReferenceRole.STYLE


Part = Union[TextPart, ImagePart]


@dataclass
class ReferenceImage:
    """A reference URL plus how it is used."""
    url: str
    role: str
    critical: bool = False


@dataclass
class AssembledContent:
    """Assembler output: ordered parts plus what had to be left out."""
    parts: List[Part] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def image_count(self) -> int:
        return sum(1 for p in self.parts if isinstance(p, ImagePart))

    @property
    def payload_bytes(self) -> int:
        return sum(len(p.data) for p in self.parts if isinstance(p, ImagePart))


class ReferenceFetchError(RetryableError):
    """Transient failure fetching a reference (timeout, connection, 5xx)."""


class ReferenceRejected(NonRetryableError):
    """The reference was fetched but cannot be used."""


def sniff_image_mime(data: bytes) -> Optional[str]:
    """Detect the image type from magic bytes."""
    if data.startswith(b'\x89PNG\r\n\x1a\n'):
        return "image/png"
    if data.startswith(b'\xff\xd8'):
        return "image/jpeg"
    if data.startswith(b'RIFF') and data[8:12] == b'WEBP':
        return "image/webp"
    if data.startswith((b'GIF87a', b'GIF89a')):
        return "image/gif"
    head = data[:512].lstrip().lower()
    if head.startswith(b'<svg') or (head.startswith(b'<?xml') and b'<svg' in head):
        return "image/svg+xml"
    return None


def build_prompt(
    prompt: str,
    subject_context: Optional[SubjectContext] = None,
    style_preset: Optional[StylePreset] = None,
) -> str:
    """Final text prompt: the user's prompt plus subject and style guidance."""
    lines = [prompt.strip()]

    if subject_context:
        if subject_context.type:
            subject_line = f"PRIMARY SUBJECT: {subject_context.type}."
            if subject_context.preserve_likeness:
                subject_line += " Maintain strict visual likeness."
            lines.append(subject_line)
        if subject_context.name:
            lines.append(f"SUBJECT NAME: {subject_context.name}")
        if subject_context.promotion:
            lines.append(f"PROMOTION: {subject_context.promotion}")
        if subject_context.price:
            lines.append(f"PRICE: {subject_context.price}")
        if subject_context.target_audience:
            lines.append(f"TARGET AUDIENCE: {subject_context.target_audience}")

    if style_preset and style_preset.avoid:
        lines.append(f"AVOID: {', '.join(style_preset.avoid)}")

    return "\n".join(line for line in lines if line)


def collect_references(
    subject_context: Optional[SubjectContext] = None,
    logo_url: Optional[str] = None,
    style_preset: Optional[StylePreset] = None,
) -> List[ReferenceImage]:
    """Reference list in request order: subject, brand mark, style references."""
    references = []
    if subject_context and subject_context.image_url:
        references.append(ReferenceImage(subject_context.image_url, ReferenceRole.SUBJECT, critical=True))
    if logo_url:
        references.append(ReferenceImage(logo_url, ReferenceRole.BRAND_MARK, critical=True))
    if style_preset:
        for url in style_preset.active_reference_urls():
            references.append(ReferenceImage(url, ReferenceRole.STYLE))
    return references


class ContentAssembler:
    """Fetches and normalizes reference images into model request parts."""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
    ):
        self.transport = transport
        self.timeout = timeout if timeout is not None else settings.REFERENCE_FETCH_TIMEOUT
        self.base_url = base_url if base_url is not None else settings.API_BASE_URL
        self.canvas_size = settings.VECTOR_CANVAS_SIZE
        self.max_dimension = settings.AUXILIARY_MAX_DIMENSION

    async def assemble(self, prompt: str, references: List[ReferenceImage]) -> AssembledContent:
        """
        Build the ordered part list.

        A reference that cannot be fetched or converted is dropped with a
        warning. Assembly only fails when nothing usable is left.
        """
        start = time.monotonic()
        result = AssembledContent()

        if prompt and prompt.strip():
            result.parts.append(TextPart(prompt))

        style_index = 0
        image_index = 0
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        ) as client:
            for ref in references:
                try:
                    if ref.critical:
                        data, mime_type = await self._fetch_critical(client, ref.url)
                    else:
                        data, mime_type = await self._fetch(client, ref.url)
                    data, mime_type = self._normalize(data, mime_type, ref.role)
                except Exception as e:
                    logger.warning(f"[Assembler] Dropping {ref.role} reference {ref.url}: {e}")
                    result.dropped.append(ref.url)
                    continue

                image_index += 1
                if ref.role == ReferenceRole.STYLE:
                    style_index += 1
                result.parts.append(ImagePart(data=data, mime_type=mime_type, role=ref.role))
                result.parts.append(TextPart(self._label(ref.role, image_index, style_index)))

        if not result.parts:
            raise AssemblyFailure("Nothing to send: empty prompt and no usable reference images")

        result.elapsed_seconds = time.monotonic() - start
        logger.info(
            f"[Assembler] {result.image_count}/{len(references)} references included "
            f"({result.payload_bytes} bytes) in {result.elapsed_seconds:.2f}s"
        )
        return result

    @staticmethod
    def _label(role: str, image_index: int, style_index: int) -> str:
        if role == ReferenceRole.SUBJECT:
            return (f"[REFERENCE IMAGE {image_index}: MAIN SUBJECT] "
                    "This image is the subject of the ad. Keep it recognisable.")
        if role == ReferenceRole.BRAND_MARK:
            return (f"[REFERENCE IMAGE {image_index}: BUSINESS LOGO] "
                    "This image is the brand mark. Preserve all text and lettering exactly.")
        return (f"[REFERENCE IMAGE {image_index}: STYLE REFERENCE {style_index}] "
                "Match the look of this image, not its content.")

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Tuple[bytes, str]:
        """Fetch one reference and return (bytes, mime type from the response)."""
        try:
            response = await client.get(url)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ReferenceFetchError(f"Fetch failed for {url}: {e!r}")

        if response.status_code >= 500:
            raise ReferenceFetchError(f"HTTP {response.status_code} for {url}")
        if response.status_code >= 400:
            raise ReferenceRejected(f"HTTP {response.status_code} for {url}")

        data = response.content
        mime_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if not mime_type.startswith("image/"):
            sniffed = sniff_image_mime(data)
            if not sniffed:
                raise ReferenceRejected(f"Not an image ({mime_type or 'no content-type'}): {url}")
            mime_type = sniffed
        return data, mime_type

    @with_retry(
        max_retries=1,
        retry_delay=settings.CRITICAL_FETCH_RETRY_DELAY,
        exponential_backoff=False,
        retryable_exceptions=(ReferenceFetchError,),
    )
    async def _fetch_critical(self, client: httpx.AsyncClient, url: str) -> Tuple[bytes, str]:
        return await self._fetch(client, url)

    def _normalize(self, data: bytes, mime_type: str, role: str) -> Tuple[bytes, str]:
        """Rasterize vectors; downscale oversized auxiliary rasters."""
        if mime_type in VECTOR_MIME_TYPES:
            return self._rasterize(data), "image/png"

        # Subject images go to the model untouched
        if role == ReferenceRole.SUBJECT:
            return data, mime_type

        try:
            with Image.open(io.BytesIO(data)) as img:
                if max(img.size) <= self.max_dimension:
                    return data, mime_type
                img.thumbnail((self.max_dimension, self.max_dimension))
                buffer = io.BytesIO()
                img.save(buffer, format="PNG")
        except (OSError, ValueError) as e:
            logger.debug(f"[Assembler] Could not inspect {mime_type} reference, sending as-is: {e}")
            return data, mime_type

        logger.info(f"[Assembler] Downscaled {role} reference to fit {self.max_dimension}px")
        return buffer.getvalue(), "image/png"

    def _rasterize(self, svg_bytes: bytes) -> bytes:
        """Render an SVG to a PNG that fits inside the canvas square."""
        import cairosvg

        try:
            png_bytes = cairosvg.svg2png(bytestring=svg_bytes, output_width=self.canvas_size)
            with Image.open(io.BytesIO(png_bytes)) as img:
                fitted = ImageOps.contain(img, (self.canvas_size, self.canvas_size))
                buffer = io.BytesIO()
                fitted.save(buffer, format="PNG")
        except Exception as e:
            raise ReferenceRejected(f"SVG rasterization failed: {e}")
        return buffer.getvalue()


__all__ = [
    "ReferenceRole",
    "TextPart",
    "ImagePart",
    "ReferenceImage",
    "AssembledContent",
    "ReferenceFetchError",
    "ReferenceRejected",
    "ContentAssembler",
    "build_prompt",
    "collect_references",
    "sniff_image_mime",
]
