import io
import sys
from types import SimpleNamespace

import httpx
import pytest
from PIL import Image

from app.schemas.generate import StylePreset, SubjectContext
from app.services.content_assembler import (
    ContentAssembler,
    ImagePart,
    ReferenceImage,
    ReferenceRole,
    build_prompt,
    collect_references,
    sniff_image_mime,
)
from app.workers.base import AssemblyFailure
from tests.conftest import SVG_LOGO, png_bytes


class CdnStub:
    """Scripted responses per URL path, with a call log."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        route = self.routes[path]
        if callable(route):
            return route(request)
        body, content_type = route
        return httpx.Response(200, content=body, headers={"content-type": content_type})

    def count(self, path):
        return self.calls.count(path)


def assembler_for(stub) -> ContentAssembler:
    return ContentAssembler(transport=httpx.MockTransport(stub), base_url="https://cdn.test")


def _cairo_available() -> bool:
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        return False
    return True


class TestAssemble:

    @pytest.mark.asyncio
    async def test_parts_ordered_and_labelled(self):
        stub = CdnStub({
            "/subject.png": (png_bytes(color=(1, 1, 1)), "image/png"),
            "/logo.png": (png_bytes(color=(2, 2, 2)), "image/png"),
            "/style1.jpg": (png_bytes(color=(3, 3, 3)), "image/jpeg"),
            "/style2.png": (png_bytes(color=(4, 4, 4)), "image/png"),
        })
        references = [
            ReferenceImage("https://cdn.test/subject.png", ReferenceRole.SUBJECT, critical=True),
            ReferenceImage("https://cdn.test/logo.png", ReferenceRole.BRAND_MARK, critical=True),
            ReferenceImage("https://cdn.test/style1.jpg", ReferenceRole.STYLE),
            ReferenceImage("https://cdn.test/style2.png", ReferenceRole.STYLE),
        ]

        result = await assembler_for(stub).assemble("Latte art poster", references)

        kinds = [type(p).__name__ for p in result.parts]
        assert kinds == ["TextPart"] + ["ImagePart", "TextPart"] * 4
        assert result.parts[0].text == "Latte art poster"
        assert [p.role for p in result.parts if isinstance(p, ImagePart)] == [
            ReferenceRole.SUBJECT, ReferenceRole.BRAND_MARK, ReferenceRole.STYLE, ReferenceRole.STYLE,
        ]
        labels = [p.text for p in result.parts[2::2]]
        assert "MAIN SUBJECT" in labels[0]
        assert "BUSINESS LOGO" in labels[1]
        assert "STYLE REFERENCE 1" in labels[2]
        assert "STYLE REFERENCE 2" in labels[3]
        assert result.image_count == 4
        assert result.dropped == []

    @pytest.mark.asyncio
    async def test_mime_type_comes_from_response(self):
        stub = CdnStub({"/photo": (png_bytes(), "image/jpeg; charset=binary")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/photo", ReferenceRole.STYLE)]
        )

        assert result.parts[1].mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_mime_sniffed_when_header_is_not_an_image(self):
        stub = CdnStub({"/blob": (png_bytes(), "application/octet-stream")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/blob", ReferenceRole.STYLE)]
        )

        assert result.parts[1].mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_non_image_reference_dropped(self):
        stub = CdnStub({"/page": (b"<html>nope</html>", "text/html")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/page", ReferenceRole.STYLE)]
        )

        assert result.image_count == 0
        assert result.dropped == ["https://cdn.test/page"]

    @pytest.mark.asyncio
    async def test_relative_urls_resolved_against_base(self):
        stub = CdnStub({"/files/biz/logo.png": (png_bytes(), "image/png")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("/files/biz/logo.png", ReferenceRole.BRAND_MARK, critical=True)]
        )

        assert result.image_count == 1

    @pytest.mark.asyncio
    async def test_style_timeout_drops_only_that_reference(self):
        def timeout(request):
            raise httpx.ReadTimeout("slow CDN", request=request)

        stub = CdnStub({
            "/subject.png": (png_bytes(), "image/png"),
            "/style-slow.png": timeout,
            "/style-ok.png": (png_bytes(), "image/png"),
        })
        references = [
            ReferenceImage("https://cdn.test/subject.png", ReferenceRole.SUBJECT, critical=True),
            ReferenceImage("https://cdn.test/style-slow.png", ReferenceRole.STYLE),
            ReferenceImage("https://cdn.test/style-ok.png", ReferenceRole.STYLE),
        ]

        result = await assembler_for(stub).assemble("Prompt", references)

        assert result.image_count == 2
        assert result.dropped == ["https://cdn.test/style-slow.png"]
        assert stub.count("/style-slow.png") == 1
        # Numbering counts the style references that made it in
        assert "STYLE REFERENCE 1" in result.parts[-1].text

    @pytest.mark.asyncio
    async def test_critical_reference_retried_once(self):
        attempts = {"n": 0}

        def flaky(request):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, content=png_bytes(), headers={"content-type": "image/png"})

        stub = CdnStub({"/logo.png": flaky})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/logo.png", ReferenceRole.BRAND_MARK, critical=True)]
        )

        assert result.image_count == 1
        assert stub.count("/logo.png") == 2

    @pytest.mark.asyncio
    async def test_critical_reference_dropped_after_second_failure(self):
        stub = CdnStub({"/logo.png": lambda request: httpx.Response(503)})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/logo.png", ReferenceRole.BRAND_MARK, critical=True)]
        )

        assert result.image_count == 0
        assert stub.count("/logo.png") == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        stub = CdnStub({"/logo.png": lambda request: httpx.Response(404)})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/logo.png", ReferenceRole.BRAND_MARK, critical=True)]
        )

        assert result.dropped == ["https://cdn.test/logo.png"]
        assert stub.count("/logo.png") == 1

    @pytest.mark.asyncio
    async def test_subject_never_resized_but_style_is(self):
        wide = png_bytes(size=(2100, 4))
        stub = CdnStub({
            "/subject.png": (wide, "image/png"),
            "/style.png": (wide, "image/png"),
        })
        references = [
            ReferenceImage("https://cdn.test/subject.png", ReferenceRole.SUBJECT, critical=True),
            ReferenceImage("https://cdn.test/style.png", ReferenceRole.STYLE),
        ]

        result = await assembler_for(stub).assemble("Prompt", references)

        subject, style = [p for p in result.parts if isinstance(p, ImagePart)]
        assert subject.data == wide
        with Image.open(io.BytesIO(style.data)) as img:
            assert max(img.size) <= 2048

    @pytest.mark.asyncio
    @pytest.mark.skipif(not _cairo_available(), reason="cairo library not installed")
    async def test_vector_reference_becomes_raster(self):
        stub = CdnStub({"/logo.svg": (SVG_LOGO, "image/svg+xml")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/logo.svg", ReferenceRole.BRAND_MARK, critical=True)]
        )

        image = result.parts[1]
        assert image.mime_type == "image/png"
        assert image.data.startswith(b"\x89PNG")
        with Image.open(io.BytesIO(image.data)) as img:
            assert max(img.size) <= 1024

    @pytest.mark.asyncio
    async def test_vector_reference_is_sent_as_labelled_png(self, monkeypatch):
        rendered = png_bytes((2048, 1024), color=(9, 9, 9))
        seen = {}

        def svg2png(bytestring, output_width):
            seen["svg"] = bytestring
            seen["width"] = output_width
            return rendered

        monkeypatch.setitem(sys.modules, "cairosvg", SimpleNamespace(svg2png=svg2png))
        stub = CdnStub({"/logo.svg": (SVG_LOGO, "image/svg+xml")})

        result = await assembler_for(stub).assemble(
            "Prompt", [ReferenceImage("https://cdn.test/logo.svg", ReferenceRole.BRAND_MARK, critical=True)]
        )

        assert seen["svg"] == SVG_LOGO
        image, label = result.parts[1], result.parts[2]
        assert isinstance(image, ImagePart)
        assert image.mime_type == "image/png"
        with Image.open(io.BytesIO(image.data)) as img:
            assert img.format == "PNG"
            assert max(img.size) <= seen["width"]
        assert "BUSINESS LOGO" in label.text
        assert result.dropped == []

    @pytest.mark.asyncio
    async def test_failed_rasterization_drops_reference(self, monkeypatch):
        def broken(self, svg_bytes):
            raise ValueError("bad svg")

        monkeypatch.setattr(ContentAssembler, "_rasterize", broken)
        stub = CdnStub({
            "/logo.svg": (SVG_LOGO, "image/svg+xml"),
            "/style.png": (png_bytes(), "image/png"),
        })
        references = [
            ReferenceImage("https://cdn.test/logo.svg", ReferenceRole.BRAND_MARK, critical=True),
            ReferenceImage("https://cdn.test/style.png", ReferenceRole.STYLE),
        ]

        result = await assembler_for(stub).assemble("Prompt", references)

        assert result.dropped == ["https://cdn.test/logo.svg"]
        assert all(p.mime_type != "image/svg+xml" for p in result.parts if isinstance(p, ImagePart))

    @pytest.mark.asyncio
    async def test_nothing_usable_is_a_failure(self):
        stub = CdnStub({"/gone.png": lambda request: httpx.Response(404)})

        with pytest.raises(AssemblyFailure):
            await assembler_for(stub).assemble(
                "   ", [ReferenceImage("https://cdn.test/gone.png", ReferenceRole.STYLE)]
            )


class TestPromptAndReferences:

    def test_build_prompt_adds_subject_and_avoid_lines(self):
        subject = SubjectContext(type="Iced latte", preserve_likeness=True, price="$4.50")
        style = StylePreset(name="Bold", avoid=["clutter", "neon"])

        prompt = build_prompt("Summer promo", subject, style)

        lines = prompt.splitlines()
        assert lines[0] == "Summer promo"
        assert "PRIMARY SUBJECT: Iced latte. Maintain strict visual likeness." in lines
        assert "PRICE: $4.50" in lines
        assert lines[-1] == "AVOID: clutter, neon"

    def test_build_prompt_without_context_is_unchanged(self):
        assert build_prompt("Just the prompt") == "Just the prompt"

    def test_collect_references_order_and_active_only(self):
        subject = SubjectContext(image_url="https://cdn.test/subject.png")
        style = StylePreset.model_validate({
            "referenceImages": [
                {"url": "https://cdn.test/a.png", "isActive": True},
                {"url": "https://cdn.test/b.png", "isActive": False},
                "https://cdn.test/c.png",
            ]
        })

        refs = collect_references(subject, "https://cdn.test/logo.svg", style)

        assert [r.url for r in refs] == [
            "https://cdn.test/subject.png",
            "https://cdn.test/logo.svg",
            "https://cdn.test/a.png",
            "https://cdn.test/c.png",
        ]
        assert [r.critical for r in refs] == [True, True, False, False]

    def test_legacy_single_style_image(self):
        style = StylePreset(image_url="https://cdn.test/legacy.png")

        refs = collect_references(style_preset=style)

        assert [r.url for r in refs] == ["https://cdn.test/legacy.png"]

    def test_sniff_image_mime(self):
        assert sniff_image_mime(png_bytes()) == "image/png"
        assert sniff_image_mime(SVG_LOGO) == "image/svg+xml"
        assert sniff_image_mime(b"plain text") is None
