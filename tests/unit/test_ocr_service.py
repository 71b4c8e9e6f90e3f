"""Unit tests for the TextExtractionAdapter and page rendering.

Tests cover:
- Rendering images and PDFs into page images
- Text extraction over all pages with an injected engine
- Error handling for undecodable documents, engine failures and timeouts
- Engine lifecycle (start once, shutdown)
"""

import io
import threading
import time
from unittest.mock import MagicMock

import pymupdf
import pytest
from PIL import Image

from intake.ocr.engines import RecognizedText
from intake.ocr.rasterize import render_pages, to_png
from intake.ocr.service import TextExtractionAdapter, TextExtractionResult
from intake.shared.config import Settings
from intake.shared.errors import EngineUnavailable, UnsupportedDocumentError


@pytest.fixture
def engine() -> MagicMock:
    """Recognition engine returning one line of text per page."""
    engine = MagicMock()
    engine.name = "tesseract"
    engine.version = "5.3.0"
    engine.recognize.return_value = RecognizedText(text="Rechnung RE-1", confidence=0.9)
    return engine


@pytest.fixture
def adapter(engine: MagicMock) -> TextExtractionAdapter:
    """Create adapter with short timeouts."""
    return TextExtractionAdapter(engine, Settings(ocr_timeout_seconds=0.5, ocr_pdf_dpi=72))


@pytest.fixture
def pdf_bytes() -> bytes:
    """Three-page PDF."""
    doc = pymupdf.open()
    for number in range(3):
        page = doc.new_page()
        page.insert_text((72, 72), f"Seite {number + 1}")
    data = doc.tobytes()
    doc.close()
    return data


class TestRenderPages:
    """Test document decoding."""

    def test_png(self, sample_image_bytes: bytes) -> None:
        """Should decode an image into one RGB page."""
        pages = render_pages(sample_image_bytes, "image/png")

        assert len(pages) == 1
        assert pages[0].mode == "RGB"
        assert pages[0].size == (200, 100)

    def test_multi_frame_tiff(self) -> None:
        """Should decode every frame of a multi-page TIFF."""
        frames = [Image.new("RGB", (50, 50), color=c) for c in ("white", "black")]
        buffer = io.BytesIO()
        frames[0].save(buffer, format="TIFF", save_all=True, append_images=frames[1:])

        assert len(render_pages(buffer.getvalue(), "image/tiff")) == 2

    def test_pdf_respects_max_pages(self, pdf_bytes: bytes) -> None:
        """Should render at most max_pages PDF pages."""
        pages = render_pages(pdf_bytes, "application/pdf", dpi=72, max_pages=2)

        assert len(pages) == 2
        assert all(page.mode == "RGB" for page in pages)

    def test_empty_document(self) -> None:
        """Should reject empty bytes."""
        with pytest.raises(UnsupportedDocumentError):
            render_pages(b"", "image/png")

    def test_corrupt_image(self) -> None:
        """Should reject bytes that are not an image."""
        with pytest.raises(UnsupportedDocumentError, match="Cannot decode image"):
            render_pages(b"definitely not a png", "image/png")

    def test_corrupt_pdf(self) -> None:
        """Should reject bytes that are not a PDF."""
        with pytest.raises(UnsupportedDocumentError, match="Cannot render PDF"):
            render_pages(b"%PDF-broken", "application/pdf")

    def test_unsupported_mime_type(self) -> None:
        """Should reject non-image, non-PDF uploads."""
        with pytest.raises(UnsupportedDocumentError, match="Unsupported mime type"):
            render_pages(b"hello", "text/plain")

    def test_to_png_roundtrips_size(self) -> None:
        """Should encode a page as PNG."""
        png = to_png(Image.new("RGB", (20, 10)))

        assert Image.open(io.BytesIO(png)).size == (20, 10)


class TestTextExtractionAdapter:
    """Test text extraction through the adapter."""

    def test_extract_image(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should start the engine and return text with engine metadata."""
        result = adapter.extract(sample_image_bytes, "image/png")

        assert isinstance(result, TextExtractionResult)
        assert result.raw_text == "Rechnung RE-1"
        assert result.engine_name == "tesseract"
        assert result.engine_version == "5.3.0"
        assert result.engine_confidence == pytest.approx(0.9)
        assert result.page_count == 1
        assert len(result.page_images) == 1
        engine.start.assert_called_once()

    def test_pages_joined_with_blank_line(
        self, adapter: TextExtractionAdapter, engine: MagicMock, pdf_bytes: bytes
    ) -> None:
        """Should recognise every page and join the texts."""
        engine.recognize.side_effect = [
            RecognizedText(text="Seite 1"),
            RecognizedText(text="   "),
            RecognizedText(text="Seite 3"),
        ]

        result = adapter.extract(pdf_bytes, "application/pdf")

        assert result.raw_text == "Seite 1\n\nSeite 3"
        assert result.page_count == 3
        assert result.engine_confidence is None

    def test_page_images_not_serialized(
        self, adapter: TextExtractionAdapter, sample_image_bytes: bytes
    ) -> None:
        """Should keep page images out of the serialized result."""
        result = adapter.extract(sample_image_bytes, "image/png")

        assert "page_images" not in result.model_dump()

    def test_engine_started_once(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should start the engine only on the first extraction."""
        adapter.extract(sample_image_bytes, "image/png")
        adapter.extract(sample_image_bytes, "image/png")

        engine.start.assert_called_once()
        assert adapter.is_available() is True

    def test_engine_cannot_start(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should propagate EngineUnavailable from start."""
        engine.start.side_effect = EngineUnavailable("tesseract missing")

        with pytest.raises(EngineUnavailable, match="tesseract missing"):
            adapter.extract(sample_image_bytes, "image/png")
        assert adapter.is_available() is False

    def test_engine_failure(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should wrap unexpected engine errors in EngineUnavailable."""
        engine.recognize.side_effect = RuntimeError("segfault")

        with pytest.raises(EngineUnavailable, match="Recognition failed: segfault"):
            adapter.extract(sample_image_bytes, "image/png")

    def test_timeout(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should give up on a recognition call that exceeds the timeout."""

        def slow_recognize(image: Image.Image) -> RecognizedText:
            time.sleep(2)
            return RecognizedText(text="too late")

        engine.recognize.side_effect = slow_recognize

        with pytest.raises(EngineUnavailable, match="timed out"):
            adapter.extract(sample_image_bytes, "image/png")

    def test_hung_call_keeps_engine_busy_until_it_returns(
        self, adapter: TextExtractionAdapter, engine: MagicMock, sample_image_bytes: bytes
    ) -> None:
        """Should refuse new pages while a timed-out call still runs, then recover."""
        unblock = threading.Event()
        calls: list[int] = []

        def recognize(image: Image.Image) -> RecognizedText:
            calls.append(1)
            if len(calls) == 1:
                unblock.wait(5)
            return RecognizedText(text="Rechnung RE-1", confidence=0.9)

        engine.recognize.side_effect = recognize

        with pytest.raises(EngineUnavailable, match="timed out"):
            adapter.extract(sample_image_bytes, "image/png")
        with pytest.raises(EngineUnavailable, match="busy"):
            adapter.extract(sample_image_bytes, "image/png")
        assert len(calls) == 1

        unblock.set()
        result = adapter.extract(sample_image_bytes, "image/png")

        assert result.raw_text == "Rechnung RE-1"
        assert len(calls) == 2

    def test_unsupported_document(self, adapter: TextExtractionAdapter, engine: MagicMock) -> None:
        """Should raise UnsupportedDocumentError without calling the engine."""
        with pytest.raises(UnsupportedDocumentError):
            adapter.extract(b"not a pdf", "application/pdf")

        engine.recognize.assert_not_called()

    def test_context_manager(self, engine: MagicMock) -> None:
        """Should start on enter and shut down on exit."""
        with TextExtractionAdapter(engine, Settings()) as adapter:
            assert adapter.is_available() is True

        engine.start.assert_called_once()
        engine.shutdown.assert_called_once()
