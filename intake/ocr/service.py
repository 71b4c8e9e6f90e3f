"""TextExtractionAdapter: document bytes in, raw text out.

Wraps an injected recognition engine. Recognition calls are the dominant
blocking operation, so they are guarded by a semaphore (one permit by
default) and each call is bounded by ``ocr_timeout_seconds``.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from PIL import Image
from pydantic import BaseModel, Field

from intake.ocr.engines import RecognitionEngine, RecognizedText
from intake.ocr.rasterize import render_pages, to_png
from intake.shared.config import Settings
from intake.shared.errors import EngineUnavailable, IngestionError

logger = logging.getLogger(__name__)


class TextExtractionResult(BaseModel):
    """Result of text extraction for one document.

    Attributes:
        raw_text: Recognised text of all pages, pages separated by a blank line
        engine_name: Recognition engine identifier
        engine_version: Recognition engine version
        engine_confidence: Mean engine confidence over pages (0-1), if reported
        page_count: Number of pages sent to the engine
        page_images: PNG renderings of the pages (input for AI extraction)
    """

    raw_text: str
    engine_name: str
    engine_version: str
    engine_confidence: float | None = Field(None, ge=0, le=1)
    page_count: int = 0
    page_images: list[bytes] = Field(default_factory=list, exclude=True, repr=False)


class TextExtractionAdapter:
    """Runs the recognition engine over every page of a document."""

    def __init__(self, engine: RecognitionEngine, settings: Settings) -> None:
        self.engine = engine
        self.settings = settings
        self._permits = threading.BoundedSemaphore(settings.ocr_max_concurrency)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.ocr_max_concurrency, thread_name_prefix="ocr"
        )
        self._started = False
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the engine once. Raises EngineUnavailable if it cannot start."""
        with self._lock:
            if not self._started:
                self.engine.start()
                self._started = True

    def shutdown(self) -> None:
        with self._lock:
            if self._started:
                self.engine.shutdown()
                self._started = False
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "TextExtractionAdapter":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def is_available(self) -> bool:
        return self._started

    def extract(self, data: bytes, mime_type: str) -> TextExtractionResult:
        """Extract raw text from an image or PDF.

        Args:
            data: File bytes
            mime_type: MIME type of the upload

        Returns:
            TextExtractionResult with text of all pages

        Raises:
            UnsupportedDocumentError: If the document cannot be decoded
            EngineUnavailable: If the engine cannot start, fails, or times out
        """
        self.start()
        pages = render_pages(
            data, mime_type, dpi=self.settings.ocr_pdf_dpi, max_pages=self.settings.ocr_max_pages
        )
        texts: list[str] = []
        confidences: list[float] = []
        for number, page in enumerate(pages, start=1):
            recognized = self._recognize_page(page)
            logger.debug(f"Page {number}/{len(pages)}: {len(recognized.text)} characters")
            texts.append(recognized.text.strip())
            if recognized.confidence is not None:
                confidences.append(recognized.confidence)

        return TextExtractionResult(
            raw_text="\n\n".join(text for text in texts if text),
            engine_name=self.engine.name,
            engine_version=self.engine.version,
            engine_confidence=sum(confidences) / len(confidences) if confidences else None,
            page_count=len(pages),
            page_images=[to_png(page) for page in pages],
        )

    def _recognize_page(self, page: Image.Image) -> RecognizedText:
        timeout = self.settings.ocr_timeout_seconds
        if not self._permits.acquire(timeout=timeout):
            raise EngineUnavailable(f"Recognition engine busy for more than {timeout}s")
        try:
            future = self._executor.submit(self.engine.recognize, page)
        except RuntimeError as e:
            self._permits.release()
            raise EngineUnavailable(f"Recognition engine shut down: {e}") from e
        # The permit is held until the call really ends, even past a timeout.
        future.add_done_callback(lambda _: self._permits.release())
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            raise EngineUnavailable(f"Recognition timed out after {timeout}s") from e
        except IngestionError:
            raise
        except Exception as e:
            raise EngineUnavailable(f"Recognition failed: {e}") from e
