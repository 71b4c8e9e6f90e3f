"""Recognition engines behind the TextExtractionAdapter.

Engines are explicitly owned resources: construct once, ``start()`` before
use, ``shutdown()`` when done. Nothing here is held as module-level state.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
and PaddleOCR v3.x:
https://github.com/PaddlePaddle/PaddleOCR
"""

import logging
import os
from typing import Protocol

import pytesseract
from PIL import Image
from pydantic import BaseModel, Field

from intake.shared.config import Settings
from intake.shared.errors import EngineUnavailable

logger = logging.getLogger(__name__)


class RecognizedText(BaseModel):
    """Output of one recognition call.

    Attributes:
        text: Recognised text, lines separated by newlines
        confidence: Engine-reported mean confidence (0-1), if available
    """

    text: str
    confidence: float | None = Field(None, ge=0, le=1)


class RecognitionEngine(Protocol):
    """Protocol for recognition engines."""

    name: str

    @property
    def version(self) -> str: ...

    def start(self) -> None:
        """Load models/language packs. Raises EngineUnavailable on failure."""
        ...

    def recognize(self, image: Image.Image) -> RecognizedText: ...

    def shutdown(self) -> None: ...


class TesseractEngine:
    """Tesseract engine with multi-language configuration and single-language fallback."""

    name = "tesseract"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.languages: str | None = None
        self.degraded = False
        self._version = "unknown"
        self._configure_tesseract()

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def version(self) -> str:
        return self._version

    def start(self) -> None:
        """Check the binary and select the language configuration.

        Uses ``ocr_languages`` when every pack is installed, otherwise degrades
        to ``ocr_fallback_language``.

        Raises:
            EngineUnavailable: If the binary is missing or no usable language pack exists
        """
        try:
            self._version = str(pytesseract.get_tesseract_version())
            installed = set(pytesseract.get_languages(config=""))
        except Exception as e:
            raise EngineUnavailable(f"Tesseract not available: {e}") from e

        requested = self.settings.ocr_languages
        missing = [lang for lang in requested.split("+") if lang not in installed]
        if not missing:
            self.languages = requested
            self.degraded = False
        elif self.settings.ocr_fallback_language in installed:
            logger.warning(
                f"Tesseract language packs missing ({', '.join(missing)}), "
                f"falling back to '{self.settings.ocr_fallback_language}'"
            )
            self.languages = self.settings.ocr_fallback_language
            self.degraded = True
        else:
            raise EngineUnavailable(
                f"No usable Tesseract language pack: requested '{requested}', "
                f"fallback '{self.settings.ocr_fallback_language}' not installed"
            )
        logger.info(f"Tesseract {self._version} started with languages '{self.languages}'")

    def recognize(self, image: Image.Image) -> RecognizedText:
        if self.languages is None:
            raise EngineUnavailable("Tesseract engine not started")
        data = pytesseract.image_to_data(
            image, lang=self.languages, output_type=pytesseract.Output.DICT
        )
        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []
        for index, word in enumerate(data["text"]):
            if not word or not word.strip():
                continue
            key = (data["block_num"][index], data["par_num"][index], data["line_num"][index])
            lines.setdefault(key, []).append(word.strip())
            conf = float(data["conf"][index])
            if conf >= 0:
                confidences.append(conf / 100)
        text = "\n".join(" ".join(words) for words in lines.values())
        confidence = sum(confidences) / len(confidences) if confidences else None
        return RecognizedText(text=text, confidence=confidence)

    def shutdown(self) -> None:
        self.languages = None


class PaddleOCREngine:
    """PaddleOCR engine (optional, GPU-accelerated)."""

    name = "paddleocr"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._ocr: object | None = None
        self._version = "unknown"
        os.environ.setdefault("DISABLE_MODEL_SOURCE_CHECK", "True")

    @property
    def version(self) -> str:
        return self._version

    def start(self) -> None:
        try:
            import paddleocr
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise EngineUnavailable(
                "PaddleOCR not installed. Install with: pip install paddlepaddle paddleocr"
            ) from e
        self._version = getattr(paddleocr, "__version__", "unknown")
        primary = self.settings.ocr_languages.split("+")[0]
        lang = "german" if primary == "deu" else "en"
        try:
            logger.info(f"Initializing PaddleOCR engine (lang={lang})...")
            self._ocr = PaddleOCR(lang=lang)
        except Exception as e:
            logger.warning(f"PaddleOCR failed to load '{lang}', falling back to 'en': {e}")
            try:
                self._ocr = PaddleOCR(lang="en")
            except Exception as fallback_error:
                raise EngineUnavailable(
                    f"PaddleOCR failed to initialize: {fallback_error}"
                ) from fallback_error
        logger.info("PaddleOCR initialized successfully")

    def recognize(self, image: Image.Image) -> RecognizedText:
        if self._ocr is None:
            raise EngineUnavailable("PaddleOCR engine not started")
        import numpy as np

        result = self._ocr.ocr(np.array(image))  # type: ignore[attr-defined]
        if not result or not result[0]:
            return RecognizedText(text="", confidence=0.0)
        page = result[0]
        texts = page.get("rec_texts", [])
        scores = page.get("rec_scores", [])
        return RecognizedText(
            text="\n".join(texts),
            confidence=sum(scores) / len(scores) if scores else 0.0,
        )

    def shutdown(self) -> None:
        self._ocr = None
