"""Selection of the recognition engine from ``Settings.ocr_provider``."""

import logging

from intake.ocr.engines import PaddleOCREngine, RecognitionEngine, TesseractEngine
from intake.shared.config import Settings

logger = logging.getLogger(__name__)

ENGINES: dict[str, type[RecognitionEngine]] = {
    "tesseract": TesseractEngine,
    "paddleocr": PaddleOCREngine,
}


def create_recognition_engine(settings: Settings) -> RecognitionEngine:
    """Build the configured engine, unstarted; the owner calls ``start()``.

    Raises:
        ValueError: If the configured provider is unknown
    """
    engine_class = ENGINES.get(settings.ocr_provider)
    if engine_class is None:
        raise ValueError(
            f"Unknown OCR provider: '{settings.ocr_provider}'. Available: {', '.join(ENGINES)}"
        )
    logger.info(f"Created recognition engine: {settings.ocr_provider} (languages {settings.ocr_languages})")
    return engine_class(settings)
