"""Unit tests for recognition engines and the engine factory."""

from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from intake.ocr.engines import PaddleOCREngine, TesseractEngine
from intake.ocr.factory import create_recognition_engine
from intake.shared.config import Settings
from intake.shared.errors import EngineUnavailable


@pytest.fixture
def mock_tesseract() -> Generator[MagicMock, None, None]:
    """Patch pytesseract with both language packs installed."""
    with patch("intake.ocr.engines.pytesseract") as mock_module:
        mock_module.get_tesseract_version.return_value = "5.3.0"
        mock_module.get_languages.return_value = ["deu", "eng", "osd"]
        yield mock_module


@pytest.fixture
def blank_page() -> Image.Image:
    return Image.new("RGB", (100, 50), color="white")


class TestTesseractEngine:
    """Test Tesseract start-up, language fallback and recognition."""

    def test_start_with_all_languages(self, mock_tesseract: MagicMock) -> None:
        """Should use the configured languages when installed."""
        engine = TesseractEngine(Settings(ocr_languages="deu+eng"))
        engine.start()

        assert engine.languages == "deu+eng"
        assert engine.degraded is False
        assert engine.version == "5.3.0"

    def test_start_falls_back_to_single_language(self, mock_tesseract: MagicMock) -> None:
        """Should degrade to the fallback language when a pack is missing."""
        mock_tesseract.get_languages.return_value = ["eng", "osd"]
        engine = TesseractEngine(Settings(ocr_languages="deu+eng", ocr_fallback_language="eng"))

        engine.start()

        assert engine.languages == "eng"
        assert engine.degraded is True

    def test_start_without_usable_language(self, mock_tesseract: MagicMock) -> None:
        """Should be unavailable when even the fallback pack is missing."""
        mock_tesseract.get_languages.return_value = ["osd"]
        engine = TesseractEngine(Settings())

        with pytest.raises(EngineUnavailable, match="No usable Tesseract language pack"):
            engine.start()

    def test_start_without_binary(self, mock_tesseract: MagicMock) -> None:
        """Should be unavailable when the binary cannot be run."""
        mock_tesseract.get_tesseract_version.side_effect = OSError("tesseract not found")
        engine = TesseractEngine(Settings())

        with pytest.raises(EngineUnavailable, match="Tesseract not available"):
            engine.start()

    def test_recognize_groups_words_into_lines(
        self, mock_tesseract: MagicMock, blank_page: Image.Image
    ) -> None:
        """Should rebuild lines and average word confidences."""
        mock_tesseract.image_to_data.return_value = {
            "text": ["Rechnung", "", "RE-1", "595,00"],
            "block_num": [1, 1, 1, 1],
            "par_num": [1, 1, 1, 1],
            "line_num": [1, 1, 2, 2],
            "conf": ["96", "-1", 90, 84],
        }
        engine = TesseractEngine(Settings())
        engine.start()

        recognized = engine.recognize(blank_page)

        assert recognized.text == "Rechnung\nRE-1 595,00"
        assert recognized.confidence == pytest.approx(0.9)
        assert mock_tesseract.image_to_data.call_args.kwargs["lang"] == "deu+eng"

    def test_recognize_before_start(self, mock_tesseract: MagicMock, blank_page: Image.Image) -> None:
        """Should refuse to recognise before start."""
        with pytest.raises(EngineUnavailable, match="not started"):
            TesseractEngine(Settings()).recognize(blank_page)

    def test_shutdown(self, mock_tesseract: MagicMock, blank_page: Image.Image) -> None:
        """Should require a new start after shutdown."""
        engine = TesseractEngine(Settings())
        engine.start()
        engine.shutdown()

        with pytest.raises(EngineUnavailable):
            engine.recognize(blank_page)

    def test_tesseract_cmd_from_environment(self, mock_tesseract: MagicMock) -> None:
        """Should honour TESSERACT_CMD."""
        with patch.dict("os.environ", {"TESSERACT_CMD": "/opt/tesseract"}):
            TesseractEngine(Settings())

        assert mock_tesseract.pytesseract.tesseract_cmd == "/opt/tesseract"


class TestPaddleOCREngine:
    """Test PaddleOCR recognition with a mocked model."""

    def test_lazy_loading(self) -> None:
        """Should not load the model until start."""
        assert PaddleOCREngine(Settings(ocr_provider="paddleocr"))._ocr is None

    def test_recognize_with_mock(self, blank_page: Image.Image) -> None:
        """Should join recognised lines and average their scores."""
        pytest.importorskip("numpy")
        engine = PaddleOCREngine(Settings(ocr_provider="paddleocr"))
        page = {"rec_texts": ["Rechnung RE-1", "Summe 595,00"], "rec_scores": [0.95, 0.98]}
        engine._ocr = MagicMock()
        engine._ocr.ocr.return_value = [page]

        recognized = engine.recognize(blank_page)

        assert recognized.text == "Rechnung RE-1\nSumme 595,00"
        assert recognized.confidence == pytest.approx(0.965)

    def test_recognize_empty_result(self, blank_page: Image.Image) -> None:
        """Should return empty text when nothing is recognised."""
        pytest.importorskip("numpy")
        engine = PaddleOCREngine(Settings(ocr_provider="paddleocr"))
        engine._ocr = MagicMock()
        engine._ocr.ocr.return_value = [None]

        assert engine.recognize(blank_page).text == ""

    def test_recognize_before_start(self, blank_page: Image.Image) -> None:
        """Should refuse to recognise before start."""
        with pytest.raises(EngineUnavailable):
            PaddleOCREngine(Settings(ocr_provider="paddleocr")).recognize(blank_page)


class TestRecognitionEngineFactory:
    """Test engine selection from configuration."""

    def test_create_tesseract(self) -> None:
        """Should create an unstarted Tesseract engine by default."""
        engine = create_recognition_engine(Settings())

        assert isinstance(engine, TesseractEngine)
        assert engine.languages is None

    def test_create_paddleocr(self) -> None:
        """Should create PaddleOCR when configured."""
        assert isinstance(create_recognition_engine(Settings(ocr_provider="paddleocr")), PaddleOCREngine)

    def test_invalid_provider_raises_error(self) -> None:
        """Should raise ValueError for unknown provider."""
        settings = Settings()
        object.__setattr__(settings, "ocr_provider", "invalid")

        with pytest.raises(ValueError, match="Unknown OCR provider"):
            create_recognition_engine(settings)
