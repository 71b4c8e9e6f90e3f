"""Unit tests for OllamaExtractionProvider.

Tests the Ollama-based extraction provider with mocked HTTP calls.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from intake.extraction.base import ExtractionRequest
from intake.extraction.ollama_provider import OllamaExtractionProvider
from intake.shared.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Create test settings with Ollama provider."""
    return Settings(
        extraction_provider="ollama",
        ollama_base_url="http://localhost:11434",
        ollama_model="llava:13b",
        ai_max_retries=1,
    )


@pytest.fixture
def provider(settings: Settings) -> OllamaExtractionProvider:
    """Create Ollama provider instance."""
    return OllamaExtractionProvider(settings)


@pytest.fixture
def request_with_image() -> ExtractionRequest:
    """Extraction request with OCR text and one page image."""
    return ExtractionRequest(
        raw_text="Rechnungs-Nr.: RE-2024-001",
        page_images=[b"\x89PNG fake"],
        mime_type="image/png",
    )


def _ollama_response(body: str) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = 200
    mock_response.raise_for_status = MagicMock()
    mock_response.json.return_value = {"response": body}
    return mock_response


class TestOllamaExtractionProviderProperties:
    """Test provider properties and availability."""

    def test_provider_name(self, provider: OllamaExtractionProvider) -> None:
        """Provider name should be 'ollama'."""
        assert provider.provider_name == "ollama"

    def test_is_available_when_server_running(self, provider: OllamaExtractionProvider) -> None:
        """Should return True when Ollama server responds with model."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"models": [{"name": "llava:13b"}]}

        with patch.object(provider._client, "get", return_value=mock_response):
            assert provider.is_available() is True

    def test_is_available_when_server_down(self, provider: OllamaExtractionProvider) -> None:
        """Should return False when Ollama server is unreachable."""
        with patch.object(
            provider._client, "get", side_effect=httpx.ConnectError("Connection refused")
        ):
            assert provider.is_available() is False

    def test_is_available_when_model_not_found(self, provider: OllamaExtractionProvider) -> None:
        """Should return False when configured model is not available."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {"models": [{"name": "llama3.1:8b"}]}

        with patch.object(provider._client, "get", return_value=mock_response):
            assert provider.is_available() is False


class TestOllamaExtraction:
    """Test invoice extraction functionality."""

    def test_extract_without_input_returns_error(self, provider: OllamaExtractionProvider) -> None:
        """Should fail without page image and OCR text."""
        result = provider.extract_invoice_fields(ExtractionRequest(raw_text="   "))

        assert result.success is False
        assert result.error == "Neither page image nor OCR text provided"
        assert result.provider == "ollama"

    def test_extract_successful_response(
        self, provider: OllamaExtractionProvider, request_with_image: ExtractionRequest
    ) -> None:
        """Should map the JSON response onto structured invoice data."""
        body = json.dumps(
            {
                "invoiceNumber": "RE-2024-001",
                "date": "2024-03-15",
                "supplierName": "Mueller Bau GmbH",
                "netAmount": 500.0,
                "vatAmount": 95.0,
                "totalAmount": 595.0,
                "confidence": 0.8,
            }
        )
        with patch.object(provider._client, "post", return_value=_ollama_response(body)) as post:
            result = provider.extract_invoice_fields(request_with_image)

        assert result.success is True
        assert result.provider == "ollama"
        assert result.engine_confidence == pytest.approx(0.8)
        assert result.invoice_data is not None
        assert result.invoice_data.invoice.number == "RE-2024-001"
        assert result.invoice_data.supplier.name == "Mueller Bau GmbH"

        payload = post.call_args.kwargs["json"]
        assert payload["model"] == "llava:13b"
        assert payload["format"] == "json"
        assert len(payload["images"]) == 1

    def test_extract_json_in_markdown_block(
        self, provider: OllamaExtractionProvider, request_with_image: ExtractionRequest
    ) -> None:
        """Should parse JSON wrapped in markdown code block."""
        body = '```json\n{"invoiceNumber": "67890", "totalAmount": 10}\n```'
        with patch.object(provider._client, "post", return_value=_ollama_response(body)):
            result = provider.extract_invoice_fields(request_with_image)

        assert result.success is True
        assert result.invoice_data is not None
        assert result.invoice_data.invoice.number == "67890"

    def test_extract_invalid_json(
        self, provider: OllamaExtractionProvider, request_with_image: ExtractionRequest
    ) -> None:
        """Should report a failed attempt for unparseable output."""
        with patch.object(
            provider._client, "post", return_value=_ollama_response("I cannot read this")
        ):
            result = provider.extract_invoice_fields(request_with_image)

        assert result.success is False
        assert result.error is not None
        assert "JSON parsing failed" in result.error

    def test_extract_server_error(
        self, provider: OllamaExtractionProvider, request_with_image: ExtractionRequest
    ) -> None:
        """Should report a failed attempt when the server is unreachable."""
        with patch.object(
            provider._client, "post", side_effect=httpx.ConnectError("Connection refused")
        ):
            result = provider.extract_invoice_fields(request_with_image)

        assert result.success is False
        assert result.invoice_data is None
        assert "Connection refused" in str(result.error)

    def test_text_only_request_sends_no_images(self, provider: OllamaExtractionProvider) -> None:
        """Should omit images when only OCR text is available."""
        body = json.dumps({"invoiceNumber": "1", "totalAmount": 1})
        with patch.object(provider._client, "post", return_value=_ollama_response(body)) as post:
            provider.extract_invoice_fields(ExtractionRequest(raw_text="Invoice 1"))

        assert "images" not in post.call_args.kwargs["json"]
