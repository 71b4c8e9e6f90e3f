"""Invoice extraction against a self-hosted Ollama vision model.

Invoices never leave the premises: the first page image and the OCR text
go to the local server only.

Requires an Ollama server (default localhost:11434) with a vision model
such as llava pulled.
See: https://ollama.ai/
"""

import base64
import json
import logging

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from intake.extraction.ai_response import (
    SYSTEM_PROMPT,
    build_user_prompt,
    map_response,
    parse_json_response,
)
from intake.extraction.base import ExtractionProvider, ExtractionRequest, ExtractionResult
from intake.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Extraction strategy backed by Ollama's /api/generate endpoint."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.ai_extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """True when the server answers and lists the configured model."""
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def extract_invoice_fields(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract structured invoice data from the page image using Ollama.

        Args:
            request: Page images and OCR text of the document

        Returns:
            ExtractionResult with structured invoice data or error
        """
        if not request.page_images and not request.raw_text.strip():
            return self._failure("Neither page image nor OCR text provided")

        try:
            response_text = self._call_ollama_with_retry(request)
            invoice_data, confidence = map_response(
                parse_json_response(response_text),
                default_currency=self.settings.default_currency,
                default_tax_rate=self.settings.default_tax_rate,
            )
            return ExtractionResult(
                invoice_data=invoice_data,
                success=True,
                provider=self.provider_name,
                engine_confidence=confidence,
            )

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            return self._failure(f"JSON parsing failed: {str(e)}")
        except Exception as e:
            logger.warning(f"Ollama extraction failed: {e}")
            return self._failure(f"Extraction failed: {str(e)}")

    def _failure(self, error: str) -> ExtractionResult:
        return ExtractionResult(
            invoice_data=None, success=False, error=error, provider=self.provider_name
        )

    def _call_ollama_with_retry(self, request: ExtractionRequest) -> str:
        """POST the page image and prompt; transport errors are retried.

        Raises:
            httpx.HTTPError: When every attempt failed
        """
        payload = {
            "model": self._model,
            "system": SYSTEM_PROMPT,
            "prompt": build_user_prompt(request.raw_text),
            "format": "json",
            "stream": False,
            "options": {
                "temperature": 0,
                "num_predict": 2048,
            },
        }
        if request.page_images:
            payload["images"] = [base64.b64encode(request.page_images[0]).decode("ascii")]

        for attempt in Retrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            wait=wait_exponential_jitter(initial=1, max=10),
            stop=stop_after_attempt(self.settings.ai_max_retries),
            reraise=True,
        ):
            with attempt:
                response = self._client.post(f"{self._base_url}/api/generate", json=payload)
                response.raise_for_status()
                result: str = response.json().get("response", "")
                return result
        raise RuntimeError("unreachable")

    def close(self) -> None:
        self._client.close()
