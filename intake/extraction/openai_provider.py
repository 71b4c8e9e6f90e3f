"""OpenAI-based extraction provider for invoice field extraction.

Sends the first rendered page to a vision model together with the OCR text
as a hint and asks for a JSON object.

Includes retry logic with exponential backoff for transient API errors.

This provider uses cloud-based OpenAI API. For self-hosted inference,
use OllamaExtractionProvider instead.
"""

import base64
import logging
import os
from typing import Any

from openai import OpenAI
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


class OpenAIExtractionProvider(ExtractionProvider):
    """OpenAI-based extraction provider using a vision chat model.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI extraction provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def extract_invoice_fields(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract structured invoice data from the page image using OpenAI.

        Args:
            request: Page images and OCR text of the document

        Returns:
            ExtractionResult with structured invoice data or error, provider='openai'
        """
        if not self.is_available():
            return self._failure("OPENAI_API_KEY environment variable not set")

        if not request.page_images and not request.raw_text.strip():
            return self._failure("Neither page image nor OCR text provided")

        try:
            api_key = os.getenv("OPENAI_API_KEY")
            if self._client is None or self._client.api_key != api_key:
                self._client = OpenAI(
                    api_key=api_key,
                    timeout=self.settings.ai_extraction_timeout_seconds,
                    max_retries=0,
                )

            response = self._call_openai_with_retry(self._build_messages(request))
            content = response.choices[0].message.content
            if not content:
                return self._failure("Empty response content")

            invoice_data, confidence = map_response(
                parse_json_response(content),
                default_currency=self.settings.default_currency,
                default_tax_rate=self.settings.default_tax_rate,
            )
            return ExtractionResult(
                invoice_data=invoice_data,
                success=True,
                provider=self.provider_name,
                engine_confidence=confidence,
            )

        except Exception as e:
            logger.warning(f"OpenAI extraction failed: {e}")
            return self._failure(f"Extraction failed: {str(e)}")

    def _failure(self, error: str) -> ExtractionResult:
        return ExtractionResult(
            invoice_data=None, success=False, error=error, provider=self.provider_name
        )

    def _call_openai_with_retry(self, messages: list[dict[str, Any]]) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Uses exponential backoff with jitter; gives up after ``ai_max_retries``
        attempts and re-raises the last error.
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        for attempt in Retrying(
            retry=retry_if_exception_type(Exception),
            wait=wait_exponential_jitter(initial=1, max=10),
            stop=stop_after_attempt(self.settings.ai_max_retries),
            reraise=True,
        ):
            with attempt:
                return self._client.chat.completions.create(  # type: ignore[call-overload]
                    model=self.settings.openai_model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    max_tokens=2000,
                    temperature=0.1,
                )
        raise RuntimeError("unreachable")

    def _build_messages(self, request: ExtractionRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [
            {"type": "text", "text": build_user_prompt(request.raw_text)}
        ]
        if request.page_images:
            encoded = base64.b64encode(request.page_images[0]).decode("ascii")
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{encoded}", "detail": "high"},
                }
            )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]
