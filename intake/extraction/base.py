"""Abstract base class for extraction strategies.

Enables switching between the deterministic pattern extractor and the
AI-backed providers while keeping one result type for all of them.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Failures are reported through ``ExtractionResult.success`` rather than
raised, so callers can chain strategies without exception handling.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

from intake.extraction.schema import StructuredInvoiceData
from intake.shared.config import Settings

PATTERN_STRATEGY = "pattern"


class ExtractionRequest(BaseModel):
    """Input shared by all extraction strategies.

    Attributes:
        raw_text: Text returned by the recognition engine
        page_images: PNG-encoded page renderings of the original upload
        mime_type: MIME type of the original upload
    """

    model_config = ConfigDict(frozen=True)

    raw_text: str = ""
    page_images: list[bytes] = Field(default_factory=list)
    mime_type: str = "application/octet-stream"


class ExtractionResult(BaseModel):
    """Result of extraction operation.

    Attributes:
        invoice_data: Extracted invoice data or None if extraction failed
        success: Whether operation succeeded
        error: Error message if operation failed
        provider: Name of provider that performed extraction (e.g., 'openai', 'pattern')
        engine_confidence: Confidence reported by the backend itself, if any
    """

    invoice_data: StructuredInvoiceData | None
    success: bool
    error: str | None = None
    provider: str
    engine_confidence: float | None = Field(None, ge=0, le=1)


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction strategies.

    Example implementations:
    - PatternExtractionProvider: regex/heuristic extraction from OCR text
    - OpenAIExtractionProvider: vision model extraction via OpenAI API
    - OllamaExtractionProvider: vision model extraction via self-hosted Ollama
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def extract_invoice_fields(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract structured invoice data from a recognised document.

        Args:
            request: OCR text and page images of the document

        Returns:
            ExtractionResult with structured invoice data or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'pattern')
        """
        pass
