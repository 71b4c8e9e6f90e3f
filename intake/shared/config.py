"""Shared configuration management for the invoice intake pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'INTAKE_'.
    Example: INTAKE_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="INTAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="invoice-intake",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Recognition engine
    ocr_provider: Literal["tesseract", "paddleocr"] = Field(
        default="tesseract",
        description="OCR provider: tesseract (CPU), paddleocr (GPU-accelerated)",
    )
    ocr_languages: str = Field(
        default="deu+eng",
        description="Primary recognition languages (Tesseract syntax, '+' separated)",
    )
    ocr_fallback_language: str = Field(
        default="eng",
        description="Single language used when the primary language packs cannot be loaded",
    )
    ocr_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single recognition call",
    )
    ocr_max_concurrency: int = Field(
        default=1,
        ge=1,
        description="Concurrent recognition calls allowed against the engine",
    )
    ocr_pdf_dpi: int = Field(
        default=300,
        ge=72,
        description="Rendering resolution for PDF pages",
    )
    ocr_max_pages: int = Field(
        default=5,
        ge=1,
        description="Maximum number of PDF pages sent to the recognition engine",
    )

    # AI extraction (optional strategy)
    ai_extraction_enabled: bool = Field(
        default=False,
        description="Try AI extraction before the pattern extractor",
    )
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="AI extraction provider: openai (cloud API), ollama (self-hosted vision LLM)",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI vision model used for invoice extraction",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="llava:13b",
        description="Ollama vision model used for invoice extraction",
    )
    ai_extraction_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for a single AI extraction call",
    )
    ai_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per AI extraction before falling back",
    )

    # Pattern extraction
    default_currency: str = Field(default="EUR", description="Currency when none is detected")
    default_tax_rate: Decimal = Field(
        default=Decimal("19"),
        description="Tax rate assumed for synthesised tax lines and line items",
    )
    prefer_labeled_amounts: bool = Field(
        default=True,
        description="Prefer Netto/Brutto labelled amounts over the positional heuristic",
    )

    # Validation
    amount_tolerance: Decimal = Field(
        default=Decimal("0.02"),
        description="Rounding tolerance for totals arithmetic checks",
    )

    # Supplier resolution
    supplier_match_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum score for a supplier candidate to be reported",
    )

    # Duplicate detection
    exact_date_tolerance_days: int = Field(default=0, ge=0)
    exact_amount_tolerance: Decimal = Field(default=Decimal("0.01"))
    likely_date_window_days: int = Field(default=7, ge=0)
    possible_date_window_days: int = Field(default=30, ge=0)
    possible_amount_ratio: Decimal = Field(
        default=Decimal("0.01"),
        description="Relative gross difference still considered a possible duplicate",
    )

    # Import
    auto_approve_min_confidence: float = Field(
        default=0.8,
        ge=0,
        le=1,
        description="Overall confidence required before an auto-approved import is approved",
    )

    # Upload limits
    max_upload_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    allowed_mime_types: list[str] = Field(
        default=[
            "image/png",
            "image/jpeg",
            "image/tiff",
            "image/bmp",
            "image/gif",
            "image/webp",
            "application/pdf",
        ],
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Archive original uploads in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var INTAKE_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var INTAKE_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket for original invoice uploads",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )

    # Persistence
    companies_file: str | None = Field(
        default=None,
        description="JSON file with company records loaded into the in-memory store",
    )

    # Queue configuration
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the arq job queue",
    )
    queue_max_jobs: int = Field(default=4, ge=1)
    queue_job_timeout: int = Field(default=300, ge=1)


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
