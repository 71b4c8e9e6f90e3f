"""Unit tests for configuration management."""

import os
from collections.abc import Generator
from decimal import Decimal

import pytest
from pydantic import ValidationError

from intake.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.upper().startswith("INTAKE_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-intake"
    assert settings.service_version == "0.1.0"
    assert settings.ocr_provider == "tesseract"
    assert settings.ocr_languages == "deu+eng"
    assert settings.ocr_max_concurrency == 1
    assert settings.ai_extraction_enabled is False
    assert settings.storage_enabled is False


def test_pipeline_thresholds_defaults(clean_env: None) -> None:
    """Test the numeric defaults used by validation, matching and duplicates."""
    settings = Settings()

    assert settings.amount_tolerance == Decimal("0.02")
    assert settings.supplier_match_threshold == 0.6
    assert settings.exact_date_tolerance_days == 0
    assert settings.likely_date_window_days == 7
    assert settings.possible_date_window_days == 30
    assert settings.default_tax_rate == Decimal("19")
    assert settings.auto_approve_min_confidence == 0.8


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["INTAKE_ENVIRONMENT"] = "production"
    os.environ["INTAKE_LOG_LEVEL"] = "ERROR"
    os.environ["INTAKE_OCR_PROVIDER"] = "paddleocr"
    os.environ["INTAKE_AMOUNT_TOLERANCE"] = "0.05"

    settings = Settings()

    assert settings.environment == "production"
    assert settings.log_level == "ERROR"
    assert settings.ocr_provider == "paddleocr"
    assert settings.amount_tolerance == Decimal("0.05")


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["intake_log_level"] = "DEBUG"

    settings = Settings()

    assert settings.log_level == "DEBUG"


def test_invalid_concurrency_rejected(clean_env: None) -> None:
    """Test that the recognition concurrency must be at least one."""
    with pytest.raises(ValidationError):
        Settings(ocr_max_concurrency=0)


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "invoice-intake"
