"""Unit tests for extraction provider factory.

Tests cover:
- Provider registry lookups
- Factory function provider creation
- Chain composition from configuration
- Error handling for unknown providers
"""

import logging
from unittest.mock import patch

import pytest

from intake.extraction.base import ExtractionProvider, ExtractionRequest, ExtractionResult
from intake.extraction.factory import (
    ProviderRegistry,
    create_extraction_chain,
    create_extraction_provider,
)
from intake.extraction.ollama_provider import OllamaExtractionProvider
from intake.extraction.openai_provider import OpenAIExtractionProvider
from intake.extraction.pattern_provider import PatternExtractionProvider
from intake.shared.config import Settings


def test_provider_registry_default_providers() -> None:
    """Test that registry contains default providers."""
    providers = ProviderRegistry.list_providers()

    assert {"openai", "ollama", "pattern"} <= set(providers)


def test_provider_registry_get_classes() -> None:
    """Test getting provider classes from registry."""
    assert ProviderRegistry.get_provider_class("openai") == OpenAIExtractionProvider
    assert ProviderRegistry.get_provider_class("ollama") == OllamaExtractionProvider
    assert ProviderRegistry.get_provider_class("pattern") == PatternExtractionProvider


def test_provider_registry_unknown_provider() -> None:
    """Test that unknown provider raises ValueError listing the available ones."""
    with pytest.raises(ValueError, match="Available providers: .*openai"):
        ProviderRegistry.get_provider_class("nonexistent")


def test_provider_registry_register_new_provider() -> None:
    """Test registering a new provider."""

    class TestProvider(ExtractionProvider):
        def extract_invoice_fields(self, request: ExtractionRequest) -> ExtractionResult:
            return ExtractionResult(invoice_data=None, success=False, provider="test")

        def is_available(self) -> bool:
            return True

        @property
        def provider_name(self) -> str:
            return "test"

    ProviderRegistry.register("test", TestProvider)
    try:
        assert "test" in ProviderRegistry.list_providers()
        assert ProviderRegistry.get_provider_class("test") == TestProvider
    finally:
        del ProviderRegistry._providers["test"]


def test_create_provider_warns_when_unavailable(caplog: pytest.LogCaptureFixture) -> None:
    """Test that an unconfigured provider is created with a warning."""
    with patch.dict("os.environ", {}, clear=True), caplog.at_level(logging.WARNING):
        provider = create_extraction_provider(Settings(), "openai")

    assert isinstance(provider, OpenAIExtractionProvider)
    assert "not fully available" in caplog.text


def test_chain_is_pattern_only_by_default() -> None:
    """Test that AI extraction is off unless enabled."""
    chain = create_extraction_chain(Settings())

    assert [p.provider_name for p in chain.providers] == ["pattern"]


def test_chain_puts_ai_provider_first() -> None:
    """Test that the configured AI provider precedes the pattern extractor."""
    settings = Settings(ai_extraction_enabled=True, extraction_provider="ollama")

    with patch.object(OllamaExtractionProvider, "is_available", return_value=True):
        chain = create_extraction_chain(settings)

    assert [p.provider_name for p in chain.providers] == ["ollama", "pattern"]
