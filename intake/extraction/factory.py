"""Extraction provider selection and assembly of the strategy chain.

Providers are looked up by name in ``ProviderRegistry``; the chain always
ends with the deterministic pattern provider so an import never depends on
an AI backend being reachable.
"""

import logging

from intake.extraction.base import PATTERN_STRATEGY, ExtractionProvider
from intake.extraction.chain import ExtractionChain
from intake.extraction.ollama_provider import OllamaExtractionProvider
from intake.extraction.openai_provider import OpenAIExtractionProvider
from intake.extraction.pattern_provider import PatternExtractionProvider
from intake.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Name to class mapping of extraction strategies; extensible at runtime."""

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
        PATTERN_STRATEGY: PatternExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Strategy name as used in Settings.extraction_provider
            provider_class: Class implementing ExtractionProvider
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_extraction_provider(settings: Settings, name: str | None = None) -> ExtractionProvider:
    """Instantiate a single provider; defaults to ``settings.extraction_provider``.

    Logs a warning if the provider is not available (e.g., missing API key).
    """
    provider_name = name or settings.extraction_provider
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)
    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, model server)."
        )
    logger.info(f"Created extraction provider: {provider_name}")
    return provider


def create_extraction_chain(settings: Settings) -> ExtractionChain:
    """Build the strategy chain: configured AI provider first (if enabled), pattern last.

    Example:
        >>> settings = Settings(ai_extraction_enabled=True, extraction_provider="ollama")
        >>> chain = create_extraction_chain(settings)
        >>> [p.provider_name for p in chain.providers]
        ['ollama', 'pattern']
    """
    providers: list[ExtractionProvider] = []
    if settings.ai_extraction_enabled:
        providers.append(create_extraction_provider(settings))
    providers.append(PatternExtractionProvider(settings))
    return ExtractionChain(providers)
