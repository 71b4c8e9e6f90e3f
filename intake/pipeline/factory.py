"""Factory wiring a PipelineOrchestrator from configuration."""

import logging

from intake.extraction.factory import create_extraction_chain
from intake.ocr.factory import create_recognition_engine
from intake.ocr.service import TextExtractionAdapter
from intake.persistence.memory import InMemoryStore
from intake.pipeline.orchestrator import PipelineOrchestrator
from intake.shared.config import Settings
from intake.storage.service import StorageService

logger = logging.getLogger(__name__)


def create_orchestrator(settings: Settings, store: InMemoryStore | None = None) -> PipelineOrchestrator:
    """Build the orchestrator with the configured engine, extraction chain and storage.

    The recognition engine is created but not started; it starts on first use.

    Args:
        settings: Application settings
        store: Persistence collaborators (defaults to a fresh in-memory store)
    """
    if store is None:
        store = InMemoryStore()
        if settings.companies_file:
            store.load_companies(settings.companies_file)
    text_extractor = TextExtractionAdapter(create_recognition_engine(settings), settings)
    orchestrator = PipelineOrchestrator(
        settings=settings,
        text_extractor=text_extractor,
        extraction_chain=create_extraction_chain(settings),
        companies=store,
        ocr_results=store,
        suppliers=store,
        invoices=store,
        unit_of_work=store,
        audit=store,
        storage=StorageService(settings),
    )
    logger.info(
        f"Pipeline ready: engine={settings.ocr_provider} "
        f"ai_extraction={'on' if settings.ai_extraction_enabled else 'off'}"
    )
    return orchestrator
