"""Ordered chain of extraction strategies.

Each strategy returns an ``ExtractionResult``; the chain returns the first
success together with the failed attempts before it. A failed AI attempt
is therefore a value the caller can log and count, never an exception.
"""

import logging

from pydantic import BaseModel, Field

from intake.extraction.base import ExtractionProvider, ExtractionRequest, ExtractionResult

logger = logging.getLogger(__name__)


class ChainOutcome(BaseModel):
    """Outcome of running the chain.

    Attributes:
        result: First successful result, or the last failure if every strategy failed
        failed_attempts: Failed results of the strategies tried before ``result``
    """

    result: ExtractionResult
    failed_attempts: list[ExtractionResult] = Field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return bool(self.failed_attempts) and self.result.success


class ExtractionChain:
    """Try each strategy in order until one succeeds."""

    def __init__(self, providers: list[ExtractionProvider]) -> None:
        if not providers:
            raise ValueError("ExtractionChain requires at least one provider")
        self.providers = providers

    def run(self, request: ExtractionRequest) -> ChainOutcome:
        failed: list[ExtractionResult] = []
        for provider in self.providers:
            try:
                result = provider.extract_invoice_fields(request)
            except Exception as e:
                logger.exception(f"Extraction provider '{provider.provider_name}' raised")
                result = ExtractionResult(
                    invoice_data=None,
                    success=False,
                    error=str(e),
                    provider=provider.provider_name,
                )
            if result.success and result.invoice_data is not None:
                if failed:
                    logger.warning(
                        f"Extraction fell back to '{result.provider}' after "
                        + ", ".join(f"{r.provider}: {r.error}" for r in failed)
                    )
                return ChainOutcome(result=result, failed_attempts=failed)
            failed.append(result)
        return ChainOutcome(result=failed[-1], failed_attempts=failed[:-1])
