"""Unit tests for extraction base classes and the strategy chain.

Tests cover:
- Abstract base class enforcement
- ExtractionResult model validation
- Chain ordering, fallback and failure accounting
"""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from intake.extraction.base import ExtractionProvider, ExtractionRequest, ExtractionResult
from intake.extraction.chain import ExtractionChain
from intake.extraction.schema import StructuredInvoiceData
from intake.shared.config import Settings


def _provider(
    name: str, result: ExtractionResult | None = None, error: Exception | None = None
) -> MagicMock:
    provider = MagicMock(spec=ExtractionProvider)
    provider.provider_name = name
    if error is not None:
        provider.extract_invoice_fields.side_effect = error
    else:
        provider.extract_invoice_fields.return_value = result
    return provider


def _success(name: str) -> ExtractionResult:
    return ExtractionResult(invoice_data=StructuredInvoiceData.empty(), success=True, provider=name)


def _failure(name: str, error: str = "unavailable") -> ExtractionResult:
    return ExtractionResult(invoice_data=None, success=False, error=error, provider=name)


def test_extraction_result_with_success() -> None:
    """Test ExtractionResult with successful extraction."""
    result = _success("test")

    assert result.success is True
    assert result.invoice_data is not None
    assert result.error is None
    assert result.provider == "test"


def test_extraction_result_confidence_range() -> None:
    """Test that the engine confidence must lie in [0, 1]."""
    with pytest.raises(ValidationError):
        ExtractionResult(invoice_data=None, success=False, provider="test", engine_confidence=1.2)


def test_extraction_request_defaults() -> None:
    """Test that a request carries no images by default."""
    request = ExtractionRequest(raw_text="Rechnung")

    assert request.page_images == []
    assert request.mime_type == "application/octet-stream"


def test_extraction_provider_is_abstract() -> None:
    """Test that ExtractionProvider cannot be instantiated directly."""
    with pytest.raises(TypeError, match="Can't instantiate abstract class"):
        ExtractionProvider(Settings())  # type: ignore[abstract]


class TestExtractionChain:
    """Test ordered strategy execution."""

    def test_requires_a_provider(self) -> None:
        """Should reject an empty chain."""
        with pytest.raises(ValueError, match="at least one provider"):
            ExtractionChain([])

    def test_first_success_wins(self) -> None:
        """Should stop at the first successful strategy."""
        first = _provider("openai", _success("openai"))
        second = _provider("pattern", _success("pattern"))

        outcome = ExtractionChain([first, second]).run(ExtractionRequest(raw_text="x"))

        assert outcome.result.provider == "openai"
        assert outcome.failed_attempts == []
        assert outcome.fell_back is False
        second.extract_invoice_fields.assert_not_called()

    def test_falls_back_after_failure(self) -> None:
        """Should record the failed attempt and use the next strategy."""
        chain = ExtractionChain(
            [
                _provider("openai", _failure("openai", "timeout")),
                _provider("pattern", _success("pattern")),
            ]
        )

        outcome = chain.run(ExtractionRequest(raw_text="x"))

        assert outcome.result.provider == "pattern"
        assert outcome.fell_back is True
        assert [(a.provider, a.error) for a in outcome.failed_attempts] == [("openai", "timeout")]

    def test_raising_provider_counts_as_failure(self) -> None:
        """Should turn a provider exception into a failed attempt."""
        chain = ExtractionChain(
            [_provider("ollama", error=RuntimeError("boom")), _provider("pattern", _success("pattern"))]
        )

        outcome = chain.run(ExtractionRequest(raw_text="x"))

        assert outcome.result.success is True
        assert outcome.failed_attempts[0].provider == "ollama"
        assert outcome.failed_attempts[0].error == "boom"

    def test_all_strategies_fail(self) -> None:
        """Should return the last failure when nothing succeeds."""
        chain = ExtractionChain(
            [_provider("openai", _failure("openai")), _provider("ollama", _failure("ollama"))]
        )

        outcome = chain.run(ExtractionRequest(raw_text="x"))

        assert outcome.result.success is False
        assert outcome.result.provider == "ollama"
        assert len(outcome.failed_attempts) == 1
        assert outcome.fell_back is False
