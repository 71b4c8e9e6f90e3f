"""Unit tests for per-field confidence scoring."""

import datetime
from decimal import Decimal

import pytest

from intake.extraction.pattern_provider import PatternExtractionProvider
from intake.extraction.schema import (
    ConfidenceScores,
    InvoiceHeader,
    StructuredInvoiceData,
    SupplierInfo,
    TaxLine,
    Totals,
)
from intake.scoring.confidence import AI_BASELINE, UNCORROBORATED_AI_VALUE, score
from intake.shared.config import Settings

TODAY = datetime.date(2024, 4, 1)


@pytest.fixture
def extracted(settings: Settings, sample_invoice_text: str) -> StructuredInvoiceData:
    """Pattern extraction of the sample invoice."""
    return PatternExtractionProvider(settings).extract(sample_invoice_text)


class TestPatternScores:
    """Test scores for pattern extraction."""

    def test_complete_invoice(self, sample_invoice_text: str, extracted: StructuredInvoiceData) -> None:
        """Should score every found field high."""
        scores = score(sample_invoice_text, extracted, "pattern", today=TODAY)

        assert scores["invoice.number"] == 0.9
        assert scores["invoice.date"] == 0.95
        assert scores["supplier.name"] == 0.9
        assert scores["totals.gross"] == 0.85
        assert scores["supplier.vat_id"] == 0.95
        assert scores["supplier.iban"] == 0.9
        assert scores["totals.taxes"] == 0.75
        assert scores.overall == pytest.approx(7.85 / 9)

    def test_sentinel_record_scores_low(self) -> None:
        """Should score sentinel values at their low value."""
        scores = score("", StructuredInvoiceData.empty(), today=TODAY)

        assert scores.scores == {
            "invoice.number": 0.3,
            "invoice.date": 0.2,
            "supplier.name": 0.1,
            "totals.gross": 0.1,
        }
        assert scores.overall == pytest.approx(0.175)

    def test_implausible_date(self) -> None:
        """Should score dates before 2020 or far in the future low."""
        data = StructuredInvoiceData(
            supplier=SupplierInfo(name="Mueller Bau GmbH"),
            invoice=InvoiceHeader(number="RE-1", date=datetime.date(2019, 12, 31)),
            totals=Totals(gross=Decimal("10")),
        )

        assert score("", data, today=TODAY)["invoice.date"] == 0.2

    def test_invalid_iban_scores_low(self) -> None:
        """Should score an IBAN failing the checksum low."""
        data = StructuredInvoiceData(
            supplier=SupplierInfo(name="Mueller Bau GmbH", iban="DE89370400440532013001"),
            invoice=InvoiceHeader(number="RE-1"),
            totals=Totals(gross=Decimal("10")),
        )

        assert score("", data, today=TODAY)["supplier.iban"] == 0.4

    def test_short_supplier_name(self) -> None:
        """Should scale the supplier score with the name length."""
        data = StructuredInvoiceData(
            supplier=SupplierInfo(name="ABC"),
            invoice=InvoiceHeader(number="RE-1"),
            totals=Totals(gross=Decimal("10")),
        )

        assert score("", data, today=TODAY)["supplier.name"] == pytest.approx(0.48)

    def test_net_above_gross_scores_low(self) -> None:
        """Should flag a net total larger than gross."""
        data = StructuredInvoiceData(
            supplier=SupplierInfo(name="Mueller Bau GmbH"),
            invoice=InvoiceHeader(number="RE-1"),
            totals=Totals(net=Decimal("120"), gross=Decimal("100"), taxes=[TaxLine(rate=Decimal("19"))]),
        )

        assert score("", data, today=TODAY)["totals.net"] == 0.4


class TestAIScores:
    """Test scores for AI strategies."""

    def test_passing_fields_get_baseline(
        self, sample_invoice_text: str, extracted: StructuredInvoiceData
    ) -> None:
        """Should score every passing field with the AI baseline."""
        scores = score(sample_invoice_text, extracted, "openai", today=TODAY)

        assert set(scores.scores.values()) == {AI_BASELINE}
        assert scores.overall == pytest.approx(AI_BASELINE)

    def test_failing_fields_keep_low_score(self) -> None:
        """Should not lift failing fields to the AI baseline."""
        scores = score("", StructuredInvoiceData.empty(), "ollama", today=TODAY)

        assert scores["invoice.number"] == 0.3

    def test_number_not_in_text_is_uncorroborated(self, extracted: StructuredInvoiceData) -> None:
        """Should lower an AI invoice number absent from the OCR text."""
        scores = score("Rechnung ohne Nummer", extracted, "openai", today=TODAY)

        assert scores["invoice.number"] == UNCORROBORATED_AI_VALUE


def test_overall_independent_of_field_order() -> None:
    """Test that overall does not depend on insertion order."""
    values = {"a": 0.1, "b": 0.7, "c": 0.35}
    forward = ConfidenceScores(scores=values)
    backward = ConfidenceScores(scores=dict(reversed(list(values.items()))))

    assert forward.overall == backward.overall
    assert 0 <= forward.overall <= 1
