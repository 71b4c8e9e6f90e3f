"""Shared fixtures: a German supplier invoice and an in-memory tenant."""

import io

import pytest
from PIL import Image

from intake.persistence.base import CompanyContext
from intake.persistence.memory import InMemoryStore
from intake.shared.config import Settings

SAMPLE_INVOICE_TEXT = """Mueller Bau GmbH
Hauptstraße 12, 80331 München
USt-IdNr.: DE123456789
Steuernummer: 143/123/12345

Rechnung
Rechnungs-Nr.: RE-2024-001
Rechnungsdatum: 15.03.2024
Fällig am: 14.04.2024
Kunden-Nr.: K-4711

Pos Beschreibung Menge Einheit Einzelpreis Gesamt
1 Fliesen verlegen 10 m² 45,00 450,00
2 Fugenmaterial 5 Stk 10,00 50,00
Nettobetrag: 500,00 €
MwSt 19%: 95,00 €
Gesamtbetrag: 595,00 €

Zahlungsziel: 30 Tage netto
IBAN: DE89 3704 0044 0532 0130 00
BIC: COBADEFFXXX
"""


@pytest.fixture
def settings() -> Settings:
    """Default settings (AI extraction and storage disabled)."""
    return Settings()


@pytest.fixture
def sample_invoice_text() -> str:
    """OCR text of a complete invoice: 500,00 net, 19% VAT, 595,00 gross."""
    return SAMPLE_INVOICE_TEXT


@pytest.fixture
def company() -> CompanyContext:
    """VAT-liable company requiring number and date."""
    return CompanyContext(company_id="acme", name="ACME Handwerk GmbH", vat_id="DE999999999")


@pytest.fixture
def store(company: CompanyContext) -> InMemoryStore:
    """In-memory store with the test company registered."""
    store = InMemoryStore()
    store.add_company(company)
    return store


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create a simple test image as bytes."""
    img = Image.new("RGB", (200, 100), color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    return img_bytes.getvalue()
