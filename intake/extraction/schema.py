"""Invoice data models for structured extraction.

``StructuredInvoiceData`` is the canonical output of every extraction
strategy. Values are validated when the record is built, so downstream
stages can rely on types and ranges without re-checking them.
"""

import datetime
import math
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNKNOWN_INVOICE_NUMBER = "Unknown"
UNKNOWN_SUPPLIER = "Unknown Supplier"


class TaxType(str, Enum):
    """Classification of a tax line."""

    STANDARD = "standard"
    REDUCED = "reduced"
    REVERSE_CHARGE = "reverse_charge"
    EXEMPT = "exempt"


class SupplierInfo(BaseModel):
    """Issuing party of the invoice."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Supplier/vendor company name")
    vat_id: str | None = Field(None, description="EU VAT identification number")
    tax_number: str | None = Field(None, description="National tax number (Steuernummer)")
    iban: str | None = Field(None, description="Bank account (IBAN)")
    bic: str | None = Field(None, description="Bank identifier (BIC/SWIFT)")
    address: str | None = Field(None, description="Postal address")

    @field_validator("vat_id", "iban", "bic")
    @classmethod
    def _compact_identifier(cls, value: str | None) -> str | None:
        if value is None:
            return None
        compact = "".join(value.split()).upper()
        return compact or None


class InvoiceHeader(BaseModel):
    """Identity and dates of the invoice document."""

    model_config = ConfigDict(extra="forbid")

    number: str = Field(UNKNOWN_INVOICE_NUMBER, min_length=1, description="Invoice number")
    date: datetime.date | None = Field(None, description="Issue date (None when not found)")
    due_date: datetime.date | None = Field(None, description="Payment due date")
    currency: str = Field("EUR", min_length=3, max_length=3, description="ISO 4217 code")
    payment_terms: str | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class TaxLine(BaseModel):
    """One row of the tax breakdown."""

    model_config = ConfigDict(extra="forbid")

    rate: Decimal = Field(..., ge=0, le=100)
    base: Decimal = Field(Decimal("0"), ge=0)
    amount: Decimal = Field(Decimal("0"), ge=0)
    type: TaxType = TaxType.STANDARD


class Totals(BaseModel):
    model_config = ConfigDict(extra="forbid")

    net: Decimal = Field(Decimal("0"), ge=0)
    gross: Decimal = Field(Decimal("0"), ge=0)
    taxes: list[TaxLine] = Field(default_factory=list)


class LineItem(BaseModel):
    """A single invoice position."""

    model_config = ConfigDict(extra="forbid")

    pos: int | None = None
    description: str = Field(..., min_length=1)
    qty: Decimal = Field(..., gt=0)
    unit: str | None = None
    unit_price: Decimal = Field(..., ge=0)
    discount_percent: Decimal | None = Field(None, ge=0, le=100)
    net: Decimal
    tax_rate: Decimal = Field(..., ge=0, le=100)
    tax_amount: Decimal | None = None


class References(BaseModel):
    """Linkage hints to other business objects."""

    model_config = ConfigDict(extra="forbid")

    project_id: str | None = None
    order_id: str | None = None
    delivery_note: str | None = None
    customer_number: str | None = None


class StructuredInvoiceData(BaseModel):
    """Structured invoice data extracted from a document."""

    model_config = ConfigDict(extra="forbid")

    supplier: SupplierInfo
    invoice: InvoiceHeader
    totals: Totals
    items: list[LineItem] | None = None
    references: References | None = None

    @property
    def tax_total(self) -> Decimal:
        """Sum of all tax line amounts."""
        return sum((tax.amount for tax in self.totals.taxes), Decimal("0"))

    @property
    def calculated_gross(self) -> Decimal:
        """Gross total implied by net plus taxes."""
        return self.totals.net + self.tax_total

    @classmethod
    def empty(cls, currency: str = "EUR") -> "StructuredInvoiceData":
        """Record holding only sentinel values."""
        return cls(
            supplier=SupplierInfo(name=UNKNOWN_SUPPLIER),
            invoice=InvoiceHeader(number=UNKNOWN_INVOICE_NUMBER, currency=currency),
            totals=Totals(),
        )


Score = Annotated[float, Field(ge=0, le=1)]


class ConfidenceScores(BaseModel):
    """Per-field confidence keyed by dotted path, plus the overall mean.

    ``overall`` is always derived from ``scores``; instances are frozen, so a
    new extraction produces a new object.
    """

    model_config = ConfigDict(frozen=True)

    scores: dict[str, Score] = Field(default_factory=dict)
    overall: float = Field(0.0, ge=0, le=1)

    @model_validator(mode="after")
    def _compute_overall(self) -> "ConfidenceScores":
        values = list(self.scores.values())
        overall = math.fsum(values) / len(values) if values else 0.0
        object.__setattr__(self, "overall", min(1.0, max(0.0, overall)))
        return self

    def __getitem__(self, key: str) -> float:
        if key == "overall":
            return self.overall
        return self.scores[key]

    def __contains__(self, key: object) -> bool:
        return key == "overall" or key in self.scores

    def get(self, key: str, default: float | None = None) -> float | None:
        try:
            return self[key]
        except KeyError:
            return default

    def as_dict(self) -> dict[str, float]:
        """Flat representation including ``overall``."""
        return {"overall": self.overall, **self.scores}
