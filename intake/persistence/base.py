"""Persistence collaborators consumed by the pipeline.

The datastore, tenant directory and audit log live outside this service;
the pipeline talks to them only through the protocols below. An in-memory
implementation is provided in ``intake.persistence.memory``.
"""

import datetime
import uuid
from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field

from intake.pipeline.models import OCRResult


class PersistenceError(Exception):
    """The datastore rejected an operation."""


class UniqueConstraintViolation(PersistenceError):
    """A uniqueness constraint (e.g. company, supplier, invoice number) was violated."""


def _new_id() -> str:
    return str(uuid.uuid4())


class CompanyContext(BaseModel):
    """Tenant that owns a submission, with its tax and import policy."""

    company_id: str
    name: str
    vat_id: str | None = None
    tax_number: str | None = None
    vat_liable: bool = True
    require_invoice_number: bool = True
    require_invoice_date: bool = True


class Supplier(BaseModel):
    id: str = Field(default_factory=_new_id)
    company_id: str
    name: str
    vat_id: str | None = None
    iban: str | None = None
    bic: str | None = None
    tax_number: str | None = None
    address: str | None = None


class InvoiceRecord(BaseModel):
    """Imported supplier invoice."""

    id: str = Field(default_factory=_new_id)
    company_id: str
    supplier_id: str
    invoice_number: str
    invoice_date: datetime.date | None
    due_date: datetime.date | None = None
    net_total: Decimal
    gross_total: Decimal
    currency: str = "EUR"
    approval_status: Literal["pending", "approved"] = "pending"
    ocr_result_id: str | None = None
    created_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


class AuditEntry(BaseModel):
    entity_type: str
    entity_id: str
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None


class CompanyDirectory(Protocol):
    def get_company(self, company_id: str) -> CompanyContext | None: ...


class OCRResultRepository(Protocol):
    def add(self, result: OCRResult) -> None: ...

    def get(self, ocr_result_id: str) -> OCRResult | None: ...

    def save(self, result: OCRResult) -> None: ...

    def find_by_hash(self, company_id: str, file_hash: str) -> OCRResult | None: ...


class SupplierRepository(Protocol):
    def list_suppliers(self, company_id: str) -> list[Supplier]: ...

    def get_supplier(self, supplier_id: str) -> Supplier | None: ...

    def create_supplier(self, supplier: Supplier) -> Supplier: ...


class InvoiceRepository(Protocol):
    def list_invoices(self, company_id: str) -> list[InvoiceRecord]: ...

    def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        """Insert an invoice; raises UniqueConstraintViolation on (company, supplier, number)."""
        ...


class AuditLog(Protocol):
    def append(self, entry: AuditEntry) -> None: ...


class UnitOfWork(Protocol):
    def transaction(self) -> AbstractContextManager[None]:
        """Context manager committing on success and rolling back on exception."""
        ...
