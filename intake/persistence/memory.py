"""In-memory persistence collaborators.

Used by tests and local development. ``InMemoryStore`` implements every
repository protocol plus a unit of work whose transaction restores a
snapshot when the block raises.
"""

import copy
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import TypeAdapter

from intake.extraction.identifiers import compact
from intake.persistence.base import (
    AuditEntry,
    CompanyContext,
    InvoiceRecord,
    PersistenceError,
    Supplier,
    UniqueConstraintViolation,
)
from intake.pipeline.models import OCRResult

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Thread-safe dictionary-backed store."""

    def __init__(self) -> None:
        self.companies: dict[str, CompanyContext] = {}
        self.ocr_results: dict[str, OCRResult] = {}
        self.suppliers: dict[str, Supplier] = {}
        self.invoices: dict[str, InvoiceRecord] = {}
        self.audit_entries: list[AuditEntry] = []
        self._lock = threading.RLock()

    # Companies
    def add_company(self, company: CompanyContext) -> None:
        self.companies[company.company_id] = company

    def get_company(self, company_id: str) -> CompanyContext | None:
        return self.companies.get(company_id)

    def load_companies(self, path: str | Path) -> int:
        """Load a JSON array of company records; returns the number loaded."""
        records = TypeAdapter(list[CompanyContext]).validate_json(Path(path).read_bytes())
        for company in records:
            self.add_company(company)
        logger.info(f"Loaded {len(records)} companies from {path}")
        return len(records)

    # OCR results
    def add(self, result: OCRResult) -> None:
        with self._lock:
            if result.id in self.ocr_results:
                raise UniqueConstraintViolation(f"OCR result {result.id} already exists")
            self.ocr_results[result.id] = result.model_copy(deep=True)

    def get(self, ocr_result_id: str) -> OCRResult | None:
        result = self.ocr_results.get(ocr_result_id)
        return result.model_copy(deep=True) if result else None

    def save(self, result: OCRResult) -> None:
        with self._lock:
            if result.id not in self.ocr_results:
                raise PersistenceError(f"OCR result {result.id} does not exist")
            self.ocr_results[result.id] = result.model_copy(deep=True)

    def find_by_hash(self, company_id: str, file_hash: str) -> OCRResult | None:
        for result in self.ocr_results.values():
            if result.company_id == company_id and result.file_hash == file_hash:
                return result.model_copy(deep=True)
        return None

    # Suppliers
    def list_suppliers(self, company_id: str) -> list[Supplier]:
        return [s for s in self.suppliers.values() if s.company_id == company_id]

    def get_supplier(self, supplier_id: str) -> Supplier | None:
        return self.suppliers.get(supplier_id)

    def create_supplier(self, supplier: Supplier) -> Supplier:
        with self._lock:
            if supplier.id in self.suppliers:
                raise UniqueConstraintViolation(f"Supplier {supplier.id} already exists")
            self.suppliers[supplier.id] = supplier
            return supplier

    # Invoices
    def list_invoices(self, company_id: str) -> list[InvoiceRecord]:
        return [i for i in self.invoices.values() if i.company_id == company_id]

    def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        with self._lock:
            key = (invoice.company_id, invoice.supplier_id, compact(invoice.invoice_number))
            for existing in self.invoices.values():
                if (
                    existing.company_id,
                    existing.supplier_id,
                    compact(existing.invoice_number),
                ) == key:
                    raise UniqueConstraintViolation(
                        f"Invoice {invoice.invoice_number} already exists for supplier "
                        f"{invoice.supplier_id}"
                    )
            self.invoices[invoice.id] = invoice
            return invoice

    # Audit
    def append(self, entry: AuditEntry) -> None:
        self.audit_entries.append(entry)

    # Unit of work
    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = (
                copy.deepcopy(self.ocr_results),
                dict(self.suppliers),
                dict(self.invoices),
            )
            try:
                yield
            except Exception:
                self.ocr_results, self.suppliers, self.invoices = snapshot
                logger.warning("Transaction rolled back")
                raise
