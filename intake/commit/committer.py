"""ImportCommitter: persist a validated OCR result as a supplier invoice.

Everything happens in one persistence transaction. When the datastore
rejects any write the transaction rolls back, the OCR result stays
``validated`` and a ``CommitFailure`` is raised so the caller can retry.
"""

import logging

from intake.persistence.base import (
    AuditEntry,
    AuditLog,
    CompanyContext,
    InvoiceRecord,
    InvoiceRepository,
    OCRResultRepository,
    PersistenceError,
    Supplier,
    SupplierRepository,
    UnitOfWork,
)
from intake.pipeline.models import CommitResult, OCRResult, OCRStatus, SupplierMatch
from intake.shared.errors import CommitFailure, InvalidStatusTransition

logger = logging.getLogger(__name__)


class ImportCommitter:
    def __init__(
        self,
        unit_of_work: UnitOfWork,
        ocr_results: OCRResultRepository,
        suppliers: SupplierRepository,
        invoices: InvoiceRepository,
        audit: AuditLog | None = None,
    ) -> None:
        self.unit_of_work = unit_of_work
        self.ocr_results = ocr_results
        self.suppliers = suppliers
        self.invoices = invoices
        self.audit = audit

    def commit(
        self,
        ocr_result: OCRResult,
        company: CompanyContext,
        supplier_match: SupplierMatch | None,
        auto_approve: bool = False,
    ) -> CommitResult:
        """Create the supplier if needed, insert the invoice and mark the result imported.

        Args:
            ocr_result: Validated OCR result
            company: Owning company
            supplier_match: Best supplier match, or None to create a new supplier
            auto_approve: Import as approved instead of pending review

        Raises:
            CommitFailure: If the result is not validated or persistence fails
        """
        if ocr_result.status != OCRStatus.VALIDATED:
            raise CommitFailure(
                f"OCR result {ocr_result.id} is {ocr_result.status.value}, expected validated"
            )
        data = ocr_result.structured_data
        try:
            with self.unit_of_work.transaction():
                if supplier_match is not None:
                    supplier_id = supplier_match.supplier_id
                    supplier_was_created = False
                else:
                    supplier = self.suppliers.create_supplier(
                        Supplier(
                            company_id=company.company_id,
                            name=data.supplier.name,
                            vat_id=data.supplier.vat_id,
                            iban=data.supplier.iban,
                            bic=data.supplier.bic,
                            tax_number=data.supplier.tax_number,
                            address=data.supplier.address,
                        )
                    )
                    supplier_id = supplier.id
                    supplier_was_created = True

                invoice = self.invoices.create_invoice(
                    InvoiceRecord(
                        company_id=company.company_id,
                        supplier_id=supplier_id,
                        invoice_number=data.invoice.number,
                        invoice_date=data.invoice.date,
                        due_date=data.invoice.due_date,
                        net_total=data.totals.net,
                        gross_total=data.totals.gross,
                        currency=data.invoice.currency,
                        approval_status="approved" if auto_approve else "pending",
                        ocr_result_id=ocr_result.id,
                    )
                )

                imported = ocr_result.model_copy(deep=True)
                imported.transition_to(OCRStatus.IMPORTED)
                self.ocr_results.save(imported)
        except (PersistenceError, InvalidStatusTransition) as e:
            logger.warning(f"Import of OCR result {ocr_result.id} failed: {e}")
            raise CommitFailure(str(e), details={"ocr_result_id": ocr_result.id}) from e

        ocr_result.transition_to(OCRStatus.IMPORTED)
        logger.info(
            f"Imported invoice {invoice.id} ({data.invoice.number}) for supplier {supplier_id}"
            f"{' (new)' if supplier_was_created else ''}"
        )
        self._audit(invoice, ocr_result, supplier_was_created)
        return CommitResult(
            success=True,
            invoice_id=invoice.id,
            supplier_id=supplier_id,
            supplier_was_created=supplier_was_created,
        )

    def _audit(self, invoice: InvoiceRecord, ocr_result: OCRResult, supplier_was_created: bool) -> None:
        if self.audit is None:
            return
        try:
            self.audit.append(
                AuditEntry(
                    entity_type="invoice",
                    entity_id=invoice.id,
                    action="imported",
                    payload={
                        "ocr_result_id": ocr_result.id,
                        "supplier_id": invoice.supplier_id,
                        "supplier_was_created": supplier_was_created,
                        "approval_status": invoice.approval_status,
                    },
                )
            )
        except Exception as e:
            logger.warning(f"Audit log write failed for invoice {invoice.id}: {e}")
