"""Records produced and consumed by the ingestion pipeline."""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from intake.extraction.schema import ConfidenceScores, StructuredInvoiceData
from intake.shared.errors import ImmutableRecordError, InvalidStatusTransition


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class PipelineStage(str, Enum):
    UPLOAD = "upload"
    OCR = "ocr"
    VALIDATION = "validation"
    SUPPLIER_MATCH = "supplier_match"
    DUPLICATE_CHECK = "duplicate_check"
    IMPORT = "import"
    COMPLETE = "complete"
    ERROR = "error"


class PipelineStatus(BaseModel):
    """Progress report emitted to the observer of a single run."""

    stage: PipelineStage
    progress: int = Field(..., ge=0, le=100)
    message: str
    details: dict[str, Any] | None = None


class OCRStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"
    IMPORTED = "imported"


ALLOWED_TRANSITIONS: dict[OCRStatus, frozenset[OCRStatus]] = {
    OCRStatus.PENDING: frozenset({OCRStatus.VALIDATED, OCRStatus.REJECTED}),
    OCRStatus.VALIDATED: frozenset({OCRStatus.IMPORTED, OCRStatus.REJECTED, OCRStatus.PENDING}),
    OCRStatus.IMPORTED: frozenset(),
    OCRStatus.REJECTED: frozenset(),
}


class ValidationIssue(BaseModel):
    field: str
    code: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating one ``StructuredInvoiceData``.

    Attributes:
        valid: True when there are no hard errors
        errors: Issues that block the import
        warnings: Issues surfaced for review that do not block
        calculated_totals: net_from_items, tax_from_breakdown, gross_calculated
    """

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    calculated_totals: dict[str, Decimal | None] | None = None


class SupplierMatch(BaseModel):
    supplier_id: str
    match_score: float = Field(..., ge=0, le=1)
    match_reason: str
    supplier_snapshot: dict[str, Any] = Field(default_factory=dict)


DuplicateType = Literal["exact", "likely", "possible", "cross_supplier"]


class DuplicateDetail(BaseModel):
    existing_number: str
    existing_date: datetime.date | None
    existing_amount: Decimal
    existing_supplier: str
    date_difference_days: int | None
    amount_difference: Decimal


class DuplicateWarning(BaseModel):
    existing_invoice_id: str
    duplicate_type: DuplicateType
    confidence: float = Field(..., ge=0, le=1)
    detail: DuplicateDetail


class OCRResult(BaseModel):
    """Persisted unit of work for one uploaded document.

    Status changes go through ``transition_to`` so that the lifecycle
    pending -> validated -> imported (or rejected) cannot be bypassed.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    created_by: str | None = None
    file_hash: str
    original_filename: str
    filesize: int = Field(..., ge=0)
    mime_type: str
    page_count: int = 0
    original_file_path: str | None = None
    ocr_engine: str | None = None
    ocr_engine_version: str | None = None
    extraction_strategy: str | None = None
    version: int = 1
    extracted_text: str = ""
    structured_data: StructuredInvoiceData
    confidence_scores: ConfidenceScores
    status: OCRStatus = OCRStatus.PENDING
    validation_notes: ValidationResult | None = None
    processing_errors: list[str] = Field(default_factory=list)
    duplicates_of: str | None = None
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)
    validated_at: datetime.datetime | None = None

    def transition_to(self, status: OCRStatus) -> None:
        """Move to ``status``.

        Raises:
            InvalidStatusTransition: If the lifecycle does not allow the move
        """
        if status == self.status:
            return
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(
                f"OCR result {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.updated_at = _utcnow()
        if status == OCRStatus.VALIDATED:
            self.validated_at = self.updated_at

    def update_structured_data(
        self, data: StructuredInvoiceData, scores: ConfidenceScores
    ) -> None:
        """Replace the structured data after a human edit.

        A validated record returns to pending; it must be validated again.

        Raises:
            ImmutableRecordError: If the record was already imported
            InvalidStatusTransition: If the record was rejected
        """
        if self.status == OCRStatus.IMPORTED:
            raise ImmutableRecordError(f"OCR result {self.id} is imported and cannot be edited")
        if self.status == OCRStatus.REJECTED:
            raise InvalidStatusTransition(f"OCR result {self.id} is rejected and cannot be edited")
        if self.status == OCRStatus.VALIDATED:
            self.transition_to(OCRStatus.PENDING)
        self.structured_data = data
        self.confidence_scores = scores
        self.version += 1
        self.updated_at = _utcnow()


class CommitResult(BaseModel):
    success: bool
    invoice_id: str
    supplier_id: str
    supplier_was_created: bool


class PipelineImportResult(BaseModel):
    """Terminal result of one pipeline run."""

    success: bool
    invoice_id: str | None = None
    supplier_id: str | None = None
    supplier_was_created: bool | None = None
    ocr_result_id: str | None = None
    validation_result: ValidationResult | None = None
    duplicate_warnings: list[DuplicateWarning] | None = None
    supplier_matches: list[SupplierMatch] | None = None
    error: str | None = None
    code: str | None = None
    details: dict[str, Any] | None = None
