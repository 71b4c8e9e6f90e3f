"""PipelineOrchestrator: drive one uploaded invoice through every stage.

Stages run strictly forward:

    upload -> ocr -> validation -> supplier_match -> duplicate_check -> import -> complete

with ``error`` reachable from any of them. Fatal conditions end the run
with ``success=False`` and the error's code; nothing is committed before
the import stage, so a cancelled or failed run never leaves a partial
invoice behind. A run that stops at validation can be continued later
with ``revalidate`` and ``resume`` without repeating recognition.
"""

import hashlib
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from intake.commit.committer import ImportCommitter
from intake.duplicates.detector import DuplicateDetector
from intake.extraction.base import ExtractionRequest
from intake.extraction.chain import ChainOutcome, ExtractionChain
from intake.extraction.schema import StructuredInvoiceData
from intake.ocr.service import TextExtractionAdapter, TextExtractionResult
from intake.persistence.base import (
    AuditEntry,
    AuditLog,
    CompanyContext,
    CompanyDirectory,
    InvoiceRepository,
    OCRResultRepository,
    SupplierRepository,
    UnitOfWork,
)
from intake.pipeline import metrics
from intake.pipeline.models import (
    DuplicateWarning,
    OCRResult,
    OCRStatus,
    PipelineImportResult,
    PipelineStage,
    SupplierMatch,
    ValidationResult,
)
from intake.pipeline.progress import VALIDATION_FAILED_PROGRESS, ProgressCallback, ProgressTracker
from intake.scoring.confidence import score
from intake.shared.config import Settings
from intake.shared.errors import (
    CompanyNotFound,
    DuplicateFile,
    ExactDuplicateInvoice,
    ImmutableRecordError,
    IngestionError,
    InvalidStatusTransition,
    InvoiceValidationError,
    OCRResultNotFound,
    PipelineCancelled,
)
from intake.storage.service import StorageService
from intake.suppliers.resolver import SupplierResolver
from intake.validation.service import ValidationEngine

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """What a run has produced so far; reported back on failure."""

    tracker: ProgressTracker
    ocr_result: OCRResult | None = None
    validation: ValidationResult | None = None
    matches: list[SupplierMatch] | None = None
    warnings: list[DuplicateWarning] | None = None


class PipelineOrchestrator:
    """Sequences extraction, validation, resolution, duplicate check and import."""

    def __init__(
        self,
        settings: Settings,
        text_extractor: TextExtractionAdapter,
        extraction_chain: ExtractionChain,
        companies: CompanyDirectory,
        ocr_results: OCRResultRepository,
        suppliers: SupplierRepository,
        invoices: InvoiceRepository,
        unit_of_work: UnitOfWork,
        audit: AuditLog | None = None,
        storage: StorageService | None = None,
    ) -> None:
        self.settings = settings
        self.text_extractor = text_extractor
        self.extraction_chain = extraction_chain
        self.companies = companies
        self.ocr_results = ocr_results
        self.audit = audit
        self.storage = storage
        self.validator = ValidationEngine(settings)
        self.resolver = SupplierResolver(suppliers, settings)
        self.detector = DuplicateDetector(invoices, settings)
        self.committer = ImportCommitter(unit_of_work, ocr_results, suppliers, invoices, audit)

    # Entry points

    def process(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        company_id: str,
        user_id: str | None = None,
        auto_approve: bool = False,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineImportResult:
        """Run the full pipeline for one uploaded document.

        Args:
            data: File bytes
            filename: Original filename
            mime_type: MIME type of the upload
            company_id: Owning company
            user_id: Submitting user
            auto_approve: Import as approved when overall confidence is high enough
            on_progress: Observer receiving PipelineStatus updates
            cancel_event: Set by the caller to abandon the run at the next stage boundary

        Returns:
            Terminal PipelineImportResult; never raises
        """
        state = _RunState(tracker=ProgressTracker(on_progress))
        try:
            self._check_cancelled(cancel_event)
            company = self._require_company(company_id)
            file_hash = hashlib.sha256(data).hexdigest()
            existing = self.ocr_results.find_by_hash(company_id, file_hash)
            if existing is not None:
                raise DuplicateFile(
                    f"File '{filename}' was already processed",
                    details={"ocr_result_id": existing.id, "status": existing.status.value},
                )
            state.tracker.report(
                PipelineStage.UPLOAD,
                f"Received {filename} ({len(data)} bytes)",
                details={"file_hash": file_hash},
            )

            self._check_cancelled(cancel_event)
            with self._timed(PipelineStage.OCR):
                text = self._recognize(data, mime_type)
                outcome = self._extract(text, mime_type)
            state.ocr_result = self._store_ocr_result(
                data, filename, mime_type, company, user_id, file_hash, text, outcome
            )
            state.tracker.report(
                PipelineStage.OCR,
                f"Extracted invoice {state.ocr_result.structured_data.invoice.number} "
                f"using {state.ocr_result.extraction_strategy}",
                details={
                    "ocr_result_id": state.ocr_result.id,
                    "extraction_strategy": state.ocr_result.extraction_strategy,
                    "overall_confidence": state.ocr_result.confidence_scores.overall,
                },
            )
            return self._validate_and_import(
                state, state.ocr_result, company, auto_approve, cancel_event
            )
        except IngestionError as e:
            return self._fail(state, e)
        except Exception as e:
            logger.exception(f"Pipeline failed for '{filename}'")
            return self._fail(state, e)

    def resume(
        self,
        ocr_result_id: str,
        company_id: str,
        auto_approve: bool = False,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineImportResult:
        """Re-enter the pipeline at validation for a stored OCR result."""
        state = _RunState(tracker=ProgressTracker(on_progress))
        try:
            company = self._require_company(company_id)
            state.ocr_result = self.get(ocr_result_id, company_id)
            if state.ocr_result.status == OCRStatus.IMPORTED:
                raise ImmutableRecordError(f"OCR result {ocr_result_id} is already imported")
            if state.ocr_result.status == OCRStatus.REJECTED:
                raise InvalidStatusTransition(f"OCR result {ocr_result_id} was rejected")
            return self._validate_and_import(
                state, state.ocr_result, company, auto_approve, cancel_event
            )
        except IngestionError as e:
            return self._fail(state, e)
        except Exception as e:
            logger.exception(f"Resume failed for OCR result {ocr_result_id}")
            return self._fail(state, e)

    def revalidate(
        self,
        ocr_result_id: str,
        company_id: str,
        structured_data: StructuredInvoiceData | None = None,
    ) -> ValidationResult:
        """Validate stored (optionally edited) data again without recognition.

        Raises:
            OCRResultNotFound: If the result does not exist for the company
            CompanyNotFound: If the company is unknown
            ImmutableRecordError: If edited data is given for an imported result
        """
        company = self._require_company(company_id)
        ocr_result = self.get(ocr_result_id, company_id)
        if structured_data is not None:
            scores = score(
                ocr_result.extracted_text, structured_data, ocr_result.extraction_strategy or "pattern"
            )
            ocr_result.update_structured_data(structured_data, scores)

        validation = self.validator.validate(ocr_result.structured_data, company)
        if ocr_result.status in (OCRStatus.IMPORTED, OCRStatus.REJECTED):
            return validation

        ocr_result.validation_notes = validation
        if validation.valid and ocr_result.status == OCRStatus.PENDING:
            ocr_result.transition_to(OCRStatus.VALIDATED)
        elif not validation.valid and ocr_result.status == OCRStatus.VALIDATED:
            ocr_result.transition_to(OCRStatus.PENDING)
        self.ocr_results.save(ocr_result)
        self._audit(
            "ocr_result",
            ocr_result.id,
            "revalidated",
            {
                "valid": validation.valid,
                "version": ocr_result.version,
                "edited": structured_data is not None,
            },
        )
        return validation

    def reject(self, ocr_result_id: str, company_id: str, reason: str | None = None) -> OCRResult:
        """Move a pending or validated OCR result to rejected."""
        ocr_result = self.get(ocr_result_id, company_id)
        ocr_result.transition_to(OCRStatus.REJECTED)
        self.ocr_results.save(ocr_result)
        logger.info(f"OCR result {ocr_result_id} rejected: {reason or 'no reason given'}")
        self._audit("ocr_result", ocr_result.id, "rejected", {}, reason=reason)
        return ocr_result

    def get(self, ocr_result_id: str, company_id: str) -> OCRResult:
        ocr_result = self.ocr_results.get(ocr_result_id)
        if ocr_result is None or ocr_result.company_id != company_id:
            raise OCRResultNotFound(f"OCR result {ocr_result_id} not found")
        return ocr_result

    # Stages

    def _recognize(self, data: bytes, mime_type: str) -> TextExtractionResult:
        try:
            text = self.text_extractor.extract(data, mime_type)
        except Exception:
            metrics.ocr_requests_total.labels(status="failed").inc()
            raise
        metrics.ocr_requests_total.labels(status="success").inc()
        return text

    def _extract(self, text: TextExtractionResult, mime_type: str) -> ChainOutcome:
        outcome = self.extraction_chain.run(
            ExtractionRequest(raw_text=text.raw_text, page_images=text.page_images, mime_type=mime_type)
        )
        for attempt in outcome.failed_attempts:
            metrics.extraction_attempts_total.labels(provider=attempt.provider, outcome="failed").inc()
            metrics.ai_fallbacks_total.labels(provider=attempt.provider).inc()
        metrics.extraction_attempts_total.labels(
            provider=outcome.result.provider,
            outcome="success" if outcome.result.success else "failed",
        ).inc()
        return outcome

    def _store_ocr_result(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        company: CompanyContext,
        user_id: str | None,
        file_hash: str,
        text: TextExtractionResult,
        outcome: ChainOutcome,
    ) -> OCRResult:
        structured = outcome.result.invoice_data
        if structured is None:
            structured = StructuredInvoiceData.empty(currency=self.settings.default_currency)
        strategy = outcome.result.provider
        ocr_result = OCRResult(
            company_id=company.company_id,
            created_by=user_id,
            file_hash=file_hash,
            original_filename=filename,
            filesize=len(data),
            mime_type=mime_type,
            page_count=text.page_count,
            ocr_engine=text.engine_name,
            ocr_engine_version=text.engine_version,
            extraction_strategy=strategy,
            extracted_text=text.raw_text,
            structured_data=structured,
            confidence_scores=score(text.raw_text, structured, strategy),
            processing_errors=[f"{a.provider}: {a.error}" for a in outcome.failed_attempts],
        )
        ocr_result.original_file_path = self._archive(ocr_result, data)
        self.ocr_results.add(ocr_result)
        self._audit(
            "ocr_result",
            ocr_result.id,
            "extraction_completed",
            {
                "extraction_strategy": strategy,
                "overall_confidence": ocr_result.confidence_scores.overall,
                "invoice_number": structured.invoice.number,
            },
        )
        return ocr_result

    def _validate_and_import(
        self,
        state: _RunState,
        ocr_result: OCRResult,
        company: CompanyContext,
        auto_approve: bool,
        cancel_event: threading.Event | None,
    ) -> PipelineImportResult:
        tracker = state.tracker
        data = ocr_result.structured_data

        self._check_cancelled(cancel_event)
        with self._timed(PipelineStage.VALIDATION):
            state.validation = self.validator.validate(data, company)
        ocr_result.validation_notes = state.validation
        if not state.validation.valid:
            if ocr_result.status == OCRStatus.VALIDATED:
                ocr_result.transition_to(OCRStatus.PENDING)
            self.ocr_results.save(ocr_result)
            self._audit("ocr_result", ocr_result.id, "validation_failed", self._issues(state.validation))
            tracker.report(
                PipelineStage.VALIDATION,
                "Validation failed",
                progress=VALIDATION_FAILED_PROGRESS,
                details=self._issues(state.validation),
            )
            raise InvoiceValidationError(
                "Validation failed: " + "; ".join(e.message for e in state.validation.errors),
                details=self._issues(state.validation),
            )
        ocr_result.transition_to(OCRStatus.VALIDATED)
        self.ocr_results.save(ocr_result)
        self._audit("ocr_result", ocr_result.id, "validation_passed", self._issues(state.validation))
        tracker.report(
            PipelineStage.VALIDATION,
            f"Validation passed with {len(state.validation.warnings)} warning(s)",
            details=self._issues(state.validation),
        )

        self._check_cancelled(cancel_event)
        with self._timed(PipelineStage.SUPPLIER_MATCH):
            state.matches = self.resolver.resolve(
                company.company_id, data.supplier.name, data.supplier.vat_id, data.supplier.iban
            )
        best = state.matches[0] if state.matches else None
        tracker.report(
            PipelineStage.SUPPLIER_MATCH,
            f"Matched supplier {best.supplier_id}" if best else "No known supplier matched",
            details={"candidates": len(state.matches)},
        )

        self._check_cancelled(cancel_event)
        with self._timed(PipelineStage.DUPLICATE_CHECK):
            state.warnings = self.detector.check(
                company.company_id,
                best.supplier_id if best else None,
                data.invoice.number,
                data.invoice.date,
                data.totals.gross,
            )
        exact = next((w for w in state.warnings if w.duplicate_type == "exact"), None)
        if exact is not None:
            ocr_result.duplicates_of = exact.existing_invoice_id
            self.ocr_results.save(ocr_result)
            tracker.report(
                PipelineStage.DUPLICATE_CHECK,
                "Exact duplicate found, import aborted",
                details={"existing_invoice_id": exact.existing_invoice_id},
            )
            raise ExactDuplicateInvoice(
                f"Invoice {data.invoice.number} was already imported as {exact.existing_invoice_id}",
                details={"existing_invoice_id": exact.existing_invoice_id},
            )
        tracker.report(
            PipelineStage.DUPLICATE_CHECK,
            f"{len(state.warnings)} possible duplicate(s)" if state.warnings else "No duplicates found",
            details={"warnings": len(state.warnings)},
        )

        self._check_cancelled(cancel_event)
        approve = (
            auto_approve
            and ocr_result.confidence_scores.overall >= self.settings.auto_approve_min_confidence
        )
        if auto_approve and not approve:
            logger.info(
                f"Auto-approval withheld for {ocr_result.id}: confidence "
                f"{ocr_result.confidence_scores.overall:.2f} below "
                f"{self.settings.auto_approve_min_confidence}"
            )
        tracker.report(PipelineStage.IMPORT, "Importing invoice")
        with self._timed(PipelineStage.IMPORT):
            commit = self.committer.commit(ocr_result, company, best, auto_approve=approve)

        tracker.report(
            PipelineStage.COMPLETE,
            f"Invoice {data.invoice.number} imported",
            details={"invoice_id": commit.invoice_id},
        )
        metrics.pipeline_runs_total.labels(code="OK").inc()
        return PipelineImportResult(
            success=True,
            invoice_id=commit.invoice_id,
            supplier_id=commit.supplier_id,
            supplier_was_created=commit.supplier_was_created,
            ocr_result_id=ocr_result.id,
            validation_result=state.validation,
            duplicate_warnings=state.warnings,
            supplier_matches=state.matches,
            details={
                "approval_status": "approved" if approve else "pending",
                "overall_confidence": ocr_result.confidence_scores.overall,
                "progress": [status.model_dump(mode="json") for status in tracker.history],
            },
        )

    # Helpers

    def _fail(self, state: _RunState, error: Exception) -> PipelineImportResult:
        if isinstance(error, IngestionError):
            code, message, details = error.code, error.message, error.details
        else:
            code, message, details = "PIPELINE_ERROR", str(error) or type(error).__name__, None
        state.tracker.fail(message, details={"code": code})
        metrics.pipeline_runs_total.labels(code=code).inc()
        logger.warning(f"Pipeline stopped with {code}: {message}")

        result_details: dict[str, Any] = {
            "stage": getattr(error, "stage", PipelineStage.ERROR.value),
            "progress": [status.model_dump(mode="json") for status in state.tracker.history],
        }
        if isinstance(details, dict):
            result_details.update(details)
        return PipelineImportResult(
            success=False,
            ocr_result_id=state.ocr_result.id if state.ocr_result else None,
            validation_result=state.validation,
            duplicate_warnings=state.warnings,
            supplier_matches=state.matches,
            error=message,
            code=code,
            details=result_details,
        )

    def _require_company(self, company_id: str) -> CompanyContext:
        company = self.companies.get_company(company_id) if company_id else None
        if company is None:
            raise CompanyNotFound(f"Company '{company_id}' not found")
        return company

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("Pipeline run cancelled by caller")

    @staticmethod
    def _issues(validation: ValidationResult) -> dict[str, Any]:
        return {
            "errors": [issue.model_dump() for issue in validation.errors],
            "warnings": [issue.model_dump() for issue in validation.warnings],
        }

    @contextmanager
    def _timed(self, stage: PipelineStage) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            metrics.pipeline_stage_duration_seconds.labels(stage=stage.value).observe(elapsed)
            if stage == PipelineStage.OCR:
                metrics.ocr_processing_duration_seconds.observe(elapsed)

    def _archive(self, ocr_result: OCRResult, data: bytes) -> str | None:
        if self.storage is None or not self.storage.is_available():
            return None
        try:
            stored = self.storage.archive_original(
                ocr_result.company_id,
                ocr_result.id,
                ocr_result.original_filename,
                data,
                ocr_result.mime_type,
            )
        except Exception as e:
            stored = None
            logger.warning(f"Archiving original of {ocr_result.id} failed: {e}")
        if stored is None or not stored.success:
            ocr_result.processing_errors.append(
                f"storage: {stored.error if stored else 'upload failed'}"
            )
            return None
        return stored.path

    def _audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        payload: dict[str, Any],
        reason: str | None = None,
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.append(
                AuditEntry(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=action,
                    payload=payload,
                    reason=reason,
                )
            )
        except Exception as e:
            logger.warning(f"Audit log write failed ({entity_type} {entity_id} {action}): {e}")
