"""Error taxonomy of the ingestion pipeline.

Each error carries a stable ``code`` (returned to callers in
``PipelineImportResult.code``) and the pipeline ``stage`` it belongs to.
"""

from typing import Any


class IngestionError(Exception):
    """Base class for all pipeline errors."""

    code = "PIPELINE_ERROR"
    stage = "error"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class CompanyNotFound(IngestionError):
    """The submission cannot be attributed to a company."""

    code = "COMPANY_NOT_FOUND"
    stage = "upload"


class DuplicateFile(IngestionError):
    """A byte-identical file was already processed for the company."""

    code = "DUPLICATE_FILE"
    stage = "upload"


class UnsupportedDocumentError(IngestionError):
    """The upload cannot be turned into page images."""

    code = "UNSUPPORTED_DOCUMENT"
    stage = "ocr"


class EngineUnavailable(IngestionError):
    """The recognition engine cannot run, even in degraded mode."""

    code = "OCR_ENGINE_UNAVAILABLE"
    stage = "ocr"


class InvoiceValidationError(IngestionError):
    """Required fields are missing or inconsistent."""

    code = "VALIDATION_ERROR"
    stage = "validation"


class ExactDuplicateInvoice(IngestionError):
    """The invoice was already imported for the same supplier."""

    code = "DUPLICATE_INVOICE"
    stage = "duplicate_check"


class CommitFailure(IngestionError):
    """The persistence layer rejected the import."""

    code = "COMMIT_FAILED"
    stage = "import"


class OCRResultNotFound(IngestionError):
    code = "NOT_FOUND"


class ImmutableRecordError(IngestionError):
    code = "IMMUTABLE_RECORD"


class InvalidStatusTransition(IngestionError):
    code = "INVALID_STATUS"


class PipelineCancelled(IngestionError):
    """The caller abandoned the run at a stage boundary."""

    code = "CANCELLED"
