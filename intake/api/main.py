"""FastAPI application for invoice intake.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice upload running the full ingestion pipeline
- Fix-and-retry endpoints for OCR results that stopped at validation
- Structured error responses
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time

from fastapi import (
    Body,
    FastAPI,
    File,
    Header,
    HTTPException,
    Path,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from intake.api import metrics
from intake.extraction.schema import StructuredInvoiceData
from intake.pipeline.factory import create_orchestrator
from intake.pipeline.models import OCRResult, PipelineImportResult, ValidationResult
from intake.shared.config import get_settings
from intake.shared.errors import EngineUnavailable, IngestionError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Intake",
    description="Supplier invoice ingestion: recognition, extraction, validation and import",
    version=settings.service_version,
)

orchestrator = create_orchestrator(settings)

ERROR_STATUS: dict[str, int] = {
    "COMPANY_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DUPLICATE_FILE": status.HTTP_409_CONFLICT,
    "DUPLICATE_INVOICE": status.HTTP_409_CONFLICT,
    "COMMIT_FAILED": status.HTTP_409_CONFLICT,
    "IMMUTABLE_RECORD": status.HTTP_409_CONFLICT,
    "INVALID_STATUS": status.HTTP_409_CONFLICT,
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "UNSUPPORTED_DOCUMENT": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "OCR_ENGINE_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template so OCR result ids do not create new series
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"error": exc.message, "code": exc.code},
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    ocr_engine: bool
    storage: bool | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class OCRResultResponse(BaseModel):
    """Stored OCR result with a download link for the archived original."""

    result: OCRResult
    download_url: str | None = None


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check(response: Response) -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready once the recognition engine has started. Storage is reported but
    does not affect readiness, since archiving is best effort.
    """
    try:
        orchestrator.text_extractor.start()
        engine_ready = True
    except EngineUnavailable as e:
        logger.warning(f"Recognition engine not ready: {e}")
        engine_ready = False

    storage_ready = None
    if orchestrator.storage is not None and orchestrator.storage.is_available():
        storage_ready = orchestrator.storage.health_check()

    if not engine_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=engine_ready, ocr_engine=engine_ready, storage=storage_ready)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/import", response_model=PipelineImportResult, tags=["Invoices"])
async def import_invoice(
    response: Response,
    file: UploadFile = File(..., description="Invoice image or PDF"),  # noqa: B008
    auto_approve: bool = Query(
        False,
        description="Import as approved when the overall extraction confidence is high enough",
    ),
    company_id: str | None = Header(None, alias="X-Company-Id"),
    user_id: str | None = Header(None, alias="X-User-Id"),
) -> PipelineImportResult:
    """Upload a supplier invoice and run the ingestion pipeline.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/import?auto_approve=true" \\
      -H "X-Company-Id: acme" -H "X-User-Id: alice" \\
      -F "file=@invoice.pdf"
    ```

    ## Error Handling

    - 400 if the file is missing, empty, or of an unsupported type
    - 413 if the file exceeds the configured size limit
    - Pipeline failures return the PipelineImportResult with ``success=false``,
      the error ``code`` and a matching status (404, 409, 415, 422, 503, 500)
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    if not file.content_type or file.content_type not in settings.allowed_mime_types:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only images and PDFs are supported.",
        )

    content = await file.read()
    if not content:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    if len(content) > settings.max_upload_size_bytes:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_upload_size_bytes} bytes",
        )

    metrics.invoice_upload_size_bytes.observe(len(content))
    metrics.invoices_uploaded_total.labels(status="accepted").inc()

    result = await run_in_threadpool(
        orchestrator.process,
        content,
        file.filename,
        file.content_type,
        company_id or "",
        user_id,
        auto_approve,
    )
    if not result.success:
        response.status_code = ERROR_STATUS.get(
            result.code or "", status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return result


@app.get("/api/v1/ocr-results/{ocr_result_id}", response_model=OCRResultResponse, tags=["OCR results"])
def get_ocr_result(
    ocr_result_id: str = Path(...),
    company_id: str = Header("", alias="X-Company-Id"),
) -> OCRResultResponse:
    """Fetch a stored OCR result with its structured data and confidence."""
    result = orchestrator.get(ocr_result_id, company_id)
    download_url = None
    if result.original_file_path and orchestrator.storage is not None:
        download_url = orchestrator.storage.get_presigned_url(result.original_file_path)
    return OCRResultResponse(result=result, download_url=download_url)


@app.post(
    "/api/v1/ocr-results/{ocr_result_id}/revalidate",
    response_model=ValidationResult,
    tags=["OCR results"],
)
def revalidate_ocr_result(
    ocr_result_id: str = Path(...),
    structured_data: StructuredInvoiceData | None = Body(None),  # noqa: B008
    company_id: str = Header("", alias="X-Company-Id"),
) -> ValidationResult:
    """Validate a stored OCR result again, optionally with corrected data."""
    return orchestrator.revalidate(ocr_result_id, company_id, structured_data)


@app.post(
    "/api/v1/ocr-results/{ocr_result_id}/import",
    response_model=PipelineImportResult,
    tags=["OCR results"],
)
def resume_import(
    response: Response,
    ocr_result_id: str = Path(...),
    auto_approve: bool = Query(False),
    company_id: str = Header("", alias="X-Company-Id"),
) -> PipelineImportResult:
    """Continue a stored OCR result from validation through import."""
    result = orchestrator.resume(ocr_result_id, company_id, auto_approve=auto_approve)
    if not result.success:
        response.status_code = ERROR_STATUS.get(
            result.code or "", status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return result


@app.post(
    "/api/v1/ocr-results/{ocr_result_id}/reject",
    response_model=OCRResultResponse,
    tags=["OCR results"],
)
def reject_ocr_result(
    ocr_result_id: str = Path(...),
    body: RejectRequest | None = Body(None),  # noqa: B008
    company_id: str = Header("", alias="X-Company-Id"),
) -> OCRResultResponse:
    """Reject a stored OCR result; rejected results cannot be imported."""
    result = orchestrator.reject(ocr_result_id, company_id, body.reason if body else None)
    return OCRResultResponse(result=result)
