"""FastAPI application for receipt insights.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice field extraction from text or uploaded PDFs
- Consolidated receipts summary served from a staleness-aware cache
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import (
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from pydantic import BaseModel

from services.api import metrics
from services.cache.service import CacheStats
from services.extraction.schema import InvoiceRecord
from services.receipts.service import (
    AggregateView,
    ReceiptService,
    RecomputeInProgressError,
    create_receipt_service,
)
from services.shared.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

receipt_service: ReceiptService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the receipts cache on startup and release resources on shutdown."""
    global receipt_service
    receipt_service = create_receipt_service(settings)
    logger.info(
        f"{settings.service_name} {settings.service_version} serving "
        f"documents from {settings.documents_dir}"
    )
    try:
        yield
    finally:
        receipt_service.close()
        receipt_service = None


app = FastAPI(
    title="Receipt Insights",
    description="Invoice field extraction and consolidated spending summary API",
    version=settings.service_version,
    lifespan=lifespan,
)


def get_receipt_service() -> ReceiptService:
    """Dependency returning the running receipt service.

    Raises:
        HTTPException: 503 if the service has not started
    """
    if receipt_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Receipt service not initialized",
        )
    return receipt_service


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class ExtractRequest(BaseModel):
    """Invoice text to extract fields from."""

    text: str


class UploadResponse(BaseModel):
    """Uploaded invoice PDF response."""

    filename: str
    text: str
    page_count: int
    invoice: InvoiceRecord


class ClearCacheResponse(BaseModel):
    """Cache clear response."""

    cleared: bool


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready once the receipt service has started and its cache is open.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=receipt_service is not None and receipt_service.cache.is_open)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/extract", response_model=InvoiceRecord, tags=["Invoices"])
def extract_invoice(
    request: ExtractRequest,
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> InvoiceRecord:
    """Extract structured invoice fields from raw text.

    Fields that cannot be found are null; garbled or empty text is not an
    error.

    Args:
        request: Invoice text
        service: Receipt service

    Returns:
        Extracted invoice record
    """
    start_time = time.time()
    record = service.extract_invoice(request.text)
    metrics.invoice_extraction_duration_seconds.observe(time.time() - start_time)
    return record


@app.post("/api/v1/invoices/upload", response_model=UploadResponse, tags=["Invoices"])
async def upload_invoice(
    file: UploadFile = File(..., description="Invoice or receipt PDF"),  # noqa: B008
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> UploadResponse:
    """Upload an invoice PDF and extract its fields.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/upload" \\
      -F "file=@invoice.pdf"
    ```

    ## Error Handling

    - Returns 400 if the file is missing, empty, or not a PDF
    - Returns 500 if the PDF cannot be read
    - A PDF without a text layer returns 200 with empty text and fields

    Args:
        file: PDF file to process
        service: Receipt service

    Returns:
        PDF text, page count and extracted invoice record

    Raises:
        HTTPException: If the file is invalid or unreadable
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    is_pdf = file.content_type == "application/pdf" or Path(file.filename).suffix.lower() == ".pdf"
    if not is_pdf:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only PDF files are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    metrics.invoice_upload_size_bytes.observe(len(content))

    result = service.pdf_service.extract_text_from_bytes(content)
    if not result.success:
        metrics.invoice_uploads_total.labels(status="failed").inc()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"PDF processing failed: {result.error}",
        )

    metrics.invoice_uploads_total.labels(status="success").inc()

    start_time = time.time()
    record = service.extract_invoice(result.text)
    metrics.invoice_extraction_duration_seconds.observe(time.time() - start_time)

    return UploadResponse(
        filename=file.filename,
        text=result.text,
        page_count=result.page_count,
        invoice=record,
    )


@app.get("/api/v1/receipts", response_model=AggregateView, tags=["Receipts"])
def get_receipts(
    recompute: bool = Query(
        False, description="Recompute when the cached summary is stale"
    ),
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> AggregateView:
    """Consolidated spending summary for the documents folder.

    The cached summary is returned while it covers exactly the documents in
    the folder. When documents were added or removed the cached summary is
    returned flagged ``stale`` with the differences listed, unless
    ``recompute=true`` is given.

    Raises:
        HTTPException: 409 if a recompute is needed while one is running
    """
    try:
        return service.get_aggregate(recompute=recompute)
    except RecomputeInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@app.post("/api/v1/receipts/recompute", response_model=AggregateView, tags=["Receipts"])
def recompute_receipts(
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> AggregateView:
    """Reprocess every document and replace the cached summary.

    Raises:
        HTTPException: 409 if a recompute is already running
    """
    try:
        return service.recompute()
    except RecomputeInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@app.get("/api/v1/receipts/cache", response_model=CacheStats, tags=["Receipts"])
def get_cache_stats(
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> CacheStats:
    """Describe the cached summary."""
    return service.cache.stats()


@app.delete("/api/v1/receipts/cache", response_model=ClearCacheResponse, tags=["Receipts"])
def clear_cache(
    service: ReceiptService = Depends(get_receipt_service),  # noqa: B008
) -> ClearCacheResponse:
    """Drop the cached summary; the next read recomputes it."""
    service.cache.clear()
    return ClearCacheResponse(cleared=True)
