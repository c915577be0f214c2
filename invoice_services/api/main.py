"""FastAPI application for invoice processing.

Endpoints:
- Health, readiness and Prometheus metrics
- Invoice processing, returning or streaming the display events
- Aggregate view, CSV export, lookup by details and display of stored invoices
- Structured regeneration, direct edit and delete of stored invoices
- Background processing through the arq job queue

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator

from arq import create_pool
from arq.connections import ArqRedis
from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from invoice_services.api import metrics
from invoice_services.dedup.registry import InFlightRegistry
from invoice_services.dedup.service import ExistingInvoice
from invoice_services.documents.actions import ActionResult, InvoiceActions
from invoice_services.documents.codec import aggregate
from invoice_services.documents.export import invoices_to_csv
from invoice_services.documents.schema import Invoice
from invoice_services.extraction.factory import create_extraction_service
from invoice_services.pipeline.service import InvoicePipeline, ProcessingResult
from invoice_services.queue.tasks import JOB_TTL_SECONDS, JobResult, WorkerSettings, job_key
from invoice_services.shared.config import get_settings
from invoice_services.shared.logs import configure_logging
from invoice_services.storage.base import INVOICE_KIND
from invoice_services.storage.factory import create_document_store
from invoice_services.streaming.events import (
    CollectingSink,
    QueueSink,
    StreamEvent,
    StreamEventType,
    format_sse,
)

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Intelligence Service",
    description="Invoice extraction, duplicate detection and collection streaming API",
    version=settings.service_version,
)

extraction_service = create_extraction_service(settings)
document_store = create_document_store(settings)
pipeline = InvoicePipeline(extraction_service, document_store, InFlightRegistry())
invoice_actions = InvoiceActions(document_store, settings)

_arq_pool: ArqRedis | None = None

PROCESSING_FAILED = "Invoice processing failed. Please try again."


async def get_arq_pool() -> ArqRedis:
    """Get or create the shared arq Redis pool."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(WorkerSettings.get_redis_settings())
    return _arq_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics."""
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


class ProcessRequest(BaseModel):
    """Invoice processing request."""

    invoice_content: str = Field(..., min_length=1, description="Invoice document text")
    existing_block_id: str | None = Field(
        None, description="Display id to reuse for rejection or error results"
    )


class RegenerateRequest(BaseModel):
    """Structured update request."""

    description: str = Field(..., min_length=1, description="Requested change")


class UpdateRequest(BaseModel):
    """Direct content replacement request."""

    content: str = Field(..., description="New stored content")


class ProcessResponse(BaseModel):
    """Pipeline result with the events emitted during the run."""

    result: ProcessingResult
    events: list[StreamEvent]


class InvoiceListResponse(BaseModel):
    """Aggregate view of all stored invoices."""

    invoices: list[Invoice]
    count: int


class JobResponse(BaseModel):
    """Queued job reference."""

    job_id: str
    status: str


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint; ready when the document store is configured."""
    return ReadinessResponse(ready=document_store.is_available())


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/process", response_model=ProcessResponse, tags=["Invoices"])
async def process_invoice(request: ProcessRequest) -> ProcessResponse:
    """Extract, deduplicate and store an invoice.

    Rejections, duplicates and parse failures are reported in the result with
    status 200. Extraction or storage failures return 500 and change nothing.

    Raises:
        HTTPException: If the pipeline raised
    """
    metrics.invoice_submissions_total.labels(mode="sync").inc()
    sink = CollectingSink()
    try:
        result = await pipeline.process(request.invoice_content, request.existing_block_id, sink)
    except Exception as e:
        logger.exception(f"Invoice processing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=PROCESSING_FAILED
        ) from e
    return ProcessResponse(result=result, events=sink.events)


@app.post("/api/v1/invoices/process/stream", tags=["Invoices"])
async def process_invoice_stream(request: ProcessRequest) -> StreamingResponse:
    """Process an invoice and stream display events as server-sent events.

    The stream ends after ``finish``. A run that fails ends with an ``error``
    event carrying the generic failure message; a run that ends in a state
    which publishes nothing simply closes the stream.
    """
    metrics.invoice_submissions_total.labels(mode="stream").inc()
    sink = QueueSink()

    async def run() -> None:
        try:
            await pipeline.process(request.invoice_content, request.existing_block_id, sink)
        except Exception as e:
            logger.exception(f"Streaming invoice run failed: {e}")
            await sink.write(StreamEvent(type=StreamEventType.ERROR, content=PROCESSING_FAILED))
        finally:
            await sink.close()

    task = asyncio.create_task(run())

    async def body() -> AsyncIterator[str]:
        async for event in sink:
            yield format_sse(event)
        await task

    return StreamingResponse(body(), media_type="text/event-stream")


@app.get("/api/v1/invoices", response_model=InvoiceListResponse, tags=["Invoices"])
async def list_invoices() -> InvoiceListResponse:
    """Return every valid invoice across stored invoice documents."""
    invoices = aggregate(await document_store.get_all_documents(INVOICE_KIND))
    return InvoiceListResponse(invoices=invoices, count=len(invoices))


@app.get("/api/v1/invoices/export", tags=["Invoices"])
async def export_invoices() -> Response:
    """Download the aggregate view as CSV."""
    invoices = aggregate(await document_store.get_all_documents(INVOICE_KIND))
    return Response(
        content=invoices_to_csv(invoices),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="invoices.csv"'},
    )


@app.get("/api/v1/invoices/lookup", response_model=ExistingInvoice, tags=["Invoices"])
async def lookup_invoice(
    vendor_name: str = Query(..., description="Vendor name (case-insensitive)"),
    invoice_number: str = Query(..., description="Invoice number (exact)"),
    amount: str = Query(..., description="Invoice total"),
) -> ExistingInvoice:
    """Find the stored invoice with these details."""
    return await pipeline.detector.get_existing_by_details(vendor_name, invoice_number, amount)


@app.get("/api/v1/invoices/display", response_model=ProcessResponse, tags=["Invoices"])
async def display_invoices(
    invoice_id: str | None = Query(None, description="Document id; omit to show all"),
) -> ProcessResponse:
    """Return the display events for one stored invoice document or the collection."""
    sink = CollectingSink()
    result = await pipeline.display_existing(invoice_id, sink)
    return ProcessResponse(result=result, events=sink.events)


@app.post(
    "/api/v1/invoices/{document_id}/regenerate",
    response_model=ProcessResponse,
    tags=["Invoices"],
)
async def regenerate_invoice(document_id: str, request: RegenerateRequest) -> ProcessResponse:
    """Apply a natural-language change to a stored invoice.

    Raises:
        HTTPException: 404 if the document does not exist, 500 if the update call failed
    """
    if await document_store.get_document(document_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")

    sink = CollectingSink()
    try:
        result = await pipeline.update_document(document_id, request.description, sink)
    except Exception as e:
        logger.exception(f"Invoice update failed for {document_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=PROCESSING_FAILED
        ) from e
    return ProcessResponse(result=result, events=sink.events)


@app.put("/api/v1/invoices/{document_id}", response_model=ActionResult, tags=["Invoices"])
async def update_invoice(document_id: str, request: UpdateRequest) -> ActionResult:
    """Replace a stored invoice document's content."""
    return await invoice_actions.update_invoice(document_id, request.content)


@app.delete("/api/v1/invoices/{document_id}", response_model=ActionResult, tags=["Invoices"])
async def delete_invoice(document_id: str) -> ActionResult:
    """Delete a stored invoice document and verify it is gone."""
    return await invoice_actions.delete_invoice(document_id)


@app.post("/api/v1/invoices/jobs", response_model=JobResponse, tags=["Jobs"])
async def submit_invoice_job(request: ProcessRequest) -> JobResponse:
    """Queue an invoice for background processing.

    Raises:
        HTTPException: 503 if the job queue is not enabled
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not enabled. Set APP_QUEUE_ENABLED=true.",
        )

    pool = await get_arq_pool()
    job_id = str(uuid.uuid4())

    pending = JobResult(job_id=job_id, status="pending")
    await pool.set(job_key(job_id), pending.model_dump_json(), ex=JOB_TTL_SECONDS)
    await pool.enqueue_job(
        "process_invoice",
        job_id=job_id,
        invoice_content=request.invoice_content,
        existing_block_id=request.existing_block_id,
        _job_id=job_id,
    )
    metrics.invoice_submissions_total.labels(mode="queued").inc()
    logger.info(f"Queued invoice job {job_id}")

    return JobResponse(job_id=job_id, status=pending.status)


@app.get("/api/v1/invoices/jobs/{job_id}", response_model=JobResult, tags=["Jobs"])
async def get_invoice_job(job_id: str) -> JobResult:
    """Get the status and result of a queued invoice job.

    Raises:
        HTTPException: 503 if the queue is disabled, 404 if the job is unknown
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not enabled. Set APP_QUEUE_ENABLED=true.",
        )

    pool = await get_arq_pool()
    data = await pool.get(job_key(job_id))
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobResult.model_validate_json(data)
