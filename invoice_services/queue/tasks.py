"""Async task definitions for invoice processing.

Uses arq (async Redis queue) to run the invoice pipeline as a background job.
The job's result and the stream events it emitted are kept in Redis.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from invoice_services.dedup.registry import InFlightRegistry
from invoice_services.extraction.factory import create_extraction_service
from invoice_services.pipeline.service import InvoicePipeline, ProcessingResult
from invoice_services.shared.config import Settings, get_settings
from invoice_services.storage.factory import create_document_store
from invoice_services.streaming.events import CollectingSink, StreamEvent

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 86400  # 24h


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class JobResult(BaseModel):
    """Result of a background job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (pending, processing, completed, failed)
        result: Pipeline result (if completed)
        events: Stream events emitted by the run
        error: Error message (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    result: ProcessingResult | None = None
    events: list[StreamEvent] = Field(default_factory=list)
    error: str | None = None
    created_at: str = Field(default_factory=_now)
    completed_at: str | None = None


async def process_invoice(
    ctx: dict[str, Any],
    job_id: str,
    invoice_content: str,
    existing_block_id: str | None = None,
) -> dict[str, Any]:
    """Run the invoice pipeline for one submitted invoice text.

    Args:
        ctx: arq context (contains redis connection)
        job_id: Unique job identifier
        invoice_content: Free-form invoice text
        existing_block_id: Display id to reuse for rejection/error results

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing invoice job {job_id}")

    pipeline: InvoicePipeline = ctx.get("pipeline") or build_pipeline(
        ctx.get("settings") or get_settings()
    )
    redis = ctx["redis"]

    job = JobResult(job_id=job_id, status="processing")
    await redis.set(job_key(job_id), job.model_dump_json(), ex=JOB_TTL_SECONDS)

    sink = CollectingSink()
    try:
        job.result = await pipeline.process(invoice_content, existing_block_id, sink)
        job.status = "completed"
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        job.status = "failed"
        job.error = str(e)

    job.events = sink.events
    job.completed_at = _now()
    await redis.set(job_key(job_id), job.model_dump_json(), ex=JOB_TTL_SECONDS)
    logger.info(f"Job {job_id} completed with status: {job.status}")

    return job.model_dump(mode="json")


def build_pipeline(settings: Settings) -> InvoicePipeline:
    """Create a pipeline from configuration."""
    return InvoicePipeline(
        extractor=create_extraction_service(settings),
        store=create_document_store(settings),
        registry=InFlightRegistry(),
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize the pipeline once for all jobs."""
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["pipeline"] = build_pipeline(settings)
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and retry settings
    """

    functions = [process_invoice]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> Any:
        """Get Redis settings from configuration."""
        from arq.connections import RedisSettings

        return RedisSettings.from_dsn(get_settings().redis_url)
