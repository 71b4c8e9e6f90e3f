"""Async task definitions for invoice processing.

Uses arq (async Redis queue) for background task processing. The
synchronous pipeline runs in a worker thread; every progress update is
published to Redis under ``job:{job_id}`` so a client can poll it.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from intake.pipeline.factory import create_orchestrator
from intake.pipeline.models import PipelineImportResult, PipelineStatus
from intake.pipeline.orchestrator import PipelineOrchestrator
from intake.shared.config import get_settings

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 86400


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobResult(BaseModel):
    """State of a background import job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (processing, completed, failed)
        filename: Original filename
        progress: Latest pipeline status
        result: Terminal pipeline result (when finished)
        error: Error message (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    filename: str
    progress: PipelineStatus | None = None
    result: PipelineImportResult | None = None
    error: str | None = None
    created_at: str = Field(default_factory=_now)
    completed_at: str | None = None


async def _publish(redis: Any, job: JobResult) -> None:
    await redis.set(f"job:{job.job_id}", job.model_dump_json(), ex=JOB_TTL_SECONDS)


async def process_invoice(
    ctx: dict[str, Any],
    job_id: str,
    file_content: bytes,
    filename: str,
    content_type: str,
    company_id: str,
    user_id: str | None = None,
    auto_approve: bool = False,
) -> dict[str, Any]:
    """Run the ingestion pipeline for one invoice in the background.

    Args:
        ctx: arq context (contains redis connection and the orchestrator)
        job_id: Unique job identifier
        file_content: Raw file bytes
        filename: Original filename
        content_type: MIME type
        company_id: Owning company
        user_id: Submitting user
        auto_approve: Import as approved when confidence is high enough

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing invoice job {job_id} ({filename})")

    orchestrator: PipelineOrchestrator = ctx.get("orchestrator") or create_orchestrator(get_settings())
    redis = ctx["redis"]
    loop = asyncio.get_running_loop()
    cancel_event: threading.Event = ctx.setdefault("cancel_events", {}).setdefault(
        job_id, threading.Event()
    )

    job = JobResult(job_id=job_id, status="processing", filename=filename)
    await _publish(redis, job)

    def on_progress(status: PipelineStatus) -> None:
        job.progress = status
        asyncio.run_coroutine_threadsafe(_publish(redis, job.model_copy()), loop)

    try:
        result = await asyncio.to_thread(
            orchestrator.process,
            file_content,
            filename,
            content_type,
            company_id,
            user_id,
            auto_approve,
            on_progress,
            cancel_event,
        )
        job.result = result
        job.status = "completed" if result.success else "failed"
        job.error = result.error
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        job.status = "failed"
        job.error = str(e)
    finally:
        ctx["cancel_events"].pop(job_id, None)

    job.completed_at = _now()
    await _publish(redis, job)
    logger.info(f"Job {job_id} completed with status: {job.status}")
    return job.model_dump(mode="json")


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - build the pipeline once for all jobs."""
    logger.info("Starting import worker: building orchestrator")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["orchestrator"] = create_orchestrator(settings)
    ctx["cancel_events"] = {}
    logger.info("Import worker ready")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cancel running jobs and release the engine."""
    logger.info("Worker shutting down...")
    for event in ctx.get("cancel_events", {}).values():
        event.set()
    orchestrator: PipelineOrchestrator | None = ctx.get("orchestrator")
    if orchestrator is not None:
        orchestrator.text_extractor.shutdown()


class WorkerSettings:
    """arq settings for the import worker; ``worker.configure`` fills in the
    Redis location and limits from ``Settings``."""

    functions = [process_invoice]
    on_startup = startup
    on_shutdown = shutdown

    redis_settings = None
    max_jobs = 4
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> Any:
        """Parse ``Settings.redis_url`` into arq connection settings."""
        from arq.connections import RedisSettings

        return RedisSettings.from_dsn(get_settings().redis_url)
