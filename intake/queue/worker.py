"""arq worker for background invoice imports.

Run with: python -m intake.queue.worker
Or: arq intake.queue.tasks.WorkerSettings
"""

import logging

from arq import run_worker

from intake.queue.tasks import WorkerSettings
from intake.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure(settings: Settings) -> type[WorkerSettings]:
    """Apply queue settings (Redis, concurrency, job timeout) to ``WorkerSettings``."""
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout
    return WorkerSettings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    worker_settings = configure(settings)
    logger.info(
        f"Starting import worker on {settings.redis_url}: "
        f"{settings.queue_max_jobs} concurrent jobs, {settings.queue_job_timeout}s timeout, "
        f"engine {settings.ocr_provider}"
    )
    run_worker(worker_settings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
