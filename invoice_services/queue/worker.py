"""arq worker runner.

Run with: python -m invoice_services.queue.worker
Or: arq invoice_services.queue.tasks.WorkerSettings
"""

import logging

from arq import run_worker

from invoice_services.queue.tasks import WorkerSettings
from invoice_services.shared.config import get_settings
from invoice_services.shared.logs import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    configure_logging(settings)

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout

    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
