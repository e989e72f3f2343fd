"""
Worker entry point.
Run with: python -m app.worker.runner
"""

import structlog
from redis import Redis
from rq import Queue, Worker

from app.config import settings
from app.observability.logging import setup_logging
from app.worker.jobs import schedule_purge

logger = structlog.get_logger(__name__)


def main():
    """Start the RQ worker with its scheduler and queue the first purge."""
    setup_logging()

    conn = Redis.from_url(settings.REDIS_URL)
    queue = Queue(settings.QUEUE_NAME, connection=conn)
    schedule_purge(queue, delay_minutes=0)

    worker = Worker(
        queues=[queue],
        connection=conn,
        name=f"maintenance-worker-{settings.APP_VERSION}",
    )

    logger.info("worker_starting", queue=settings.QUEUE_NAME, purge_interval_minutes=settings.PURGE_INTERVAL_MINUTES)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
