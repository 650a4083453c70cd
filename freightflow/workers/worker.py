"""
Background worker using RQ (Redis Queue).
"""
from redis import Redis
from rq import Worker, Queue

from freightflow.core.config import settings
from freightflow.core.logging import setup_logging, get_logger
from freightflow.workers.jobs import QUEUE_NAMES

setup_logging()
logger = get_logger(__name__)


def run_worker():
    """Start the RQ worker."""
    redis_conn = Redis.from_url(settings.REDIS_URL)

    worker = Worker(
        queues=[Queue(name, connection=redis_conn) for name in QUEUE_NAMES],
        connection=redis_conn,
        name="freightflow-worker",
    )
    logger.info("Starting FreightFlow worker...")
    worker.work()


if __name__ == "__main__":
    run_worker()
