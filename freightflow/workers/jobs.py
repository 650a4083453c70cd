"""
Background job definitions.
"""
from redis import Redis
from rq import Queue
from rq_scheduler import Scheduler
from datetime import datetime, timezone
from typing import Optional

from freightflow.core.config import settings
from freightflow.core.logging import get_logger

logger = get_logger(__name__)

QUEUE_NAMES = ("high", "default", "low")


def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL)


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    return Queue(name, connection=get_redis())


def get_scheduler() -> Scheduler:
    """Get RQ scheduler."""
    return Scheduler(connection=get_redis())


# ============= JOB FUNCTIONS =============

def process_pending_messages_job(page_size: Optional[int] = None):
    """Background job to run one page of the message pipeline."""
    from freightflow.db.session import get_db_context
    from freightflow.services.pipeline import process_page

    logger.info(f"Processing pending messages (page size {page_size or settings.BATCH_PAGE_SIZE})")
    with get_db_context() as db:
        return process_page(db, page_size=page_size)


def relink_orphans_job(limit: Optional[int] = None):
    """Background job to retry linking of unlinked processed messages."""
    from freightflow.db.session import get_db_context
    from freightflow.services.pipeline import relink_orphans

    logger.info("Relinking orphaned messages")
    with get_db_context() as db:
        return relink_orphans(db, limit=limit)


def recompute_workflow_states_job():
    """Background job to re-derive workflow state for every shipment."""
    from freightflow.db.session import get_db_context
    from freightflow.services.pipeline import recompute_all_states

    logger.info("Recomputing workflow states")
    with get_db_context() as db:
        return recompute_all_states(db)


# ============= ENQUEUE HELPERS =============

def enqueue_process_pending_messages(page_size: Optional[int] = None, queue: str = "default"):
    """Enqueue one pipeline page."""
    q = get_queue(queue)
    job = q.enqueue(process_pending_messages_job, page_size, job_timeout=1800)
    logger.info(f"Enqueued pipeline page job {job.id}")
    return job


def enqueue_relink_orphans(limit: Optional[int] = None):
    """Enqueue an orphan relink pass."""
    q = get_queue("low")
    job = q.enqueue(relink_orphans_job, limit, job_timeout=1800)
    return job


def enqueue_recompute_workflow_states():
    """Enqueue a workflow state recompute."""
    q = get_queue("low")
    job = q.enqueue(recompute_workflow_states_job, job_timeout=3600)
    return job


def setup_scheduled_jobs():
    """Setup recurring scheduled jobs."""
    scheduler = get_scheduler()

    # Clear existing scheduled jobs
    for job in scheduler.get_jobs():
        scheduler.cancel(job)

    now = datetime.now(timezone.utc)

    # Pipeline page every 5 minutes
    scheduler.schedule(
        scheduled_time=now,
        func=process_pending_messages_job,
        interval=300,
        repeat=None,
        queue_name="default",
    )

    # Orphan relink every hour
    scheduler.schedule(
        scheduled_time=now,
        func=relink_orphans_job,
        interval=3600,
        repeat=None,
        queue_name="low",
    )

    # Full state recompute daily
    scheduler.schedule(
        scheduled_time=now,
        func=recompute_workflow_states_job,
        interval=86400,
        repeat=None,
        queue_name="low",
    )

    logger.info("Scheduled jobs configured")
