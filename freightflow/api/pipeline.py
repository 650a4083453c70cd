"""
Pipeline API - trigger batch processing.

By default work is enqueued on RQ; `inline=true` runs it in the request,
which is meant for small backlogs and local runs.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from freightflow.db.session import get_db
from freightflow.core.logging import get_logger
from freightflow.services.pipeline import process_page, recompute_all_states, relink_orphans

logger = get_logger(__name__)

router = APIRouter(prefix="/api/pipeline", tags=["Pipeline"])


# ============= SCHEMAS =============

class RunRequest(BaseModel):
    page_size: Optional[int] = Field(None, ge=1, le=1000)
    inline: bool = False


class MaintenanceRequest(BaseModel):
    inline: bool = False
    limit: Optional[int] = Field(None, ge=1)


class EnqueuedResponse(BaseModel):
    status: str = "queued"
    job_id: str


def _enqueue(enqueue_fn, *args):
    try:
        job = enqueue_fn(*args)
    except RedisError as e:
        logger.error(f"Failed to enqueue job: {e}")
        raise HTTPException(status_code=503, detail="Job queue unavailable")
    return EnqueuedResponse(job_id=job.id)


# ============= ENDPOINTS =============

@router.post("/run")
def run_pipeline(request: RunRequest, db: Session = Depends(get_db)):
    """Process one page of pending messages, inline or on the worker."""
    if request.inline:
        return process_page(db, page_size=request.page_size)

    from freightflow.workers.jobs import enqueue_process_pending_messages
    return _enqueue(enqueue_process_pending_messages, request.page_size)


@router.post("/relink")
def run_relink(request: MaintenanceRequest, db: Session = Depends(get_db)):
    """Retry linking for processed messages that have no shipment."""
    if request.inline:
        return relink_orphans(db, limit=request.limit)

    from freightflow.workers.jobs import enqueue_relink_orphans
    return _enqueue(enqueue_relink_orphans, request.limit)


@router.post("/recompute")
def run_recompute(request: MaintenanceRequest, db: Session = Depends(get_db)):
    """Re-derive workflow state for every shipment."""
    if request.inline:
        return recompute_all_states(db)

    from freightflow.workers.jobs import enqueue_recompute_workflow_states
    return _enqueue(enqueue_recompute_workflow_states)
