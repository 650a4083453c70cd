"""
Messages API - processing status, classification and entities of stored messages.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from freightflow.db.session import get_db
from freightflow.db.models import Message, ProcessingStatus
from freightflow.core.logging import get_logger
from freightflow.services.pipeline import apply_manual_classification
from freightflow.services.taxonomy import DocumentType

logger = get_logger(__name__)

router = APIRouter(prefix="/api/messages", tags=["Messages"])


# ============= SCHEMAS =============

class ClassificationOut(BaseModel):
    document_type: str
    direction: str
    from_party: Optional[str] = None
    confidence: int
    source: str
    matched_pattern: Optional[str] = None
    reasoning: Optional[str] = None
    is_low_confidence: bool = False
    is_manual_review: bool = False

    class Config:
        from_attributes = True


class EntityOut(BaseModel):
    entity_type: str
    value: str
    confidence: int
    source: str

    class Config:
        from_attributes = True


class LinkOut(BaseModel):
    shipment_id: int
    link_method: str
    confidence: int

    class Config:
        from_attributes = True


class MessageDetail(BaseModel):
    id: int
    external_id: str
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    sender: str
    received_at: datetime
    status: str
    error_message: Optional[str] = None
    attempts: int
    processed_at: Optional[datetime] = None
    classification: Optional[ClassificationOut] = None
    entities: List[EntityOut] = []
    link: Optional[LinkOut] = None

    class Config:
        from_attributes = True


class MessageSummary(BaseModel):
    id: int
    subject: Optional[str] = None
    sender: str
    received_at: datetime
    status: str
    attempts: int

    class Config:
        from_attributes = True


class ManualReviewRequest(BaseModel):
    document_type: str
    reasoning: Optional[str] = None


# ============= ENDPOINTS =============

@router.get("", response_model=List[MessageSummary])
def list_messages(
    status: Optional[str] = Query(None, description="pending, processing, processed or failed"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """List messages, newest first."""
    query = db.query(Message)
    if status:
        try:
            query = query.filter(Message.status == ProcessingStatus(status).value)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    return query.order_by(Message.received_at.desc(), Message.id.desc()).limit(limit).all()


@router.get("/{message_id}", response_model=MessageDetail)
def get_message(message_id: int, db: Session = Depends(get_db)):
    """Get a message with its classification, entities and shipment link."""
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.put("/{message_id}/classification", response_model=ClassificationOut)
def set_manual_classification(
    message_id: int,
    request: ManualReviewRequest,
    db: Session = Depends(get_db),
):
    """
    Record a human classification.

    The row is flagged for manual review, so later pipeline runs keep it.
    A linked shipment picks up the new type immediately.
    """
    message = db.query(Message).filter(Message.id == message_id).first()
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    document_type = DocumentType.parse(request.document_type)
    if document_type is None:
        raise HTTPException(status_code=422, detail=f"Unknown document type: {request.document_type}")

    row, _ = apply_manual_classification(db, message, document_type, request.reasoning)
    return row
