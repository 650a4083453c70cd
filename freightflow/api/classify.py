"""
Classification API - ad-hoc classification and entity extraction.
Nothing here is persisted; use the pipeline endpoints for stored messages.
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from freightflow.core.errors import TransientModelError
from freightflow.core.logging import get_logger
from freightflow.services.direction import detect_party
from freightflow.services.document_classifier import classify
from freightflow.services.entity_extractor import extract_message
from freightflow.services.taxonomy import DocumentType

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Classification"])


# ============= SCHEMAS =============

class AttachmentIn(BaseModel):
    filename: str = ""
    text: Optional[str] = ""


class MessageIn(BaseModel):
    """An email as received, with attachment text already extracted."""
    subject: str = ""
    sender: str
    true_sender: Optional[str] = None
    body_text: Optional[str] = ""
    attachments: List[AttachmentIn] = []
    is_reply: bool = False


class ClassifyRequest(MessageIn):
    thread_types: List[str] = Field(default_factory=list)
    use_fallback: Optional[bool] = None


class ClassifyResponse(BaseModel):
    document_type: str
    direction: str
    from_party: str
    confidence: int
    source: str
    matched_pattern: Optional[str] = None
    is_low_confidence: bool
    needs_manual_review: bool
    reasoning: str


class EntityOut(BaseModel):
    entity_type: str
    value: str
    confidence: int
    source: str

    class Config:
        from_attributes = True


class ExtractResponse(BaseModel):
    entities: List[EntityOut]
    count: int


# ============= ENDPOINTS =============

@router.post("/classify", response_model=ClassifyResponse)
def classify_message(request: ClassifyRequest):
    """Classify one message without storing it."""
    thread_types = []
    for value in request.thread_types:
        parsed = DocumentType.parse(value)
        if parsed is None:
            raise HTTPException(status_code=422, detail=f"Unknown document type: {value}")
        thread_types.append(parsed)

    try:
        result = classify(
            subject=request.subject,
            sender_email=request.sender,
            true_sender_email=request.true_sender,
            body_text=request.body_text,
            attachment_filenames=[a.filename for a in request.attachments],
            attachment_text="\n\n".join(a.text or "" for a in request.attachments),
            is_reply=request.is_reply,
            thread_types=thread_types,
            use_fallback=request.use_fallback,
        )
    except TransientModelError as e:
        logger.warning(f"Fallback model unavailable for ad-hoc classification: {e}")
        raise HTTPException(status_code=503, detail="Fallback classification model unavailable")

    payload = result.to_dict()
    payload["from_party"] = detect_party(request.sender, request.true_sender).value
    return ClassifyResponse(**payload)


@router.post("/extract", response_model=ExtractResponse)
def extract_entities(request: MessageIn):
    """Extract entities from one message without storing them."""
    entities = extract_message(
        request.subject,
        request.body_text,
        [a.text or "" for a in request.attachments],
        request.sender,
        request.true_sender,
        is_reply=request.is_reply,
    )
    items = [
        EntityOut(
            entity_type=e.entity_type.value,
            value=e.value,
            confidence=e.confidence,
            source=e.source.value,
        )
        for e in entities
    ]
    return ExtractResponse(entities=items, count=len(items))
