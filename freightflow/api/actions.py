"""
Action API - recommendations for a classified document and rule maintenance.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from freightflow.db.session import get_db
from freightflow.db.models import Shipment
from freightflow.core.logging import get_logger
from freightflow.services.action_rules import ActionRulesEngine, seed_action_rules
from freightflow.services.taxonomy import DocumentType, PartyType
from freightflow.services.workflow_states import WorkflowState

logger = get_logger(__name__)

router = APIRouter(prefix="/api/actions", tags=["Actions"])


def get_action_engine(request: Request) -> ActionRulesEngine:
    return request.app.state.action_engine


# ============= SCHEMAS =============

class RecommendRequest(BaseModel):
    document_type: str
    from_party: str = PartyType.UNKNOWN.value
    is_reply: bool = False
    subject: Optional[str] = ""
    body: Optional[str] = ""
    email_date: Optional[datetime] = None
    shipment_id: Optional[int] = None
    workflow_state: Optional[str] = None


class RecommendResponse(BaseModel):
    has_action: bool
    action_verb: Optional[str] = None
    owner: str
    priority: int
    priority_label: str
    deadline: Optional[str] = None
    description: str
    to_party: Optional[str] = None
    urgency: str
    confidence: int
    source: str
    flipped_by: Optional[str] = None
    rule_id: Optional[int] = None


class SeedResponse(BaseModel):
    rules: int
    defaults: int


# ============= ENDPOINTS =============

@router.post("/recommend", response_model=RecommendResponse)
def recommend_action(
    request: RecommendRequest,
    db: Session = Depends(get_db),
    engine: ActionRulesEngine = Depends(get_action_engine),
):
    """Recommend an action for a document, optionally in the context of a shipment."""
    document_type = DocumentType.parse(request.document_type)
    if document_type is None:
        raise HTTPException(status_code=422, detail=f"Unknown document type: {request.document_type}")
    try:
        from_party = PartyType(request.from_party)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown party: {request.from_party}")

    state = request.workflow_state
    if state and WorkflowState.parse(state) is None:
        raise HTTPException(status_code=422, detail=f"Unknown workflow state: {state}")
    if request.shipment_id is not None:
        shipment = db.query(Shipment).filter(Shipment.id == request.shipment_id).first()
        if not shipment:
            raise HTTPException(status_code=404, detail="Shipment not found")
        state = shipment.workflow_state

    recommendation = engine.recommend(
        document_type=document_type,
        from_party=from_party,
        is_reply=request.is_reply,
        subject=request.subject,
        body=request.body,
        email_date=request.email_date,
        shipment_context={"workflow_state": state} if state else None,
    )
    return RecommendResponse(**recommendation.to_dict())


@router.post("/rules/seed", response_model=SeedResponse)
def seed_rules(
    db: Session = Depends(get_db),
    engine: ActionRulesEngine = Depends(get_action_engine),
):
    """Insert the built-in rule rows that are missing and drop the cached rule set."""
    created = seed_action_rules(db)
    db.commit()
    engine.invalidate()
    return SeedResponse(**created)


@router.post("/rules/reload")
def reload_rules(engine: ActionRulesEngine = Depends(get_action_engine)):
    """Drop the cached rule set so the next request reloads it."""
    engine.invalidate()
    logger.info("Action rule cache invalidated")
    return {"status": "reloaded"}


@router.get("/rules/states", response_model=List[str])
def list_states():
    """Workflow states a rule's applicable_states may reference."""
    return [s.value for s in WorkflowState]
