"""
Shipments API - derived shipment state, linked documents and due reminders.
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from freightflow.db.session import get_db
from freightflow.db.models import Shipment
from freightflow.core.logging import get_logger
from freightflow.services.reporting import field_coverage
from freightflow.services.state_machine import advance
from freightflow.services.workflow_states import WorkflowState

logger = get_logger(__name__)

router = APIRouter(prefix="/api/shipments", tags=["Shipments"])


# ============= SCHEMAS =============

class ShipmentDocumentOut(BaseModel):
    message_id: int
    document_type: str
    direction: str
    link_method: str
    confidence: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransitionOut(BaseModel):
    from_state: Optional[str] = None
    to_state: str
    trigger_document_type: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TimeBasedActionOut(BaseModel):
    trigger_event: str
    offset_hours: int
    action_verb: str
    description: str
    urgency: str
    trigger_at: str
    notify: List[str]


class ShipmentSummary(BaseModel):
    id: int
    booking_number: str
    carrier: Optional[str] = None
    workflow_state: Optional[str] = None
    etd: Optional[date] = None
    eta: Optional[date] = None

    class Config:
        from_attributes = True


class ShipmentDetail(ShipmentSummary):
    bl_number: Optional[str] = None
    mbl_number: Optional[str] = None
    hbl_number: Optional[str] = None
    container_number_primary: Optional[str] = None
    container_numbers: Optional[List[str]] = []
    vessel_name: Optional[str] = None
    voyage_number: Optional[str] = None
    port_of_loading: Optional[str] = None
    port_of_discharge: Optional[str] = None
    si_cutoff: Optional[date] = None
    vgm_cutoff: Optional[date] = None
    cargo_cutoff: Optional[date] = None
    gate_cutoff: Optional[date] = None
    doc_cutoff: Optional[date] = None
    workflow_phase: Optional[str] = None
    workflow_rank: Optional[int] = None
    workflow_state_updated_at: Optional[datetime] = None
    documents: List[ShipmentDocumentOut] = []
    transitions: List[TransitionOut] = []
    coverage: Dict[str, bool] = {}
    due_actions: List[TimeBasedActionOut] = []


class RecomputeResponse(BaseModel):
    shipment_id: int
    advanced: bool
    workflow_state: Optional[str] = None


# ============= ENDPOINTS =============

@router.get("", response_model=List[ShipmentSummary])
def list_shipments(
    workflow_state: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """List shipments, newest first."""
    query = db.query(Shipment)
    if workflow_state:
        if WorkflowState.parse(workflow_state) is None:
            raise HTTPException(status_code=422, detail=f"Unknown workflow state: {workflow_state}")
        query = query.filter(Shipment.workflow_state == workflow_state)
    return query.order_by(Shipment.id.desc()).limit(limit).all()


@router.get("/{shipment_id}", response_model=ShipmentDetail)
def get_shipment(shipment_id: int, request: Request, db: Session = Depends(get_db)):
    """Get a shipment with its links, transition history, coverage and due reminders."""
    shipment = db.query(Shipment).filter(Shipment.id == shipment_id).first()
    if not shipment:
        raise HTTPException(status_code=404, detail="Shipment not found")

    detail = ShipmentDetail.model_validate(shipment)
    state = WorkflowState.parse(shipment.workflow_state)
    if state is not None:
        detail.workflow_phase = state.phase.value
        detail.workflow_rank = state.rank
    detail.container_numbers = list(shipment.container_numbers or [])
    detail.coverage = field_coverage(shipment)

    engine = request.app.state.action_engine
    detail.due_actions = [
        TimeBasedActionOut(**action.to_dict())
        for action in engine.due_time_based_actions(shipment)
    ]
    return detail


@router.post("/{shipment_id}/recompute", response_model=RecomputeResponse)
def recompute_shipment_state(shipment_id: int, db: Session = Depends(get_db)):
    """Re-derive the workflow state from the shipment's linked documents."""
    shipment = db.query(Shipment).filter(Shipment.id == shipment_id).first()
    if not shipment:
        raise HTTPException(status_code=404, detail="Shipment not found")

    new_state = advance(db, shipment_id)
    db.commit()
    db.refresh(shipment)
    return RecomputeResponse(
        shipment_id=shipment_id,
        advanced=new_state is not None,
        workflow_state=shipment.workflow_state,
    )
