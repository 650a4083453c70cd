"""
Workflow state machine.

A shipment's state is recomputed from its full link set on every call and
only written when the rank increases. Cancellation has the top rank, so it
always wins and can never be replaced.
"""
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from freightflow.core.logging import get_logger, audit_logger
from freightflow.db.models import Shipment, ShipmentDocument, WorkflowTransition
from freightflow.services.taxonomy import Direction, DocumentType
from freightflow.services.workflow_states import WorkflowState, state_for

logger = get_logger(__name__)


def linked_pairs(db: Session, shipment_id: int) -> List[Tuple[DocumentType, Direction]]:
    rows = (
        db.query(ShipmentDocument.document_type, ShipmentDocument.direction)
        .filter(ShipmentDocument.shipment_id == shipment_id)
        .all()
    )
    return [(DocumentType(t), Direction(d)) for t, d in rows]


def compute_state(
    pairs: List[Tuple[DocumentType, Direction]],
) -> Tuple[Optional[WorkflowState], Optional[DocumentType]]:
    """Highest-ranked state implied by the pairs, with the document type that implies it."""
    best, trigger = None, None
    for document_type, direction in pairs:
        state = state_for(document_type, direction)
        if state is not None and (best is None or state.rank > best.rank):
            best, trigger = state, document_type
    return best, trigger


def advance(db: Session, shipment_id: int) -> Optional[WorkflowState]:
    """
    Recompute and persist a shipment's workflow state.

    Returns the new state when it advanced, None when unchanged.
    """
    shipment = db.query(Shipment).filter(Shipment.id == shipment_id).first()
    if shipment is None:
        logger.warning(f"advance called for missing shipment {shipment_id}")
        return None

    current = WorkflowState.parse(shipment.workflow_state)
    if current is not None and current.is_terminal:
        return None

    target, trigger = compute_state(linked_pairs(db, shipment_id))
    if target is None:
        return None
    if current is not None and target.rank <= current.rank:
        return None

    shipment.workflow_state = target.value
    shipment.workflow_state_updated_at = datetime.now(timezone.utc)
    db.add(WorkflowTransition(
        shipment_id=shipment_id,
        from_state=current.value if current else None,
        to_state=target.value,
        trigger_document_type=trigger.value if trigger else None,
    ))
    db.flush()

    audit_logger.log(
        action="workflow_advanced",
        entity_type="shipment",
        entity_id=shipment_id,
        shipment_id=shipment_id,
        details={
            "from": current.value if current else None,
            "to": target.value,
            "trigger": trigger.value if trigger else None,
        },
    )
    return target
