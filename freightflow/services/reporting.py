"""
Read-only metrics over derived state.
"""
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from freightflow.db.models import Classification, Message, ProcessingStatus, Shipment, ShipmentDocument
from freightflow.services.workflow_states import WorkflowState

COVERAGE_FIELDS = (
    "etd", "eta", "si_cutoff", "vgm_cutoff", "cargo_cutoff",
    "bl_number", "container_number_primary", "carrier", "vessel_name",
)


def shipment_coverage(db: Session) -> Dict[str, Any]:
    """Fraction of shipments with each key field populated."""
    total = db.query(func.count(Shipment.id)).scalar() or 0
    coverage = {}
    for name in COVERAGE_FIELDS:
        column = getattr(Shipment, name)
        filled = db.query(func.count(Shipment.id)).filter(column.isnot(None)).scalar() or 0
        coverage[name] = round(filled / total, 4) if total else 0.0
    return {"total_shipments": total, "coverage": coverage}


def field_coverage(shipment: Shipment) -> Dict[str, bool]:
    """Per-field populated flags for a single shipment."""
    return {name: getattr(shipment, name) not in (None, "") for name in COVERAGE_FIELDS}


def workflow_distribution(db: Session) -> Dict[str, Any]:
    """Shipment counts per workflow state and per phase."""
    rows = db.query(Shipment.workflow_state, func.count(Shipment.id)).group_by(Shipment.workflow_state).all()
    by_state = {}
    by_phase = {}
    for state_value, count in rows:
        state = WorkflowState.parse(state_value)
        by_state[state.value if state else "none"] = count
        phase = state.phase.value if state else "none"
        by_phase[phase] = by_phase.get(phase, 0) + count
    return {"by_state": by_state, "by_phase": by_phase}


def classification_summary(db: Session) -> Dict[str, Any]:
    by_type = dict(
        db.query(Classification.document_type, func.count(Classification.id))
        .group_by(Classification.document_type)
        .all()
    )
    by_source = dict(
        db.query(Classification.source, func.count(Classification.id))
        .group_by(Classification.source)
        .all()
    )
    low = db.query(func.count(Classification.id)).filter(Classification.is_low_confidence == True).scalar() or 0  # noqa: E712
    manual = db.query(func.count(Classification.id)).filter(Classification.is_manual_review == True).scalar() or 0  # noqa: E712
    return {
        "by_document_type": by_type,
        "by_source": by_source,
        "low_confidence": low,
        "manual_review": manual,
    }


def orphan_rate(db: Session) -> Dict[str, Any]:
    """Share of processed messages that are not linked to any shipment."""
    processed = (
        db.query(func.count(Message.id))
        .filter(Message.status == ProcessingStatus.PROCESSED.value)
        .scalar()
        or 0
    )
    linked = (
        db.query(func.count(ShipmentDocument.id))
        .join(Message, Message.id == ShipmentDocument.message_id)
        .filter(Message.status == ProcessingStatus.PROCESSED.value)
        .scalar()
        or 0
    )
    orphaned = processed - linked
    return {
        "processed": processed,
        "linked": linked,
        "orphaned": orphaned,
        "orphan_rate": round(orphaned / processed, 4) if processed else 0.0,
    }
