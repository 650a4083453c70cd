"""
Reports API - read-only metrics over derived state.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from freightflow.db.session import get_db
from freightflow.services import reporting

router = APIRouter(prefix="/api/reports", tags=["Reports"])


@router.get("/coverage")
def coverage_report(db: Session = Depends(get_db)):
    """Field coverage across shipments plus the orphan rate."""
    report = reporting.shipment_coverage(db)
    report["orphans"] = reporting.orphan_rate(db)
    return report


@router.get("/workflow")
def workflow_report(db: Session = Depends(get_db)):
    return reporting.workflow_distribution(db)


@router.get("/classifications")
def classification_report(db: Session = Depends(get_db)):
    return reporting.classification_summary(db)
