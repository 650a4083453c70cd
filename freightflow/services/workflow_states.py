"""
Workflow state catalogue and the (document type, direction) -> state table.

States are totally ordered by rank. BOOKING_CANCELLED is terminal: it has
the highest rank and, once recorded, is never replaced.
"""
import enum
from typing import Dict, Iterable, Optional, Tuple

from freightflow.services.taxonomy import DocumentType, Direction


class WorkflowPhase(str, enum.Enum):
    PRE_SHIPMENT = "pre_shipment"
    IN_TRANSIT = "in_transit"
    ARRIVAL = "arrival"
    DELIVERY = "delivery"
    TERMINAL = "terminal"


class WorkflowState(str, enum.Enum):
    BOOKING_CONFIRMATION_RECEIVED = "booking_confirmation_received"
    BOOKING_CONFIRMATION_SHARED = "booking_confirmation_shared"
    COMMERCIAL_INVOICE_RECEIVED = "commercial_invoice_received"
    PACKING_LIST_RECEIVED = "packing_list_received"
    SI_DRAFT_RECEIVED = "si_draft_received"
    SI_DRAFT_SENT = "si_draft_sent"
    CHECKLIST_RECEIVED = "checklist_received"
    CHECKLIST_SHARED = "checklist_shared"
    SHIPPING_BILL_RECEIVED = "shipping_bill_received"
    SI_SUBMITTED = "si_submitted"
    SI_CONFIRMED = "si_confirmed"
    VGM_SUBMITTED = "vgm_submitted"
    VGM_CONFIRMED = "vgm_confirmed"
    CONTAINER_GATED_IN = "container_gated_in"
    SOB_RECEIVED = "sob_received"
    VESSEL_DEPARTED = "vessel_departed"
    ISF_FILED = "isf_filed"
    ISF_CONFIRMED = "isf_confirmed"
    MBL_DRAFT_RECEIVED = "mbl_draft_received"
    MBL_RECEIVED = "mbl_received"
    BL_RECEIVED = "bl_received"
    HBL_DRAFT_SENT = "hbl_draft_sent"
    HBL_RELEASED = "hbl_released"
    HBL_SHARED = "hbl_shared"
    INVOICE_SENT = "invoice_sent"
    INVOICE_PAID = "invoice_paid"
    ENTRY_DRAFT_RECEIVED = "entry_draft_received"
    ENTRY_DRAFT_SHARED = "entry_draft_shared"
    ENTRY_SUMMARY_RECEIVED = "entry_summary_received"
    ENTRY_SUMMARY_SHARED = "entry_summary_shared"
    ARRIVAL_NOTICE_RECEIVED = "arrival_notice_received"
    ARRIVAL_NOTICE_SHARED = "arrival_notice_shared"
    CUSTOMS_CLEARED = "customs_cleared"
    CARGO_RELEASED = "cargo_released"
    DUTY_INVOICE_RECEIVED = "duty_invoice_received"
    DUTY_SUMMARY_SHARED = "duty_summary_shared"
    DELIVERY_ORDER_RECEIVED = "delivery_order_received"
    DELIVERY_ORDER_SHARED = "delivery_order_shared"
    CONTAINER_RELEASED = "container_released"
    POD_RECEIVED = "pod_received"
    POD_SHARED = "pod_shared"
    BOOKING_CANCELLED = "booking_cancelled"

    @property
    def rank(self) -> int:
        return STATE_CATALOGUE[self][0]

    @property
    def phase(self) -> WorkflowPhase:
        return STATE_CATALOGUE[self][1]

    @property
    def is_terminal(self) -> bool:
        return self is WorkflowState.BOOKING_CANCELLED

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["WorkflowState"]:
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


_S = WorkflowState
_P = WorkflowPhase

STATE_CATALOGUE: Dict[WorkflowState, Tuple[int, WorkflowPhase]] = {
    _S.BOOKING_CONFIRMATION_RECEIVED: (10, _P.PRE_SHIPMENT),
    _S.BOOKING_CONFIRMATION_SHARED: (15, _P.PRE_SHIPMENT),
    _S.COMMERCIAL_INVOICE_RECEIVED: (20, _P.PRE_SHIPMENT),
    _S.PACKING_LIST_RECEIVED: (25, _P.PRE_SHIPMENT),
    _S.SI_DRAFT_RECEIVED: (30, _P.PRE_SHIPMENT),
    _S.SI_DRAFT_SENT: (32, _P.PRE_SHIPMENT),
    _S.CHECKLIST_RECEIVED: (40, _P.PRE_SHIPMENT),
    _S.CHECKLIST_SHARED: (42, _P.PRE_SHIPMENT),
    _S.SHIPPING_BILL_RECEIVED: (48, _P.PRE_SHIPMENT),
    _S.SI_SUBMITTED: (55, _P.PRE_SHIPMENT),
    _S.SI_CONFIRMED: (60, _P.PRE_SHIPMENT),
    _S.VGM_SUBMITTED: (65, _P.PRE_SHIPMENT),
    _S.VGM_CONFIRMED: (68, _P.PRE_SHIPMENT),
    _S.CONTAINER_GATED_IN: (72, _P.PRE_SHIPMENT),
    _S.SOB_RECEIVED: (80, _P.IN_TRANSIT),
    _S.VESSEL_DEPARTED: (90, _P.IN_TRANSIT),
    _S.ISF_FILED: (100, _P.IN_TRANSIT),
    _S.ISF_CONFIRMED: (105, _P.IN_TRANSIT),
    _S.MBL_DRAFT_RECEIVED: (110, _P.IN_TRANSIT),
    _S.MBL_RECEIVED: (118, _P.IN_TRANSIT),
    _S.BL_RECEIVED: (119, _P.IN_TRANSIT),
    _S.HBL_DRAFT_SENT: (120, _P.IN_TRANSIT),
    _S.HBL_RELEASED: (130, _P.IN_TRANSIT),
    _S.HBL_SHARED: (132, _P.IN_TRANSIT),
    _S.INVOICE_SENT: (135, _P.IN_TRANSIT),
    _S.INVOICE_PAID: (140, _P.IN_TRANSIT),
    _S.ENTRY_DRAFT_RECEIVED: (153, _P.ARRIVAL),
    _S.ENTRY_DRAFT_SHARED: (156, _P.ARRIVAL),
    _S.ENTRY_SUMMARY_RECEIVED: (168, _P.ARRIVAL),
    _S.ENTRY_SUMMARY_SHARED: (172, _P.ARRIVAL),
    _S.ARRIVAL_NOTICE_RECEIVED: (180, _P.ARRIVAL),
    _S.ARRIVAL_NOTICE_SHARED: (185, _P.ARRIVAL),
    _S.CUSTOMS_CLEARED: (190, _P.ARRIVAL),
    _S.CARGO_RELEASED: (192, _P.ARRIVAL),
    _S.DUTY_INVOICE_RECEIVED: (195, _P.ARRIVAL),
    _S.DUTY_SUMMARY_SHARED: (200, _P.ARRIVAL),
    _S.DELIVERY_ORDER_RECEIVED: (205, _P.DELIVERY),
    _S.DELIVERY_ORDER_SHARED: (210, _P.DELIVERY),
    _S.CONTAINER_RELEASED: (220, _P.DELIVERY),
    _S.POD_RECEIVED: (235, _P.DELIVERY),
    _S.POD_SHARED: (240, _P.DELIVERY),
    _S.BOOKING_CANCELLED: (999, _P.TERMINAL),
}

_D = DocumentType

# (inbound state, outbound state). Every DocumentType appears exactly once;
# None means the pair carries no workflow evidence.
STATE_TABLE: Dict[DocumentType, Tuple[Optional[WorkflowState], Optional[WorkflowState]]] = {
    _D.BOOKING_CONFIRMATION: (_S.BOOKING_CONFIRMATION_RECEIVED, _S.BOOKING_CONFIRMATION_SHARED),
    _D.BOOKING_AMENDMENT: (_S.BOOKING_CONFIRMATION_RECEIVED, _S.BOOKING_CONFIRMATION_SHARED),
    _D.BOOKING_CANCELLATION: (_S.BOOKING_CANCELLED, None),
    _D.SHIPPING_INSTRUCTION: (_S.SI_DRAFT_RECEIVED, _S.SI_DRAFT_SENT),
    _D.SI_DRAFT: (_S.SI_DRAFT_RECEIVED, _S.SI_DRAFT_SENT),
    _D.SI_SUBMISSION: (_S.SI_CONFIRMED, _S.SI_SUBMITTED),
    _D.SI_CONFIRMATION: (_S.SI_CONFIRMED, None),
    _D.VGM_SUBMISSION: (_S.VGM_CONFIRMED, _S.VGM_SUBMITTED),
    _D.VGM_CONFIRMATION: (_S.VGM_CONFIRMED, None),
    _D.VGM_REMINDER: (None, None),
    _D.BILL_OF_LADING: (_S.BL_RECEIVED, _S.HBL_SHARED),
    _D.HOUSE_BL: (_S.BL_RECEIVED, _S.HBL_SHARED),
    _D.HBL_DRAFT: (None, _S.HBL_DRAFT_SENT),
    _D.MBL_DRAFT: (_S.MBL_DRAFT_RECEIVED, None),
    _D.HBL_RELEASE: (None, _S.HBL_RELEASED),
    _D.SOB_CONFIRMATION: (_S.SOB_RECEIVED, None),
    _D.INVOICE: (_S.COMMERCIAL_INVOICE_RECEIVED, _S.INVOICE_SENT),
    _D.COMMERCIAL_INVOICE: (_S.COMMERCIAL_INVOICE_RECEIVED, None),
    _D.FREIGHT_INVOICE: (None, _S.INVOICE_SENT),
    _D.DUTY_INVOICE: (_S.DUTY_INVOICE_RECEIVED, _S.DUTY_SUMMARY_SHARED),
    _D.PAYMENT_CONFIRMATION: (_S.INVOICE_PAID, None),
    _D.PACKING_LIST: (_S.PACKING_LIST_RECEIVED, None),
    _D.CHECKLIST: (_S.CHECKLIST_RECEIVED, _S.CHECKLIST_SHARED),
    _D.SHIPPING_BILL: (_S.SHIPPING_BILL_RECEIVED, None),
    _D.LEO_COPY: (_S.SHIPPING_BILL_RECEIVED, None),
    _D.ISF_SUBMISSION: (None, _S.ISF_FILED),
    _D.ISF_CONFIRMATION: (_S.ISF_CONFIRMED, None),
    _D.ENTRY_SUMMARY: (_S.ENTRY_SUMMARY_RECEIVED, _S.ENTRY_SUMMARY_SHARED),
    _D.DRAFT_ENTRY: (_S.ENTRY_DRAFT_RECEIVED, _S.ENTRY_DRAFT_SHARED),
    _D.CUSTOMS_CLEARANCE: (_S.CUSTOMS_CLEARED, None),
    _D.GATE_IN_CONFIRMATION: (_S.CONTAINER_GATED_IN, None),
    _D.DEPARTURE_NOTICE: (_S.VESSEL_DEPARTED, None),
    # Inbound value is overridable through SHIPMENT_NOTICE_STATE
    _D.SHIPMENT_NOTICE: (_S.ARRIVAL_NOTICE_RECEIVED, None),
    _D.ARRIVAL_NOTICE: (_S.ARRIVAL_NOTICE_RECEIVED, _S.ARRIVAL_NOTICE_SHARED),
    _D.DELIVERY_ORDER: (_S.DELIVERY_ORDER_RECEIVED, _S.DELIVERY_ORDER_SHARED),
    _D.CONTAINER_RELEASE: (_S.CARGO_RELEASED, _S.CONTAINER_RELEASED),
    _D.PROOF_OF_DELIVERY: (_S.POD_RECEIVED, _S.POD_SHARED),
    _D.EMPTY_RETURN: (None, None),
    _D.VESSEL_SCHEDULE: (None, None),
    _D.CUTOFF_ADVISORY: (None, None),
    _D.PICKUP_NOTIFICATION: (None, None),
    _D.RATE_QUOTE: (None, None),
    _D.RATE_CONFIRMATION: (None, None),
    _D.WORK_ORDER: (None, None),
    _D.GENERAL_CORRESPONDENCE: (None, None),
    _D.UNKNOWN: (None, None),
}

_missing_types = set(DocumentType) - set(STATE_TABLE)
if _missing_types:
    raise RuntimeError(f"Workflow state table is missing document types: {sorted(t.value for t in _missing_types)}")

_missing_states = set(WorkflowState) - set(STATE_CATALOGUE)
if _missing_states:
    raise RuntimeError(f"Workflow catalogue is missing states: {sorted(s.value for s in _missing_states)}")


def _shipment_notice_override() -> Optional[WorkflowState]:
    from freightflow.core.config import settings

    configured = (settings.SHIPMENT_NOTICE_STATE or "").strip().lower()
    if configured in ("", "none"):
        return None
    state = WorkflowState.parse(configured)
    if state is None:
        raise ValueError(f"SHIPMENT_NOTICE_STATE is not a workflow state: {configured}")
    return state


def state_for(document_type: DocumentType, direction: Direction) -> Optional[WorkflowState]:
    """Workflow state implied by one document, or None."""
    inbound, outbound = STATE_TABLE[document_type]
    if direction is Direction.INBOUND:
        if document_type is DocumentType.SHIPMENT_NOTICE:
            return _shipment_notice_override()
        return inbound
    return outbound


def highest_state(pairs: Iterable[Tuple[DocumentType, Direction]]) -> Optional[WorkflowState]:
    """Highest-ranked state implied by a set of (type, direction) pairs."""
    best = None
    for document_type, direction in pairs:
        state = state_for(document_type, direction)
        if state is not None and (best is None or state.rank > best.rank):
            best = state
    return best
