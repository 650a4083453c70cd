"""
Closed vocabularies shared by the classifier, extractor, linker and rules.

Everything that crosses a module boundary as a "type" is one of these
enums. Raw strings from the fallback model or from the database are
converted with `DocumentType.parse` / `normalize_document_type`.
"""
import enum
from typing import Optional


class Direction(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class PartyType(str, enum.Enum):
    OPERATING_COMPANY = "intoglo"
    OCEAN_CARRIER = "ocean_carrier"
    TRUCKER = "trucker"
    CUSTOMS_BROKER = "customs_broker"
    CUSTOMER = "customer"
    UNKNOWN = "unknown"


class ClassificationSource(str, enum.Enum):
    ATTACHMENT = "attachment"
    BODY = "body"
    SUBJECT = "subject"
    AI_FALLBACK = "ai-fallback"
    MANUAL = "manual"
    NONE = "none"


class EntitySource(str, enum.Enum):
    SUBJECT = "subject"
    BODY = "body"
    ATTACHMENT = "attachment"


class EntityType(str, enum.Enum):
    BOOKING_NUMBER = "booking_number"
    BL_NUMBER = "bl_number"
    MBL_NUMBER = "mbl_number"
    HBL_NUMBER = "hbl_number"
    CONTAINER_NUMBER = "container_number"
    ENTRY_NUMBER = "entry_number"
    CARRIER = "carrier"
    VESSEL_NAME = "vessel_name"
    VOYAGE_NUMBER = "voyage_number"
    PORT_OF_LOADING = "port_of_loading"
    PORT_OF_DISCHARGE = "port_of_discharge"
    ETD = "etd"
    ETA = "eta"
    SI_CUTOFF = "si_cutoff"
    VGM_CUTOFF = "vgm_cutoff"
    CARGO_CUTOFF = "cargo_cutoff"
    GATE_CUTOFF = "gate_cutoff"
    DOC_CUTOFF = "doc_cutoff"

    @property
    def is_date(self) -> bool:
        return self in DATE_ENTITY_TYPES


DATE_ENTITY_TYPES = frozenset({
    EntityType.ETD, EntityType.ETA, EntityType.SI_CUTOFF, EntityType.VGM_CUTOFF,
    EntityType.CARGO_CUTOFF, EntityType.GATE_CUTOFF, EntityType.DOC_CUTOFF,
})


class LinkMethod(str, enum.Enum):
    BOOKING = "booking"
    BL = "bl"
    CONTAINER = "container"
    CREATED = "created"


class DocumentType(str, enum.Enum):
    # Booking
    BOOKING_CONFIRMATION = "booking_confirmation"
    BOOKING_AMENDMENT = "booking_amendment"
    BOOKING_CANCELLATION = "booking_cancellation"
    # Shipping instructions
    SHIPPING_INSTRUCTION = "shipping_instruction"
    SI_DRAFT = "si_draft"
    SI_SUBMISSION = "si_submission"
    SI_CONFIRMATION = "si_confirmation"
    # VGM
    VGM_SUBMISSION = "vgm_submission"
    VGM_CONFIRMATION = "vgm_confirmation"
    VGM_REMINDER = "vgm_reminder"
    # Bills of lading
    BILL_OF_LADING = "bill_of_lading"
    HOUSE_BL = "house_bl"
    HBL_DRAFT = "hbl_draft"
    MBL_DRAFT = "mbl_draft"
    HBL_RELEASE = "hbl_release"
    SOB_CONFIRMATION = "sob_confirmation"
    # Commercial
    INVOICE = "invoice"
    COMMERCIAL_INVOICE = "commercial_invoice"
    FREIGHT_INVOICE = "freight_invoice"
    DUTY_INVOICE = "duty_invoice"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PACKING_LIST = "packing_list"
    # Export customs (India)
    CHECKLIST = "checklist"
    SHIPPING_BILL = "shipping_bill"
    LEO_COPY = "leo_copy"
    # Import customs (US)
    ISF_SUBMISSION = "isf_submission"
    ISF_CONFIRMATION = "isf_confirmation"
    ENTRY_SUMMARY = "entry_summary"
    DRAFT_ENTRY = "draft_entry"
    CUSTOMS_CLEARANCE = "customs_clearance"
    # Movement
    GATE_IN_CONFIRMATION = "gate_in_confirmation"
    DEPARTURE_NOTICE = "departure_notice"
    SHIPMENT_NOTICE = "shipment_notice"
    ARRIVAL_NOTICE = "arrival_notice"
    # Release / delivery
    DELIVERY_ORDER = "delivery_order"
    CONTAINER_RELEASE = "container_release"
    PROOF_OF_DELIVERY = "proof_of_delivery"
    EMPTY_RETURN = "empty_return"
    # Scheduling / trucking / commercial chatter
    VESSEL_SCHEDULE = "vessel_schedule"
    CUTOFF_ADVISORY = "cutoff_advisory"
    PICKUP_NOTIFICATION = "pickup_notification"
    RATE_QUOTE = "rate_quote"
    RATE_CONFIRMATION = "rate_confirmation"
    WORK_ORDER = "work_order"
    GENERAL_CORRESPONDENCE = "general_correspondence"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["DocumentType"]:
        """Exact lookup by value; None when the value is not a member."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Drift seen in fallback model answers, mapped onto the closed enum
DOCUMENT_TYPE_SYNONYMS = {
    "amendment": DocumentType.BOOKING_AMENDMENT,
    "booking_change": DocumentType.BOOKING_AMENDMENT,
    "booking_update": DocumentType.BOOKING_AMENDMENT,
    "booking": DocumentType.BOOKING_CONFIRMATION,
    "confirmation": DocumentType.BOOKING_CONFIRMATION,
    "booking_cancelled": DocumentType.BOOKING_CANCELLATION,
    "cancellation": DocumentType.BOOKING_CANCELLATION,
    "hbl": DocumentType.HOUSE_BL,
    "house_bill_of_lading": DocumentType.HOUSE_BL,
    "draft_hbl": DocumentType.HBL_DRAFT,
    "mbl": DocumentType.BILL_OF_LADING,
    "bl": DocumentType.BILL_OF_LADING,
    "final_bl": DocumentType.BILL_OF_LADING,
    "master_bl": DocumentType.BILL_OF_LADING,
    "sea_waybill": DocumentType.BILL_OF_LADING,
    "seaway_bill": DocumentType.BILL_OF_LADING,
    "seawaybill": DocumentType.BILL_OF_LADING,
    "draft_bl": DocumentType.MBL_DRAFT,
    "si": DocumentType.SHIPPING_INSTRUCTION,
    "shipping_instructions": DocumentType.SHIPPING_INSTRUCTION,
    "vgm": DocumentType.VGM_SUBMISSION,
    "vgm_request": DocumentType.VGM_REMINDER,
    "pre-alert": DocumentType.ARRIVAL_NOTICE,
    "pre_alert": DocumentType.ARRIVAL_NOTICE,
    "pre_arrival_notice": DocumentType.ARRIVAL_NOTICE,
    "arrival": DocumentType.ARRIVAL_NOTICE,
    "notice": DocumentType.ARRIVAL_NOTICE,
    "customs": DocumentType.CUSTOMS_CLEARANCE,
    "customs_release": DocumentType.CUSTOMS_CLEARANCE,
    "customs_entry": DocumentType.DRAFT_ENTRY,
    "isf": DocumentType.ISF_SUBMISSION,
    "isf_filing": DocumentType.ISF_SUBMISSION,
    "release": DocumentType.CONTAINER_RELEASE,
    "pod": DocumentType.PROOF_OF_DELIVERY,
    "trucking": DocumentType.WORK_ORDER,
    "quotation": DocumentType.RATE_QUOTE,
    "rate_request": DocumentType.RATE_QUOTE,
    "schedule_update": DocumentType.VESSEL_SCHEDULE,
    "sailing_confirmation": DocumentType.DEPARTURE_NOTICE,
    "broker": DocumentType.GENERAL_CORRESPONDENCE,
    "carrier": DocumentType.GENERAL_CORRESPONDENCE,
    "insurance": DocumentType.GENERAL_CORRESPONDENCE,
    "terminal": DocumentType.GENERAL_CORRESPONDENCE,
    "inquiry": DocumentType.GENERAL_CORRESPONDENCE,
    "general": DocumentType.GENERAL_CORRESPONDENCE,
}


def normalize_document_type(value: Optional[str]) -> DocumentType:
    """
    Map a raw type string onto DocumentType.

    Exact members win, then the synonym table (case and separator
    insensitive). Anything else is UNKNOWN.
    """
    exact = DocumentType.parse(value)
    if exact is not None:
        return exact
    if not value:
        return DocumentType.UNKNOWN
    key = value.strip().lower().replace(" ", "_")
    if key in DOCUMENT_TYPE_SYNONYMS:
        return DOCUMENT_TYPE_SYNONYMS[key]
    exact = DocumentType.parse(key.replace("-", "_"))
    if exact is not None:
        return exact
    return DOCUMENT_TYPE_SYNONYMS.get(key.replace("-", "_"), DocumentType.UNKNOWN)
