"""
Data-driven rule table backing classification, carrier detection and linking.

All regexes are compiled once by `get_rule_table()`; callers never build
patterns of their own. Adding a document convention means adding a row here.
"""
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, Optional, Pattern, Tuple

from freightflow.services.taxonomy import DocumentType, Direction, PartyType

_D = DocumentType
_P = PartyType


# ============= ROW TYPES =============

@dataclass(frozen=True)
class CarrierProfile:
    key: str
    name: str
    domains: Tuple[str, ...]
    brand_pattern: Pattern


@dataclass(frozen=True)
class FilenameRule:
    pattern: Pattern
    document_type: DocumentType
    confidence: int = 95


@dataclass(frozen=True)
class ContentRule:
    """All `required` markers present, none of `exclude`. Markers are upper case."""
    document_type: DocumentType
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    confidence: int = 90
    direction: Optional[Direction] = None
    _compiled: Tuple = field(default=(), compare=False, repr=False)


@dataclass(frozen=True)
class SubjectRule:
    pattern: Pattern
    document_type: DocumentType
    confidence: int
    priority: int = 50
    carrier: Optional[str] = None  # only when the sender belongs to this carrier
    requires_pdf: bool = False
    attachment_marker: Optional[Pattern] = None
    direction: Optional[Direction] = None


@dataclass(frozen=True)
class RuleTable:
    carriers: Tuple[CarrierProfile, ...]
    trucker_domains: Tuple[str, ...]
    filename_rules: Tuple[FilenameRule, ...]
    content_rules: Tuple[ContentRule, ...]
    subject_rules: Tuple[SubjectRule, ...]
    # Document types only some parties issue; unlisted types may come from anyone
    issuers: Dict[DocumentType, FrozenSet[PartyType]] = field(default_factory=dict, compare=False)

    def carrier(self, key: str) -> Optional[CarrierProfile]:
        for profile in self.carriers:
            if profile.key == key:
                return profile
        return None

    @property
    def carrier_domains(self) -> Tuple[str, ...]:
        return tuple(d for c in self.carriers for d in c.domains)

    def party_may_issue(self, party: PartyType, document_type: DocumentType) -> bool:
        allowed = self.issuers.get(document_type)
        return allowed is None or party in allowed


# ============= CARRIERS =============

_CARRIERS = [
    ("maersk", "Maersk", ("maersk.com", "sealandmaersk.com", "sealand.com"), r"maersk|\bsealand\b"),
    ("hapag-lloyd", "Hapag-Lloyd", ("hlag.com", "hapag-lloyd.com", "service.hlag.com", "hlag.cloud"), r"hlag|hapag"),
    ("cma-cgm", "CMA CGM", ("cma-cgm.com", "apl.com"), r"cma.?cgm"),
    ("msc", "MSC", ("msc.com",), r"\bmsc\b"),
    ("cosco", "COSCO", ("cosco.com", "coscon.com"), r"cosco|coscon"),
    ("evergreen", "Evergreen", ("evergreen-marine.com",), r"evergreen"),
    ("one", "Ocean Network Express", ("one-line.com",), r"one-line|ocean network express"),
    ("yang-ming", "Yang Ming", ("yangming.com",), r"yang.?ming"),
    ("hmm", "HMM", ("hmm21.com",), r"(?-i:\bHMM\b)|hyundai merchant"),
    ("zim", "ZIM", ("zim.com",), r"\bzim\b"),
    ("pil", "PIL", ("pilship.com",), r"\bpil\b|pacific international lines"),
    ("oocl", "OOCL", ("oocl.com",), r"\boocl\b"),
]

_TRUCKER_DOMAINS = ("transjetcargo.com", "jbhunt.com", "schneider.com", "xpo.com")


# ============= FILENAME RULES =============

def _tok(word: str) -> str:
    """Word match where '_' and '-' count as separators (common in filenames)."""
    return rf"(?<![a-z0-9]){word}(?![a-z])"


_FILENAME_RULES = [
    (r"(?<!\d)7501(?!\d)|entry.?summary", _D.ENTRY_SUMMARY),
    (r"(?<!\d)3461(?!\d)|draft.?entry", _D.DRAFT_ENTRY),
    (rf"{_tok('isf')}|10\+2", _D.ISF_SUBMISSION),
    (r"duty.?invoice", _D.DUTY_INVOICE),
    (r"shipping.?bill", _D.SHIPPING_BILL),
    (_tok("leo"), _D.LEO_COPY),
    (r"checklist", _D.CHECKLIST),
    (rf"booking.?confirm|{_tok('bc')}", _D.BOOKING_CONFIRMATION),
    (r"amendment", _D.BOOKING_AMENDMENT),
    (r"cancel", _D.BOOKING_CANCELLATION),
    (rf"{_tok('si')}.?draft|draft.?{_tok('si')}", _D.SI_DRAFT),
    (rf"^si[_\- ]|shipping.?instruction", _D.SHIPPING_INSTRUCTION),
    (rf"{_tok('hbl')}.?draft|draft.?{_tok('hbl')}", _D.HBL_DRAFT),
    (rf"{_tok('hbl')}|house.?bill", _D.HOUSE_BL),
    (rf"{_tok('mbl')}.?draft|draft.?{_tok('mbl')}", _D.MBL_DRAFT),
    (rf"{_tok('mbl')}|master.?bill|bill.?of.?lading", _D.BILL_OF_LADING),
    (_tok("sob"), _D.SOB_CONFIRMATION),
    (rf"arrival.?notice|^an[_\- ]", _D.ARRIVAL_NOTICE),
    (r"delivery.?order", _D.DELIVERY_ORDER),
    (rf"{_tok('pod')}|proof.?of.?delivery", _D.PROOF_OF_DELIVERY),
    (r"empty.?return", _D.EMPTY_RETURN),
    (r"release", _D.CONTAINER_RELEASE),
    (r"rate.?confirm", _D.RATE_CONFIRMATION),
    (r"packing.?list", _D.PACKING_LIST),
    (r"commercial.?invoice", _D.COMMERCIAL_INVOICE),
    (r"invoice", _D.INVOICE),
]


# ============= CONTENT RULES =============

_CONTENT_RULES = [
    ContentRule(_D.ENTRY_SUMMARY, ("DEPARTMENT OF HOMELAND SECURITY", "ENTRY SUMMARY"), ("CBP FORM 7501", "OMB APPROVAL", "FILER CODE/ENTRY"), confidence=98),
    ContentRule(_D.ENTRY_SUMMARY, ("ENTRY SUMMARY", "CBP"), ("DUTY", "HTS", "IMPORTER"), confidence=95),
    ContentRule(_D.DRAFT_ENTRY, ("ENTRY/IMMEDIATE DELIVERY",), ("CBP FORM 3461", "DEPARTMENT OF HOMELAND SECURITY"), confidence=95),
    ContentRule(_D.DRAFT_ENTRY, ("DRAFT", "ENTRY"), ("REVIEW", "APPROVAL", "CBP"), confidence=88),
    ContentRule(_D.ISF_SUBMISSION, ("IMPORTER SECURITY FILING",), ("ISF", "10+2", "CBP"), confidence=95),
    ContentRule(_D.SHIPPING_BILL, ("SHIPPING BILL",), ("SB NO", "CUSTOMS", "ICEGATE"), exclude=("CHECKLIST",), confidence=95),
    ContentRule(_D.LEO_COPY, ("LET EXPORT ORDER",), ("LEO", "CUSTOMS"), confidence=95),
    ContentRule(_D.CHECKLIST, ("CHECKLIST",), ("SHIPPING BILL", "EXPORT", "DOCUMENTS"), confidence=85),
    ContentRule(_D.BOOKING_CANCELLATION, ("BOOKING CANCELLATION",), confidence=95),
    ContentRule(_D.BOOKING_AMENDMENT, ("BOOKING AMENDMENT",), ("UPDATE", "REVISED", "CHANGE"), confidence=92),
    ContentRule(_D.BOOKING_CONFIRMATION, ("BOOKING CONFIRMATION",), ("BOOKING NUMBER", "VESSEL", "VOYAGE", "ETD"), exclude=("BOOKING AMENDMENT", "BOOKING CANCELLATION"), confidence=95),
    ContentRule(_D.BOOKING_CONFIRMATION, ("BOOKING", "CONFIRMED"), ("CONTAINER", "VESSEL"), exclude=("AMENDMENT", "CANCEL"), confidence=85),
    ContentRule(_D.SI_DRAFT, ("DRAFT", "SHIPPING INSTRUCTION"), confidence=90),
    ContentRule(_D.SI_CONFIRMATION, ("SHIPPING INSTRUCTION", "ACCEPTED"), confidence=88),
    ContentRule(_D.SHIPPING_INSTRUCTION, ("SHIPPING INSTRUCTION",), ("SI SUB TYPE", "TRANSPORT DOCUMENT", "SHIPPER", "CONSIGNEE"), exclude=("DRAFT",), confidence=95),
    ContentRule(_D.VGM_CONFIRMATION, ("VERIFIED GROSS MASS", "ACCEPTED"), confidence=90, direction=Direction.INBOUND),
    ContentRule(_D.HBL_DRAFT, ("HOUSE BILL OF LADING", "DRAFT"), confidence=92),
    ContentRule(_D.MBL_DRAFT, ("MASTER BILL OF LADING", "DRAFT"), confidence=92),
    ContentRule(_D.HOUSE_BL, ("HOUSE BILL OF LADING",), ("HBL", "SHIPPER", "CONSIGNEE", "SHIPPED ON BOARD"), exclude=("DRAFT",), confidence=92),
    ContentRule(_D.BILL_OF_LADING, ("MASTER BILL OF LADING",), ("MBL", "SHIPPER", "CONSIGNEE"), exclude=("DRAFT",), confidence=92),
    ContentRule(_D.SOB_CONFIRMATION, ("SHIPPED ON BOARD",), ("CONFIRMATION", "SOB", "ON BOARD DATE"), exclude=("DRAFT", "BILL OF LADING"), confidence=92),
    ContentRule(_D.BILL_OF_LADING, ("BILL OF LADING",), ("B/L NO", "SHIPPER", "CONSIGNEE", "SHIPPED ON BOARD"), exclude=("DRAFT", "HOUSE"), confidence=85),
    ContentRule(_D.ARRIVAL_NOTICE, ("ARRIVAL NOTICE",), ("ETA", "PORT OF DISCHARGE", "CONSIGNEE"), exclude=("EXCEPTION", "PRE-ARRIVAL"), confidence=95),
    ContentRule(_D.DELIVERY_ORDER, ("DELIVERY ORDER",), ("DO NO", "RELEASE", "CONTAINER"), confidence=92),
    ContentRule(_D.CONTAINER_RELEASE, ("CONTAINER", "RELEASE"), ("PICKUP", "TERMINAL", "PIN"), exclude=("DELIVERY ORDER",), confidence=88),
    ContentRule(_D.PROOF_OF_DELIVERY, ("PROOF OF DELIVERY",), ("SIGNED", "RECEIVED BY"), confidence=95),
    ContentRule(_D.DUTY_INVOICE, ("INVOICE", "DUTIES"), ("CUSTOMS", "ENTRY FEE", "MPF", "HMF"), confidence=88),
    ContentRule(_D.COMMERCIAL_INVOICE, ("COMMERCIAL INVOICE",), ("INCOTERMS", "HS CODE"), confidence=90),
    ContentRule(_D.PACKING_LIST, ("PACKING LIST",), ("GROSS WEIGHT", "NET WEIGHT", "CARTONS"), confidence=90),
]


# ============= SUBJECT RULES =============

_I = re.IGNORECASE

# (pattern, type, confidence, extras)
_SUBJECT_RULES = [
    # Carrier conventions, checked first
    (r"^Booking Confirmation\s*:\s*\d+", _D.BOOKING_CONFIRMATION, 95,
     dict(priority=100, carrier="maersk", requires_pdf=True, attachment_marker=r"BOOKING CONFIRMATION")),
    (r"^Booking Confirmation\s*-\s*MAEU\d+", _D.BOOKING_CONFIRMATION, 95,
     dict(priority=100, carrier="maersk", requires_pdf=True, attachment_marker=r"BOOKING CONFIRMATION")),
    (r"^HL-\d+\s+[A-Z]{5}\s+[A-Z]", _D.BOOKING_CONFIRMATION, 95,
     dict(priority=100, carrier="hapag-lloyd", attachment_marker=r"BOOKING CONFIRMATION")),
    (r"^CMA CGM - Booking confirmation available", _D.BOOKING_CONFIRMATION, 95,
     dict(priority=100, carrier="cma-cgm")),
    (r"^Cosco Shipping Line Booking Confirmation\s*-\s*COSU\d+", _D.BOOKING_CONFIRMATION, 95,
     dict(priority=100, carrier="cosco")),
    (r"^Booking Amendment\s*:\s*\d+", _D.BOOKING_AMENDMENT, 95, dict(priority=95, carrier="maersk")),
    (r"^\[Update\]\s+Booking\s+\d+", _D.BOOKING_AMENDMENT, 95, dict(priority=95, carrier="hapag-lloyd")),
    (r"^Booking Cancellation\s*:\s*\d+", _D.BOOKING_CANCELLATION, 94, dict(priority=94, carrier="maersk")),
    (r"^Shipping Instruction Submitted\s*Sh#\d+", _D.SI_SUBMISSION, 92, dict(priority=90, carrier="hapag-lloyd")),
    (r"^SI submitted\s+\d+", _D.SI_SUBMISSION, 92, dict(priority=90, carrier="maersk")),
    (r"^Arrival notice\s+\d+", _D.ARRIVAL_NOTICE, 95, dict(priority=90, carrier="maersk")),
    (r"^CMA CGM - Arrival notice available", _D.ARRIVAL_NOTICE, 95, dict(priority=90, carrier="cma-cgm")),
    (r"^COSCO Arrival Notice", _D.ARRIVAL_NOTICE, 95, dict(priority=90, carrier="cosco")),
    (r"^OOCL Arrival Notice", _D.ARRIVAL_NOTICE, 95, dict(priority=90, carrier="oocl")),
    (r"^New invoice\s+[A-Z0-9]+", _D.INVOICE, 90, dict(priority=85, carrier="maersk")),
    (r"^Shipment Number\s+\d+-FMC Filing", _D.SHIPMENT_NOTICE, 90, dict(priority=85, carrier="maersk")),

    # Direction-qualified
    (r"\bSI\s+submitted\b", _D.SI_SUBMISSION, 90, dict(priority=60, direction=Direction.OUTBOUND)),
    (r"\bVGM\s+(submitted|submission)\b", _D.VGM_SUBMISSION, 90, dict(priority=60, direction=Direction.OUTBOUND)),
    (r"\bISF\s+(fil|submit)", _D.ISF_SUBMISSION, 90, dict(priority=60, direction=Direction.OUTBOUND)),
    (r"\bISF\s+(confirm|accept)", _D.ISF_CONFIRMATION, 90, dict(priority=60, direction=Direction.INBOUND)),

    # Generic conventions, in order
    (r"^Booking\s+Confirmation\s*:", _D.BOOKING_CONFIRMATION, 90, {}),
    (r"CMA\s*CGM.*Booking\s+confirmation", _D.BOOKING_CONFIRMATION, 90, {}),
    (r"\[Hapag.*Booking\s+Confirmation", _D.BOOKING_CONFIRMATION, 90, {}),
    (r"\bbooking.*cancel|\bcancel.*booking", _D.BOOKING_CANCELLATION, 95, {}),
    (r"\bamendment\s+to\s+booking|\b(1st|2nd|3rd|\d+th)\s+UPDATE\b", _D.BOOKING_AMENDMENT, 95, {}),
    (r"\bbooking.*amendment", _D.BOOKING_AMENDMENT, 90, {}),
    (r"\bSOB\s+CONFIRM|\bSOB\s+for\b|\bshipped\s+on\s+board", _D.SOB_CONFIRMATION, 95, {}),
    (r"\bon\s*board\s+confirm", _D.SOB_CONFIRMATION, 90, {}),
    (r"\barrival\s+notice\b|\bnotice\s+of\s+arrival\b", _D.ARRIVAL_NOTICE, 95, {}),
    (r"\bHBL\s+DRAFT|\bdraft\s+(HBL|B/?L)\b|\bBL\s+DRAFT\s+FOR\b", _D.HBL_DRAFT, 95, {}),
    (r"\bBL\s+for\s+(your\s+)?(approval|review)", _D.HBL_DRAFT, 90, {}),
    (r"\bSI\s+draft|\bdraft\s+SI\b", _D.SI_DRAFT, 95, {}),
    (r"\bSI\s+for\s+(your\s+)?(approval|review)", _D.SI_DRAFT, 90, {}),
    (r"\bbill\s+of\s+lading\b", _D.BILL_OF_LADING, 95, {}),
    (r"\bfinal\s*B/?L\b|\bsea\s*waybill\b|\bmaster\s*b/?l\b", _D.BILL_OF_LADING, 90, {}),
    (r"\bhouse\s*b/?l\b", _D.HOUSE_BL, 90, {}),
    (r"\bHBL\s*[#:]", _D.HOUSE_BL, 85, {}),
    (r"\bMBL\s*[#:]", _D.BILL_OF_LADING, 85, {}),
    (r"\bdelivery\s+order\b", _D.DELIVERY_ORDER, 95, {}),
    (r"\bD/?O\s+(release|issued)", _D.DELIVERY_ORDER, 90, {}),
    (r"\bshipping\s+instruction", _D.SHIPPING_INSTRUCTION, 90, {}),
    (r"\bVGM\s+(confirm|accept|receiv)", _D.VGM_CONFIRMATION, 95, {}),
    (r"\bverified\s+gross\s+mass", _D.VGM_CONFIRMATION, 90, {}),
    (r"\bVGM\s+(remind|deadline|cutoff)", _D.VGM_REMINDER, 90, {}),
    (r"\bduty\s+invoice|\bduty\s+(payment|statement|summary)", _D.DUTY_INVOICE, 95, {}),
    (r"\bfreight\s+invoice\b", _D.FREIGHT_INVOICE, 90, {}),
    (r"\bcommercial\s+invoice", _D.COMMERCIAL_INVOICE, 85, {}),
    (r"\binvoice\s*#\s*[A-Z0-9-]+", _D.INVOICE, 90, {}),
    (r"\binvoice\s+\d+", _D.INVOICE, 85, {}),
    (r"\bpayment\s+(received|confirm)", _D.PAYMENT_CONFIRMATION, 90, {}),
    (r"Cargo\s+Release\s+Update|ACE\s+RELEASE", _D.CUSTOMS_CLEARANCE, 95, {}),
    (r"\bcustoms\s+clear(ance|ed)?", _D.CUSTOMS_CLEARANCE, 90, {}),
    (r"\bchecklist\s+(attached|for|ready)|\bexport\s+checklist|\bCHA\s+checklist", _D.CHECKLIST, 95, {}),
    (r"\bshipping\s+bill\s+(copy|number|attached)", _D.SHIPPING_BILL, 95, {}),
    (r"\bLEO\s+(copy|attached|received)|\blet\s+export\s+order", _D.LEO_COPY, 95, {}),
    (r"\bdraft\s+entry|\bentry\s+draft|\b7501\s+draft", _D.DRAFT_ENTRY, 95, {}),
    (r"\bentry\s+for\s+(review|approval)", _D.DRAFT_ENTRY, 90, {}),
    (r"\bentry\s+summary|\b7501\s+(filed|submitted|summary)", _D.ENTRY_SUMMARY, 95, {}),
    (r"\bgate[\s-]?in\b", _D.GATE_IN_CONFIRMATION, 90, {}),
    (r"\b(vessel\s+)?depart(ure|ed)\s+notice|\bsailing\s+confirmation", _D.DEPARTURE_NOTICE, 90, {}),
    (r"\bFMC\s+filing\b|\bshipment\s+notice\b", _D.SHIPMENT_NOTICE, 90, {}),
    (r"Proof\s+of\s+Delivery|Signed\s+(POD|delivery|BOL)|\bPOD\s+(attached|confirm|received)", _D.PROOF_OF_DELIVERY, 95, {}),
    (r"Empty\s+Return|MTY\s+Return|Container\s+Returned", _D.EMPTY_RETURN, 95, {}),
    (r"\bcontainer\s+release", _D.CONTAINER_RELEASE, 90, {}),
    (r"\bpickup\s+(notice|notif|ready)", _D.PICKUP_NOTIFICATION, 90, {}),
    (r"Work\s+Order\s*:|Dray(age)?\s+Order", _D.WORK_ORDER, 90, {}),
    (r"\brate\s+confirm", _D.RATE_CONFIRMATION, 90, {}),
    (r"\bprice\s+overview\b|\brate\s+quot|\bfreight\s+quot", _D.RATE_QUOTE, 90, {}),
    (r"\bcut\s*-?\s*off\s+(advis|change|update)|\bSI\s+CUT\s*OFF", _D.CUTOFF_ADVISORY, 90, {}),
    (r"\bvessel\s+schedule\b|\bsailing\s+schedule\b", _D.VESSEL_SCHEDULE, 90, {}),
    (r"\bETD.*ETA\b", _D.VESSEL_SCHEDULE, 80, {}),
]


# ============= SENDER VALIDATION =============

# Who may send each restricted document type. The operating company relays
# carrier and broker paperwork, so it passes everywhere. UNKNOWN passes the
# carrier-side and broker-side groups since agents and unlisted carriers land
# there; only the carrier-only group needs a carrier domain.
_CARRIER_ONLY = frozenset({_P.OCEAN_CARRIER, _P.OPERATING_COMPANY})
_CARRIER_SIDE = frozenset({_P.OCEAN_CARRIER, _P.OPERATING_COMPANY, _P.UNKNOWN})
_FORWARDER_SIDE = frozenset({_P.OPERATING_COMPANY, _P.UNKNOWN})
_BROKER_SIDE = frozenset({_P.CUSTOMS_BROKER, _P.OPERATING_COMPANY, _P.UNKNOWN})

_ISSUERS = {
    # Master BL paperwork and carrier acknowledgements
    _D.MBL_DRAFT: _CARRIER_ONLY,
    _D.SOB_CONFIRMATION: _CARRIER_ONLY,
    _D.SI_CONFIRMATION: _CARRIER_ONLY,
    _D.VGM_CONFIRMATION: _CARRIER_ONLY,
    # Booking lifecycle and carrier notices
    _D.BOOKING_CONFIRMATION: _CARRIER_SIDE,
    _D.BOOKING_AMENDMENT: _CARRIER_SIDE,
    _D.BOOKING_CANCELLATION: _CARRIER_SIDE,
    _D.BILL_OF_LADING: _CARRIER_SIDE,
    _D.ARRIVAL_NOTICE: _CARRIER_SIDE,
    _D.VGM_REMINDER: _CARRIER_SIDE,
    _D.CUTOFF_ADVISORY: _CARRIER_SIDE,
    # House BLs are ours; a carrier's "BL for approval" is never an HBL
    _D.HBL_DRAFT: _FORWARDER_SIDE,
    _D.HOUSE_BL: _FORWARDER_SIDE,
    _D.HBL_RELEASE: _FORWARDER_SIDE,
    # US customs filings
    _D.ENTRY_SUMMARY: _BROKER_SIDE,
    _D.DRAFT_ENTRY: _BROKER_SIDE,
    _D.DUTY_INVOICE: _BROKER_SIDE,
}


# ============= LOADING =============

def _marker_regex(marker: str) -> Pattern:
    # Markers must not match inside longer words ("SI" in "SINGAPORE")
    return re.compile(rf"(?<![A-Z0-9]){re.escape(marker)}(?![A-Z0-9])")


def _compile_content_rule(rule: ContentRule) -> ContentRule:
    compiled = (
        tuple(_marker_regex(m) for m in rule.required),
        tuple(_marker_regex(m) for m in rule.optional),
        tuple(_marker_regex(m) for m in rule.exclude),
    )
    return ContentRule(
        document_type=rule.document_type,
        required=rule.required,
        optional=rule.optional,
        exclude=rule.exclude,
        confidence=rule.confidence,
        direction=rule.direction,
        _compiled=compiled,
    )


def _build_subject_rule(pattern: str, document_type: DocumentType, confidence: int, extras: dict) -> SubjectRule:
    marker = extras.get("attachment_marker")
    return SubjectRule(
        pattern=re.compile(pattern, _I),
        document_type=document_type,
        confidence=confidence,
        priority=extras.get("priority", 50),
        carrier=extras.get("carrier"),
        requires_pdf=extras.get("requires_pdf", False),
        attachment_marker=re.compile(marker, _I) if marker else None,
        direction=extras.get("direction"),
    )


@lru_cache(maxsize=1)
def get_rule_table() -> RuleTable:
    """Build and cache the rule table. Loaded once per process."""
    carriers = tuple(
        CarrierProfile(key=key, name=name, domains=domains, brand_pattern=re.compile(brand, _I))
        for key, name, domains, brand in _CARRIERS
    )
    filename_rules = tuple(
        FilenameRule(pattern=re.compile(pattern, _I), document_type=document_type)
        for pattern, document_type in _FILENAME_RULES
    )
    content_rules = tuple(_compile_content_rule(rule) for rule in _CONTENT_RULES)
    subject_rules = [
        _build_subject_rule(pattern, document_type, confidence, extras)
        for pattern, document_type, confidence, extras in _SUBJECT_RULES
    ]
    # Stable sort keeps table order within a priority band
    subject_rules.sort(key=lambda r: -r.priority)

    return RuleTable(
        carriers=carriers,
        trucker_domains=_TRUCKER_DOMAINS,
        filename_rules=filename_rules,
        content_rules=content_rules,
        subject_rules=tuple(subject_rules),
        issuers=dict(_ISSUERS),
    )
