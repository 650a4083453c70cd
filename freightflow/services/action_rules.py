"""
Action recommendation rules.

Document rules are keyed by (document_type, from_party, is_reply). Lookup
falls back to (type, party, False), then (type, unknown, False), then the
per-type default, then a generic default. Keyword flip lists can invert
the resulting has_action decision.

Rules are loaded through a loader callable and cached on the engine
instance for ACTION_RULES_CACHE_TTL_SECONDS. A stale rule set may be served
for up to one TTL after the rows change.
"""
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from freightflow.core.config import settings
from freightflow.core.logging import get_logger
from freightflow.db.models import ActionRule, DocumentActionDefault
from freightflow.services.priority_scoring import PriorityLabel, calculate_priority
from freightflow.services.taxonomy import DocumentType, PartyType
from freightflow.services.workflow_states import WorkflowState

logger = get_logger(__name__)

_D = DocumentType
_P = PartyType

# Informational types that need no action unless a customer sent them
NO_ACTION_TYPES = frozenset({
    _D.BOOKING_CONFIRMATION, _D.VGM_CONFIRMATION, _D.SI_CONFIRMATION,
    _D.SOB_CONFIRMATION, _D.RATE_CONFIRMATION, _D.VESSEL_SCHEDULE,
    _D.DEPARTURE_NOTICE, _D.GENERAL_CORRESPONDENCE, _D.UNKNOWN,
})

DEFAULT_CRITICALITY = 0.5
GENERIC_DEADLINE_HOURS = 24


# ============= RULE SNAPSHOTS =============

@dataclass(frozen=True)
class DocumentRule:
    document_type: DocumentType
    from_party: PartyType
    is_reply: bool
    has_action: bool
    action_verb: Optional[str] = None
    action_owner: str = "operations"
    to_party: Optional[str] = None
    description: Optional[str] = None
    deadline_hours: Optional[int] = None
    urgency: str = "normal"
    confidence: int = 90
    applicable_states: Optional[Tuple[str, ...]] = None
    rule_id: Optional[int] = None


@dataclass(frozen=True)
class TypeDefault:
    document_type: DocumentType
    default_has_action: bool
    default_reason: str = ""
    flip_to_action_keywords: Tuple[str, ...] = ()
    flip_to_no_action_keywords: Tuple[str, ...] = ()
    criticality: float = DEFAULT_CRITICALITY


@dataclass(frozen=True)
class RuleSet:
    rules: Mapping[Tuple[DocumentType, PartyType, bool], DocumentRule]
    defaults: Mapping[DocumentType, TypeDefault]


@dataclass
class ActionRecommendation:
    has_action: bool
    action_verb: Optional[str]
    owner: str
    priority: int
    priority_label: PriorityLabel
    deadline: Optional[datetime] = None
    description: str = ""
    to_party: Optional[str] = None
    urgency: str = "normal"
    confidence: int = 50
    source: str = "fallback"
    flipped_by: Optional[str] = None
    rule_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "has_action": self.has_action,
            "action_verb": self.action_verb,
            "owner": self.owner,
            "priority": self.priority,
            "priority_label": self.priority_label.value,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "description": self.description,
            "to_party": self.to_party,
            "urgency": self.urgency,
            "confidence": self.confidence,
            "source": self.source,
            "flipped_by": self.flipped_by,
            "rule_id": self.rule_id,
        }


@dataclass
class TimeBasedAction:
    trigger_event: str
    offset_hours: int
    action_verb: str
    description: str
    urgency: str
    trigger_at: datetime
    notify: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "trigger_event": self.trigger_event,
            "offset_hours": self.offset_hours,
            "action_verb": self.action_verb,
            "description": self.description,
            "urgency": self.urgency,
            "trigger_at": self.trigger_at.isoformat(),
            "notify": list(self.notify),
        }


# ============= SEED DATA =============

# (type, party, is_reply, has_action, verb, to_party, description, deadline_hours, urgency)
SEED_DOCUMENT_RULES = [
    (_D.CHECKLIST, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share customs checklist with customer for review and approval", 24, "high"),
    (_D.DRAFT_ENTRY, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share draft customs entry with customer for approval", 24, "high"),
    (_D.DUTY_INVOICE, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share duty invoice with customer for payment", 48, "normal"),
    (_D.ENTRY_SUMMARY, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share entry summary (7501) with customer", 24, "normal"),
    (_D.LEO_COPY, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share LEO copy with customer", 24, "low"),
    (_D.MBL_DRAFT, _P.OCEAN_CARRIER, False, True, "share", "customer", "Share draft BL with customer for approval", 24, "high"),
    (_D.ARRIVAL_NOTICE, _P.OCEAN_CARRIER, False, True, "share", "customer", "Forward arrival notice to customer", 12, "high"),
    (_D.DELIVERY_ORDER, _P.OCEAN_CARRIER, False, True, "share", "customer", "Forward delivery order to customer/trucker", 4, "critical"),
    (_D.CONTAINER_RELEASE, _P.OCEAN_CARRIER, False, True, "share", "customer", "Forward container release to customer/trucker", 4, "critical"),
    (_D.SHIPPING_INSTRUCTION, _P.CUSTOMER, False, True, "submit", "ocean_carrier", "Submit SI to carrier", 12, "high"),
    (_D.BOOKING_AMENDMENT, _P.CUSTOMER, False, True, "process", "ocean_carrier", "Process amendment with carrier", 12, "high"),
    (_D.CHECKLIST, _P.CUSTOMER, False, True, "submit", "customs_broker", "Submit approved checklist to CHA", 24, "normal"),
    (_D.INVOICE, _P.OCEAN_CARRIER, False, True, "share", "customer", "Share carrier invoice with customer or process payment", 48, "normal"),
    (_D.INVOICE, _P.CUSTOMS_BROKER, False, True, "share", "customer", "Share customs broker invoice with customer", 48, "normal"),
    (_D.BOOKING_CONFIRMATION, _P.OCEAN_CARRIER, False, False, "complete", None, "Booking confirmed - update records", None, "low"),
    (_D.VGM_CONFIRMATION, _P.OCEAN_CARRIER, False, False, "complete", None, "VGM confirmed - update records", None, "low"),
    (_D.SI_CONFIRMATION, _P.OCEAN_CARRIER, False, False, "complete", None, "SI confirmed - update records", None, "low"),
    (_D.BILL_OF_LADING, _P.OCEAN_CARRIER, False, True, "share", "customer", "Share final BL with customer", 12, "normal"),
    (_D.ISF_SUBMISSION, _P.CUSTOMS_BROKER, False, False, "complete", None, "ISF filed - update records", None, "normal"),
]

# (type, default_has_action, reason, flip_to_action, flip_to_no_action, criticality)
SEED_TYPE_DEFAULTS = [
    (_D.BOOKING_CONFIRMATION, False, "Confirmations are informational, booking is complete",
     ("missing", "required", "please provide", "action needed", "incomplete", "pending"), (), 0.6),
    (_D.SI_CONFIRMATION, False, "SI accepted, no action unless issues flagged",
     ("rejected", "amendment required", "discrepancy", "please correct", "missing"), (), 0.5),
    (_D.VGM_CONFIRMATION, False, "VGM submitted/verified, informational",
     ("rejected", "mismatch", "please resubmit", "error"), (), 0.5),
    (_D.SHIPPING_INSTRUCTION, True, "SI needs to be submitted or reviewed",
     (), ("submitted", "received", "confirmed", "accepted", "thank you for"), 0.8),
    (_D.VGM_REMINDER, True, "VGM submission is required",
     (), ("submitted", "received", "verified", "confirmed"), 0.7),
    (_D.MBL_DRAFT, True, "Draft BL needs review and approval",
     (), ("approved", "confirmed", "no changes", "accepted as is"), 0.9),
    (_D.HBL_DRAFT, True, "Draft BL needs review and approval",
     (), ("approved", "confirmed", "no changes", "accepted as is"), 0.9),
    (_D.BOOKING_AMENDMENT, True, "Amendment needs review/acknowledgment",
     (), ("confirmed", "for your information", "fyi", "no action required", "for your records"), 0.7),
    (_D.ARRIVAL_NOTICE, False, "Vessel arrival is informational",
     ("customs hold", "demurrage", "detention", "action required", "release pending"), (), 0.8),
    (_D.DEPARTURE_NOTICE, False, "Vessel departure is informational",
     ("delay", "rollover", "reschedule"), (), 0.4),
    (_D.BILL_OF_LADING, False, "Final BL issued, informational unless surrender needed",
     ("surrender", "original required", "endorsement", "release"), (), 0.9),
    (_D.INVOICE, True, "Invoices typically need payment action",
     (), ("paid", "settled", "for your records", "receipt"), 0.7),
    (_D.DRAFT_ENTRY, True, "Customs entry needs attention",
     (), ("cleared", "released", "completed"), 0.9),
    (_D.CUSTOMS_CLEARANCE, False, "Customs cleared, informational",
     ("hold", "inspection", "additional documents"), (), 0.8),
    (_D.GENERAL_CORRESPONDENCE, False, "Default to no action for general emails",
     ("urgent", "asap", "action required", "please confirm", "please advise", "awaiting"), (), 0.2),
    (_D.UNKNOWN, False, "Unknown document types default to no action",
     ("urgent", "action required", "please"), (), 0.2),
]


def seed_rule_set() -> RuleSet:
    """Rule set built from the seed constants, without a database."""
    rules = {}
    for doc_type, party, is_reply, has_action, verb, to_party, description, hours, urgency in SEED_DOCUMENT_RULES:
        rules[(doc_type, party, is_reply)] = DocumentRule(
            document_type=doc_type, from_party=party, is_reply=is_reply, has_action=has_action,
            action_verb=verb, to_party=to_party, description=description,
            deadline_hours=hours, urgency=urgency,
        )
    defaults = {
        doc_type: TypeDefault(doc_type, has_action, reason, tuple(to_action), tuple(to_none), criticality)
        for doc_type, has_action, reason, to_action, to_none, criticality in SEED_TYPE_DEFAULTS
    }
    return RuleSet(rules=rules, defaults=defaults)


def seed_action_rules(db: Session) -> Dict[str, int]:
    """Insert seed rows that are not present yet. Existing rows are left alone."""
    created = {"rules": 0, "defaults": 0}
    existing = {(r.document_type, r.from_party, r.is_reply) for r in db.query(ActionRule).all()}
    for doc_type, party, is_reply, has_action, verb, to_party, description, hours, urgency in SEED_DOCUMENT_RULES:
        if (doc_type.value, party.value, is_reply) in existing:
            continue
        db.add(ActionRule(
            document_type=doc_type.value, from_party=party.value, is_reply=is_reply,
            has_action=has_action, action_verb=verb, to_party=to_party,
            description=description, deadline_hours=hours, urgency=urgency,
        ))
        created["rules"] += 1

    existing_defaults = {d.document_type for d in db.query(DocumentActionDefault).all()}
    for doc_type, has_action, reason, to_action, to_none, criticality in SEED_TYPE_DEFAULTS:
        if doc_type.value in existing_defaults:
            continue
        db.add(DocumentActionDefault(
            document_type=doc_type.value, default_has_action=has_action, default_reason=reason,
            flip_to_action_keywords=list(to_action), flip_to_no_action_keywords=list(to_none),
            criticality=criticality,
        ))
        created["defaults"] += 1

    db.flush()
    logger.info(f"Seeded {created['rules']} action rules and {created['defaults']} type defaults")
    return created


def load_rule_set(db: Session) -> RuleSet:
    """Read enabled rule rows into a detached snapshot."""
    rules = {}
    for row in db.query(ActionRule).filter(ActionRule.enabled == True).all():  # noqa: E712
        key = (DocumentType(row.document_type), PartyType(row.from_party), bool(row.is_reply))
        rules[key] = DocumentRule(
            document_type=key[0],
            from_party=key[1],
            is_reply=key[2],
            has_action=row.has_action,
            action_verb=row.action_verb,
            action_owner=row.action_owner or "operations",
            to_party=row.to_party,
            description=row.description,
            deadline_hours=row.deadline_hours,
            urgency=row.urgency or "normal",
            confidence=row.confidence or 90,
            applicable_states=tuple(row.applicable_states) if row.applicable_states else None,
            rule_id=row.id,
        )

    defaults = {}
    for row in db.query(DocumentActionDefault).filter(DocumentActionDefault.enabled == True).all():  # noqa: E712
        doc_type = DocumentType(row.document_type)
        defaults[doc_type] = TypeDefault(
            document_type=doc_type,
            default_has_action=row.default_has_action,
            default_reason=row.default_reason or "",
            flip_to_action_keywords=tuple(row.flip_to_action_keywords or ()),
            flip_to_no_action_keywords=tuple(row.flip_to_no_action_keywords or ()),
            criticality=row.criticality if row.criticality is not None else DEFAULT_CRITICALITY,
        )
    return RuleSet(rules=rules, defaults=defaults)


def database_loader() -> RuleSet:
    from freightflow.db.session import SessionLocal

    db = SessionLocal()
    try:
        rule_set = load_rule_set(db)
    finally:
        db.close()
    if not rule_set.rules and not rule_set.defaults:
        logger.warning("No action rules in the database, using seed rules")
        return seed_rule_set()
    return rule_set


# ============= TIME-BASED REMINDERS =============

# (event field, offset hours, verb, description, urgency, window hours, notify, satisfied once state >= this)
TIME_BASED_RULES = [
    ("si_cutoff", -48, "remind", "SI cutoff in 48 hours - remind customer to submit SI", "high", 24, ("customer",), WorkflowState.SI_SUBMITTED),
    ("si_cutoff", -24, "escalate", "SI cutoff in 24 hours - SI still not submitted", "critical", 12, ("customer", "shipper"), WorkflowState.SI_SUBMITTED),
    ("vgm_cutoff", -48, "remind", "VGM cutoff in 48 hours - remind customer", "high", 24, ("customer",), WorkflowState.VGM_SUBMITTED),
    ("vgm_cutoff", -24, "escalate", "VGM cutoff in 24 hours - VGM still not submitted", "critical", 12, ("customer", "shipper"), WorkflowState.VGM_SUBMITTED),
    ("cargo_cutoff", -48, "remind", "Cargo cutoff in 48 hours - confirm cargo delivery to terminal", "high", 24, ("customer", "trucker"), WorkflowState.CONTAINER_GATED_IN),
    ("eta", -48, "escalate", "Vessel arrives in 48 hours - ISF not filed", "critical", 24, ("customs_broker",), WorkflowState.ISF_FILED),
]


def _event_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return None


# ============= ENGINE =============

class ActionRulesEngine:
    """Recommends actions from a cached rule set."""

    def __init__(
        self,
        loader: Callable[[], RuleSet] = database_loader,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = settings.ACTION_RULES_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[RuleSet] = None
        self._expires_at = 0.0

    def rules(self) -> RuleSet:
        """Current rule set, reloaded only after the TTL has passed."""
        with self._lock:
            now = self._clock()
            if self._cached is None or now >= self._expires_at:
                self._cached = self._loader()
                self._expires_at = now + self._ttl
                logger.debug(f"Loaded {len(self._cached.rules)} action rules")
            return self._cached

    def invalidate(self):
        with self._lock:
            self._cached = None
            self._expires_at = 0.0

    def _lookup(self, rule_set: RuleSet, document_type: DocumentType, from_party: PartyType, is_reply: bool):
        for key in (
            (document_type, from_party, is_reply),
            (document_type, from_party, False),
            (document_type, PartyType.UNKNOWN, False),
        ):
            rule = rule_set.rules.get(key)
            if rule is not None:
                return rule
        return None

    def recommend(
        self,
        document_type: DocumentType,
        from_party: PartyType,
        is_reply: bool,
        subject: Optional[str],
        body: Optional[str],
        email_date: Optional[datetime],
        shipment_context: Optional[Mapping] = None,
        now: Optional[datetime] = None,
    ) -> ActionRecommendation:
        """
        Recommend an action for one document.

        Args:
            shipment_context: optional mapping with the linked shipment's
                "workflow_state"; rules restricted to other states yield no action.
        """
        rule_set = self.rules()
        default = rule_set.defaults.get(document_type)
        criticality = default.criticality if default else DEFAULT_CRITICALITY
        text = f"{subject or ''}\n{body or ''}".lower()
        email_date = _event_datetime(email_date) or datetime.now(timezone.utc)

        rule = self._lookup(rule_set, document_type, from_party, is_reply)
        if rule is not None:
            state = (shipment_context or {}).get("workflow_state")
            if rule.applicable_states and state and state not in rule.applicable_states:
                return ActionRecommendation(
                    has_action=False,
                    action_verb=None,
                    owner=rule.action_owner,
                    priority=0,
                    priority_label=PriorityLabel.LOW,
                    description=f"{document_type.value} not applicable at {state} stage",
                    urgency="low",
                    confidence=70,
                    source="document_rule",
                    rule_id=rule.rule_id,
                )
            has_action = rule.has_action
            verb, owner, to_party = rule.action_verb, rule.action_owner, rule.to_party
            description = rule.description or ""
            hours, urgency, confidence, source = rule.deadline_hours, rule.urgency, rule.confidence, "document_rule"
        elif default is not None:
            has_action = default.default_has_action
            verb, owner, to_party = ("review" if has_action else None), "operations", None
            description = default.default_reason
            hours = GENERIC_DEADLINE_HOURS if has_action else None
            urgency, confidence, source = "normal", 70, "type_default"
        elif document_type in NO_ACTION_TYPES and from_party is not PartyType.CUSTOMER:
            has_action, verb, owner, to_party = False, None, "operations", None
            description = f"{document_type.value.replace('_', ' ')} received - informational, no action needed"
            hours, urgency, confidence, source = None, "low", 70, "fallback"
        else:
            has_action, verb, owner, to_party = True, "review", "operations", None
            description = f"Review {document_type.value.replace('_', ' ')} from {from_party.value.replace('_', ' ')}"
            hours, urgency, confidence, source = GENERIC_DEADLINE_HOURS, "normal", 50, "fallback"

        flipped_by = None
        if default is not None:
            keywords = default.flip_to_no_action_keywords if has_action else default.flip_to_action_keywords
            flipped_by = next((k for k in keywords if k.lower() in text), None)
            if flipped_by:
                has_action = not has_action
                if has_action:
                    verb = verb if verb and verb != "complete" else "review"
                    hours = hours or GENERIC_DEADLINE_HOURS
                description = f"{description} (flipped by '{flipped_by}')"

        if not has_action:
            return ActionRecommendation(
                has_action=False,
                action_verb=None,
                owner=owner,
                priority=0,
                priority_label=PriorityLabel.LOW,
                description=description,
                to_party=None,
                urgency=urgency,
                confidence=confidence,
                source=source,
                flipped_by=flipped_by,
                rule_id=rule.rule_id if rule else None,
            )

        deadline = email_date + timedelta(hours=hours) if hours else None
        priority, label = calculate_priority(criticality, text, urgency, deadline, now=now)
        return ActionRecommendation(
            has_action=True,
            action_verb=verb,
            owner=owner,
            priority=priority,
            priority_label=label,
            deadline=deadline,
            description=description,
            to_party=to_party,
            urgency=urgency,
            confidence=confidence,
            source=source,
            flipped_by=flipped_by,
            rule_id=rule.rule_id if rule else None,
        )

    def due_time_based_actions(self, shipment, now: Optional[datetime] = None) -> List[TimeBasedAction]:
        """
        Cutoff/arrival reminders currently due for a shipment.

        A reminder is due from its trigger time until its window closes,
        and only while the workflow has not reached the state that satisfies it.
        """
        now = _event_datetime(now) or datetime.now(timezone.utc)
        state = WorkflowState.parse(getattr(shipment, "workflow_state", None))
        if state is not None and state.is_terminal:
            return []
        rank = state.rank if state else 0

        due = []
        for event, offset, verb, description, urgency, window, notify, satisfied_by in TIME_BASED_RULES:
            if rank >= satisfied_by.rank:
                continue
            event_at = _event_datetime(getattr(shipment, event, None))
            if event_at is None:
                continue
            trigger_at = event_at + timedelta(hours=offset)
            if trigger_at <= now < trigger_at + timedelta(hours=window):
                due.append(TimeBasedAction(
                    trigger_event=event,
                    offset_hours=offset,
                    action_verb=verb,
                    description=description,
                    urgency=urgency,
                    trigger_at=trigger_at,
                    notify=notify,
                ))
        return due

