"""
Link resolution: attach a classified message to a shipment.

Cascade, first hit wins:
    1. booking number
    2. BL / MBL / HBL number
    3. container number (primary or secondary)
    4. create from a booking confirmation/amendment that names a carrier

Anything else stays unlinked and is retried by `relink_orphans`. Every
lookup reads the live tables; identifiers backfilled earlier in the same
session are flushed before the next lookup.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import String, cast, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from freightflow.core.logging import get_logger, audit_logger
from freightflow.db.models import DocumentLifecycle, Message, Shipment, ShipmentDocument
from freightflow.services.entity_extractor import as_date, first_value, last_value, values_of
from freightflow.services.taxonomy import Direction, DocumentType, EntityType, LinkMethod

logger = get_logger(__name__)

CREATION_TYPES = frozenset({DocumentType.BOOKING_CONFIRMATION, DocumentType.BOOKING_AMENDMENT})

# Shipment column -> entity type, for simple scalar backfill
_SCALAR_FIELDS = (
    ("carrier", EntityType.CARRIER),
    ("vessel_name", EntityType.VESSEL_NAME),
    ("voyage_number", EntityType.VOYAGE_NUMBER),
    ("port_of_loading", EntityType.PORT_OF_LOADING),
    ("port_of_discharge", EntityType.PORT_OF_DISCHARGE),
)

_CUTOFF_FIELDS = (
    ("si_cutoff", EntityType.SI_CUTOFF),
    ("vgm_cutoff", EntityType.VGM_CUTOFF),
    ("cargo_cutoff", EntityType.CARGO_CUTOFF),
    ("gate_cutoff", EntityType.GATE_CUTOFF),
    ("doc_cutoff", EntityType.DOC_CUTOFF),
)


@dataclass
class LinkResult:
    shipment_id: Optional[int]
    created: bool = False
    link_method: Optional[LinkMethod] = None

    @property
    def linked(self) -> bool:
        return self.shipment_id is not None

    def to_dict(self) -> dict:
        return {
            "shipment_id": self.shipment_id,
            "created": self.created,
            "link_method": self.link_method.value if self.link_method else None,
        }


def _coerce(enum_cls, value):
    return value if isinstance(value, enum_cls) else enum_cls(value)


def booking_key(entities: Iterable) -> Optional[str]:
    """The booking number a message would link or create under, if any."""
    return first_value(entities, EntityType.BOOKING_NUMBER)


# ============= LOOKUPS =============

def find_by_booking(db: Session, bookings: List[str]) -> Optional[Shipment]:
    if not bookings:
        return None
    found = {s.booking_number: s for s in db.query(Shipment).filter(Shipment.booking_number.in_(bookings))}
    for booking in bookings:
        if booking in found:
            return found[booking]
    return None


def find_by_bl(db: Session, bls: List[str], hbls: List[str]) -> Optional[Shipment]:
    clauses = []
    if bls:
        clauses += [Shipment.bl_number.in_(bls), Shipment.mbl_number.in_(bls)]
    if hbls:
        clauses.append(Shipment.hbl_number.in_(hbls))
    if not clauses:
        return None
    return db.query(Shipment).filter(or_(*clauses)).order_by(Shipment.id).first()


def find_by_container(db: Session, containers: List[str]) -> Optional[Shipment]:
    if not containers:
        return None
    shipment = (
        db.query(Shipment)
        .filter(Shipment.container_number_primary.in_(containers))
        .order_by(Shipment.id)
        .first()
    )
    if shipment is not None:
        return shipment

    # Secondary containers live in a JSON list; narrow with LIKE, confirm in Python
    text = cast(Shipment.container_numbers, String)
    candidates = (
        db.query(Shipment)
        .filter(or_(*[text.like(f'%"{c}"%') for c in containers]))
        .order_by(Shipment.id)
    )
    for candidate in candidates:
        if set(candidate.container_numbers or []) & set(containers):
            return candidate
    return None


# ============= RESOLUTION =============

def resolve(db: Session, message: Message, classification, entities: Iterable) -> LinkResult:
    """
    Link a message to a shipment, creating one when allowed.

    `classification` needs document_type, direction and confidence (ORM row
    or ClassificationResult). `entities` needs entity_type and value.
    Calling this again for a linked message returns the existing link and
    writes nothing.
    """
    existing = db.query(ShipmentDocument).filter(ShipmentDocument.message_id == message.id).first()
    if existing is not None:
        return LinkResult(existing.shipment_id, False, LinkMethod(existing.link_method))

    entities = list(entities)
    document_type = _coerce(DocumentType, classification.document_type)
    direction = _coerce(Direction, classification.direction)

    bookings = values_of(entities, EntityType.BOOKING_NUMBER)
    bls = values_of(entities, EntityType.BL_NUMBER) + values_of(entities, EntityType.MBL_NUMBER)
    hbls = values_of(entities, EntityType.HBL_NUMBER)
    containers = values_of(entities, EntityType.CONTAINER_NUMBER)

    created = False
    shipment = find_by_booking(db, bookings)
    method = LinkMethod.BOOKING
    if shipment is None:
        shipment, method = find_by_bl(db, bls, hbls), LinkMethod.BL
    if shipment is None:
        shipment, method = find_by_container(db, containers), LinkMethod.CONTAINER
    if shipment is None and _may_create(document_type, bookings, entities):
        shipment, created = _create_shipment(db, message, bookings[0], entities)
        method = LinkMethod.CREATED if created else LinkMethod.BOOKING

    if shipment is None:
        logger.debug(f"Message {message.id} left unlinked", extra={"message_id": message.id, "stage": "link"})
        return LinkResult(None)

    backfill(shipment, entities, authoritative=document_type in CREATION_TYPES)

    db.add(ShipmentDocument(
        shipment_id=shipment.id,
        message_id=message.id,
        document_type=document_type.value,
        direction=direction.value,
        link_method=method.value,
        confidence=classification.confidence or 0,
    ))
    record_lifecycle(db, shipment.id, document_type, message)
    db.flush()

    logger.info(
        f"Linked message {message.id} to shipment {shipment.id} via {method.value}",
        extra={"message_id": message.id, "shipment_id": shipment.id, "stage": "link"},
    )
    return LinkResult(shipment.id, created, method)


def _may_create(document_type: DocumentType, bookings: List[str], entities: List) -> bool:
    # Carrier entities come from the sender domain or the message's own text, never quoted history
    if document_type not in CREATION_TYPES or not bookings:
        return False
    return bool(values_of(entities, EntityType.CARRIER))


def _create_shipment(db: Session, message: Message, booking_number: str, entities: List):
    """
    Insert a shipment under a SAVEPOINT.

    A concurrent insert of the same booking number surfaces as an
    IntegrityError; the existing row is fetched and used instead.
    """
    try:
        with db.begin_nested():
            shipment = Shipment(
                booking_number=booking_number,
                created_from_message_id=message.id,
                container_numbers=[],
            )
            db.add(shipment)
            db.flush()
    except IntegrityError:
        logger.warning(
            f"Shipment for booking {booking_number} already exists, linking to it",
            extra={"message_id": message.id, "stage": "link"},
        )
        shipment = db.query(Shipment).filter(Shipment.booking_number == booking_number).one()
        return shipment, False

    audit_logger.log(
        action="shipment_created",
        entity_type="shipment",
        entity_id=shipment.id,
        message_id=message.id,
        shipment_id=shipment.id,
        details={"booking_number": booking_number},
    )
    return shipment, True


# ============= BACKFILL =============

def backfill(shipment: Shipment, entities: List, authoritative: bool = False) -> List[str]:
    """
    Copy extracted identifiers and schedule data onto the shipment.

    Identifiers only fill empty fields. Dates and cutoffs are overwritten
    when the message is a booking confirmation/amendment, since those carry
    the carrier's current schedule. Returns the names of changed fields.
    """
    changed = []

    def _set(field, value, overwrite=False):
        if value in (None, ""):
            return
        current = getattr(shipment, field)
        if current in (None, "") or (overwrite and current != value):
            setattr(shipment, field, value)
            changed.append(field)

    _set("bl_number", first_value(entities, EntityType.BL_NUMBER))
    _set("mbl_number", first_value(entities, EntityType.MBL_NUMBER))
    _set("hbl_number", first_value(entities, EntityType.HBL_NUMBER))

    containers = values_of(entities, EntityType.CONTAINER_NUMBER)
    if containers:
        _set("container_number_primary", containers[0])
        secondary = list(shipment.container_numbers or [])
        for container in containers:
            if container != shipment.container_number_primary and container not in secondary:
                secondary.append(container)
        if secondary != list(shipment.container_numbers or []):
            # Reassign so the JSON column is marked dirty
            shipment.container_numbers = secondary
            changed.append("container_numbers")

    for field, entity_type in _SCALAR_FIELDS:
        _set(field, first_value(entities, entity_type))

    _set("etd", as_date(first_value(entities, EntityType.ETD)), overwrite=authoritative)
    _set("eta", as_date(last_value(entities, EntityType.ETA)), overwrite=authoritative)
    for field, entity_type in _CUTOFF_FIELDS:
        _set(field, as_date(first_value(entities, entity_type)), overwrite=authoritative)

    return changed


# ============= LIFECYCLE =============

def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def record_lifecycle(db: Session, shipment_id: int, document_type: DocumentType, message: Message):
    """Upsert first/last sighting of a document type on a shipment."""
    if document_type is DocumentType.UNKNOWN:
        return
    seen_at = _as_utc(message.received_at) or datetime.now(timezone.utc)

    lifecycle = (
        db.query(DocumentLifecycle)
        .filter(
            DocumentLifecycle.shipment_id == shipment_id,
            DocumentLifecycle.document_type == document_type.value,
        )
        .first()
    )
    if lifecycle is None:
        try:
            with db.begin_nested():
                db.add(DocumentLifecycle(
                    shipment_id=shipment_id,
                    document_type=document_type.value,
                    first_message_id=message.id,
                    first_seen_at=seen_at,
                    last_seen_at=seen_at,
                    message_count=1,
                ))
                db.flush()
            return
        except IntegrityError:
            lifecycle = (
                db.query(DocumentLifecycle)
                .filter(
                    DocumentLifecycle.shipment_id == shipment_id,
                    DocumentLifecycle.document_type == document_type.value,
                )
                .one()
            )

    lifecycle.message_count = (lifecycle.message_count or 0) + 1
    if _as_utc(lifecycle.first_seen_at) is None or seen_at < _as_utc(lifecycle.first_seen_at):
        lifecycle.first_seen_at = seen_at
        lifecycle.first_message_id = message.id
    if _as_utc(lifecycle.last_seen_at) is None or seen_at > _as_utc(lifecycle.last_seen_at):
        lifecycle.last_seen_at = seen_at


def rebuild_lifecycle(db: Session, shipment_id: int, document_type: DocumentType) -> Optional[DocumentLifecycle]:
    """
    Recount one lifecycle row from the shipment's current links.

    Used when a link changes type after the fact (manual reclassification).
    The row is removed when no link of that type is left.
    """
    lifecycle = (
        db.query(DocumentLifecycle)
        .filter(
            DocumentLifecycle.shipment_id == shipment_id,
            DocumentLifecycle.document_type == document_type.value,
        )
        .first()
    )
    sightings = (
        db.query(Message.id, Message.received_at)
        .join(ShipmentDocument, ShipmentDocument.message_id == Message.id)
        .filter(
            ShipmentDocument.shipment_id == shipment_id,
            ShipmentDocument.document_type == document_type.value,
        )
        .order_by(Message.received_at, Message.id)
        .all()
    )
    if document_type is DocumentType.UNKNOWN or not sightings:
        if lifecycle is not None:
            db.delete(lifecycle)
            db.flush()
        return None

    if lifecycle is None:
        lifecycle = DocumentLifecycle(shipment_id=shipment_id, document_type=document_type.value)
        db.add(lifecycle)
    lifecycle.first_message_id = sightings[0][0]
    lifecycle.first_seen_at = _as_utc(sightings[0][1])
    lifecycle.last_seen_at = _as_utc(sightings[-1][1])
    lifecycle.message_count = len(sightings)
    db.flush()
    return lifecycle
