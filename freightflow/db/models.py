"""
SQLAlchemy ORM models for FreightFlow.

Messages are produced by the mail ingestion collaborator and are read-only
here apart from their processing status. Everything else is derived.
"""
import enum
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Float,
    ForeignKey, Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from freightflow.db.session import Base
from freightflow.services.taxonomy import (
    DocumentType, Direction, PartyType, ClassificationSource,
    EntitySource, EntityType, LinkMethod,
)
from freightflow.services.workflow_states import WorkflowState


# ============= ENUMS =============

class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


# Stored as VARCHAR so new vocabulary members need no type migration.
# Enum values (lowercase) are stored, not names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


def _enum_column_type(enum_cls, name: str, length: int = 50):
    return Enum(*enum_values(enum_cls), name=name, native_enum=False, length=length)


ProcessingStatusType = _enum_column_type(ProcessingStatus, "processingstatus", 20)
DocumentTypeType = _enum_column_type(DocumentType, "documenttype")
DirectionType = _enum_column_type(Direction, "direction", 10)
PartyTypeType = _enum_column_type(PartyType, "partytype", 30)
ClassificationSourceType = _enum_column_type(ClassificationSource, "classificationsource", 20)
EntitySourceType = _enum_column_type(EntitySource, "entitysource", 20)
EntityTypeType = _enum_column_type(EntityType, "entitytype", 30)
LinkMethodType = _enum_column_type(LinkMethod, "linkmethod", 20)
WorkflowStateType = _enum_column_type(WorkflowState, "workflowstate")


# ============= MESSAGES =============

class Message(Base):
    """An ingested email with pre-extracted attachment text."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, nullable=False)  # mailbox message id
    thread_id = Column(String(255), index=True)
    subject = Column(Text, default="")
    sender = Column(String(500), nullable=False)
    true_sender = Column(String(500))  # unwrapped sender for forwarded/relayed mail
    body_text = Column(Text, default="")
    attachments = Column(JSON, default=list)  # [{"filename": ..., "text": ...}]
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_reply = Column(Boolean, default=False)
    # Processing status fields
    status = Column(ProcessingStatusType, default=ProcessingStatus.PENDING.value, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)  # set when a run moves it to processing
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    classification = relationship("Classification", back_populates="message", uselist=False)
    entities = relationship("Entity", back_populates="message", order_by="Entity.position")
    link = relationship("ShipmentDocument", back_populates="message", uselist=False)

    __table_args__ = (
        Index("ix_messages_status_received", "status", "received_at"),
    )

    @property
    def attachment_filenames(self):
        return [a.get("filename") or "" for a in (self.attachments or [])]

    @property
    def attachment_text(self) -> str:
        return "\n\n".join(a.get("text") or "" for a in (self.attachments or []))


class Classification(Base):
    """Canonical classification of one message."""
    __tablename__ = "classifications"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), unique=True, nullable=False)
    document_type = Column(DocumentTypeType, nullable=False, index=True)
    direction = Column(DirectionType, nullable=False)
    from_party = Column(PartyTypeType, default=PartyType.UNKNOWN.value)
    confidence = Column(Integer, default=0, nullable=False)
    source = Column(ClassificationSourceType, nullable=False)
    matched_pattern = Column(String(255))
    reasoning = Column(Text)
    is_low_confidence = Column(Boolean, default=False)
    # Human override. Never rewritten by automated paths.
    is_manual_review = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    message = relationship("Message", back_populates="classification")


class Entity(Base):
    """A value extracted from a message. Duplicates across sources are kept."""
    __tablename__ = "entities"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False)
    entity_type = Column(EntityTypeType, nullable=False)
    value = Column(String(255), nullable=False)
    confidence = Column(Integer, default=0)
    source = Column(EntitySourceType, nullable=False)
    position = Column(Integer, default=0)  # extraction order within the message
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    message = relationship("Message", back_populates="entities")

    __table_args__ = (
        Index("ix_entities_message_type", "message_id", "entity_type"),
        Index("ix_entities_type_value", "entity_type", "value"),
    )


# ============= SHIPMENTS =============

class Shipment(Base):
    """Aggregate root. One row per booking number."""
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(50), unique=True, nullable=False)
    bl_number = Column(String(50), index=True)
    mbl_number = Column(String(50), index=True)
    hbl_number = Column(String(50), index=True)
    container_number_primary = Column(String(11), index=True)
    container_numbers = Column(JSON, default=list)  # secondary containers
    carrier = Column(String(100))
    vessel_name = Column(String(255))
    voyage_number = Column(String(50))
    port_of_loading = Column(String(255))
    port_of_discharge = Column(String(255))
    etd = Column(Date)
    eta = Column(Date)
    si_cutoff = Column(Date)
    vgm_cutoff = Column(Date)
    cargo_cutoff = Column(Date)
    gate_cutoff = Column(Date)
    doc_cutoff = Column(Date)
    workflow_state = Column(WorkflowStateType, nullable=True)
    workflow_state_updated_at = Column(DateTime(timezone=True))
    created_from_message_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    documents = relationship("ShipmentDocument", back_populates="shipment", order_by="ShipmentDocument.id")
    transitions = relationship("WorkflowTransition", back_populates="shipment", order_by="WorkflowTransition.id")


class ShipmentDocument(Base):
    """Link between a message and the shipment it belongs to."""
    __tablename__ = "shipment_documents"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=False, unique=True)
    document_type = Column(DocumentTypeType, nullable=False)
    direction = Column(DirectionType, nullable=False)
    link_method = Column(LinkMethodType, nullable=False)
    confidence = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    shipment = relationship("Shipment", back_populates="documents")
    message = relationship("Message", back_populates="link")

    __table_args__ = (
        UniqueConstraint("shipment_id", "message_id", name="uq_shipment_document_pair"),
    )


class DocumentLifecycle(Base):
    """First/last sighting of each document type on a shipment."""
    __tablename__ = "document_lifecycles"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False)
    document_type = Column(DocumentTypeType, nullable=False)
    first_message_id = Column(Integer, ForeignKey("messages.id"))
    first_seen_at = Column(DateTime(timezone=True))
    last_seen_at = Column(DateTime(timezone=True))
    message_count = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("shipment_id", "document_type", name="uq_lifecycle_shipment_type"),
    )


class WorkflowTransition(Base):
    """History of applied workflow state changes."""
    __tablename__ = "workflow_transitions"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    from_state = Column(WorkflowStateType, nullable=True)
    to_state = Column(WorkflowStateType, nullable=False)
    trigger_document_type = Column(DocumentTypeType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    shipment = relationship("Shipment", back_populates="transitions")


# ============= ACTION RULES =============

class ActionRule(Base):
    """Action rule keyed by (document_type, from_party, is_reply)."""
    __tablename__ = "action_rules"

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(DocumentTypeType, nullable=False)
    from_party = Column(PartyTypeType, nullable=False)
    is_reply = Column(Boolean, default=False, nullable=False)
    has_action = Column(Boolean, default=True, nullable=False)
    action_verb = Column(String(50))
    action_owner = Column(String(50), default="operations")
    to_party = Column(String(50))
    description = Column(Text)
    deadline_hours = Column(Integer)
    urgency = Column(String(20), default="normal")  # low, normal, high, critical
    confidence = Column(Integer, default=80)
    applicable_states = Column(JSON, nullable=True)  # list of workflow state values
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("document_type", "from_party", "is_reply", name="uq_action_rule_key"),
    )


class DocumentActionDefault(Base):
    """Per-type default has_action with keyword flips."""
    __tablename__ = "document_action_defaults"

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(DocumentTypeType, unique=True, nullable=False)
    default_has_action = Column(Boolean, nullable=False)
    default_reason = Column(Text)
    flip_to_action_keywords = Column(JSON, default=list)
    flip_to_no_action_keywords = Column(JSON, default=list)
    criticality = Column(Float, default=0.5)  # 0-1, feeds priority scoring
    enabled = Column(Boolean, default=True)


# ============= BATCH CURSORS =============

class ProcessingCursor(Base):
    """Named cursor advanced after each completed page."""
    __tablename__ = "processing_cursors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    last_message_id = Column(Integer, default=0)
    pages_completed = Column(Integer, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
