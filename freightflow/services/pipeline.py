"""
Batch pipeline over pending messages.

One page at a time:
    1. claim pending (and retryable failed) messages
    2. classify + extract in worker threads over detached snapshots
    3. persist, link and advance state sequentially, one commit per message
    4. advance the named cursor

A message is only marked processed once every step for it succeeded.
Batch functions never raise for a single message; they return a result dict.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, FrozenSet, List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from freightflow.core.config import settings
from freightflow.core.errors import ManualReviewLocked
from freightflow.core.logging import get_logger, audit_logger
from freightflow.db.models import (
    Classification, Entity, Message, ProcessingCursor, ProcessingStatus,
    Shipment, ShipmentDocument,
)
from freightflow.services.direction import detect_direction, detect_party
from freightflow.services.document_classifier import ClassificationResult, FallbackFn, classify
from freightflow.services.entity_extractor import ExtractedEntity, extract_message
from freightflow.services.link_resolver import booking_key, rebuild_lifecycle, resolve
from freightflow.services.state_machine import advance
from freightflow.services.taxonomy import ClassificationSource, DocumentType
from freightflow.services.workflow_states import WorkflowState

logger = get_logger(__name__)

CURSOR_NAME = "message_pipeline"


# ============= LOCKING =============

class KeyedLock:
    """One lock per key, so work on different bookings never blocks."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: Optional[str]):
        if not key:
            yield
            return
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


_booking_locks = KeyedLock()


# ============= SNAPSHOTS =============

@dataclass(frozen=True)
class MessageSnapshot:
    id: int
    subject: str
    sender: str
    true_sender: Optional[str]
    body_text: str
    attachment_filenames: Tuple[str, ...]
    attachment_texts: Tuple[str, ...]
    is_reply: bool
    thread_types: FrozenSet[DocumentType] = frozenset()
    manual_review: bool = False


@dataclass
class AnalysisOutcome:
    message_id: int
    classification: Optional[ClassificationResult] = None
    entities: List[ExtractedEntity] = field(default_factory=list)
    error: Optional[str] = None


def _thread_types(db: Session, message: Message) -> FrozenSet[DocumentType]:
    """Document types already classified earlier in the same thread."""
    if not message.thread_id:
        return frozenset()
    rows = (
        db.query(Classification.document_type)
        .join(Message, Message.id == Classification.message_id)
        .filter(
            Message.thread_id == message.thread_id,
            Message.id != message.id,
            Message.received_at <= message.received_at,
        )
        .all()
    )
    return frozenset(DocumentType(t) for (t,) in rows)


def snapshot(db: Session, message: Message) -> MessageSnapshot:
    manual = (
        db.query(Classification.id)
        .filter(Classification.message_id == message.id, Classification.is_manual_review == True)  # noqa: E712
        .first()
        is not None
    )
    return MessageSnapshot(
        id=message.id,
        subject=message.subject or "",
        sender=message.sender,
        true_sender=message.true_sender,
        body_text=message.body_text or "",
        attachment_filenames=tuple(message.attachment_filenames),
        attachment_texts=tuple(a.get("text") or "" for a in (message.attachments or [])),
        is_reply=bool(message.is_reply),
        thread_types=_thread_types(db, message),
        manual_review=manual,
    )


def analyze(snap: MessageSnapshot, fallback: Optional[FallbackFn] = None) -> AnalysisOutcome:
    """Classify and extract one snapshot. Pure; never raises."""
    outcome = AnalysisOutcome(message_id=snap.id)
    try:
        if not snap.manual_review:
            outcome.classification = classify(
                subject=snap.subject,
                sender_email=snap.sender,
                true_sender_email=snap.true_sender,
                body_text=snap.body_text,
                attachment_filenames=snap.attachment_filenames,
                attachment_text="\n\n".join(snap.attachment_texts),
                is_reply=snap.is_reply,
                thread_types=snap.thread_types,
                fallback=fallback,
            )
        outcome.entities = extract_message(
            snap.subject, snap.body_text, snap.attachment_texts, snap.sender, snap.true_sender,
            is_reply=snap.is_reply,
        )
    except Exception as e:
        logger.warning(f"Analysis failed for message {snap.id}: {e}", extra={"message_id": snap.id, "stage": "analyze"})
        outcome.error = f"{type(e).__name__}: {e}"
    return outcome


# ============= PERSISTENCE =============

def save_classification(db: Session, message: Message, result: ClassificationResult) -> Classification:
    """
    Upsert the canonical classification of a message.

    Raises:
        ManualReviewLocked: the existing row is under manual review.
    """
    row = db.query(Classification).filter(Classification.message_id == message.id).first()
    if row is not None and row.is_manual_review:
        raise ManualReviewLocked(message.id)
    if row is None:
        row = Classification(message_id=message.id)
        db.add(row)

    row.document_type = result.document_type.value
    row.direction = result.direction.value
    row.from_party = detect_party(message.sender, message.true_sender).value
    row.confidence = result.confidence
    row.source = result.source.value
    row.matched_pattern = (result.matched_pattern or "")[:255] or None
    row.reasoning = result.reasoning
    row.is_low_confidence = result.is_low_confidence
    db.flush()
    return row


def save_entities(db: Session, message: Message, entities: List[ExtractedEntity]) -> None:
    """Replace the message's entities with a fresh extraction."""
    db.query(Entity).filter(Entity.message_id == message.id).delete(synchronize_session=False)
    for position, entity in enumerate(entities):
        db.add(Entity(
            message_id=message.id,
            entity_type=entity.entity_type.value,
            value=entity.value,
            confidence=entity.confidence,
            source=entity.source.value,
            position=position,
        ))
    db.flush()


def _persist_classification(db: Session, message: Message, result: Optional[ClassificationResult]) -> Classification:
    existing = db.query(Classification).filter(Classification.message_id == message.id).first()
    if result is None:
        if existing is None:
            raise ValueError(f"Message {message.id} has no classification")
        return existing
    try:
        return save_classification(db, message, result)
    except ManualReviewLocked:
        audit_logger.log(
            action="manual_review_overwrite_refused",
            entity_type="classification",
            entity_id=existing.id if existing else None,
            message_id=message.id,
            details={"attempted_type": result.document_type.value},
        )
        return existing


def apply_manual_classification(
    db: Session,
    message: Message,
    document_type: DocumentType,
    reasoning: Optional[str] = None,
) -> Tuple[Classification, Optional[WorkflowState]]:
    """
    Record a human classification and carry it through to the shipment.

    The message's link and lifecycle rows take the new type and the state
    machine is re-run in the same transaction. The recorded state never
    moves backward, so a correction can only advance it.

    Returns the classification row and the new state if it advanced.
    """
    row = db.query(Classification).filter(Classification.message_id == message.id).first()
    if row is None:
        row = Classification(
            message_id=message.id,
            direction=detect_direction(message.sender, message.true_sender, message.subject).value,
            from_party=detect_party(message.sender, message.true_sender).value,
        )
        db.add(row)

    previous = row.document_type
    row.document_type = document_type.value
    row.confidence = 100
    row.source = ClassificationSource.MANUAL.value
    row.matched_pattern = None
    row.reasoning = reasoning or "Manual review"
    row.is_low_confidence = False
    row.is_manual_review = True
    db.flush()

    advanced = None
    link = db.query(ShipmentDocument).filter(ShipmentDocument.message_id == message.id).first()
    if link is not None and link.document_type != document_type.value:
        old_type = DocumentType(link.document_type)
        link.document_type = document_type.value
        db.flush()
        rebuild_lifecycle(db, link.shipment_id, old_type)
        rebuild_lifecycle(db, link.shipment_id, document_type)
        advanced = advance(db, link.shipment_id)

    db.commit()
    db.refresh(row)

    audit_logger.log(
        action="manual_classification",
        entity_type="classification",
        entity_id=row.id,
        message_id=message.id,
        shipment_id=link.shipment_id if link is not None else None,
        details={"from": previous, "to": document_type.value},
    )
    return row, advanced


def _mark_failed(db: Session, message_id: int, reason: str) -> None:
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        return
    if message.status == ProcessingStatus.PROCESSED.value:
        # Another run finished it after our claim went stale
        logger.warning(f"Not marking processed message {message_id} as failed: {reason}", extra={"message_id": message_id})
        return
    message.status = ProcessingStatus.FAILED.value
    message.error_message = reason[:2000]
    message.attempts = (message.attempts or 0) + 1
    db.commit()
    audit_logger.log(
        action="message_failed",
        entity_type="message",
        entity_id=message_id,
        message_id=message_id,
        details={"reason": reason[:500], "attempts": message.attempts},
    )


def _advance_cursor(db: Session, last_message_id: int) -> ProcessingCursor:
    cursor = db.query(ProcessingCursor).filter(ProcessingCursor.name == CURSOR_NAME).first()
    if cursor is None:
        cursor = ProcessingCursor(name=CURSOR_NAME, last_message_id=0, pages_completed=0)
        db.add(cursor)
    cursor.last_message_id = max(cursor.last_message_id or 0, last_message_id)
    cursor.pages_completed = (cursor.pages_completed or 0) + 1
    db.commit()
    return cursor


# ============= BATCH ENTRY POINTS =============

def claimable_messages(page_size: int, now: Optional[datetime] = None):
    """
    SELECT for the next page of work, oldest first.

    Eligible: pending, failed with attempts left, and processing rows whose
    claim is older than PROCESSING_CLAIM_TIMEOUT_SECONDS. Rows locked by a
    concurrent run are skipped (no-op on SQLite).
    """
    now = now or datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=settings.PROCESSING_CLAIM_TIMEOUT_SECONDS)
    return (
        select(Message)
        .where(or_(
            Message.status == ProcessingStatus.PENDING.value,
            and_(
                Message.status == ProcessingStatus.FAILED.value,
                Message.attempts < settings.MAX_MESSAGE_ATTEMPTS,
            ),
            and_(
                Message.status == ProcessingStatus.PROCESSING.value,
                or_(Message.claimed_at.is_(None), Message.claimed_at < stale_before),
            ),
        ))
        .order_by(Message.received_at, Message.id)
        .limit(page_size)
        .with_for_update(skip_locked=True)
    )


def fetch_page(db: Session, page_size: int, now: Optional[datetime] = None) -> List[Message]:
    return list(db.scalars(claimable_messages(page_size, now)).all())


def claim_page(db: Session, page_size: int, now: Optional[datetime] = None) -> List[Message]:
    """Select and mark a page as processing in one transaction."""
    now = now or datetime.now(timezone.utc)
    messages = fetch_page(db, page_size, now)
    for message in messages:
        message.status = ProcessingStatus.PROCESSING.value
        message.claimed_at = now
    db.commit()
    return messages


def process_page(
    db: Session,
    page_size: Optional[int] = None,
    fallback: Optional[FallbackFn] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Run one page of the pipeline.

    This function NEVER raises for a single message. Per-message errors are
    recorded on the message row and counted in the result.
    """
    page_size = page_size or settings.BATCH_PAGE_SIZE
    result = {
        "page_size": page_size,
        "fetched": 0,
        "processed": 0,
        "failed": 0,
        "linked": 0,
        "created": 0,
        "orphaned": 0,
        "advanced": 0,
        "manual_review_kept": 0,
        "cursor": None,
    }

    messages = claim_page(db, page_size)
    result["fetched"] = len(messages)
    if not messages:
        return result

    snapshots = [snapshot(db, m) for m in messages]
    result["manual_review_kept"] = sum(1 for s in snapshots if s.manual_review)

    workers = max_workers or settings.WORKER_THREADS
    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda s: analyze(s, fallback), snapshots))

    for snap, outcome in zip(snapshots, outcomes):
        if outcome.error:
            _mark_failed(db, snap.id, outcome.error)
            result["failed"] += 1
            continue
        try:
            link, advanced = _complete_message(db, snap.id, outcome)
        except Exception as e:
            db.rollback()
            logger.error(f"Processing failed for message {snap.id}: {e}", extra={"message_id": snap.id}, exc_info=True)
            _mark_failed(db, snap.id, f"{type(e).__name__}: {e}")
            result["failed"] += 1
            continue

        result["processed"] += 1
        if link.linked:
            result["linked"] += 1
            result["created"] += int(link.created)
            result["advanced"] += int(advanced)
        else:
            result["orphaned"] += 1

    cursor = _advance_cursor(db, max(s.id for s in snapshots))
    result["cursor"] = {"name": cursor.name, "last_message_id": cursor.last_message_id, "pages_completed": cursor.pages_completed}
    logger.info(
        f"Page done: {result['processed']} processed, {result['failed']} failed, "
        f"{result['created']} shipments created, {result['orphaned']} orphaned"
    )
    return result


def _complete_message(db: Session, message_id: int, outcome: AnalysisOutcome):
    message = db.query(Message).filter(Message.id == message_id).one()
    classification = _persist_classification(db, message, outcome.classification)
    save_entities(db, message, outcome.entities)

    advanced = False
    with _booking_locks.hold(booking_key(outcome.entities)):
        link = resolve(db, message, classification, outcome.entities)
        if link.linked:
            advanced = advance(db, link.shipment_id) is not None

    message.status = ProcessingStatus.PROCESSED.value
    message.error_message = None
    message.processed_at = datetime.now(timezone.utc)
    db.commit()
    return link, advanced


def relink_orphans(db: Session, limit: Optional[int] = None) -> Dict[str, Any]:
    """Retry linking for processed messages that have no shipment yet."""
    result = {"checked": 0, "linked": 0, "created": 0, "advanced": 0, "errors": 0}

    query = (
        db.query(Message)
        .outerjoin(ShipmentDocument, ShipmentDocument.message_id == Message.id)
        .join(Classification, Classification.message_id == Message.id)
        .filter(Message.status == ProcessingStatus.PROCESSED.value, ShipmentDocument.id.is_(None))
        .order_by(Message.received_at, Message.id)
    )
    if limit:
        query = query.limit(limit)
    orphan_ids = [m.id for m in query.all()]

    for message_id in orphan_ids:
        result["checked"] += 1
        try:
            message = db.query(Message).filter(Message.id == message_id).one()
            entities = list(message.entities)
            with _booking_locks.hold(booking_key(entities)):
                link = resolve(db, message, message.classification, entities)
                advanced = link.linked and advance(db, link.shipment_id) is not None
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Relink failed for message {message_id}: {e}", extra={"message_id": message_id})
            result["errors"] += 1
            continue

        if link.linked:
            result["linked"] += 1
            result["created"] += int(link.created)
            result["advanced"] += int(advanced)

    logger.info(f"Relinked {result['linked']} of {result['checked']} orphaned messages")
    return result


def recompute_all_states(db: Session) -> Dict[str, Any]:
    """Re-run the state machine for every shipment."""
    result = {"shipments": 0, "advanced": 0, "errors": 0}
    shipment_ids = [sid for (sid,) in db.query(Shipment.id).order_by(Shipment.id).all()]
    for shipment_id in shipment_ids:
        result["shipments"] += 1
        try:
            if advance(db, shipment_id) is not None:
                result["advanced"] += 1
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"State recompute failed for shipment {shipment_id}: {e}", extra={"shipment_id": shipment_id})
            result["errors"] += 1
    return result
