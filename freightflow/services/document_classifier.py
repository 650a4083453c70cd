"""
Document classification cascade.

Stages run in strict order and the first candidate at or above the
acceptance threshold wins:

    1. attachment filename patterns
    2. content markers over body + attachment text
    3. subject patterns (skipped for replies)
    4. external model fallback

Replies and forwards are classified on their own text only; quoted history
is stripped first. A candidate whose type the sender's party cannot issue
(a trucker sending a booking confirmation) is passed over.

Below-threshold candidates are kept; if nothing clears the threshold the
best of them (or the model's answer) is accepted in the low-confidence band,
and anything under the floor becomes UNKNOWN with zero confidence.

`classify` is pure. Callers persist the result.
"""
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, List, Optional, Sequence

from freightflow.core.config import settings
from freightflow.core.errors import ExternalModelError, TransientModelError
from freightflow.core.logging import get_logger
from freightflow.services.direction import carrier_for_sender, detect_direction, detect_party, effective_sender
from freightflow.services.llm_classifier import ModelVerdict, classify_with_model
from freightflow.services.rule_table import get_rule_table
from freightflow.services.taxonomy import ClassificationSource, Direction, DocumentType
from freightflow.services.thread_context import fresh_body, is_reply_subject

logger = get_logger(__name__)

REPLY_DOWNGRADE_CONFIDENCE = 70
SENDER_MISMATCH_CONFIDENCE = 70
OPTIONAL_MARKER_BONUS = 2
OPTIONAL_MARKER_BONUS_CAP = 5
MAX_PATTERN_CONFIDENCE = 99

FallbackFn = Callable[..., ModelVerdict]


@dataclass
class ClassificationResult:
    document_type: DocumentType
    direction: Direction
    confidence: int
    source: ClassificationSource
    matched_pattern: Optional[str] = None
    is_low_confidence: bool = False
    needs_manual_review: bool = False
    reasoning: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["document_type"] = self.document_type.value
        data["direction"] = self.direction.value
        data["source"] = self.source.value
        return data


@dataclass
class _Candidate:
    document_type: DocumentType
    confidence: int
    source: ClassificationSource
    pattern: str
    reasoning: str


# ============= STAGES =============

def match_filename(filenames: Sequence[str]) -> Optional[_Candidate]:
    """First filename rule (in table order) that matches any attachment name."""
    names = [n for n in (filenames or []) if n]
    if not names:
        return None
    for rule in get_rule_table().filename_rules:
        for name in names:
            if rule.pattern.search(name):
                return _Candidate(
                    document_type=rule.document_type,
                    confidence=rule.confidence,
                    source=ClassificationSource.ATTACHMENT,
                    pattern=rule.pattern.pattern,
                    reasoning=f"Attachment filename '{name}' matched {rule.document_type.value}",
                )
    return None


def match_content(
    body_text: Optional[str],
    attachment_text: Optional[str],
    direction: Direction,
) -> Optional[_Candidate]:
    """
    Best content rule over the concatenated body and attachment text.

    Highest confidence wins; ties go to the earlier rule. The source is
    the attachment when all required markers occur in the attachment text.
    """
    attachment_upper = (attachment_text or "").upper()
    combined = f"{(body_text or '').upper()}\n{attachment_upper}"
    if not combined.strip():
        return None

    best = None
    for rule in get_rule_table().content_rules:
        if rule.direction is not None and rule.direction is not direction:
            continue
        required, optional, exclude = rule._compiled
        if not all(r.search(combined) for r in required):
            continue
        if any(x.search(combined) for x in exclude):
            continue

        hits = sum(1 for o in optional if o.search(combined))
        bonus = min(OPTIONAL_MARKER_BONUS_CAP, hits * OPTIONAL_MARKER_BONUS)
        confidence = min(MAX_PATTERN_CONFIDENCE, rule.confidence + bonus)
        if best is not None and confidence <= best.confidence:
            continue

        in_attachment = bool(attachment_upper) and all(r.search(attachment_upper) for r in required)
        best = _Candidate(
            document_type=rule.document_type,
            confidence=confidence,
            source=ClassificationSource.ATTACHMENT if in_attachment else ClassificationSource.BODY,
            pattern=" + ".join(rule.required),
            reasoning=f"Content markers {list(rule.required)} matched ({hits} optional)",
        )
    return best


def match_subject(
    subject: Optional[str],
    sender_address: str,
    attachment_filenames: Sequence[str],
    attachment_text: Optional[str],
    direction: Direction,
) -> Optional[_Candidate]:
    """Highest-priority subject rule whose requirements are all met."""
    if not subject:
        return None

    sender_carrier = carrier_for_sender(sender_address)
    has_pdf = any((n or "").lower().endswith(".pdf") for n in attachment_filenames or [])

    for rule in get_rule_table().subject_rules:
        if not rule.pattern.search(subject):
            continue
        if rule.carrier and (sender_carrier is None or sender_carrier.key != rule.carrier):
            continue
        if rule.requires_pdf and not has_pdf:
            continue
        if rule.attachment_marker is not None and not rule.attachment_marker.search(attachment_text or ""):
            continue
        if rule.direction is not None and rule.direction is not direction:
            continue
        return _Candidate(
            document_type=rule.document_type,
            confidence=rule.confidence,
            source=ClassificationSource.SUBJECT,
            pattern=rule.pattern.pattern,
            reasoning=f"Subject matched {rule.document_type.value} (priority {rule.priority})",
        )
    return None


# ============= CASCADE =============

def classify(
    subject: Optional[str],
    sender_email: Optional[str],
    true_sender_email: Optional[str] = None,
    body_text: Optional[str] = None,
    attachment_filenames: Optional[Sequence[str]] = None,
    attachment_text: Optional[str] = None,
    is_reply: bool = False,
    thread_types: Optional[Iterable[DocumentType]] = None,
    fallback: Optional[FallbackFn] = None,
    use_fallback: Optional[bool] = None,
) -> ClassificationResult:
    """
    Classify one message.

    Args:
        thread_types: document types already seen earlier in the same thread.
            A reply whose type is already present is downgraded to
            general_correspondence.
        fallback: model call override, mainly for tests.

    Raises:
        TransientModelError: the fallback model stayed unavailable after retries.
    """
    threshold = settings.CLASSIFICATION_MIN_CONFIDENCE
    floor = settings.CLASSIFICATION_LOW_CONFIDENCE_FLOOR
    if use_fallback is None:
        use_fallback = settings.CLASSIFICATION_USE_LLM_FALLBACK

    sender = effective_sender(sender_email, true_sender_email)
    direction = detect_direction(sender_email, true_sender_email, subject)
    party = detect_party(sender_email, true_sender_email)
    filenames = list(attachment_filenames or [])
    reply = is_reply or is_reply_subject(subject)
    if reply:
        body_text = fresh_body(body_text)

    stages = [
        lambda: match_filename(filenames),
        lambda: match_content(body_text, attachment_text, direction),
    ]
    # Reply subjects describe the original document, not this one
    if not reply:
        stages.append(lambda: match_subject(subject, sender, filenames, attachment_text, direction))

    table = get_rule_table()
    candidates: List[_Candidate] = []
    rejected: List[_Candidate] = []
    chosen = None
    for stage in stages:
        candidate = stage()
        if candidate is None:
            continue
        if not table.party_may_issue(party, candidate.document_type):
            rejected.append(candidate)
            continue
        if candidate.confidence >= threshold:
            chosen = candidate
            break
        candidates.append(candidate)

    if chosen is None and use_fallback:
        verdict = _ask_model(fallback or classify_with_model, subject, body_text, attachment_text, sender)
        if verdict is not None and verdict.document_type is not DocumentType.UNKNOWN:
            candidate = _Candidate(
                document_type=verdict.document_type,
                confidence=verdict.confidence,
                source=ClassificationSource.AI_FALLBACK,
                pattern="",
                reasoning=verdict.reasoning or "External model classification",
            )
            if table.party_may_issue(party, candidate.document_type):
                candidates.append(candidate)
            else:
                rejected.append(candidate)

    if chosen is None and candidates:
        # max() keeps the first of equal candidates, so pattern stages beat the model on ties
        chosen = max(candidates, key=lambda c: c.confidence)

    if (chosen is None or chosen.confidence < floor) and rejected:
        first = rejected[0]
        logger.info(f"Sender party {party.value} cannot issue {first.document_type.value}; downgraded")
        return ClassificationResult(
            document_type=DocumentType.GENERAL_CORRESPONDENCE,
            direction=direction,
            confidence=SENDER_MISMATCH_CONFIDENCE,
            source=first.source,
            matched_pattern=f"sender_invalid:{first.document_type.value}:{party.value}",
            is_low_confidence=SENDER_MISMATCH_CONFIDENCE < threshold,
            needs_manual_review=True,
            reasoning=f"{party.value} senders do not issue {first.document_type.value}",
        )

    if chosen is None or chosen.confidence < floor:
        return ClassificationResult(
            document_type=DocumentType.UNKNOWN,
            direction=direction,
            confidence=0,
            source=ClassificationSource.NONE,
            needs_manual_review=True,
            reasoning="No pattern or model answer reached the confidence floor",
        )

    seen = set(thread_types or [])
    if reply and chosen.document_type in seen and chosen.document_type not in (
        DocumentType.GENERAL_CORRESPONDENCE, DocumentType.UNKNOWN
    ):
        return ClassificationResult(
            document_type=DocumentType.GENERAL_CORRESPONDENCE,
            direction=direction,
            confidence=REPLY_DOWNGRADE_CONFIDENCE,
            source=chosen.source,
            matched_pattern=chosen.pattern or None,
            is_low_confidence=REPLY_DOWNGRADE_CONFIDENCE < threshold,
            reasoning=f"Reply in a thread that already carries {chosen.document_type.value}",
        )

    low = chosen.confidence < threshold
    return ClassificationResult(
        document_type=chosen.document_type,
        direction=direction,
        confidence=chosen.confidence,
        source=chosen.source,
        matched_pattern=chosen.pattern or None,
        is_low_confidence=low,
        needs_manual_review=low,
        reasoning=chosen.reasoning,
    )


def _ask_model(
    fallback: FallbackFn,
    subject: Optional[str],
    body_text: Optional[str],
    attachment_text: Optional[str],
    sender: str,
) -> Optional[ModelVerdict]:
    try:
        return fallback(subject=subject, body_text=body_text, attachment_text=attachment_text, sender=sender)
    except TransientModelError:
        raise
    except ExternalModelError as e:
        logger.warning(f"Fallback model answer rejected: {e}")
        return None
