"""
Entity extraction from subject, body and attachment text.

Each entity type has an ordered list of regexes and one validator. Every
candidate is validated before it is accepted. Repeated values are kept in
document order so callers can pick "first ETD" or "last ETA" on multi-leg
shipments; read-side deduplication is `dedupe_entities`.
"""
import re
import string
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from freightflow.core.logging import get_logger
from freightflow.services.direction import carrier_for_sender, effective_sender
from freightflow.services.rule_table import get_rule_table
from freightflow.services.taxonomy import EntitySource, EntityType
from freightflow.services.thread_context import own_text

logger = get_logger(__name__)

MIN_YEAR = 2020
MAX_YEAR = 2030
MAX_DATE_LENGTH = 35


@dataclass(frozen=True)
class ExtractedEntity:
    entity_type: EntityType
    value: str
    confidence: int
    source: EntitySource


# ============= VALIDATORS =============

_GARBAGE_WORDS = frozenset({
    "thanks", "thank", "regards", "please", "kind", "dear", "team", "hello",
    "hi", "best", "sincerely", "attached", "attachment", "below", "above",
    "n/a", "na", "tbd", "tba", "none", "null", "undefined", "pending",
    "number", "reference", "details",
})

_URL_LIKE = re.compile(r"https?://|www\.|@", re.IGNORECASE)

# Prose captured by a loose date regex rather than a value
_DATE_GARBAGE = re.compile(
    r"reference|number|smart|follow|please|delay|arrival|vessel|berth|"
    r"schedule|containers?|result|may\s+change|change",
    re.IGNORECASE,
)

_BOOKING_LABELS = re.compile(r"^(bkg|pty|ref|reference|party|number|booking|no)\b", re.IGNORECASE)


def is_garbage(value: str) -> bool:
    """Reject values that are clearly prose, signatures or links."""
    cleaned = (value or "").strip().lower()
    if len(cleaned) <= 1:
        return True
    if cleaned in _GARBAGE_WORDS:
        return True
    return bool(_URL_LIKE.search(cleaned))


def _iso6346_letter_values() -> Dict[str, int]:
    values = {}
    v = 10
    for ch in string.ascii_uppercase:
        if v % 11 == 0:
            v += 1
        values[ch] = v
        v += 1
    return values


_ISO6346_LETTERS = _iso6346_letter_values()
_CONTAINER_SHAPE = re.compile(r"^[A-Z]{4}\d{7}$")


def is_valid_container_number(value: str) -> bool:
    """Four letters, seven digits, and a correct ISO 6346 check digit."""
    value = (value or "").strip().upper()
    if not _CONTAINER_SHAPE.match(value):
        return False
    total = 0
    for i, ch in enumerate(value[:10]):
        n = _ISO6346_LETTERS[ch] if ch.isalpha() else int(ch)
        total += n * (2 ** i)
    return (total % 11) % 10 == int(value[10])


def is_valid_booking_number(value: str) -> bool:
    value = (value or "").strip()
    if not value or is_garbage(value):
        return False
    if _BOOKING_LABELS.match(value):
        return False
    if ":" in value and len(value) < 10:
        return False
    compact = value.replace("-", "").replace(" ", "").upper()
    if not re.fullmatch(r"[A-Z0-9]{5,}", compact):
        return False
    return any(c.isdigit() for c in compact)


def is_valid_document_number(value: str) -> bool:
    """BL/MBL/HBL/entry numbers: 8-20 alphanumerics with at least one digit."""
    value = (value or "").strip().upper()
    if is_garbage(value):
        return False
    compact = value.replace("-", "")
    if not re.fullmatch(r"[A-Z0-9]{8,20}", compact):
        return False
    return any(c.isdigit() for c in compact)


def is_valid_name(value: str) -> bool:
    value = (value or "").strip()
    if len(value) < 3 or is_garbage(value):
        return False
    first = value.split()[0].lower()
    return first not in _GARBAGE_WORDS


def is_valid_voyage(value: str) -> bool:
    value = (value or "").strip()
    return 3 <= len(value) <= 15 and any(c.isdigit() for c in value) and not is_garbage(value)


# ============= DATES =============

_MONTHS = {m.lower(): i for i, m in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
)}

_DATE_EXPR = (
    r"\d{4}-\d{2}-\d{2}(?:[ T]\d{2}:\d{2})?"
    r"|\d{1,2}[-/ ][A-Za-z]{3,9}[-/ ,]+\d{2,4}"
    r"|[A-Za-z]{3,9}\.?\s+\d{1,2},?\s+\d{4}"
    r"|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}"
)


def parse_date(value: str) -> Optional[date]:
    """
    Parse one of the accepted date grammars.

    Slash/dot/dash numeric dates are read day-first unless the first
    field cannot be a day-of-month pairing (e.g. 01/25/2026).
    """
    value = (value or "").strip().rstrip(".,")
    if not value or len(value) > MAX_DATE_LENGTH or _DATE_GARBAGE.search(value):
        return None

    parsed = None
    m = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})(?:[ T]\d{2}:\d{2})?", value)
    if m:
        parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    if parsed is None:
        m = re.fullmatch(r"(\d{1,2})[-/ ]([A-Za-z]{3,9})[-/ ,]+(\d{2,4})", value)
        if m:
            month = _MONTHS.get(m.group(2)[:3].lower())
            if month:
                parsed = _safe_date(_year(m.group(3)), month, int(m.group(1)))

    if parsed is None:
        m = re.fullmatch(r"([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})", value)
        if m:
            month = _MONTHS.get(m.group(1)[:3].lower())
            if month:
                parsed = _safe_date(int(m.group(3)), month, int(m.group(2)))

    if parsed is None:
        m = re.fullmatch(r"(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})", value)
        if m:
            first, second, year = int(m.group(1)), int(m.group(2)), _year(m.group(3))
            if first > 12 or second <= 12:
                parsed = _safe_date(year, second, first)
            else:
                parsed = _safe_date(year, first, second)

    if parsed is None or not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed


def _year(raw: str) -> int:
    year = int(raw)
    return 2000 + year if year < 100 else year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def is_valid_date(value: str) -> bool:
    return parse_date(value) is not None


def _normalize_date(value: str) -> str:
    return parse_date(value).isoformat()


# ============= PATTERN TABLE =============

def _dated(keywords: str) -> Pattern:
    return re.compile(
        rf"(?:{keywords})(?:\s+(?:date\s*/\s*time|date|time))?\s*[:\-]?\s*"
        rf"(?:[A-Za-z]{{3}},?\s+)?({_DATE_EXPR})",
        re.IGNORECASE,
    )


_CUTOFF = r"cut[\s-]?off|closing|deadline"

# (regex, confidence); capture group 1 is the value
_PATTERNS: Dict[EntityType, List[Tuple[Pattern, int]]] = {
    EntityType.BOOKING_NUMBER: [
        (re.compile(r"\b(26\d{7})\b"), 90),
        (re.compile(r"\bHL-?(\d{8})\b", re.IGNORECASE), 90),
        (re.compile(r"\b(COSU\d{10})\b"), 90),
        (re.compile(r"\b((?:CEI|AMC|CAD)\d{7})\b"), 88),
        (re.compile(r"\b(MSC[A-Z]{2}\d{6,8})\b"), 85),
        (re.compile(
            r"(?:Booking|BKG)\s*(?:#|No\.?|Number|Ref(?:erence)?)?\s*[:.]?\s*#?\s*([A-Z0-9][A-Z0-9-]{4,19})\b",
            re.IGNORECASE), 85),
    ],
    EntityType.BL_NUMBER: [
        (re.compile(r"\b(SE\d{10,})\b"), 90),
        (re.compile(r"\b(MAEU\d{9,})\b"), 90),
        (re.compile(r"\b(HLCU[A-Z]{0,3}\d{9,})\b"), 90),
        (re.compile(r"\b(COAU\d{9,})\b"), 90),
        (re.compile(r"\b(CMAU\d{9,})\b"), 88),
        (re.compile(r"B/L\s*(?:#|No\.?|Number)?\s*:?\s*([A-Z0-9]{8,20})\b", re.IGNORECASE), 85),
        (re.compile(r"Bill\s+of\s+Lading\s*(?:#|No\.?|Number)?\s*:?\s*([A-Z0-9]{8,20})\b", re.IGNORECASE), 85),
    ],
    EntityType.MBL_NUMBER: [
        (re.compile(r"(?:Master\s+)?(?:MBL|M\.B\.L\.?)\s*(?:#|No\.?)?\s*:?\s*([A-Z0-9]{8,20})\b", re.IGNORECASE), 85),
    ],
    EntityType.HBL_NUMBER: [
        (re.compile(r"(?:House\s+)?(?:HBL|H\.B\.L\.?)\s*(?:#|No\.?)?\s*:?\s*([A-Z0-9]{8,20})\b", re.IGNORECASE), 85),
    ],
    EntityType.CONTAINER_NUMBER: [
        (re.compile(r"\b([A-Z]{4}\d{7})\b"), 95),
    ],
    EntityType.ENTRY_NUMBER: [
        (re.compile(r"\b(\d{3}-\d{7}-\d)\b"), 90),
        (re.compile(r"\b([A-Z0-9]{3}-\d{8})\b"), 85),
    ],
    EntityType.VESSEL_NAME: [
        (re.compile(r"(?i:Vessel(?:\s+Name)?)\s*:\s*([A-Z][A-Za-z .\-]{2,40}?)\s*(?:/|\bV\.|\bVOY|\n|,|$)", re.MULTILINE), 85),
        (re.compile(r"\bM/?V\s+([A-Z][A-Z .\-]{2,40}?)\s*(?:/|\bV\.|\bVOY|\n|,|$)", re.MULTILINE), 80),
    ],
    EntityType.VOYAGE_NUMBER: [
        (re.compile(r"(?:Voyage|Voy\.?)\s*(?:#|No\.?|Number)?\s*:?\s*([A-Z0-9]*\d[A-Z0-9]{2,14})\b", re.IGNORECASE), 85),
    ],
    EntityType.PORT_OF_LOADING: [
        (re.compile(r"(?i:Port\s+of\s+Loading|POL)\s*:\s*([A-Z][A-Za-z]{2,}(?:[ ,]+[A-Z][A-Za-z]*)*)"), 85),
    ],
    EntityType.PORT_OF_DISCHARGE: [
        (re.compile(r"(?i:Port\s+of\s+Discharge|POD)\s*:\s*([A-Z][A-Za-z]{2,}(?:[ ,]+[A-Z][A-Za-z]*)*)"), 85),
    ],
    EntityType.ETD: [
        (_dated(r"\bETD\b|Estimated\s+Time\s+of\s+Departure|Departure\s+Date|Sailing\s+Date"), 90),
    ],
    EntityType.ETA: [
        (_dated(r"\bETA\b|Estimated\s+Time\s+of\s+Arrival|Arrival\s+Date"), 90),
    ],
    EntityType.SI_CUTOFF: [
        (_dated(rf"\bSI\s+(?:{_CUTOFF})|Shipping\s+Instructions?\s+(?:{_CUTOFF})"), 90),
    ],
    EntityType.VGM_CUTOFF: [
        (_dated(rf"\bVGM\s+(?:{_CUTOFF})"), 90),
    ],
    EntityType.CARGO_CUTOFF: [
        (_dated(rf"\b(?:Cargo|CY|Port|FCL)\s+(?:{_CUTOFF})"), 88),
    ],
    EntityType.GATE_CUTOFF: [
        (_dated(rf"\bGate(?:[\s-]?in)?\s+(?:{_CUTOFF})"), 88),
    ],
    EntityType.DOC_CUTOFF: [
        (_dated(rf"\bDoc(?:ument(?:ation)?)?s?\s+(?:{_CUTOFF})"), 88),
    ],
}

_VALIDATORS: Dict[EntityType, Callable[[str], bool]] = {
    EntityType.BOOKING_NUMBER: is_valid_booking_number,
    EntityType.BL_NUMBER: is_valid_document_number,
    EntityType.MBL_NUMBER: is_valid_document_number,
    EntityType.HBL_NUMBER: is_valid_document_number,
    EntityType.CONTAINER_NUMBER: is_valid_container_number,
    EntityType.ENTRY_NUMBER: lambda v: not is_garbage(v),
    EntityType.VESSEL_NAME: is_valid_name,
    EntityType.VOYAGE_NUMBER: is_valid_voyage,
    EntityType.PORT_OF_LOADING: is_valid_name,
    EntityType.PORT_OF_DISCHARGE: is_valid_name,
}

_NORMALIZERS: Dict[EntityType, Callable[[str], str]] = {
    EntityType.BOOKING_NUMBER: lambda v: v.replace(" ", "").upper(),
    EntityType.BL_NUMBER: lambda v: v.upper(),
    EntityType.MBL_NUMBER: lambda v: v.upper(),
    EntityType.HBL_NUMBER: lambda v: v.upper(),
    EntityType.CONTAINER_NUMBER: lambda v: v.upper(),
    EntityType.VESSEL_NAME: lambda v: " ".join(v.split()).upper(),
    EntityType.VOYAGE_NUMBER: lambda v: v.upper(),
    EntityType.PORT_OF_LOADING: lambda v: " ".join(v.replace(",", " ").split()),
    EntityType.PORT_OF_DISCHARGE: lambda v: " ".join(v.replace(",", " ").split()),
}


def _validator_for(entity_type: EntityType) -> Callable[[str], bool]:
    if entity_type.is_date:
        return is_valid_date
    return _VALIDATORS[entity_type]


def _normalizer_for(entity_type: EntityType) -> Callable[[str], str]:
    if entity_type.is_date:
        return _normalize_date
    return _NORMALIZERS.get(entity_type, lambda v: v)


# ============= EXTRACTION =============

def extract(text: Optional[str], source: EntitySource) -> List[ExtractedEntity]:
    """
    Extract every validated entity from one text blob.

    Results are grouped by entity type, and within a type ordered by
    position in the text.
    """
    if not text:
        return []

    results: List[ExtractedEntity] = []
    for entity_type, patterns in _PATTERNS.items():
        validate = _validator_for(entity_type)
        normalize = _normalizer_for(entity_type)
        hits = {}
        for pattern, confidence in patterns:
            for match in pattern.finditer(text):
                raw = match.group(1).strip()
                start = match.start(1)
                if start in hits or not validate(raw):
                    continue
                hits[start] = ExtractedEntity(entity_type, normalize(raw), confidence, source)
        results.extend(hits[pos] for pos in sorted(hits))

    results.extend(_extract_carrier_mentions(text, source))
    return results


def _extract_carrier_mentions(text: str, source: EntitySource) -> List[ExtractedEntity]:
    found = []
    for profile in get_rule_table().carriers:
        if profile.brand_pattern.search(text):
            found.append(ExtractedEntity(EntityType.CARRIER, profile.name, 80, source))
    return found


def extract_message(
    subject: Optional[str],
    body_text: Optional[str],
    attachment_texts: Iterable[str] = (),
    sender: Optional[str] = None,
    true_sender: Optional[str] = None,
    is_reply: bool = False,
) -> List[ExtractedEntity]:
    """
    Extract from every part of a message, sender-derived carrier first.

    Replies and forwards contribute only their own body text; quoted
    history is left to the messages it came from.
    """
    entities: List[ExtractedEntity] = []

    carrier = carrier_for_sender(effective_sender(sender, true_sender))
    if carrier is not None:
        entities.append(ExtractedEntity(EntityType.CARRIER, carrier.name, 95, EntitySource.BODY))

    entities.extend(extract(subject, EntitySource.SUBJECT))
    entities.extend(extract(own_text(body_text, subject, is_reply), EntitySource.BODY))
    for text in attachment_texts:
        entities.extend(extract(text, EntitySource.ATTACHMENT))

    logger.debug(f"Extracted {len(entities)} entities")
    return entities


# ============= READ-SIDE HELPERS =============

def dedupe_entities(entities: Iterable) -> List:
    """Drop repeats by (type, value), keeping the first occurrence."""
    seen = set()
    unique = []
    for entity in entities:
        key = (_type_value(entity.entity_type), entity.value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entity)
    return unique


def values_of(entities: Iterable, entity_type: EntityType) -> List[str]:
    """Values of one type in extraction order, duplicates removed."""
    wanted = entity_type.value
    out = []
    for entity in entities:
        if _type_value(entity.entity_type) == wanted and entity.value not in out:
            out.append(entity.value)
    return out


def first_value(entities: Iterable, entity_type: EntityType) -> Optional[str]:
    values = values_of(entities, entity_type)
    return values[0] if values else None


def last_value(entities: Iterable, entity_type: EntityType) -> Optional[str]:
    values = values_of(entities, entity_type)
    return values[-1] if values else None


def _type_value(entity_type) -> str:
    # Accepts both enum members and raw strings read from the database
    return entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)


def as_date(value: Optional[str]) -> Optional[date]:
    """ISO string stored by the extractor back to a date."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None
