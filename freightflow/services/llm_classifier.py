"""
Fallback document classification through an external language model.

Only reached when no deterministic rule clears the acceptance threshold.
Provider is chosen by LLM_PROVIDER; "mock" gives a deterministic keyword
answer so development and tests never need network access.
"""
import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Optional

from freightflow.core.config import settings
from freightflow.core.errors import ExternalModelError, TransientModelError
from freightflow.core.logging import get_logger
from freightflow.services.taxonomy import DocumentType, normalize_document_type

logger = get_logger(__name__)

MAX_BODY_CHARS = 4000
MAX_ATTACHMENT_CHARS = 4000


@dataclass
class ModelVerdict:
    document_type: DocumentType
    confidence: int
    reasoning: str
    raw_type: Optional[str] = None


_SYSTEM_PROMPT = (
    "You classify freight forwarding emails. Answer with a single JSON object "
    'of the form {"document_type": "...", "confidence": 0-100, "reasoning": "..."}. '
    "document_type must be one of: " + ", ".join(t.value for t in DocumentType) + "."
)


def _build_prompt(subject: str, body_text: str, attachment_text: str, sender: str) -> str:
    return (
        f"From: {sender or ''}\n"
        f"Subject: {subject or ''}\n\n"
        f"Body:\n{(body_text or '')[:MAX_BODY_CHARS]}\n\n"
        f"Attachment text:\n{(attachment_text or '')[:MAX_ATTACHMENT_CHARS]}"
    )


# ============= RATE LIMITING =============

_call_lock = threading.Lock()
_last_call_at = 0.0


def _wait_for_slot():
    """Enforce a fixed delay between outbound model calls across threads."""
    global _last_call_at
    with _call_lock:
        wait = settings.LLM_CALL_DELAY_SECONDS - (time.monotonic() - _last_call_at)
        if wait > 0:
            time.sleep(wait)
        _last_call_at = time.monotonic()


# ============= PUBLIC ENTRY POINT =============

def classify_with_model(
    subject: str,
    body_text: Optional[str] = None,
    attachment_text: Optional[str] = None,
    sender: Optional[str] = None,
) -> ModelVerdict:
    """
    Ask the configured model for a document type.

    Transient failures are retried with exponential backoff. Raises
    TransientModelError once retries are exhausted and ExternalModelError
    for unusable answers.
    """
    provider = settings.LLM_PROVIDER
    if provider == "openai" and settings.OPENAI_API_KEY:
        call = _openai_classify
    elif provider == "anthropic" and settings.ANTHROPIC_API_KEY:
        call = _anthropic_classify
    else:
        return _mock_classify(subject, body_text, attachment_text)

    prompt = _build_prompt(subject, body_text, attachment_text, sender)
    last_error = None

    for attempt in range(settings.LLM_MAX_RETRIES):
        try:
            _wait_for_slot()
            raw = call(prompt)
            return parse_model_answer(raw)
        except TransientModelError as e:
            last_error = e
            logger.warning(f"Fallback model call failed (attempt {attempt + 1}): {e}")
            if attempt < settings.LLM_MAX_RETRIES - 1:
                wait_time = settings.LLM_BACKOFF_BASE * (2 ** attempt)
                time.sleep(wait_time)

    raise TransientModelError(f"Fallback model unavailable after {settings.LLM_MAX_RETRIES} attempts: {last_error}")


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_model_answer(raw: str) -> ModelVerdict:
    """Parse the model's JSON answer, normalizing the type onto the closed enum."""
    text = _FENCE.sub("", (raw or "").strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1:
        raise ExternalModelError(f"Model answer is not JSON: {text[:200]}")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ExternalModelError(f"Model answer is not valid JSON: {e}")

    raw_type = data.get("document_type")
    document_type = normalize_document_type(raw_type)
    if document_type is DocumentType.UNKNOWN and raw_type and raw_type != DocumentType.UNKNOWN.value:
        logger.info(f"Model returned unmapped document type '{raw_type}'")

    try:
        score = float(data.get("confidence", 0))
    except (TypeError, ValueError):
        score = 0.0
    # Some models answer on a 0-1 scale
    if 0 < score < 1:
        score *= 100
    confidence = int(round(score))

    return ModelVerdict(
        document_type=document_type,
        confidence=max(0, min(100, confidence)),
        reasoning=str(data.get("reasoning") or "")[:1000],
        raw_type=raw_type,
    )


# ============= MOCK IMPLEMENTATION =============

_MOCK_KEYWORDS = [
    ("booking confirm", DocumentType.BOOKING_CONFIRMATION),
    ("amendment", DocumentType.BOOKING_AMENDMENT),
    ("cancel", DocumentType.BOOKING_CANCELLATION),
    ("shipping instruction", DocumentType.SHIPPING_INSTRUCTION),
    ("vgm", DocumentType.VGM_SUBMISSION),
    ("arrival", DocumentType.ARRIVAL_NOTICE),
    ("delivery order", DocumentType.DELIVERY_ORDER),
    ("bill of lading", DocumentType.BILL_OF_LADING),
    ("invoice", DocumentType.INVOICE),
    ("customs", DocumentType.CUSTOMS_CLEARANCE),
    ("schedule", DocumentType.VESSEL_SCHEDULE),
    ("quote", DocumentType.RATE_QUOTE),
]


def _mock_classify(subject: str, body_text: Optional[str], attachment_text: Optional[str]) -> ModelVerdict:
    """Deterministic keyword answer used when no provider is configured."""
    haystack = f"{subject or ''}\n{body_text or ''}".lower()
    for keyword, document_type in _MOCK_KEYWORDS:
        if keyword in haystack:
            return ModelVerdict(
                document_type=document_type,
                confidence=75,
                reasoning=f"Mock model matched keyword '{keyword}'",
                raw_type=document_type.value,
            )
    return ModelVerdict(
        document_type=DocumentType.UNKNOWN,
        confidence=0,
        reasoning="Mock model found no recognizable keywords",
        raw_type=DocumentType.UNKNOWN.value,
    )


# ============= REAL LLM IMPLEMENTATIONS =============

def _openai_classify(prompt: str) -> str:
    import openai

    client = openai.OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)
    try:
        response = client.chat.completions.create(
            model=settings.LLM_MODEL_OPENAI,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=300,
            temperature=0,
        )
    except (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
        raise TransientModelError(str(e))
    except openai.OpenAIError as e:
        raise ExternalModelError(f"OpenAI error: {e}")
    return response.choices[0].message.content


def _anthropic_classify(prompt: str) -> str:
    import anthropic

    client = anthropic.Anthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)
    try:
        response = client.messages.create(
            model=settings.LLM_MODEL_ANTHROPIC,
            max_tokens=300,
            system=_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
    except (anthropic.APITimeoutError, anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
        raise TransientModelError(str(e))
    except anthropic.AnthropicError as e:
        raise ExternalModelError(f"Anthropic error: {e}")
    return response.content[0].text
