"""
Reply and forward handling: separate a message's own text from quoted history.

Only the text above the first quote marker was written by the sender of
this message. Quoted history belongs to earlier mail in the thread and is
kept out of content classification and entity extraction.
"""
import re
from typing import Optional, Tuple

REPLY_PREFIX = re.compile(r"^\s*(?:RE|FW|FWD)\s*:", re.IGNORECASE)

_M = re.IGNORECASE | re.MULTILINE

QUOTE_MARKERS = (
    # Gmail/Outlook "On <date>, <name> wrote:", sometimes wrapped onto a second line
    re.compile(r"^On\s[^\n]*(?:\n[^\n]*)?\bwrote:[ \t]*$", _M),
    re.compile(r"^-{2,}\s*(?:Original Message|Forwarded message)\s*-{2,}", _M),
    re.compile(r"^From:[^\n]*\n(?:Sent|Date):", _M),
    re.compile(r"^Le\s[^\n]+\sa\s+écrit\s*:", _M),
    re.compile(r"^Am\s[^\n]+\sschrieb\s[^\n]*:", _M),
    re.compile(r"^[ \t]*>", re.MULTILINE),
)


def is_reply_subject(subject: Optional[str]) -> bool:
    return bool(REPLY_PREFIX.match(subject or ""))


def split_quoted(body_text: Optional[str]) -> Tuple[str, str]:
    """Return (fresh, quoted) parts of a body."""
    if not body_text:
        return "", ""

    starts = [m.start() for m in (marker.search(body_text) for marker in QUOTE_MARKERS) if m]
    if not starts:
        return body_text.strip(), ""

    first = min(starts)
    if first > 0:
        return body_text[:first].strip(), body_text[first:].strip()

    # Quote at the very top. With "> " quoting, answers may be interleaved
    lines = body_text.splitlines()
    if not lines[0].lstrip().startswith(">"):
        return "", body_text.strip()
    fresh = [line for line in lines if line.strip() and not line.lstrip().startswith(">")]
    quoted = [line for line in lines if line.lstrip().startswith(">")]
    return "\n".join(fresh).strip(), "\n".join(quoted).strip()


def fresh_body(body_text: Optional[str]) -> str:
    return split_quoted(body_text)[0]


def own_text(body_text: Optional[str], subject: Optional[str] = None, is_reply: bool = False) -> str:
    """The body as written by this sender: quoted history removed for replies and forwards."""
    if is_reply or is_reply_subject(subject):
        return fresh_body(body_text)
    return body_text or ""
