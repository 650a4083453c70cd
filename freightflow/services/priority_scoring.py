"""
Priority scoring for action recommendations.
"""
import enum
from datetime import datetime, timezone
from typing import Optional, Tuple

BASE_SCORE = 20
MAX_CRITICALITY_POINTS = 30
MAX_KEYWORD_POINTS = 20
MAX_RULE_URGENCY_POINTS = 20
MAX_DEADLINE_POINTS = 10


class PriorityLabel(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


URGENCY_KEYWORDS = (
    ("urgent", 8),
    ("asap", 8),
    ("customs hold", 8),
    ("immediately", 6),
    ("action required", 6),
    ("overdue", 6),
    ("demurrage", 6),
    ("rollover", 6),
    ("detention", 5),
    ("critical", 5),
    ("deadline", 4),
    ("today", 4),
)

RULE_URGENCY_POINTS = {
    "critical": 20,
    "high": 14,
    "normal": 6,
    "low": 0,
}


def keyword_points(text: Optional[str]) -> int:
    lowered = (text or "").lower()
    points = sum(weight for keyword, weight in URGENCY_KEYWORDS if keyword in lowered)
    return min(MAX_KEYWORD_POINTS, points)


def deadline_points(deadline: Optional[datetime], now: datetime) -> int:
    if deadline is None:
        return 0
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    hours_left = (deadline - now).total_seconds() / 3600
    if hours_left <= 0:  # overdue
        return MAX_DEADLINE_POINTS
    elif hours_left <= 24:
        return 8
    elif hours_left <= 48:
        return 5
    elif hours_left <= 72:
        return 2
    return 0


def label_for(score: int) -> PriorityLabel:
    if score >= 85:
        return PriorityLabel.CRITICAL
    elif score >= 70:
        return PriorityLabel.HIGH
    elif score >= 50:
        return PriorityLabel.MEDIUM
    return PriorityLabel.LOW


def calculate_priority(
    criticality: float,
    text: Optional[str],
    rule_urgency: Optional[str],
    deadline: Optional[datetime],
    now: Optional[datetime] = None,
) -> Tuple[int, PriorityLabel]:
    """
    Calculate action priority from document and message factors.

    Returns:
        Tuple of (priority: 0-100, label: PriorityLabel)
    """
    now = now or datetime.now(timezone.utc)
    score = BASE_SCORE

    # Factor 1: Document criticality (0-1)
    score += round(max(0.0, min(1.0, criticality or 0.0)) * MAX_CRITICALITY_POINTS)

    # Factor 2: Urgency language in subject/body
    score += keyword_points(text)

    # Factor 3: Explicit urgency on the rule
    score += min(MAX_RULE_URGENCY_POINTS, RULE_URGENCY_POINTS.get((rule_urgency or "normal").lower(), 0))

    # Factor 4: Deadline proximity
    score += deadline_points(deadline, now)

    priority = int(min(100, max(0, score)))
    return priority, label_for(priority)
