"""
Tests for priority scoring.
"""
from datetime import datetime, timedelta, timezone

from freightflow.services.priority_scoring import (
    PriorityLabel, calculate_priority, deadline_points, keyword_points, label_for,
)

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


class TestFactors:
    def test_keyword_points_are_capped(self):
        assert keyword_points("URGENT please reply ASAP") == 16
        assert keyword_points("urgent asap customs hold immediately") == 20
        assert keyword_points(None) == 0

    def test_deadline_bands(self):
        assert deadline_points(None, NOW) == 0
        assert deadline_points(NOW - timedelta(hours=1), NOW) == 10
        assert deadline_points(NOW + timedelta(hours=4), NOW) == 8
        assert deadline_points(NOW + timedelta(hours=36), NOW) == 5
        assert deadline_points(NOW + timedelta(hours=60), NOW) == 2
        assert deadline_points(NOW + timedelta(days=5), NOW) == 0

    def test_naive_deadline_treated_as_utc(self):
        assert deadline_points(datetime(2026, 3, 1, 9, 0), NOW) == 10

    def test_labels(self):
        assert label_for(85) == PriorityLabel.CRITICAL
        assert label_for(84) == PriorityLabel.HIGH
        assert label_for(70) == PriorityLabel.HIGH
        assert label_for(50) == PriorityLabel.MEDIUM
        assert label_for(49) == PriorityLabel.LOW


class TestCalculatePriority:
    def test_combined_score(self):
        """Base, criticality, keywords, rule urgency and deadline add up."""
        priority, label = calculate_priority(0.9, "draft bl", "high", NOW + timedelta(hours=24), now=NOW)
        assert priority == 69
        assert label == PriorityLabel.MEDIUM

    def test_clamped_to_100(self):
        priority, label = calculate_priority(
            1.0, "urgent asap customs hold", "critical", NOW - timedelta(hours=2), now=NOW,
        )
        assert priority == 100
        assert label == PriorityLabel.CRITICAL

    def test_criticality_clamped(self):
        low, _ = calculate_priority(-1.0, "", "low", None, now=NOW)
        high, _ = calculate_priority(5.0, "", "low", None, now=NOW)
        assert low == 20
        assert high == 50

    def test_unknown_urgency_adds_nothing(self):
        priority, _ = calculate_priority(0.0, "", "whenever", None, now=NOW)
        assert priority == 20
