"""
Tests for action recommendation rules and time-based reminders.
"""
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from freightflow.services.action_rules import (
    SEED_DOCUMENT_RULES, SEED_TYPE_DEFAULTS, ActionRulesEngine, DocumentRule, RuleSet,
    load_rule_set, seed_action_rules, seed_rule_set,
)
from freightflow.services.priority_scoring import PriorityLabel
from freightflow.services.taxonomy import DocumentType, PartyType

EMAIL_DATE = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return ActionRulesEngine(loader=seed_rule_set)


def recommend(engine, document_type, from_party, subject="", body="", is_reply=False, **kwargs):
    return engine.recommend(
        document_type=document_type,
        from_party=from_party,
        is_reply=is_reply,
        subject=subject,
        body=body,
        email_date=EMAIL_DATE,
        now=EMAIL_DATE,
        **kwargs,
    )


class TestDocumentRules:
    def test_mbl_draft_from_carrier(self, engine):
        """Carrier draft BL is shared with the customer within 24h."""
        rec = recommend(engine, DocumentType.MBL_DRAFT, PartyType.OCEAN_CARRIER, "Draft BL 263522431", "Please review")

        assert rec.has_action is True
        assert rec.action_verb == "share"
        assert rec.to_party == "customer"
        assert rec.source == "document_rule"
        assert rec.deadline == EMAIL_DATE + timedelta(hours=24)
        assert rec.priority == 69
        assert rec.priority_label == PriorityLabel.MEDIUM

    def test_flip_to_no_action(self, engine):
        """An approval keyword turns the draft into no action."""
        rec = recommend(engine, DocumentType.MBL_DRAFT, PartyType.OCEAN_CARRIER, "Draft BL 263522431", "Approved, thanks")

        assert rec.has_action is False
        assert rec.flipped_by == "approved"
        assert rec.priority == 0
        assert rec.priority_label == PriorityLabel.LOW
        assert rec.deadline is None

    def test_reply_falls_back_to_non_reply_rule(self, engine):
        rec = recommend(engine, DocumentType.MBL_DRAFT, PartyType.OCEAN_CARRIER, "RE: Draft BL", is_reply=True)
        assert rec.source == "document_rule"
        assert rec.action_verb == "share"

    def test_urgent_delivery_order(self, engine):
        """Urgency language, a critical rule and a 4h deadline add up."""
        rec = recommend(engine, DocumentType.DELIVERY_ORDER, PartyType.OCEAN_CARRIER, "URGENT: delivery order 263522431")

        assert rec.priority == 71
        assert rec.priority_label == PriorityLabel.HIGH
        assert rec.deadline == EMAIL_DATE + timedelta(hours=4)

    def test_unknown_party_rule(self):
        """A rule for an unknown sender covers any party without its own rule."""
        rule = DocumentRule(
            document_type=DocumentType.PICKUP_NOTIFICATION,
            from_party=PartyType.UNKNOWN,
            is_reply=False,
            has_action=True,
            action_verb="dispatch",
            deadline_hours=6,
            urgency="high",
        )
        engine = ActionRulesEngine(loader=lambda: RuleSet(rules={rule_key(rule): rule}, defaults={}))

        rec = recommend(engine, DocumentType.PICKUP_NOTIFICATION, PartyType.TRUCKER, "Pickup ready")
        assert rec.action_verb == "dispatch"
        assert rec.source == "document_rule"
        assert rec.deadline == EMAIL_DATE + timedelta(hours=6)

    def test_applicable_states(self):
        rule = DocumentRule(
            document_type=DocumentType.ARRIVAL_NOTICE,
            from_party=PartyType.OCEAN_CARRIER,
            is_reply=False,
            has_action=True,
            action_verb="share",
            deadline_hours=12,
            urgency="high",
            applicable_states=("bl_received",),
        )
        engine = ActionRulesEngine(loader=lambda: RuleSet(rules={rule_key(rule): rule}, defaults={}))

        out_of_stage = recommend(
            engine, DocumentType.ARRIVAL_NOTICE, PartyType.OCEAN_CARRIER,
            shipment_context={"workflow_state": "pod_received"},
        )
        in_stage = recommend(
            engine, DocumentType.ARRIVAL_NOTICE, PartyType.OCEAN_CARRIER,
            shipment_context={"workflow_state": "bl_received"},
        )
        no_context = recommend(engine, DocumentType.ARRIVAL_NOTICE, PartyType.OCEAN_CARRIER)

        assert out_of_stage.has_action is False
        assert "not applicable" in out_of_stage.description
        assert in_stage.has_action is True
        assert no_context.has_action is True


def rule_key(rule):
    return (rule.document_type, rule.from_party, rule.is_reply)


class TestDefaults:
    def test_type_default(self, engine):
        """Types without a rule use their per-type default."""
        rec = recommend(engine, DocumentType.VGM_REMINDER, PartyType.OCEAN_CARRIER, "VGM reminder 263522431")

        assert rec.has_action is True
        assert rec.action_verb == "review"
        assert rec.source == "type_default"
        assert rec.priority == 55
        assert rec.priority_label == PriorityLabel.MEDIUM

    def test_type_default_flip(self, engine):
        rec = recommend(engine, DocumentType.VGM_REMINDER, PartyType.OCEAN_CARRIER, "VGM reminder", "VGM submitted yesterday")
        assert rec.has_action is False
        assert rec.flipped_by == "submitted"

    def test_flip_to_action(self, engine):
        """Informational defaults become actions when issues are flagged."""
        rec = recommend(engine, DocumentType.ARRIVAL_NOTICE, PartyType.CUSTOMER, "Arrival notice", "Customs hold on container")
        assert rec.has_action is True
        assert rec.flipped_by == "customs hold"
        assert rec.action_verb == "review"
        assert rec.deadline is not None

    def test_informational_type_from_carrier(self, engine):
        rec = recommend(engine, DocumentType.VESSEL_SCHEDULE, PartyType.OCEAN_CARRIER, "Vessel schedule")
        assert rec.has_action is False
        assert rec.source == "fallback"

    def test_informational_type_from_customer_needs_review(self, engine):
        rec = recommend(engine, DocumentType.VESSEL_SCHEDULE, PartyType.CUSTOMER, "Vessel schedule")
        assert rec.has_action is True
        assert rec.action_verb == "review"
        assert rec.confidence == 50

    def test_generic_default(self, engine):
        rec = recommend(engine, DocumentType.PICKUP_NOTIFICATION, PartyType.TRUCKER, "Pickup notice")
        assert rec.has_action is True
        assert rec.source == "fallback"
        assert rec.deadline == EMAIL_DATE + timedelta(hours=24)
        assert rec.to_dict()["priority_label"] == rec.priority_label.value


class TestRuleCache:
    def test_reload_after_ttl(self):
        """Rules are served from cache until the TTL passes."""
        ticks = [0.0]
        loader = MagicMock(return_value=seed_rule_set())
        engine = ActionRulesEngine(loader=loader, ttl_seconds=60, clock=lambda: ticks[0])

        engine.rules()
        ticks[0] = 30.0
        engine.rules()
        assert loader.call_count == 1

        ticks[0] = 61.0
        engine.rules()
        assert loader.call_count == 2

    def test_invalidate(self):
        loader = MagicMock(return_value=seed_rule_set())
        engine = ActionRulesEngine(loader=loader, ttl_seconds=600)
        engine.rules()
        engine.invalidate()
        engine.rules()
        assert loader.call_count == 2


class TestRulePersistence:
    def test_seed_and_load(self, db):
        created = seed_action_rules(db)
        assert created == {"rules": len(SEED_DOCUMENT_RULES), "defaults": len(SEED_TYPE_DEFAULTS)}

        rule_set = load_rule_set(db)
        assert len(rule_set.rules) == len(SEED_DOCUMENT_RULES)
        rule = rule_set.rules[(DocumentType.MBL_DRAFT, PartyType.OCEAN_CARRIER, False)]
        assert rule.rule_id is not None
        assert rule_set.defaults[DocumentType.MBL_DRAFT].criticality == 0.9

    def test_seed_is_idempotent(self, db):
        seed_action_rules(db)
        assert seed_action_rules(db) == {"rules": 0, "defaults": 0}


class TestTimeBasedActions:
    @staticmethod
    def shipment(**fields):
        values = dict(
            workflow_state=None, si_cutoff=None, vgm_cutoff=None, cargo_cutoff=None, eta=None,
        )
        values.update(fields)
        return SimpleNamespace(**values)

    def test_reminder_window(self, engine):
        """The 48h reminder is due until the 24h escalation takes over."""
        shipment = self.shipment(si_cutoff=date(2026, 3, 10))

        first = engine.due_time_based_actions(shipment, now=datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc))
        assert [(a.trigger_event, a.action_verb) for a in first] == [("si_cutoff", "remind")]

        second = engine.due_time_based_actions(shipment, now=datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc))
        assert [(a.trigger_event, a.action_verb) for a in second] == [("si_cutoff", "escalate")]
        assert second[0].urgency == "critical"

    def test_not_due_before_trigger(self, engine):
        shipment = self.shipment(si_cutoff=date(2026, 3, 10))
        assert engine.due_time_based_actions(shipment, now=datetime(2026, 3, 1, tzinfo=timezone.utc)) == []

    def test_satisfied_by_workflow_state(self, engine):
        """Once SI is submitted the SI reminders stop."""
        now = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)
        early = self.shipment(si_cutoff=date(2026, 3, 10), workflow_state="booking_confirmation_received")
        done = self.shipment(si_cutoff=date(2026, 3, 10), workflow_state="si_submitted")

        assert len(engine.due_time_based_actions(early, now=now)) == 1
        assert engine.due_time_based_actions(done, now=now) == []

    def test_isf_escalation_before_arrival(self, engine):
        now = datetime(2026, 4, 18, 6, 0, tzinfo=timezone.utc)
        pending = self.shipment(eta=date(2026, 4, 20), workflow_state="vessel_departed")
        filed = self.shipment(eta=date(2026, 4, 20), workflow_state="isf_filed")

        due = engine.due_time_based_actions(pending, now=now)
        assert [a.trigger_event for a in due] == ["eta"]
        assert due[0].to_dict()["notify"] == ["customs_broker"]
        assert engine.due_time_based_actions(filed, now=now) == []

    def test_cancelled_has_no_reminders(self, engine):
        shipment = self.shipment(si_cutoff=date(2026, 3, 10), workflow_state="booking_cancelled")
        now = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)
        assert engine.due_time_based_actions(shipment, now=now) == []
