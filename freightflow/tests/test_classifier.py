"""
Tests for the document classification cascade.

The fallback model is always replaced with a MagicMock so no test depends
on a provider.
"""
import pytest
from unittest.mock import MagicMock

from freightflow.core.errors import ExternalModelError, TransientModelError
from freightflow.services.document_classifier import (
    classify, is_reply_subject, match_content, match_filename, match_subject,
)
from freightflow.services.llm_classifier import ModelVerdict
from freightflow.services.rule_table import get_rule_table
from freightflow.services.taxonomy import ClassificationSource, Direction, DocumentType, PartyType


def verdict(document_type, confidence, reasoning="model"):
    return ModelVerdict(document_type=document_type, confidence=confidence, reasoning=reasoning)


class TestBookingConfirmationScenario:
    def test_maersk_booking_confirmation(self):
        """Filename BC_ + Maersk sender gives an inbound booking confirmation at 95+."""
        fallback = MagicMock()
        result = classify(
            subject="Booking Confirmation: 263522431",
            sender_email="in.export@maersk.com",
            attachment_filenames=["BC_263522431.pdf"],
            attachment_text="BOOKING CONFIRMATION",
            fallback=fallback,
        )

        assert result.document_type == DocumentType.BOOKING_CONFIRMATION
        assert result.direction == Direction.INBOUND
        assert result.confidence >= 95
        assert result.source == ClassificationSource.ATTACHMENT
        assert result.is_low_confidence is False
        fallback.assert_not_called()


class TestCascadePrecedence:
    def test_filename_beats_conflicting_subject(self):
        """A filename match wins over a subject that names another type."""
        result = classify(
            subject="Booking Amendment : 263522431",
            sender_email="in.export@maersk.com",
            attachment_filenames=["Invoice_4455.pdf"],
            use_fallback=False,
        )
        assert result.document_type == DocumentType.INVOICE
        assert result.source == ClassificationSource.ATTACHMENT

    def test_content_markers_in_body(self):
        """Body markers classify when no filename matches; optional markers add confidence."""
        result = classify(
            subject="Notice for your shipment",
            sender_email="noreply@cma-cgm.com",
            body_text="Please find the ARRIVAL NOTICE below. ETA 12/03/2026.",
            use_fallback=False,
        )
        assert result.document_type == DocumentType.ARRIVAL_NOTICE
        assert result.source == ClassificationSource.BODY
        assert result.confidence == 97

    def test_subject_used_last(self):
        result = classify(
            subject="Arrival notice 1234",
            sender_email="ops@customer.com",
            use_fallback=False,
        )
        assert result.document_type == DocumentType.ARRIVAL_NOTICE
        assert result.source == ClassificationSource.SUBJECT


class TestStages:
    def test_match_filename_none_without_attachments(self):
        assert match_filename([]) is None

    def test_form_numbers_need_their_own_digits(self):
        """CBP form numbers inside a longer booking number are not customs filings."""
        result = classify(
            subject="Booking Confirmation: 217501234",
            sender_email="in.export@maersk.com",
            attachment_filenames=["BC_217501234.pdf"],
            use_fallback=False,
        )
        assert result.document_type == DocumentType.BOOKING_CONFIRMATION
        assert result.source == ClassificationSource.ATTACHMENT
        assert match_filename(["BC_263461001.pdf"]).document_type == DocumentType.BOOKING_CONFIRMATION
        assert match_filename(["CBP_7501_entry.pdf"]).document_type == DocumentType.ENTRY_SUMMARY
        assert match_filename(["3461-draft.pdf"]).document_type == DocumentType.DRAFT_ENTRY

    def test_match_content_source_is_attachment(self):
        """Required markers found in attachment text make the attachment the source."""
        candidate = match_content("see attached", "DELIVERY ORDER\nDO NO 55", Direction.INBOUND)
        assert candidate.document_type == DocumentType.DELIVERY_ORDER
        assert candidate.source == ClassificationSource.ATTACHMENT

    def test_match_content_exclude_markers(self):
        """Excluded markers veto a content rule."""
        assert match_content("BOOKING CONFIRMATION AND BOOKING AMENDMENT", None, Direction.INBOUND).document_type \
            == DocumentType.BOOKING_AMENDMENT

    def test_carrier_rule_requires_pdf(self):
        """The Maersk booking rule needs a PDF whose text carries the marker."""
        with_pdf = match_subject(
            "Booking Confirmation : 263522431", "in.export@maersk.com",
            ["263522431.pdf"], "BOOKING CONFIRMATION", Direction.INBOUND,
        )
        without_pdf = match_subject(
            "Booking Confirmation : 263522431", "in.export@maersk.com",
            [], "", Direction.INBOUND,
        )
        assert with_pdf.confidence == 95
        assert without_pdf.document_type == DocumentType.BOOKING_CONFIRMATION
        assert without_pdf.confidence == 90

    def test_direction_qualified_subject(self):
        """'SI submitted' only counts as a submission when we sent it."""
        outbound = match_subject("SI submitted 123", "ops@intoglo.com", [], "", Direction.OUTBOUND)
        inbound = match_subject("SI submitted 123", "buyer@acme.com", [], "", Direction.INBOUND)
        assert outbound.document_type == DocumentType.SI_SUBMISSION
        assert inbound is None


class TestReplies:
    def test_reply_prefixes(self):
        assert is_reply_subject("RE: Booking")
        assert is_reply_subject("Fwd: Booking")
        assert is_reply_subject("  fw: Booking")
        assert not is_reply_subject("Booking RE: something")

    def test_reply_skips_subject_patterns(self):
        """A reply is not classified by the subject it quotes."""
        result = classify(
            subject="RE: Arrival notice 1234",
            sender_email="ops@customer.com",
            body_text="Thanks, noted.",
            use_fallback=False,
        )
        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0
        assert result.source == ClassificationSource.NONE

    def test_quoted_markers_do_not_classify_reply(self):
        """Content markers in quoted history belong to the earlier message."""
        result = classify(
            subject="RE: shipment 263522431",
            sender_email="buyer@customer-example.com",
            body_text="Thanks, noted.\n\nOn Mon, Mar 2, 2026 Maersk wrote:\n> BOOKING CONFIRMATION\n> Booking number 263522431",
            is_reply=True,
            use_fallback=False,
        )
        assert result.document_type == DocumentType.UNKNOWN

    def test_reply_with_known_thread_type_is_downgraded(self):
        """A reply repeating a type already in the thread becomes general correspondence."""
        result = classify(
            subject="RE: Booking Confirmation: 263522431",
            sender_email="ops@customer.com",
            attachment_filenames=["BC_263522431.pdf"],
            is_reply=True,
            thread_types=[DocumentType.BOOKING_CONFIRMATION],
            use_fallback=False,
        )
        assert result.document_type == DocumentType.GENERAL_CORRESPONDENCE
        assert result.confidence == 70
        assert result.is_low_confidence is True

    def test_reply_with_new_type_is_kept(self):
        result = classify(
            subject="RE: Booking Confirmation: 263522431",
            sender_email="ops@customer.com",
            attachment_filenames=["BC_263522431.pdf"],
            is_reply=True,
            thread_types=[DocumentType.INVOICE],
            use_fallback=False,
        )
        assert result.document_type == DocumentType.BOOKING_CONFIRMATION


class TestSenderValidation:
    def test_trucker_cannot_confirm_booking(self):
        """A booking confirmation from a trucker drops to general correspondence."""
        result = classify(
            subject="Booking Confirmation: 263522431",
            sender_email="dispatch@transjetcargo.com",
            use_fallback=False,
        )
        assert result.document_type == DocumentType.GENERAL_CORRESPONDENCE
        assert result.confidence == 70
        assert result.source == ClassificationSource.SUBJECT
        assert result.matched_pattern == "sender_invalid:booking_confirmation:trucker"
        assert result.needs_manual_review is True

    def test_carrier_does_not_issue_house_bl(self):
        result = classify(
            subject="Documents 263522431",
            sender_email="docs@maersk.com",
            body_text="HOUSE BILL OF LADING - DRAFT",
            use_fallback=False,
        )
        assert result.document_type == DocumentType.GENERAL_CORRESPONDENCE
        assert result.matched_pattern == "sender_invalid:hbl_draft:ocean_carrier"

    def test_master_bl_draft_needs_carrier_sender(self):
        body = "MASTER BILL OF LADING - DRAFT"
        from_unknown = classify(subject="Draft", sender_email="docs@acme.com", body_text=body, use_fallback=False)
        from_carrier = classify(subject="Draft", sender_email="docs@maersk.com", body_text=body, use_fallback=False)
        assert from_unknown.document_type == DocumentType.GENERAL_CORRESPONDENCE
        assert from_unknown.matched_pattern == "sender_invalid:mbl_draft:unknown"
        assert from_carrier.document_type == DocumentType.MBL_DRAFT

    def test_rejected_stage_falls_through(self):
        """A later stage with an allowed type still wins."""
        result = classify(
            subject="Invoice #INV-2291",
            sender_email="dispatch@transjetcargo.com",
            attachment_filenames=["BC_263522431.pdf"],
            use_fallback=False,
        )
        assert result.document_type == DocumentType.INVOICE
        assert result.source == ClassificationSource.SUBJECT

    def test_rejected_model_answer(self):
        fallback = MagicMock(return_value=verdict(DocumentType.MBL_DRAFT, 90))
        result = classify(subject="Hello", sender_email="dispatch@transjetcargo.com", fallback=fallback)
        assert result.document_type == DocumentType.GENERAL_CORRESPONDENCE
        assert result.source == ClassificationSource.AI_FALLBACK

    def test_party_may_issue(self):
        table = get_rule_table()
        assert table.party_may_issue(PartyType.OCEAN_CARRIER, DocumentType.BOOKING_CONFIRMATION)
        assert table.party_may_issue(PartyType.UNKNOWN, DocumentType.BOOKING_CONFIRMATION)
        assert not table.party_may_issue(PartyType.TRUCKER, DocumentType.BOOKING_CONFIRMATION)
        assert not table.party_may_issue(PartyType.OCEAN_CARRIER, DocumentType.HBL_DRAFT)
        assert table.party_may_issue(PartyType.TRUCKER, DocumentType.INVOICE)


class TestFallback:
    def test_model_answer_above_threshold(self):
        """The model is asked only when no pattern is conclusive."""
        fallback = MagicMock(return_value=verdict(DocumentType.VESSEL_SCHEDULE, 88))
        result = classify(
            subject="Hello there",
            sender_email="someone@acme.com",
            body_text="see the details",
            fallback=fallback,
        )

        assert result.document_type == DocumentType.VESSEL_SCHEDULE
        assert result.source == ClassificationSource.AI_FALLBACK
        assert result.is_low_confidence is False
        fallback.assert_called_once()
        kwargs = fallback.call_args.kwargs
        assert kwargs["subject"] == "Hello there"
        assert kwargs["sender"] == "someone@acme.com"

    def test_low_confidence_band(self):
        """70-84 is accepted but flagged for review."""
        fallback = MagicMock(return_value=verdict(DocumentType.INVOICE, 75))
        result = classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback)
        assert result.document_type == DocumentType.INVOICE
        assert result.is_low_confidence is True
        assert result.needs_manual_review is True

    def test_below_floor_is_unknown(self):
        """Below the floor the result is unknown with zero confidence."""
        fallback = MagicMock(return_value=verdict(DocumentType.INVOICE, 60))
        result = classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback)
        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0
        assert result.source == ClassificationSource.NONE

    def test_pattern_wins_tie_with_model(self):
        """Equal confidence keeps the deterministic candidate."""
        fallback = MagicMock(return_value=verdict(DocumentType.INVOICE, 80))
        result = classify(subject="ETD and ETA update", sender_email="someone@acme.com", fallback=fallback)
        assert result.document_type == DocumentType.VESSEL_SCHEDULE
        assert result.source == ClassificationSource.SUBJECT
        assert result.is_low_confidence is True

    def test_transient_error_propagates(self):
        """A model outage is raised so the batch can mark the message failed."""
        fallback = MagicMock(side_effect=TransientModelError("timeout"))
        with pytest.raises(TransientModelError):
            classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback)

    def test_unusable_answer_is_unknown(self):
        fallback = MagicMock(side_effect=ExternalModelError("not json"))
        result = classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback)
        assert result.document_type == DocumentType.UNKNOWN

    def test_fallback_disabled(self):
        fallback = MagicMock()
        classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback, use_fallback=False)
        fallback.assert_not_called()

    def test_to_dict_uses_values(self):
        fallback = MagicMock(return_value=verdict(DocumentType.INVOICE, 90))
        data = classify(subject="Hello there", sender_email="someone@acme.com", fallback=fallback).to_dict()
        assert data["document_type"] == "invoice"
        assert data["source"] == "ai-fallback"
        assert data["direction"] == "inbound"
