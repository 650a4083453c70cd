"""
Tests for shipment link resolution, creation and backfill.
"""
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from freightflow.db.models import DocumentLifecycle, Shipment, ShipmentDocument
from freightflow.services.entity_extractor import ExtractedEntity
from freightflow.services.link_resolver import backfill, find_by_container, resolve
from freightflow.services.state_machine import advance
from freightflow.services.taxonomy import Direction, DocumentType, EntitySource, EntityType, LinkMethod
from freightflow.services.workflow_states import WorkflowState


def classified(document_type, direction=Direction.INBOUND, confidence=90):
    return SimpleNamespace(document_type=document_type, direction=direction, confidence=confidence)


def entity(entity_type, value):
    return ExtractedEntity(entity_type, value, 90, EntitySource.BODY)


@pytest.fixture
def existing_shipment(db):
    shipment = Shipment(
        booking_number="263522431",
        carrier="Maersk",
        container_number_primary="MSKU1234565",
        container_numbers=["CSQU3054383"],
        etd=date(2026, 3, 10),
    )
    db.add(shipment)
    db.flush()
    return shipment


class TestCreation:
    def test_booking_confirmation_creates_shipment(self, db, make_message):
        """A carrier booking confirmation creates the shipment it names."""
        message = make_message(subject="Booking Confirmation: 263522431", sender="in.export@maersk.com")
        result = resolve(db, message, classified(DocumentType.BOOKING_CONFIRMATION), [
            entity(EntityType.CARRIER, "Maersk"),
            entity(EntityType.BOOKING_NUMBER, "263522431"),
            entity(EntityType.ETD, "2026-03-15"),
        ])

        assert result.linked
        assert result.created is True
        assert result.link_method == LinkMethod.CREATED
        shipment = db.get(Shipment, result.shipment_id)
        assert shipment.booking_number == "263522431"
        assert shipment.carrier == "Maersk"
        assert shipment.etd == date(2026, 3, 15)
        assert shipment.created_from_message_id == message.id

    def test_no_carrier_no_shipment(self, db, make_message):
        """Creation requires a carrier entity."""
        message = make_message(subject="Booking Confirmation: 263522431", sender="buyer@acme.com")
        result = resolve(db, message, classified(DocumentType.BOOKING_CONFIRMATION), [
            entity(EntityType.BOOKING_NUMBER, "263522431"),
        ])

        assert not result.linked
        assert db.query(Shipment).count() == 0

    def test_other_types_never_create(self, db, make_message):
        message = make_message(subject="Invoice for 263522431")
        result = resolve(db, message, classified(DocumentType.INVOICE), [
            entity(EntityType.CARRIER, "Maersk"),
            entity(EntityType.BOOKING_NUMBER, "263522431"),
        ])

        assert not result.linked
        assert db.query(Shipment).count() == 0

    def test_concurrent_insert_links_to_existing(self, db, make_message, existing_shipment):
        """A duplicate-key insert falls back to the row that won the race."""
        message = make_message(subject="Booking Confirmation: 263522431")
        with patch("freightflow.services.link_resolver.find_by_booking", return_value=None), \
                patch("freightflow.services.link_resolver.find_by_bl", return_value=None), \
                patch("freightflow.services.link_resolver.find_by_container", return_value=None):
            result = resolve(db, message, classified(DocumentType.BOOKING_CONFIRMATION), [
                entity(EntityType.CARRIER, "Maersk"),
                entity(EntityType.BOOKING_NUMBER, "263522431"),
            ])

        assert result.shipment_id == existing_shipment.id
        assert result.created is False
        assert result.link_method == LinkMethod.BOOKING
        assert db.query(Shipment).count() == 1


class TestCascade:
    def test_links_by_booking(self, db, make_message, existing_shipment):
        message = make_message(subject="BL copy for booking 263522431")
        result = resolve(db, message, classified(DocumentType.BILL_OF_LADING), [
            entity(EntityType.BOOKING_NUMBER, "263522431"),
        ])

        assert result.shipment_id == existing_shipment.id
        assert result.link_method == LinkMethod.BOOKING

    def test_links_by_bl_number(self, db, make_message, existing_shipment):
        existing_shipment.mbl_number = "MAEU263522431"
        db.flush()
        message = make_message(subject="Telex release MAEU263522431")
        result = resolve(db, message, classified(DocumentType.CONTAINER_RELEASE), [
            entity(EntityType.BL_NUMBER, "MAEU263522431"),
        ])

        assert result.shipment_id == existing_shipment.id
        assert result.link_method == LinkMethod.BL

    def test_outbound_container_link_advances_to_hbl_shared(self, db, make_message, existing_shipment):
        """An outbound BL that only names a container links and implies hbl_shared."""
        message = make_message(subject="HBL for your shipment", sender="ops@intoglo.com")
        result = resolve(db, message, classified(DocumentType.BILL_OF_LADING, Direction.OUTBOUND), [
            entity(EntityType.CONTAINER_NUMBER, "MSKU1234565"),
        ])

        assert result.link_method == LinkMethod.CONTAINER
        assert advance(db, existing_shipment.id) == WorkflowState.HBL_SHARED

    def test_secondary_container(self, db, existing_shipment):
        assert find_by_container(db, ["CSQU3054383"]).id == existing_shipment.id
        assert find_by_container(db, ["TGHU1234567"]) is None

    def test_unmatched_message_stays_unlinked(self, db, make_message, existing_shipment):
        message = make_message(subject="Hello")
        result = resolve(db, message, classified(DocumentType.GENERAL_CORRESPONDENCE), [])
        assert not result.linked
        assert result.to_dict() == {"shipment_id": None, "created": False, "link_method": None}


class TestIdempotency:
    def test_second_resolve_returns_existing_link(self, db, make_message, existing_shipment):
        """Resolving a linked message again writes nothing."""
        message = make_message(subject="BL copy for booking 263522431")
        entities = [entity(EntityType.BOOKING_NUMBER, "263522431")]
        first = resolve(db, message, classified(DocumentType.BILL_OF_LADING), entities)
        second = resolve(db, message, classified(DocumentType.BILL_OF_LADING), entities)

        assert second.shipment_id == first.shipment_id
        assert second.link_method == LinkMethod.BOOKING
        assert db.query(ShipmentDocument).filter_by(message_id=message.id).count() == 1
        lifecycle = db.query(DocumentLifecycle).filter_by(shipment_id=existing_shipment.id).one()
        assert lifecycle.message_count == 1


class TestBackfill:
    def test_fills_empty_identifiers(self, existing_shipment):
        changed = backfill(existing_shipment, [
            entity(EntityType.BL_NUMBER, "MAEU263522431"),
            entity(EntityType.CONTAINER_NUMBER, "TGHU9876540"),
        ])

        assert existing_shipment.bl_number == "MAEU263522431"
        assert existing_shipment.container_number_primary == "MSKU1234565"
        assert existing_shipment.container_numbers == ["CSQU3054383", "TGHU9876540"]
        assert "bl_number" in changed
        assert "container_numbers" in changed

    def test_non_authoritative_keeps_dates(self, existing_shipment):
        backfill(existing_shipment, [entity(EntityType.ETD, "2026-03-15")])
        assert existing_shipment.etd == date(2026, 3, 10)

    def test_authoritative_overwrites_dates(self, existing_shipment):
        """Booking confirmations carry the current schedule."""
        changed = backfill(existing_shipment, [
            entity(EntityType.ETD, "2026-03-15"),
            entity(EntityType.ETA, "2026-04-01"),
            entity(EntityType.ETA, "2026-04-20"),
            entity(EntityType.SI_CUTOFF, "2026-03-08"),
        ], authoritative=True)

        assert existing_shipment.etd == date(2026, 3, 15)
        assert existing_shipment.eta == date(2026, 4, 20)
        assert existing_shipment.si_cutoff == date(2026, 3, 8)
        assert set(changed) == {"etd", "eta", "si_cutoff"}

    def test_identifiers_not_overwritten(self, existing_shipment):
        backfill(existing_shipment, [entity(EntityType.CARRIER, "Hapag-Lloyd")], authoritative=True)
        assert existing_shipment.carrier == "Maersk"


class TestLifecycle:
    def test_counts_and_first_seen(self, db, make_message, existing_shipment):
        """Lifecycle keeps the earliest sighting and counts every message."""
        later = make_message(
            subject="Invoice 1 for 263522431",
            received_at=datetime(2026, 3, 5, 8, 0, tzinfo=timezone.utc),
        )
        earlier = make_message(
            subject="Invoice 2 for 263522431",
            received_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
        )
        entities = [entity(EntityType.BOOKING_NUMBER, "263522431")]
        resolve(db, later, classified(DocumentType.INVOICE), entities)
        resolve(db, earlier, classified(DocumentType.INVOICE), entities)
        db.flush()

        lifecycle = db.query(DocumentLifecycle).filter_by(
            shipment_id=existing_shipment.id, document_type="invoice",
        ).one()
        assert lifecycle.message_count == 2
        assert lifecycle.first_message_id == earlier.id

    def test_unknown_type_has_no_lifecycle(self, db, make_message, existing_shipment):
        message = make_message(subject="263522431")
        resolve(db, message, classified(DocumentType.UNKNOWN), [entity(EntityType.BOOKING_NUMBER, "263522431")])
        assert db.query(DocumentLifecycle).count() == 0
