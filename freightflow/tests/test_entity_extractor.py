"""
Tests for entity extraction and validators.
"""
from datetime import date

from freightflow.services.entity_extractor import (
    ExtractedEntity, as_date, dedupe_entities, extract, extract_message, first_value,
    is_garbage, is_valid_booking_number, is_valid_container_number, last_value,
    parse_date, values_of,
)
from freightflow.services.taxonomy import EntitySource, EntityType


class TestValidators:
    def test_container_check_digit(self):
        """ISO 6346 check digit is enforced."""
        assert is_valid_container_number("MSKU1234565")
        assert is_valid_container_number("CSQU3054383")
        assert not is_valid_container_number("MSKU1234560")
        assert not is_valid_container_number("MSK1234565")

    def test_garbage_words(self):
        assert is_garbage("Thanks")
        assert is_garbage("www.maersk.com")
        assert is_garbage("x")
        assert not is_garbage("MAEU123456789")

    def test_booking_number(self):
        assert is_valid_booking_number("263522431")
        assert is_valid_booking_number("COSU6412345678")
        assert not is_valid_booking_number("BOOKING")
        assert not is_valid_booking_number("Confirmation")
        assert not is_valid_booking_number("please")


class TestDates:
    def test_iso(self):
        assert parse_date("2026-04-10") == date(2026, 4, 10)

    def test_day_first_by_default(self):
        """Ambiguous numeric dates are read day-first."""
        assert parse_date("05/04/2026") == date(2026, 4, 5)
        assert parse_date("15/03/2026") == date(2026, 3, 15)

    def test_month_first_when_day_cannot_be_second(self):
        assert parse_date("03/15/2026") == date(2026, 3, 15)

    def test_month_names(self):
        assert parse_date("12 Mar 2026") == date(2026, 3, 12)
        assert parse_date("March 12, 2026") == date(2026, 3, 12)
        assert parse_date("12-MAR-26") == date(2026, 3, 12)

    def test_year_window(self):
        """Dates outside 2020-2030 are rejected."""
        assert parse_date("15/03/2019") is None
        assert parse_date("2031-01-01") is None

    def test_prose_rejected(self):
        assert parse_date("may change") is None
        assert parse_date("31/02/2026") is None

    def test_as_date(self):
        assert as_date("2026-03-15") == date(2026, 3, 15)
        assert as_date("15/03/2026") is None
        assert as_date(None) is None


class TestExtract:
    def test_booking_from_subject(self):
        entities = extract("Booking Confirmation: 263522431", EntitySource.SUBJECT)
        assert values_of(entities, EntityType.BOOKING_NUMBER) == ["263522431"]
        assert all(e.source == EntitySource.SUBJECT for e in entities)

    def test_only_valid_containers(self):
        """Containers failing the check digit are dropped."""
        entities = extract("Containers: MSKU1234565, MSKU1234560", EntitySource.BODY)
        assert values_of(entities, EntityType.CONTAINER_NUMBER) == ["MSKU1234565"]

    def test_dates_are_normalized(self):
        entities = extract("ETD: 15/03/2026\nETA: 2026-04-10", EntitySource.BODY)
        assert values_of(entities, EntityType.ETD) == ["2026-03-15"]
        assert values_of(entities, EntityType.ETA) == ["2026-04-10"]

    def test_cutoffs(self):
        entities = extract("SI Cutoff: 10/03/2026\nVGM Cut-off: 11/03/2026", EntitySource.BODY)
        assert first_value(entities, EntityType.SI_CUTOFF) == "2026-03-10"
        assert first_value(entities, EntityType.VGM_CUTOFF) == "2026-03-11"

    def test_vessel_and_voyage(self):
        entities = extract("Vessel: MAERSK KINLOSS / 612W\nVoyage: 612W", EntitySource.ATTACHMENT)
        assert first_value(entities, EntityType.VESSEL_NAME) == "MAERSK KINLOSS"
        assert first_value(entities, EntityType.VOYAGE_NUMBER) == "612W"

    def test_carrier_brand_mention(self):
        entities = extract("Vessel: MAERSK KINLOSS / 612W", EntitySource.ATTACHMENT)
        assert values_of(entities, EntityType.CARRIER) == ["Maersk"]

    def test_empty_text(self):
        assert extract("", EntitySource.BODY) == []
        assert extract(None, EntitySource.BODY) == []


class TestExtractMessage:
    def test_sender_carrier_first(self):
        """The sender's carrier is reported before any text-derived entity."""
        entities = extract_message(
            "Booking Confirmation: 263522431",
            "Thank you for your booking.",
            ["BOOKING CONFIRMATION\nETD: 15/03/2026"],
            sender="in.export@maersk.com",
        )
        assert entities[0].entity_type == EntityType.CARRIER
        assert entities[0].value == "Maersk"
        assert entities[0].confidence == 95
        assert first_value(entities, EntityType.BOOKING_NUMBER) == "263522431"
        assert first_value(entities, EntityType.ETD) == "2026-03-15"

    def test_no_carrier_from_unknown_sender(self):
        entities = extract_message("Booking 263522431", "", [], sender="buyer@acme.com")
        assert values_of(entities, EntityType.CARRIER) == []
        assert values_of(entities, EntityType.BOOKING_NUMBER) == ["263522431"]

    def test_quoted_history_is_ignored_in_replies(self):
        body = (
            "Thanks, noted. Container MSKU1234565 is loaded.\n\n"
            "On Mon, Mar 2, 2026 at 9:14 AM Maersk <in.export@maersk.com> wrote:\n"
            "> BOOKING CONFIRMATION\n"
            "> Container CSQU3054383\n"
        )
        sender = "buyer@customer-example.com"
        reply = extract_message("RE: shipment 263522431", body, [], sender=sender)
        flagged = extract_message("shipment 263522431", body, [], sender=sender, is_reply=True)
        original = extract_message("shipment 263522431", body, [], sender=sender)

        for entities in (reply, flagged):
            assert values_of(entities, EntityType.CARRIER) == []
            assert values_of(entities, EntityType.CONTAINER_NUMBER) == ["MSKU1234565"]
        assert values_of(original, EntityType.CARRIER) == ["Maersk"]
        assert values_of(original, EntityType.CONTAINER_NUMBER) == ["MSKU1234565", "CSQU3054383"]

    def test_hmm_needs_the_brand_not_the_word(self):
        casual = extract_message("Hmm, any update?", "hmm, still checking", [], sender="buyer@acme.com")
        assert values_of(casual, EntityType.CARRIER) == []
        assert values_of(extract("Vessel: HMM ALGECIRAS / 012W", EntitySource.BODY), EntityType.CARRIER) == ["HMM"]
        assert values_of(extract("Hyundai Merchant Marine notice", EntitySource.BODY), EntityType.CARRIER) == ["HMM"]


class TestReadHelpers:
    def test_first_etd_last_eta(self):
        """Multi-leg mails keep order so the first ETD and last ETA can be picked."""
        entities = extract("ETD: 2026-03-15\nETA: 2026-04-01\nETD: 2026-04-03\nETA: 2026-04-20", EntitySource.BODY)
        assert first_value(entities, EntityType.ETD) == "2026-03-15"
        assert last_value(entities, EntityType.ETA) == "2026-04-20"

    def test_dedupe_keeps_first(self):
        entities = [
            ExtractedEntity(EntityType.BOOKING_NUMBER, "263522431", 90, EntitySource.SUBJECT),
            ExtractedEntity(EntityType.BOOKING_NUMBER, "263522431", 85, EntitySource.BODY),
            ExtractedEntity(EntityType.BL_NUMBER, "263522431", 85, EntitySource.BODY),
        ]
        unique = dedupe_entities(entities)
        assert len(unique) == 2
        assert unique[0].source == EntitySource.SUBJECT

    def test_helpers_accept_stored_string_types(self):
        class Row:
            def __init__(self, entity_type, value):
                self.entity_type = entity_type
                self.value = value

        rows = [Row("booking_number", "263522431")]
        assert first_value(rows, EntityType.BOOKING_NUMBER) == "263522431"
