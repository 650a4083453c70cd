"""
Tests for direction and sender-party detection.
"""
from freightflow.services.direction import (
    carrier_for_sender, detect_direction, detect_party, email_domain, is_company_address,
)
from freightflow.services.taxonomy import Direction, PartyType


class TestEmailDomain:
    def test_plain_address(self):
        """Domain is lower-cased."""
        assert email_domain("Ops@Intoglo.COM") == "intoglo.com"

    def test_display_name_form(self):
        """Addresses in angle brackets are unwrapped."""
        assert email_domain("Jane Doe <jane@acme.com>") == "acme.com"

    def test_not_an_address(self):
        assert email_domain("no address here") == ""
        assert email_domain("") == ""


class TestDirection:
    def test_company_sender_is_outbound(self):
        """Mail authored by the operating company is outbound."""
        assert detect_direction("ops@intoglo.com") == Direction.OUTBOUND

    def test_company_subdomain_is_outbound(self):
        assert detect_direction("ops@mail.intoglo.com") == Direction.OUTBOUND

    def test_external_sender_is_inbound(self):
        assert detect_direction("in.export@maersk.com") == Direction.INBOUND

    def test_relayed_mail_keeps_external_author(self):
        """A 'via' relay through a company address is still inbound."""
        assert detect_direction("Jane Doe via Operations <ops@intoglo.com>") == Direction.INBOUND
        assert not is_company_address("Jane Doe via Operations <ops@intoglo.com>")

    def test_true_sender_wins(self):
        """The unwrapped sender decides direction for forwarded mail."""
        assert detect_direction("ops@intoglo.com", true_sender="buyer@customer.com") == Direction.INBOUND
        assert detect_direction("relay@lists.example.com", true_sender="ops@intoglo.com") == Direction.OUTBOUND

    def test_subject_does_not_affect_direction(self):
        """Subject is accepted but ignored."""
        assert detect_direction("in.export@maersk.com", subject="FW: sent by intoglo") == Direction.INBOUND

    def test_custom_company_domains(self):
        assert detect_direction("a@forwarder.io", company_domains=["forwarder.io"]) == Direction.OUTBOUND


class TestParty:
    def test_operating_company(self):
        assert detect_party("ops@intoglo.com") == PartyType.OPERATING_COMPANY

    def test_ocean_carrier(self):
        """Carrier domains map to ocean_carrier, including secondary domains."""
        assert detect_party("in.export@maersk.com") == PartyType.OCEAN_CARRIER
        assert detect_party("noreply@service.hlag.com") == PartyType.OCEAN_CARRIER

    def test_trucker(self):
        assert detect_party("dispatch@jbhunt.com") == PartyType.TRUCKER

    def test_customs_broker_by_address(self):
        assert detect_party("entries@bestcustomsbroker.com") == PartyType.CUSTOMS_BROKER

    def test_unknown(self):
        assert detect_party("buyer@acme.com") == PartyType.UNKNOWN

    def test_carrier_for_sender(self):
        profile = carrier_for_sender("booking@cma-cgm.com")
        assert profile is not None
        assert profile.name == "CMA CGM"
        assert carrier_for_sender("buyer@acme.com") is None
