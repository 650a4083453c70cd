"""
Direction and sender-party detection.

Direction is relative to the operating company: mail authored by one of its
own domains is outbound, everything else inbound. Carrier membership is a
separate predicate.
"""
import re
from typing import Iterable, Optional

from freightflow.core.config import settings
from freightflow.services.rule_table import get_rule_table, CarrierProfile
from freightflow.services.taxonomy import Direction, PartyType

# "Jane Doe via Operations <ops@intoglo.com>" style relays keep the
# external author's identity.
_VIA_MARKER = re.compile(r"\svia\s", re.IGNORECASE)
_ADDRESS_IN_BRACKETS = re.compile(r"<([^>]+)>")


def effective_sender(sender: Optional[str], true_sender: Optional[str] = None) -> str:
    """Prefer the unwrapped sender of forwarded/list mail."""
    return (true_sender or sender or "").strip()


def email_domain(address: str) -> str:
    """Domain part of an address, lower-cased. Accepts 'Name <a@b>' forms."""
    if not address:
        return ""
    bracketed = _ADDRESS_IN_BRACKETS.search(address)
    if bracketed:
        address = bracketed.group(1)
    if "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().strip(">").lower()


def _domain_matches(domain: str, candidates: Iterable[str]) -> bool:
    return any(domain == c or domain.endswith("." + c) for c in candidates)


def is_company_address(address: str, company_domains: Optional[Iterable[str]] = None) -> bool:
    """True when the address is authored by the operating company itself."""
    if not address or _VIA_MARKER.search(address):
        return False
    domains = list(company_domains) if company_domains is not None else settings.company_domains
    return _domain_matches(email_domain(address), domains)


def detect_direction(
    sender: Optional[str],
    true_sender: Optional[str] = None,
    subject: Optional[str] = None,
    company_domains: Optional[Iterable[str]] = None,
) -> Direction:
    """
    Classify a message as inbound or outbound.

    The subject is accepted for contract compatibility; the decision is made
    on the effective sender alone.
    """
    address = effective_sender(sender, true_sender)
    if is_company_address(address, company_domains):
        return Direction.OUTBOUND
    return Direction.INBOUND


def carrier_for_sender(address: Optional[str]) -> Optional[CarrierProfile]:
    """Carrier whose mail domain the address belongs to, if any."""
    domain = email_domain(address or "")
    if not domain:
        return None
    for profile in get_rule_table().carriers:
        if _domain_matches(domain, profile.domains):
            return profile
    return None


def is_carrier_address(address: Optional[str]) -> bool:
    return carrier_for_sender(address) is not None


def detect_party(
    sender: Optional[str],
    true_sender: Optional[str] = None,
    company_domains: Optional[Iterable[str]] = None,
) -> PartyType:
    """Coarse sender party used by the action rules."""
    address = effective_sender(sender, true_sender)
    if is_company_address(address, company_domains):
        return PartyType.OPERATING_COMPANY
    if is_carrier_address(address):
        return PartyType.OCEAN_CARRIER

    domain = email_domain(address)
    if domain and _domain_matches(domain, get_rule_table().trucker_domains):
        return PartyType.TRUCKER

    lowered = address.lower()
    if "broker" in lowered or "customs" in lowered:
        return PartyType.CUSTOMS_BROKER
    return PartyType.UNKNOWN
