"""Approved vendor senders and the policies that match a From header against them.

Only mail from these vendors is ever read.  Changing a list means a release.
"""

from __future__ import annotations

import abc
import re
from collections.abc import Sequence

APPROVED_ADDRESSES: tuple[str, ...] = (
    "order-support@frontgatetickets.com",
    "no-reply@tixr.com",
    "info@seetickets.us",
    "guestservices@axs.com",
    "info@ticketweb.com",
    "noreply@order.eventbrite.com",
    "customer_support@email.ticketmaster.com",
    "noreply@dice.fm",
    "events@mail.stubhub.com",
    "tickets@live.vividseats.com",
    "calendar.luma-mail.com",
    "noreply@ra.co",
    "noreply@orders.skiddle.com",
)

APPROVED_DOMAINS: tuple[str, ...] = (
    "@frontgatetickets.com",
    "@tixr.com",
    "@seetickets.us",
    "@axs.com",
    "@ticketweb.com",
    "@eventbrite.com",
    "@ticketmaster.com",
    "@dice.fm",
    "@stubhub.com",
    "@vividseats.com",
    "@luma-mail.com",
    "@ra.co",
    "@skiddle.com",
)

APPROVED_BRAND_TOKENS: tuple[str, ...] = (
    "frontgatetickets",
    "tixr",
    "seetickets",
    "axs",
    "ticketweb",
    "eventbrite",
    "ticketmaster",
    "dice",
    "stubhub",
    "vividseats",
    "luma-mail",
    "residentadvisor",
    "skiddle",
)

TICKET_SUBJECT_KEYWORDS: tuple[str, ...] = ("order", "ticket", "receipt")

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")


def extract_address(sender_field: str) -> str:
    """Return the lower-cased address from ``"Name <addr>"`` or a bare address."""
    match = _ANGLE_ADDRESS.search(sender_field)
    address = match.group(1) if match else sender_field
    return address.strip().lower()


def _domain_of(address: str) -> str:
    _, _, domain = address.rpartition("@")
    return domain


def is_likely_ticket_email(subject: str) -> bool:
    """Subject heuristic used to skip newsletters during scheduled syncs."""
    lowered = subject.lower()
    return any(keyword in lowered for keyword in TICKET_SUBJECT_KEYWORDS)


class SenderPolicy(abc.ABC):
    """Decides whether a From header belongs to an approved vendor."""

    name: str = ""

    @property
    @abc.abstractmethod
    def search_terms(self) -> list[str]:
        """Strings passed to IMAP ``SEARCH FROM``, in processing order."""
        ...

    @abc.abstractmethod
    def is_approved(self, sender_field: str) -> bool:
        ...


class ExactAddressPolicy(SenderPolicy):
    """Sender must equal one of a list of full addresses."""

    name = "exact"

    def __init__(self, addresses: Sequence[str] = APPROVED_ADDRESSES) -> None:
        self._addresses = [a.strip().lower() for a in addresses]
        self._lookup = frozenset(self._addresses)

    @property
    def search_terms(self) -> list[str]:
        return list(self._addresses)

    def is_approved(self, sender_field: str) -> bool:
        return extract_address(sender_field) in self._lookup


class DomainSuffixPolicy(SenderPolicy):
    """Sender's domain must be a listed domain or one of its subdomains.

    ``mail.ticketmaster.com`` matches ``ticketmaster.com``;
    ``notticketmaster.com`` does not.
    """

    name = "suffix"

    def __init__(self, domains: Sequence[str] = APPROVED_DOMAINS) -> None:
        self._domains = [d.strip().lower().lstrip("@") for d in domains]

    @property
    def search_terms(self) -> list[str]:
        return list(self._domains)

    def is_approved(self, sender_field: str) -> bool:
        address = extract_address(sender_field)
        if "@" not in address:
            return False
        domain = _domain_of(address)
        return any(domain == d or domain.endswith("." + d) for d in self._domains)


class DomainTokenPolicy(SenderPolicy):
    """Sender's domain must contain a brand token before the final label.

    Matches ``@[a-z0-9.-]*<token>[a-z0-9.-]*\\.[a-z]{2,}$``.  Note that this
    also admits unrelated domains that merely contain the token, e.g.
    ``ticketmasterfake.evil.com``.
    """

    name = "token"

    def __init__(self, tokens: Sequence[str] = APPROVED_BRAND_TOKENS) -> None:
        self._tokens = [t.strip().lower() for t in tokens]
        self._patterns = [
            re.compile(rf"@[a-z0-9.-]*{re.escape(token)}[a-z0-9.-]*\.[a-z]{{2,}}$", re.IGNORECASE)
            for token in self._tokens
        ]

    @property
    def search_terms(self) -> list[str]:
        return list(self._tokens)

    def is_approved(self, sender_field: str) -> bool:
        address = extract_address(sender_field)
        return any(pattern.search(address) for pattern in self._patterns)


_POLICIES: dict[str, type[SenderPolicy]] = {
    ExactAddressPolicy.name: ExactAddressPolicy,
    DomainSuffixPolicy.name: DomainSuffixPolicy,
    DomainTokenPolicy.name: DomainTokenPolicy,
}


def build_policy(name: str) -> SenderPolicy:
    """Instantiate the policy registered under *name* with its default list."""
    try:
        policy_cls = _POLICIES[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown allow-list policy {name!r}; expected one of {sorted(_POLICIES)}"
        ) from None
    return policy_cls()
