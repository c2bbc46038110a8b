"""Tests for ticket_sync.allowlist."""

from __future__ import annotations

import pytest

from ticket_sync.allowlist import (
    APPROVED_ADDRESSES,
    APPROVED_BRAND_TOKENS,
    APPROVED_DOMAINS,
    DomainSuffixPolicy,
    DomainTokenPolicy,
    ExactAddressPolicy,
    build_policy,
    extract_address,
    is_likely_ticket_email,
)


class TestExtractAddress:
    def test_angle_brackets(self):
        assert extract_address("Ticketmaster <Customer_Support@Email.Ticketmaster.com>") == (
            "customer_support@email.ticketmaster.com"
        )

    def test_bare_address(self):
        assert extract_address("  noreply@dice.fm ") == "noreply@dice.fm"


class TestExactAddressPolicy:
    def test_every_listed_address_is_approved(self):
        policy = ExactAddressPolicy()
        for address in APPROVED_ADDRESSES:
            assert policy.is_approved(f"Vendor <{address.upper()}>")

    def test_unlisted_senders_rejected(self):
        policy = ExactAddressPolicy()
        assert not policy.is_approved("someone@gmail.com")
        assert not policy.is_approved("Fake <support@ticketmaster.com>")

    def test_search_terms_follow_list_order(self):
        assert ExactAddressPolicy().search_terms == list(APPROVED_ADDRESSES)


class TestDomainSuffixPolicy:
    def test_subdomain_matches(self):
        policy = DomainSuffixPolicy(["ticketmaster.com"])
        assert policy.is_approved("x@mail.ticketmaster.com")
        assert policy.is_approved("x@ticketmaster.com")

    def test_lookalike_rejected(self):
        policy = DomainSuffixPolicy(["ticketmaster.com"])
        assert not policy.is_approved("x@nottickemaster.com")
        assert not policy.is_approved("x@notticketmaster.com")

    def test_at_prefixed_entries(self):
        policy = DomainSuffixPolicy()
        for domain in APPROVED_DOMAINS:
            assert policy.is_approved(f"orders{domain}")

    def test_bare_string_without_at_rejected(self):
        assert not DomainSuffixPolicy(["dice.fm"]).is_approved("dice.fm")


class TestDomainTokenPolicy:
    def test_token_anywhere_in_domain(self):
        policy = DomainTokenPolicy(["ticketmaster"])
        assert policy.is_approved("x@email.ticketmaster.co.uk")
        assert policy.is_approved("Ticketmaster <X@TICKETMASTER.COM>")

    def test_token_in_local_part_only_rejected(self):
        assert not DomainTokenPolicy(["ticketmaster"]).is_approved("ticketmaster@gmail.com")

    def test_lookalike_domain_admitted(self):
        # The pattern only requires the token somewhere in the domain.
        assert DomainTokenPolicy(["ticketmaster"]).is_approved("x@ticketmasterfake.evil.com")

    def test_tokens_are_escaped(self):
        policy = DomainTokenPolicy(["luma-mail"])
        assert policy.is_approved("calendar@calendar.luma-mail.com")
        assert not policy.is_approved("x@lumaxmail.com")

    def test_every_default_token_matches_synthetic_address(self):
        policy = DomainTokenPolicy()
        for token in APPROVED_BRAND_TOKENS:
            assert policy.is_approved(f"orders@mail.{token}.com")


class TestBuildPolicy:
    @pytest.mark.parametrize(
        ("name", "cls"),
        [("exact", ExactAddressPolicy), ("suffix", DomainSuffixPolicy), ("TOKEN", DomainTokenPolicy)],
    )
    def test_known_names(self, name, cls):
        assert isinstance(build_policy(name), cls)

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown allow-list policy"):
            build_policy("fuzzy")


class TestTicketSubjectHeuristic:
    @pytest.mark.parametrize(
        "subject",
        ["Your ORDER confirmation", "Tickets for Friday", "Receipt #42"],
    )
    def test_ticket_subjects(self, subject):
        assert is_likely_ticket_email(subject)

    def test_newsletter_subject(self):
        assert not is_likely_ticket_email("This week's hottest shows")
