"""Shared test fixtures for the ticket sync test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from ticket_sync.config import (
    AuthConfig,
    ImapConfig,
    IngestConfig,
    RetryConfig,
    Settings,
    SyncConfig,
)
from ticket_sync.crypto import encrypt_secret, generate_key
from ticket_sync.fetcher import ConnectionStateChanged
from ticket_sync.imap_client import RawFetchRecord
from ticket_sync.models import AccountSyncMode, ConnectionState, Credential, Email, ImapAccount

TICKETMASTER = "customer_support@email.ticketmaster.com"
DICE = "noreply@dice.fm"
IMAP_PASSWORD = "app-password-123"


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(connect_timeout_seconds=5.0, socket_timeout_seconds=5.0)


@pytest.fixture
def ingest_config() -> IngestConfig:
    return IngestConfig(main_app_url="http://main.test", api_key="test-api-key", timeout_seconds=5.0)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0, max_wait_seconds=0, multiplier=0)


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig()


@pytest.fixture
def encryption_key() -> str:
    return generate_key()


@pytest.fixture
def settings(encryption_key: str, tmp_path) -> Settings:
    return Settings(
        encryption_key=encryption_key,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        ingest=IngestConfig(main_app_url="http://main.test", api_key="test-api-key"),
        auth=AuthConfig(main_app_url="http://main.test"),
    )


@pytest.fixture
def credential(encryption_key: str) -> Credential:
    return make_credential(encryption_key)


@pytest.fixture
def account() -> ImapAccount:
    return ImapAccount(
        host="imap.test.com",
        port=993,
        login_identity="user@test.com",
        secret=SecretStr(IMAP_PASSWORD),
    )


def make_credential(encryption_key: str, **overrides) -> Credential:
    ciphertext, iv = encrypt_secret(IMAP_PASSWORD, encryption_key)
    values = {
        "id": "cred-1",
        "owner_id": "user-1",
        "recipient_identity": "user@main.test",
        "login_identity": "user@test.com",
        "host": "imap.test.com",
        "port": 993,
        "encrypted_secret": ciphertext,
        "encryption_iv": iv,
        "sync_mode": AccountSyncMode.MANUAL,
    }
    values.update(overrides)
    return Credential(**values)


def make_email(
    *,
    message_id: str = "<order-1@vendor.test>",
    sender: str = f"Ticketmaster <{TICKETMASTER}>",
    subject: str = "Your order confirmation",
    body: str = "Order #123 for Some Band",
) -> Email:
    return Email(
        message_id=message_id,
        sender=sender,
        subject=subject,
        sent_at=datetime(2025, 6, 1, 12, 0, tzinfo=UTC),
        body_text=body,
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_vendor_email(
    *,
    from_addr: str = f"Ticketmaster <{TICKETMASTER}>",
    subject: str = "Your order confirmation",
    body: str = "Thanks for your order. " * 10,
    message_id: str | None = "<order-001@email.ticketmaster.com>",
    date: str | None = "Sun, 01 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a plain-text vendor email as raw bytes."""
    msg = MIMEText(body, "plain")
    if from_addr:
        msg["From"] = from_addr
    if subject:
        msg["Subject"] = subject
    msg["To"] = "user@test.com"
    if message_id:
        msg["Message-ID"] = message_id
    if date:
        msg["Date"] = date
    return msg.as_bytes()


def _build_alternative_email(
    *,
    body_text: str = "See HTML version",
    body_html: str = "<html><body><h1>Order confirmed</h1><p>Section 101, Row B</p></body></html>",
    from_addr: str = f"DICE <{DICE}>",
    subject: str = "Your tickets",
) -> bytes:
    """Build a multipart/alternative email with text and HTML parts."""
    msg = MIMEMultipart("alternative")
    msg["From"] = from_addr
    msg["Subject"] = subject
    msg["To"] = "user@test.com"
    msg["Message-ID"] = "<alt-001@dice.fm>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))
    return msg.as_bytes()


def _split_eml(raw: bytes) -> tuple[bytes, bytes]:
    """Split raw EML into (header block, body) the way FETCH returns them."""
    separator = b"\r\n\r\n" if b"\r\n\r\n" in raw else b"\n\n"
    header, _, body = raw.partition(separator)
    return header + separator, body


def _make_record(uid: str, raw: bytes) -> RawFetchRecord:
    header, body = _split_eml(raw)
    return RawFetchRecord(uid=uid, header_bytes=header, body_bytes=body)


def _fetch_payload(messages: list[tuple[str, bytes]]) -> list:
    """Shape a UID FETCH response the way imaplib returns it.

    Each message contributes a header literal tuple, a body literal tuple
    and the closing paren line.
    """
    data: list = []
    for seq, (uid, raw) in enumerate(messages, start=1):
        header, body = _split_eml(raw)
        data.append(
            (
                b"%d (UID %s BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)] {%d}"
                % (seq, uid.encode(), len(header)),
                header,
            )
        )
        data.append((b" BODY[TEXT]<0> {%d}" % len(body), body))
        data.append(b")")
    return data


def _make_mock_imap(
    *,
    search: dict[str, list[str]] | None = None,
    messages: dict[str, bytes] | None = None,
    welcome: bytes = b"* OK IMAP4rev1 ready",
) -> MagicMock:
    """Create a mock imaplib connection with programmed SEARCH/FETCH answers.

    *search* maps a sender search term to the UIDs it matches; *messages*
    maps a UID to raw EML.
    """
    search = search or {}
    messages = messages or {}

    mock = MagicMock()
    mock.welcome = welcome
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = ("OK", [b"42"])
    mock.logout.return_value = ("BYE", [b"Bye"])
    mock.starttls.return_value = ("OK", [b"Begin TLS"])

    def uid_handler(command: str, *args):
        if command == "SEARCH":
            criteria = args[-1]
            for term, uids in search.items():
                if f'FROM "{term}"' in criteria:
                    return ("OK", [" ".join(uids).encode()])
            return ("OK", [b""])
        if command == "FETCH":
            uids = args[0].split(",")
            return ("OK", _fetch_payload([(u, messages[u]) for u in uids if u in messages]))
        return ("BAD", [b"unknown command"])

    mock.uid.side_effect = uid_handler
    return mock


class FakeFetcher:
    """Stands in for TicketEmailFetcher: replays scripted events, then optionally raises."""

    def __init__(self, events=None, *, error: Exception | None = None) -> None:
        self.events = events or []
        self.error = error
        self.calls: list[dict] = []

    @property
    def senders(self) -> list[str]:
        return [TICKETMASTER, DICE]

    async def stream(self, account, since, *, subject_filter=None):
        self.calls.append({"account": account, "since": since, "subject_filter": subject_filter})
        for event in self.events:
            yield event
        if self.error is not None:
            yield ConnectionStateChanged(ConnectionState.ERROR, str(self.error))
            raise self.error
