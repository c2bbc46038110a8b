"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread.

imaplib owns tag generation and reads every untagged line up to the tagged
completion of each command.  This module maps its outcomes onto the
``ticket_sync.errors`` taxonomy and turns SEARCH / FETCH payloads into
structured results.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import socket
import ssl
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

import structlog

from .config import ImapConfig
from .errors import (
    ImapAuthError,
    ImapCommandError,
    ImapConnectionError,
    ImapGreetingError,
    ImapProtocolError,
)

logger = structlog.get_logger()

T = TypeVar("T")

IMAP_ERROR = imaplib.IMAP4.error
IMAP_ABORT = imaplib.IMAP4.abort

IMAP_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

HEADER_FIELDS = (
    "FROM",
    "SUBJECT",
    "DATE",
    "MESSAGE-ID",
    "CONTENT-TYPE",
    "CONTENT-TRANSFER-ENCODING",
    "MIME-VERSION",
)

_MSG_START = re.compile(rb"^(\d+) \(")
_UID = re.compile(rb"\bUID (\d+)")
_SECTION = re.compile(rb"BODY\[([^\]]*)\]")


def format_imap_date(value: date) -> str:
    """Format *value* as an IMAP search date (``5-Jan-2024``).

    Locale-independent, and the day is not zero-padded.
    """
    return f"{value.day}-{IMAP_MONTHS[value.month - 1]}-{value.year}"


def quote_imap_string(value: str) -> str:
    """Render *value* as an IMAP quoted string."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass
class MailboxInfo:
    """Result of SELECT."""

    name: str
    message_count: int


@dataclass
class SearchCriteria:
    """``SEARCH FROM "<addr>" SINCE <date>``."""

    from_address: str
    since: date

    def to_imap(self) -> str:
        return f"FROM {quote_imap_string(self.from_address)} SINCE {format_imap_date(self.since)}"


@dataclass
class RawFetchRecord:
    """Header fields and body slice of one message, as returned by FETCH."""

    uid: str
    header_bytes: bytes
    body_bytes: bytes = b""

    @property
    def raw_bytes(self) -> bytes:
        """Headers and body joined into something ``email`` can parse."""
        header = self.header_bytes
        if not header.endswith(b"\r\n\r\n") and not header.endswith(b"\n\n"):
            header = header.rstrip(b"\r\n") + b"\r\n\r\n"
        return header + self.body_bytes


def parse_search_response(data: Sequence[Any]) -> list[str]:
    """Parse the untagged SEARCH payload into a list of UIDs.

    An empty ``* SEARCH`` line, or none at all, yields an empty list.
    """
    uids: list[str] = []
    for chunk in data:
        if chunk is None:
            continue
        if not isinstance(chunk, bytes):
            raise ImapProtocolError(f"Unexpected SEARCH payload: {chunk!r}")
        for token in chunk.split():
            if not token.isdigit():
                raise ImapProtocolError(f"Non-numeric id in SEARCH response: {token!r}")
            uids.append(token.decode("ascii"))
    return uids


@dataclass
class _PartialRecord:
    sequence: str
    uid: str | None = None
    header: bytes | None = None
    body: bytes = b""

    def note_uid(self, fragment: bytes) -> None:
        match = _UID.search(fragment)
        if match:
            self.uid = match.group(1).decode("ascii")


def parse_fetch_response(data: Sequence[Any]) -> list[RawFetchRecord]:
    """Group imaplib's FETCH payload into one :class:`RawFetchRecord` per message.

    imaplib delivers every literal as a ``(prefix, literal)`` tuple and the
    rest of the line after the last literal as plain bytes.  A prefix that
    starts with ``<seq> (`` opens a new message.  Unsolicited FETCH updates
    without a header section (e.g. flag changes) are skipped.
    """
    records: list[RawFetchRecord] = []
    current: _PartialRecord | None = None

    def flush() -> None:
        if current is None or current.header is None:
            return
        if current.uid is None:
            raise ImapProtocolError(f"FETCH response for message {current.sequence} has no UID")
        records.append(
            RawFetchRecord(uid=current.uid, header_bytes=current.header, body_bytes=current.body)
        )

    for item in data:
        if item is None:
            continue

        if isinstance(item, tuple):
            if len(item) != 2 or not isinstance(item[0], bytes):
                raise ImapProtocolError(f"Malformed FETCH literal: {item!r}")
            prefix, literal = item
            start = _MSG_START.match(prefix)
            if start:
                flush()
                current = _PartialRecord(sequence=start.group(1).decode("ascii"))
            elif current is None:
                raise ImapProtocolError("FETCH literal outside of a message response")
            current.note_uid(prefix)

            sections = _SECTION.findall(prefix)
            if not sections:
                continue
            section = sections[-1].upper()
            payload = literal if isinstance(literal, bytes) else b""
            if section.startswith(b"HEADER"):
                current.header = payload
            elif section == b"TEXT":
                current.body = payload
            continue

        if isinstance(item, bytes):
            start = _MSG_START.match(item)
            if start:
                flush()
                current = _PartialRecord(sequence=start.group(1).decode("ascii"))
            elif current is None:
                raise ImapProtocolError(f"Unexpected FETCH line: {item!r}")
            current.note_uid(item)
            continue

        raise ImapProtocolError(f"Unexpected FETCH payload type: {type(item).__name__}")

    flush()
    return records


class AsyncImapClient:
    """Async-friendly IMAP client for a single account session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  Commands
    are issued one at a time; callers must not run two commands
    concurrently on the same client.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4 | None = None
        self._aborted = False

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, host: str, port: int) -> None:
        """Open TCP + TLS and validate the server greeting.

        The implicit TLS port connects with TLS immediately; any other port
        connects in plaintext and upgrades with STARTTLS before anything
        else is sent.
        """
        implicit_tls = port == self._config.implicit_tls_port
        await asyncio.to_thread(self._connect_sync, host, port, implicit_tls)
        logger.info(
            "imap_connected",
            host=host,
            port=port,
            tls="implicit" if implicit_tls else "starttls",
        )

    def _connect_sync(self, host: str, port: int, implicit_tls: bool) -> None:
        timeout = self._config.socket_timeout_seconds
        context = ssl.create_default_context()
        try:
            if implicit_tls:
                conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    host, port, ssl_context=context, timeout=timeout
                )
            else:
                conn = imaplib.IMAP4(host, port, timeout=timeout)
        except IMAP_ABORT as exc:
            raise ImapConnectionError(f"Connection closed during greeting: {exc}") from exc
        except IMAP_ERROR as exc:
            raise ImapGreetingError(f"Unexpected server greeting: {exc}") from exc
        except OSError as exc:
            raise ImapConnectionError(str(exc) or type(exc).__name__) from exc

        welcome = getattr(conn, "welcome", b"") or b""
        if not welcome.startswith((b"* OK", b"* PREAUTH")):
            _shutdown_quietly(conn)
            raise ImapGreetingError(f"Unexpected server greeting: {welcome[:80]!r}")

        if not implicit_tls:
            try:
                conn.starttls(ssl_context=context)
            except (IMAP_ERROR, OSError) as exc:
                _shutdown_quietly(conn)
                raise ImapConnectionError(f"STARTTLS failed: {exc}") from exc

        if self._aborted:
            _shutdown_quietly(conn)
            raise ImapConnectionError("timed out")
        self._conn = conn

    async def login(self, identity: str, secret: str) -> None:
        """Authenticate.  Any non-OK completion is an :class:`ImapAuthError`."""
        conn = self._require_conn()

        def _login() -> None:
            try:
                typ, data = conn.login(identity, secret)
            except IMAP_ABORT as exc:
                raise ImapConnectionError(f"Connection lost during LOGIN: {exc}") from exc
            except IMAP_ERROR as exc:
                raise ImapAuthError("Invalid credentials") from exc
            except OSError as exc:
                raise ImapConnectionError(str(exc) or type(exc).__name__) from exc
            if typ != "OK":
                raise ImapAuthError("Invalid credentials")

        await asyncio.to_thread(_login)
        logger.info("imap_authenticated", identity=identity)

    async def select(self, mailbox: str = "INBOX") -> MailboxInfo:
        """SELECT *mailbox* and return its message count (from EXISTS)."""
        conn = self._require_conn()
        name = quote_imap_string(mailbox) if " " in mailbox else mailbox
        typ, data = await self._run(conn.select, name)
        if typ != "OK":
            raise ImapCommandError(f"SELECT {mailbox} failed: {_describe(data)}")
        try:
            count = int(data[0]) if data and data[0] is not None else 0
        except (TypeError, ValueError) as exc:
            raise ImapProtocolError(f"Unparsable EXISTS count: {data!r}") from exc
        logger.debug("imap_mailbox_selected", mailbox=mailbox, message_count=count)
        return MailboxInfo(name=mailbox, message_count=count)

    async def search(self, criteria: SearchCriteria) -> list[str]:
        """UID SEARCH; zero results is an empty list, not an error."""
        conn = self._require_conn()
        typ, data = await self._run(conn.uid, "SEARCH", None, criteria.to_imap())
        if typ != "OK":
            raise ImapCommandError(f"SEARCH failed: {_describe(data)}")
        return parse_search_response(data)

    async def fetch(self, uids: Sequence[str]) -> list[RawFetchRecord]:
        """UID FETCH header fields and a bounded body slice for one or more UIDs."""
        if not uids:
            return []
        conn = self._require_conn()
        query = (
            f"(UID BODY.PEEK[HEADER.FIELDS ({' '.join(HEADER_FIELDS)})] "
            f"BODY.PEEK[TEXT]<0.{self._config.fetch_body_bytes}>)"
        )
        typ, data = await self._run(conn.uid, "FETCH", ",".join(uids), query)
        if typ != "OK":
            raise ImapCommandError(f"FETCH failed: {_describe(data)}")
        records = parse_fetch_response(data)
        logger.debug("imap_fetch_complete", requested=len(uids), fetched=len(records))
        return records

    async def logout(self) -> None:
        """LOGOUT and release the connection.  Failures are logged, never raised."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await asyncio.to_thread(conn.logout)
        except (IMAP_ERROR, OSError) as exc:
            logger.warning("imap_logout_failed", error=str(exc))
            _shutdown_quietly(conn)
        else:
            logger.info("imap_disconnected")

    def abort(self) -> None:
        """Tear down the socket after the connect phase timed out."""
        self._aborted = True
        if self._conn is not None:
            conn, self._conn = self._conn, None
            _shutdown_quietly(conn)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise ImapConnectionError("Not connected")
        return self._conn

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run an imaplib command in a thread and map its failures.

        ``abort`` (socket closed, tag desync) and socket errors are fatal to
        the connection; plain ``error`` (BAD response) only fails the command.
        """
        try:
            return await asyncio.to_thread(fn, *args)
        except IMAP_ABORT as exc:
            raise ImapConnectionError(f"Connection lost: {exc}") from exc
        except IMAP_ERROR as exc:
            raise ImapCommandError(str(exc)) from exc
        except OSError as exc:
            raise ImapConnectionError(str(exc) or type(exc).__name__) from exc


def _describe(data: Any) -> str:
    if isinstance(data, list) and data and isinstance(data[0], bytes):
        return data[0].decode("utf-8", errors="replace")
    return repr(data)


def _shutdown_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.shutdown()
    except (OSError, AttributeError):
        sock = getattr(conn, "sock", None)
        if isinstance(sock, socket.socket):
            sock.close()
