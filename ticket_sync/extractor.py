"""Turn a raw FETCH record into an :class:`~ticket_sync.models.Email`.

The record holds the selected header fields plus a bounded slice of the
body, so multipart messages may be cut off mid-part; the stdlib parser
records that as a defect and we keep whatever text came through.
"""

from __future__ import annotations

import email
import email.errors
import email.message
import email.policy
import email.utils
from datetime import UTC, datetime

import html2text
import structlog
from bs4 import BeautifulSoup

from .imap_client import RawFetchRecord
from .models import Email

logger = structlog.get_logger()

MAX_BODY_CHARS = 10_000
MIN_PLAIN_CHARS = 100


def html_to_text(html: str) -> str:
    """Render vendor HTML as readable plaintext.

    BeautifulSoup strips scripts, styles and images and unwraps anchors
    whose text is just their own target; html2text does the layout.
    """
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "img", "head"]):
        tag.decompose()
    for anchor in soup.find_all("a"):
        href = (anchor.get("href") or "").strip()
        text = anchor.get_text(strip=True)
        if text and text in (href, href.removeprefix("mailto:")):
            anchor.unwrap()

    converter = html2text.HTML2Text()
    converter.body_width = 78
    converter.ignore_images = True
    converter.ignore_emphasis = True
    return converter.handle(str(soup)).strip()


def parse_sent_at(value: str | None) -> datetime:
    """Parse a Date header.  Missing or unparsable gives now; naive is taken as UTC."""
    if not value:
        return datetime.now(UTC)
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug("email_date_unparsable", value=value)
        return datetime.now(UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _part_text(part: email.message.Message) -> str | None:
    try:
        payload = part.get_content()
    except (LookupError, UnicodeError, AssertionError, ValueError):
        raw = part.get_payload(decode=True)
        if not isinstance(raw, bytes):
            return None
        return raw.decode("utf-8", errors="replace")
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload if isinstance(payload, str) else None


class MessageExtractor:
    """Stateless extractor from RawFetchRecord to Email (or ``None``)."""

    def __init__(
        self,
        *,
        max_body_chars: int = MAX_BODY_CHARS,
        min_plain_chars: int = MIN_PLAIN_CHARS,
    ) -> None:
        self._max_body_chars = max_body_chars
        self._min_plain_chars = min_plain_chars

    def extract(self, record: RawFetchRecord) -> Email | None:
        msg = email.message_from_bytes(record.raw_bytes, policy=email.policy.default)

        sender = self._header(msg, "From")
        subject = self._header(msg, "Subject")
        if not sender or not subject:
            logger.info(
                "email_skipped_missing_headers",
                uid=record.uid,
                has_from=bool(sender),
                has_subject=bool(subject),
            )
            return None

        message_id = self._header(msg, "Message-ID") or f"{record.uid}@unknown"

        return Email(
            message_id=message_id,
            sender=sender,
            subject=subject,
            sent_at=parse_sent_at(self._header(msg, "Date")),
            body_text=self.extract_body(msg),
        )

    def extract_body(self, msg: email.message.Message) -> str:
        """Choose between the plain and HTML parts and bound the result."""
        plain, html = self._collect_bodies(msg)

        body = plain or ""
        if html and len(body.strip()) < self._min_plain_chars:
            body = html_to_text(html)

        return body.strip()[: self._max_body_chars]

    def _collect_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return the first (plain_text, html_text)."""
        plain: str | None = None
        html: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain" and plain is None:
                plain = _part_text(part)
            elif content_type == "text/html" and html is None:
                html = _part_text(part)

        return plain, html

    @staticmethod
    def _header(msg: email.message.Message, name: str) -> str:
        """Parsed header value, or the raw text when the parser chokes on it."""
        try:
            value = msg.get(name)
        except (ValueError, IndexError, AttributeError, email.errors.HeaderParseError) as exc:
            logger.debug("email_header_unparsable", header=name, error=str(exc))
            wanted = name.lower()
            value = next((raw for key, raw in msg.raw_items() if key.lower() == wanted), None)
        return str(value).strip() if value is not None else ""
