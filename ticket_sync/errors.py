"""Exception hierarchy for IMAP retrieval, ingestion and sync sessions."""

from __future__ import annotations

from datetime import datetime


class ImapError(Exception):
    """Base class for everything raised by the IMAP driver."""


class ImapConnectionError(ImapError):
    """DNS, TCP, TLS or timeout failure.  Fatal for the current sync run."""


class ImapAuthError(ImapError):
    """The server rejected LOGIN.  Never retried automatically."""


class ImapProtocolError(ImapError):
    """Malformed or unexpected server response.  The connection is unusable."""


class ImapGreetingError(ImapConnectionError, ImapProtocolError):
    """The server greeting was not ``* OK``."""


class ImapCommandError(ImapError):
    """A single command completed with NO/BAD.  Recoverable per sender."""


class DecryptionError(Exception):
    """The stored IMAP secret could not be decrypted with the configured key."""


class ConfigurationError(Exception):
    """Required server configuration is missing."""


class IngestError(Exception):
    """The ingest endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(body or f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class RateLimitedError(Exception):
    """A manual sync was requested before the rate-limit window elapsed."""

    def __init__(self, retry_after: datetime) -> None:
        super().__init__(f"Manual sync available after {retry_after.isoformat()}")
        self.retry_after = retry_after


class SessionNotFound(KeyError):
    """No sync session with the given id (unknown or already swept)."""


class SessionAccessDenied(PermissionError):
    """The sync session belongs to a different owner."""


class InvalidStatusTransition(ValueError):
    """A sync session status was asked to move backwards or leave a terminal state."""
