"""Data models shared by the fetcher, the orchestrator and the HTTP API."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class SyncStatus(str, Enum):
    """Top-level state of a sync session.  Only ever moves forward."""

    FETCHING = "fetching"
    INGESTING = "ingesting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED)


class ConnectionState(str, Enum):
    """Finer-grained observability state reported while fetching."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    ERROR = "error"


class IngestStatus(str, Enum):
    """Lifecycle of a single email's delivery to the ingest endpoint."""

    PENDING = "pending"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


class SyncMode(str, Enum):
    """What a sync run does after fetching.

    ``PREVIEW`` records progress in the session store but never ingests;
    ``DRY_RUN`` returns the extracted emails synchronously without touching
    the store; ``REAL`` ingests and persists sync state.
    """

    PREVIEW = "preview"
    DRY_RUN = "dry_run"
    REAL = "real"


class SyncTrigger(str, Enum):
    """Who started the sync.  Only manual syncs are rate limited."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class AccountSyncMode(str, Enum):
    """Per-account scheduling preference stored with the credential."""

    MANUAL = "manual"
    AUTO_DAILY = "auto_daily"


class HistoryStatus(str, Enum):
    """Outcome recorded in the audit log."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class Email(BaseModel):
    """A vendor email extracted from the mailbox.  Immutable."""

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(description="Message-ID header, or '<uid>@unknown'")
    sender: str = Field(description="Raw From header, display name preserved")
    subject: str
    sent_at: datetime = Field(description="Date header as an aware datetime")
    body_text: str = Field(description="Plaintext body, bounded in length")


class EmailProgress(BaseModel):
    """An extracted email plus its ingest outcome within one session."""

    email: Email
    ingest_status: IngestStatus = IngestStatus.PENDING
    ingest_error: str | None = None


class SyncSession(BaseModel):
    """Ephemeral, pollable record of one sync invocation."""

    session_id: str
    owner_id: str
    mode: SyncMode = SyncMode.REAL
    status: SyncStatus = SyncStatus.FETCHING
    emails: list[EmailProgress] = Field(default_factory=list)
    total_found: int = 0
    total_ingested: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    last_error: str | None = None
    current_sender: str | None = None
    senders_completed: list[str] = Field(default_factory=list)
    sender_errors: dict[str, str] = Field(default_factory=dict)
    senders_total: int = 0
    connection_state: ConnectionState = ConnectionState.CONNECTING
    connection_error: str | None = None


class Credential(BaseModel):
    """Stored IMAP account as seen by the sync core.

    The secret is still encrypted; it is decrypted just-in-time by the
    orchestrator and never kept on this object.
    """

    id: str
    owner_id: str
    recipient_identity: str = Field(description="User's main email, sent to /api/ingest")
    login_identity: str = Field(description="IMAP login name")
    host: str
    port: int = 993
    encrypted_secret: str
    encryption_iv: str
    sync_mode: AccountSyncMode = AccountSyncMode.MANUAL
    last_sync_at: datetime | None = None
    last_manual_sync_at: datetime | None = None


class ImapAccount(BaseModel):
    """Connection parameters with the decrypted secret, for a single sync call."""

    host: str
    port: int
    login_identity: str
    secret: SecretStr


class SyncHistoryEntry(BaseModel):
    """Audit row appended once per real sync run."""

    owner_id: str
    credential_id: str
    status: HistoryStatus
    emails_found: int = 0
    emails_ingested: int = 0
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime
