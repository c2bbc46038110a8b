"""Request/response schemas for the sync endpoints.

The browser client speaks camelCase; fields are snake_case in Python and
aliased on the wire.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

from ..models import ConnectionState, Email, EmailProgress, IngestStatus, SyncSession, SyncStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(CamelModel):
    """Request body for POST /api/sync."""

    credential_id: str = Field(min_length=1)
    lookback_days: int | None = Field(default=None, ge=1)
    dry_run: bool = False


class ConnectionTestRequest(CamelModel):
    """Request body for POST /api/test."""

    provider: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password: SecretStr
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)


class EmailOut(CamelModel):
    message_id: str
    from_: str = Field(alias="from")
    subject: str
    date: datetime
    body: str

    @classmethod
    def from_email(cls, email: Email) -> EmailOut:
        return cls(
            message_id=email.message_id,
            from_=email.sender,
            subject=email.subject,
            date=email.sent_at,
            body=email.body_text,
        )


class SessionEmailOut(EmailOut):
    ingest_status: IngestStatus
    ingest_error: str | None = None

    @classmethod
    def from_progress(cls, progress: EmailProgress) -> SessionEmailOut:
        email = progress.email
        return cls(
            message_id=email.message_id,
            from_=email.sender,
            subject=email.subject,
            date=email.sent_at,
            body=email.body_text,
            ingest_status=progress.ingest_status,
            ingest_error=progress.ingest_error,
        )


class DryRunResponse(CamelModel):
    success: bool = True
    emails: list[EmailOut]
    emails_found: int


class SyncStartedResponse(CamelModel):
    success: bool = True
    session_id: str
    message: str


class SyncStatusResponse(CamelModel):
    """Snapshot returned by GET /api/sync-status."""

    status: SyncStatus
    emails: list[SessionEmailOut]
    total_found: int
    total_ingested: int
    error: str | None = None
    current_sender: str | None = None
    senders_completed: list[str]
    sender_errors: dict[str, str] = Field(default_factory=dict)
    senders_total: int
    connection_state: ConnectionState
    connection_error: str | None = None

    @classmethod
    def from_session(cls, session: SyncSession) -> SyncStatusResponse:
        return cls(
            status=session.status,
            emails=[SessionEmailOut.from_progress(p) for p in session.emails],
            total_found=session.total_found,
            total_ingested=session.total_ingested,
            error=session.last_error,
            current_sender=session.current_sender,
            senders_completed=session.senders_completed,
            sender_errors=session.sender_errors,
            senders_total=session.senders_total,
            connection_state=session.connection_state,
            connection_error=session.connection_error,
        )
