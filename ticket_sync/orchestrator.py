"""Progressive sync: fetch, publish progress, ingest, persist.

A single :class:`SyncOrchestrator` serves every flavour of sync.  The
``SyncMode`` decides how far a run goes (preview stops after fetching,
dry-run never touches the session store, real ingests and persists) and
the ``SyncTrigger`` decides whether the manual rate limit and the
scheduled-sync subject filter apply.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta

import httpx
import structlog
from pydantic import SecretStr

from .allowlist import is_likely_ticket_email
from .config import SyncConfig
from .crypto import decrypt_secret
from .db.repository import CredentialRepository
from .errors import ConfigurationError, IngestError, RateLimitedError, SessionNotFound
from .fetcher import (
    ConnectionStateChanged,
    FetchEvent,
    SenderCompleted,
    SenderStarted,
    TicketEmailFetcher,
)
from .ingest_client import IngestClient
from .models import (
    Credential,
    Email,
    HistoryStatus,
    ImapAccount,
    IngestStatus,
    SyncHistoryEntry,
    SyncMode,
    SyncSession,
    SyncStatus,
    SyncTrigger,
)
from .session_store import SessionStore

logger = structlog.get_logger()


@dataclass
class SyncJob:
    """Everything one sync run needs.

    ``secret`` carries a plaintext password for connection-test previews of
    accounts that are not stored yet; otherwise the credential's encrypted
    secret is decrypted once at the start of the run.
    """

    owner_id: str
    credential: Credential
    mode: SyncMode = SyncMode.REAL
    trigger: SyncTrigger = SyncTrigger.MANUAL
    lookback_days: int | None = None
    secret: SecretStr | None = None


class SyncOrchestrator:
    def __init__(
        self,
        config: SyncConfig,
        store: SessionStore,
        fetcher: TicketEmailFetcher,
        ingest: IngestClient | None = None,
        repository: CredentialRepository | None = None,
        *,
        encryption_key: SecretStr | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._fetcher = fetcher
        self._ingest = ingest
        self._repository = repository
        self._encryption_key = encryption_key
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> SessionStore:
        return self._store

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def resolve_since(
        self, credential: Credential, lookback_days: int | None, now: datetime
    ) -> date:
        """Explicit lookback wins, then the last sync, then the default window."""
        if lookback_days is not None:
            return (now - timedelta(days=lookback_days)).date()
        if credential.last_sync_at is not None:
            return credential.last_sync_at.date()
        return (now - timedelta(days=self._config.default_lookback_days)).date()

    def check_rate_limit(
        self,
        credential: Credential,
        now: datetime,
        *,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        mode: SyncMode = SyncMode.REAL,
    ) -> None:
        """Raise :class:`RateLimitedError` for a manual sync inside the window."""
        if not self._config.rate_limit_enabled:
            return
        if trigger is not SyncTrigger.MANUAL or mode is not SyncMode.REAL:
            return
        last = credential.last_manual_sync_at
        if last is None:
            return
        retry_after = last + timedelta(hours=self._config.rate_limit_hours)
        if now < retry_after:
            raise RateLimitedError(retry_after)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(self, job: SyncJob) -> str:
        """Create the pollable session for *job* and return its id."""
        await self._store.sweep_expired(self._config.session_retention_seconds)
        session_id = await self._store.create(
            job.owner_id, len(self._fetcher.senders), job.mode
        )
        logger.info(
            "sync_session_started",
            session_id=session_id,
            owner_id=job.owner_id,
            credential_id=job.credential.id,
            mode=job.mode.value,
            trigger=job.trigger.value,
        )
        return session_id

    async def dry_run(self, job: SyncJob) -> list[Email]:
        """Fetch and extract synchronously.  Nothing is stored or ingested."""
        account = self._account(job)
        since = self.resolve_since(job.credential, job.lookback_days, self._clock())
        emails: list[Email] = []
        async with aclosing(self._stream(job, account, since)) as events:
            async for event in events:
                if isinstance(event, SenderCompleted):
                    emails.extend(event.emails)
        logger.info("sync_dry_run_complete", credential_id=job.credential.id, found=len(emails))
        return emails

    async def run(self, session_id: str, job: SyncJob) -> SyncSession | None:
        """Drive one session to a terminal state and return its final snapshot."""
        log = logger.bind(
            session_id=session_id,
            credential_id=job.credential.id,
            mode=job.mode.value,
            trigger=job.trigger.value,
        )
        started_at = self._clock()
        try:
            account = self._account(job)
            since = self.resolve_since(job.credential, job.lookback_days, started_at)
            log.info("sync_fetch_started", since=since.isoformat())

            async with aclosing(self._stream(job, account, since)) as events:
                async for event in events:
                    await self._publish(session_id, event)
            await self._store.update(session_id, current_sender=None)

            if job.mode is SyncMode.REAL:
                await self._ingest_all(session_id, job)
                snapshot = await self._snapshot(session_id)
                await self._persist_success(job, snapshot, started_at)

            await self._store.set_status(session_id, SyncStatus.COMPLETED)
        except SessionNotFound:
            log.warning("sync_session_evicted")
            return None
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            log.exception("sync_failed", error=message)
            await self._fail(session_id, job, message, started_at)
        else:
            log.info("sync_completed")
        return await self._store.get(session_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _account(self, job: SyncJob) -> ImapAccount:
        credential = job.credential
        if job.secret is not None:
            secret = job.secret
        else:
            if self._encryption_key is None:
                raise ConfigurationError("Encryption key is not configured")
            secret = SecretStr(
                decrypt_secret(
                    credential.encrypted_secret,
                    credential.encryption_iv,
                    self._encryption_key.get_secret_value(),
                )
            )
        return ImapAccount(
            host=credential.host,
            port=credential.port,
            login_identity=credential.login_identity,
            secret=secret,
        )

    def _stream(self, job: SyncJob, account: ImapAccount, since: date):
        subject_filter = is_likely_ticket_email if job.trigger is SyncTrigger.SCHEDULED else None
        return self._fetcher.stream(account, since, subject_filter=subject_filter)

    async def _publish(self, session_id: str, event: FetchEvent) -> None:
        if isinstance(event, ConnectionStateChanged):
            await self._store.update(
                session_id, connection_state=event.state, connection_error=event.error
            )
        elif isinstance(event, SenderStarted):
            await self._store.update(session_id, current_sender=event.sender)
        elif isinstance(event, SenderCompleted):
            for email in event.emails:
                await self._store.append_email(session_id, email)
            await self._store.mark_sender_completed(session_id, event.sender, event.error)

    async def _ingest_all(self, session_id: str, job: SyncJob) -> None:
        if self._ingest is None:
            raise ConfigurationError("Ingest client is not configured")
        await self._store.set_status(session_id, SyncStatus.INGESTING)
        snapshot = await self._snapshot(session_id)

        for index, progress in enumerate(snapshot.emails):
            await self._store.set_email_status(session_id, index, IngestStatus.SENDING)
            try:
                await self._ingest.submit(
                    progress.email,
                    recipient_identity=job.credential.recipient_identity,
                    owner_id=job.owner_id,
                )
            except IngestError as exc:
                await self._store.set_email_status(
                    session_id, index, IngestStatus.FAILED, exc.body or str(exc)
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "ingest_failed",
                    session_id=session_id,
                    message_id=progress.email.message_id,
                    error=str(exc),
                )
                await self._store.set_email_status(
                    session_id, index, IngestStatus.FAILED, str(exc) or type(exc).__name__
                )
            else:
                await self._store.set_email_status(session_id, index, IngestStatus.SUCCESS)

    async def _persist_success(
        self, job: SyncJob, snapshot: SyncSession, started_at: datetime
    ) -> None:
        if self._repository is None:
            return
        completed_at = self._clock()
        await self._repository.mark_synced(
            job.credential.id,
            synced_at=completed_at,
            manual=job.trigger is SyncTrigger.MANUAL,
        )
        status = (
            HistoryStatus.SUCCESS
            if snapshot.total_ingested == snapshot.total_found
            else HistoryStatus.PARTIAL
        )
        await self._repository.record_history(
            SyncHistoryEntry(
                owner_id=job.owner_id,
                credential_id=job.credential.id,
                status=status,
                emails_found=snapshot.total_found,
                emails_ingested=snapshot.total_ingested,
                started_at=started_at,
                completed_at=completed_at,
            )
        )

    async def _fail(
        self, session_id: str, job: SyncJob, message: str, started_at: datetime
    ) -> None:
        found = ingested = 0
        try:
            await self._store.update(session_id, current_sender=None)
            await self._store.set_status(session_id, SyncStatus.FAILED, error=message)
            snapshot = await self._snapshot(session_id)
            found, ingested = snapshot.total_found, snapshot.total_ingested
        except SessionNotFound:
            logger.warning("sync_session_evicted", session_id=session_id)

        if job.mode is not SyncMode.REAL or self._repository is None:
            return
        try:
            await self._repository.record_history(
                SyncHistoryEntry(
                    owner_id=job.owner_id,
                    credential_id=job.credential.id,
                    status=HistoryStatus.ERROR,
                    emails_found=found,
                    emails_ingested=ingested,
                    error_message=message,
                    started_at=started_at,
                    completed_at=self._clock(),
                )
            )
        except Exception:
            logger.exception("sync_history_write_failed", session_id=session_id)

    async def _snapshot(self, session_id: str) -> SyncSession:
        snapshot = await self._store.get(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id)
        return snapshot
