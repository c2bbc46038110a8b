"""Reads linked inboxes and writes sync state plus the audit log."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import AccountSyncMode, Credential, HistoryStatus, SyncHistoryEntry
from .models import ImapCredentialRow, SyncHistoryRow


def _aware(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_credential(row: ImapCredentialRow) -> Credential:
    return Credential(
        id=row.id,
        owner_id=row.user_id,
        recipient_identity=row.user_email,
        login_identity=row.imap_email,
        host=row.host,
        port=row.port,
        encrypted_secret=row.encrypted_password,
        encryption_iv=row.iv,
        sync_mode=AccountSyncMode(row.sync_mode),
        last_sync_at=_aware(row.last_sync_at),
        last_manual_sync_at=_aware(row.last_manual_sync_at),
    )


class CredentialRepository:
    """Persistence used by the orchestrator, the scheduler and the API."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_credential(self, credential_id: str, owner_id: str) -> Credential | None:
        """Return the credential only if it belongs to *owner_id*."""
        stmt = select(ImapCredentialRow).where(
            ImapCredentialRow.id == credential_id,
            ImapCredentialRow.user_id == owner_id,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _to_credential(row) if row is not None else None

    async def list_auto_sync(self) -> list[Credential]:
        stmt = select(ImapCredentialRow).where(
            ImapCredentialRow.sync_mode == AccountSyncMode.AUTO_DAILY.value
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_credential(row) for row in rows]

    async def mark_synced(self, credential_id: str, *, synced_at: datetime, manual: bool) -> None:
        """Advance ``last_sync_at`` (and ``last_manual_sync_at`` for manual syncs)."""
        values: dict[str, datetime] = {"last_sync_at": synced_at, "updated_at": synced_at}
        if manual:
            values["last_manual_sync_at"] = synced_at
        stmt = update(ImapCredentialRow).where(ImapCredentialRow.id == credential_id).values(**values)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def record_history(self, entry: SyncHistoryEntry) -> str:
        row = SyncHistoryRow(
            user_id=entry.owner_id,
            credential_id=entry.credential_id,
            status=entry.status.value,
            emails_found=entry.emails_found,
            emails_ingested=entry.emails_ingested,
            error_message=entry.error_message,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            return row.id

    async def list_history(self, owner_id: str, *, limit: int = 20) -> list[SyncHistoryEntry]:
        """Most recent audit rows for *owner_id*, newest first."""
        stmt = (
            select(SyncHistoryRow)
            .where(SyncHistoryRow.user_id == owner_id)
            .order_by(SyncHistoryRow.started_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            SyncHistoryEntry(
                owner_id=row.user_id,
                credential_id=row.credential_id,
                status=HistoryStatus(row.status),
                emails_found=row.emails_found,
                emails_ingested=row.emails_ingested,
                error_message=row.error_message,
                started_at=_aware(row.started_at),
                completed_at=_aware(row.completed_at),
            )
            for row in rows
        ]
