"""Tests for ticket_sync.db against a throwaway sqlite database."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from ticket_sync.db import CredentialRepository, Database, ImapCredentialRow
from ticket_sync.models import AccountSyncMode, HistoryStatus, SyncHistoryEntry

T0 = datetime(2025, 6, 1, 8, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'repo.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def repository(database: Database) -> CredentialRepository:
    async with database.session() as session:
        session.add_all(
            [
                _row("cred-1", "user-1", sync_mode="manual"),
                _row("cred-2", "user-1", sync_mode="auto_daily"),
                _row("cred-3", "user-2", sync_mode="auto_daily"),
            ]
        )
        await session.commit()
    return CredentialRepository(database.session)


def _row(credential_id: str, user_id: str, *, sync_mode: str) -> ImapCredentialRow:
    return ImapCredentialRow(
        id=credential_id,
        user_id=user_id,
        user_email=f"{user_id}@main.test",
        provider="gmail",
        imap_email=f"{user_id}@gmail.com",
        host="imap.gmail.com",
        port=993,
        encrypted_password="Y2lwaGVy",
        iv="aXY=",
        sync_mode=sync_mode,
    )


class TestCredentialRepository:
    @pytest.mark.asyncio
    async def test_get_credential_maps_columns(self, repository: CredentialRepository):
        credential = await repository.get_credential("cred-1", "user-1")

        assert credential is not None
        assert credential.owner_id == "user-1"
        assert credential.recipient_identity == "user-1@main.test"
        assert credential.login_identity == "user-1@gmail.com"
        assert credential.encrypted_secret == "Y2lwaGVy"
        assert credential.encryption_iv == "aXY="
        assert credential.sync_mode is AccountSyncMode.MANUAL
        assert credential.last_sync_at is None

    @pytest.mark.asyncio
    async def test_get_credential_scoped_to_owner(self, repository: CredentialRepository):
        assert await repository.get_credential("cred-3", "user-1") is None
        assert await repository.get_credential("missing", "user-1") is None

    @pytest.mark.asyncio
    async def test_list_auto_sync(self, repository: CredentialRepository):
        credentials = await repository.list_auto_sync()
        assert sorted(c.id for c in credentials) == ["cred-2", "cred-3"]

    @pytest.mark.asyncio
    async def test_manual_sync_advances_both_timestamps(self, repository: CredentialRepository):
        await repository.mark_synced("cred-1", synced_at=T0, manual=True)
        credential = await repository.get_credential("cred-1", "user-1")
        assert credential.last_sync_at == T0
        assert credential.last_manual_sync_at == T0

    @pytest.mark.asyncio
    async def test_scheduled_sync_leaves_manual_timestamp(self, repository: CredentialRepository):
        await repository.mark_synced("cred-2", synced_at=T0, manual=True)
        later = T0 + timedelta(days=1)
        await repository.mark_synced("cred-2", synced_at=later, manual=False)

        credential = await repository.get_credential("cred-2", "user-1")
        assert credential.last_sync_at == later
        assert credential.last_manual_sync_at == T0


class TestSyncHistory:
    @pytest.mark.asyncio
    async def test_record_and_list_newest_first(self, repository: CredentialRepository):
        for offset, status in enumerate([HistoryStatus.SUCCESS, HistoryStatus.PARTIAL]):
            started = T0 + timedelta(hours=offset)
            history_id = await repository.record_history(
                SyncHistoryEntry(
                    owner_id="user-1",
                    credential_id="cred-1",
                    status=status,
                    emails_found=3,
                    emails_ingested=3 - offset,
                    started_at=started,
                    completed_at=started + timedelta(seconds=40),
                )
            )
            assert history_id

        entries = await repository.list_history("user-1")
        assert [e.status for e in entries] == [HistoryStatus.PARTIAL, HistoryStatus.SUCCESS]
        assert entries[0].emails_ingested == 2
        assert entries[0].started_at == T0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_error_entry(self, repository: CredentialRepository):
        await repository.record_history(
            SyncHistoryEntry(
                owner_id="user-2",
                credential_id="cred-3",
                status=HistoryStatus.ERROR,
                error_message="Invalid credentials",
                started_at=T0,
                completed_at=T0,
            )
        )
        (entry,) = await repository.list_history("user-2")
        assert entry.error_message == "Invalid credentials"
        assert entry.emails_found == 0
        assert await repository.list_history("user-1") == []

    @pytest.mark.asyncio
    async def test_limit(self, repository: CredentialRepository):
        for n in range(5):
            await repository.record_history(
                SyncHistoryEntry(
                    owner_id="user-1",
                    credential_id="cred-1",
                    status=HistoryStatus.SUCCESS,
                    started_at=T0 + timedelta(minutes=n),
                    completed_at=T0 + timedelta(minutes=n),
                )
            )
        assert len(await repository.list_history("user-1", limit=3)) == 3
