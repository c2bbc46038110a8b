"""Builds and tears down the long-lived collaborators of the sync service.

Shared by the FastAPI lifespan and the ``scheduled`` command so both run
the exact same wiring.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from .allowlist import build_policy
from .config import Settings
from .db.engine import Database
from .db.repository import CredentialRepository
from .fetcher import TicketEmailFetcher
from .ingest_client import IngestClient
from .orchestrator import SyncOrchestrator
from .runner import SyncRunner
from .session_store import InMemorySessionStore, SessionStore

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    database: Database
    repository: CredentialRepository
    http: httpx.AsyncClient
    ingest: IngestClient
    store: SessionStore
    orchestrator: SyncOrchestrator
    runner: SyncRunner


@asynccontextmanager
async def open_services(
    settings: Settings, *, store: SessionStore | None = None
) -> AsyncIterator[Services]:
    """Start everything; on exit wait for in-flight syncs, then close."""
    policy = build_policy(settings.allowlist.policy)
    database = Database(settings.database_url)
    await database.create_all()

    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.ingest.timeout_seconds))
    ingest = IngestClient(settings.ingest, settings.retry, client=http)
    await ingest.start()

    fetcher = TicketEmailFetcher(
        settings.imap,
        policy,
        max_messages_per_sender=settings.sync.max_messages_per_sender,
    )
    if store is None:
        store = InMemorySessionStore()
    repository = CredentialRepository(database.session)
    orchestrator = SyncOrchestrator(
        settings.sync,
        store,
        fetcher,
        ingest,
        repository,
        encryption_key=settings.encryption_key,
    )
    runner = SyncRunner(orchestrator, max_concurrent=settings.sync.max_concurrent_accounts)
    logger.info(
        "services_started",
        allowlist_policy=policy.name,
        senders=len(policy.search_terms),
        encryption_configured=settings.encryption_key is not None,
    )

    try:
        yield Services(
            settings=settings,
            database=database,
            repository=repository,
            http=http,
            ingest=ingest,
            store=store,
            orchestrator=orchestrator,
            runner=runner,
        )
    finally:
        await runner.drain()
        await ingest.stop()
        await http.aclose()
        await database.close()
        logger.info("services_stopped")
