"""Ticket inbox sync: pulls vendor order emails over IMAP and forwards them for ingestion.

Public API re-exported here for convenience::

    from ticket_sync import SyncOrchestrator, TicketEmailFetcher, build_policy
"""

from .allowlist import (
    DomainSuffixPolicy,
    DomainTokenPolicy,
    ExactAddressPolicy,
    SenderPolicy,
    build_policy,
    extract_address,
    is_likely_ticket_email,
)
from .config import Settings
from .extractor import MessageExtractor
from .fetcher import TicketEmailFetcher
from .imap_client import AsyncImapClient, format_imap_date
from .ingest_client import IngestClient
from .logging import setup_logging
from .models import Email, SyncMode, SyncSession, SyncStatus, SyncTrigger
from .orchestrator import SyncJob, SyncOrchestrator
from .runner import SyncRunner
from .session_store import InMemorySessionStore, SessionStore

__all__ = [
    "AsyncImapClient",
    "DomainSuffixPolicy",
    "DomainTokenPolicy",
    "Email",
    "ExactAddressPolicy",
    "InMemorySessionStore",
    "IngestClient",
    "MessageExtractor",
    "SenderPolicy",
    "SessionStore",
    "Settings",
    "SyncJob",
    "SyncMode",
    "SyncOrchestrator",
    "SyncRunner",
    "SyncSession",
    "SyncStatus",
    "SyncTrigger",
    "TicketEmailFetcher",
    "build_policy",
    "extract_address",
    "format_imap_date",
    "is_likely_ticket_email",
    "setup_logging",
]
