"""Pollable progress records for running and recently finished syncs.

The orchestrator is the only writer of a session; HTTP handlers read
snapshots.  :class:`InMemorySessionStore` keeps everything in-process, which
is enough for a single service instance.  A shared backend only has to
implement :class:`SessionStore`.
"""

from __future__ import annotations

import secrets
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import structlog

from .errors import InvalidStatusTransition, SessionAccessDenied, SessionNotFound
from .models import Email, EmailProgress, IngestStatus, SyncMode, SyncSession, SyncStatus

logger = structlog.get_logger()

_ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.FETCHING: frozenset(
        {SyncStatus.FETCHING, SyncStatus.INGESTING, SyncStatus.COMPLETED, SyncStatus.FAILED}
    ),
    SyncStatus.INGESTING: frozenset(
        {SyncStatus.INGESTING, SyncStatus.COMPLETED, SyncStatus.FAILED}
    ),
    SyncStatus.COMPLETED: frozenset(),
    SyncStatus.FAILED: frozenset(),
}

# Fields with their own mutators so the counters can never drift.
_GUARDED_FIELDS = frozenset(
    {
        "session_id",
        "owner_id",
        "status",
        "emails",
        "total_found",
        "total_ingested",
        "senders_completed",
        "sender_errors",
    }
)


def new_session_id(now: datetime | None = None) -> str:
    """``sync_<epoch ms>_<random>``."""
    now = now or datetime.now(UTC)
    return f"sync_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"


class SessionStore(Protocol):
    async def create(
        self, owner_id: str, senders_total: int, mode: SyncMode = SyncMode.REAL
    ) -> str: ...

    async def get(self, session_id: str) -> SyncSession | None: ...

    async def get_for_owner(self, session_id: str, owner_id: str) -> SyncSession: ...

    async def update(self, session_id: str, **fields: Any) -> None: ...

    async def set_status(
        self, session_id: str, status: SyncStatus, *, error: str | None = None
    ) -> None: ...

    async def append_email(self, session_id: str, email: Email) -> int: ...

    async def set_email_status(
        self, session_id: str, index: int, status: IngestStatus, error: str | None = None
    ) -> None: ...

    async def mark_sender_completed(
        self, session_id: str, sender: str, error: str | None = None
    ) -> None: ...

    async def sweep_expired(self, max_age_seconds: float) -> int: ...


class InMemorySessionStore:
    """Dict-backed :class:`SessionStore` guarded by a lock."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._sessions: dict[str, SyncSession] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def create(
        self, owner_id: str, senders_total: int, mode: SyncMode = SyncMode.REAL
    ) -> str:
        now = self._clock()
        session_id = new_session_id(now)
        session = SyncSession(
            session_id=session_id,
            owner_id=owner_id,
            mode=mode,
            senders_total=senders_total,
            started_at=now,
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.debug("sync_session_created", session_id=session_id, mode=mode.value)
        return session_id

    async def get(self, session_id: str) -> SyncSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    async def get_for_owner(self, session_id: str, owner_id: str) -> SyncSession:
        snapshot = await self.get(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id)
        if snapshot.owner_id != owner_id:
            raise SessionAccessDenied(session_id)
        return snapshot

    async def update(self, session_id: str, **fields: Any) -> None:
        guarded = _GUARDED_FIELDS.intersection(fields)
        if guarded:
            raise ValueError(f"Use the dedicated mutator for: {', '.join(sorted(guarded))}")
        with self._lock:
            session = self._require(session_id)
            for name, value in fields.items():
                if name not in SyncSession.model_fields:
                    raise ValueError(f"Unknown session field {name!r}")
                setattr(session, name, value)

    async def set_status(
        self, session_id: str, status: SyncStatus, *, error: str | None = None
    ) -> None:
        with self._lock:
            session = self._require(session_id)
            if status not in _ALLOWED_TRANSITIONS[session.status]:
                raise InvalidStatusTransition(
                    f"{session_id}: {session.status.value} -> {status.value}"
                )
            session.status = status
            if error is not None:
                session.last_error = error
            if status.is_terminal:
                session.completed_at = self._clock()

    async def append_email(self, session_id: str, email: Email) -> int:
        with self._lock:
            session = self._require(session_id)
            session.emails.append(EmailProgress(email=email))
            session.total_found = len(session.emails)
            return len(session.emails) - 1

    async def set_email_status(
        self, session_id: str, index: int, status: IngestStatus, error: str | None = None
    ) -> None:
        with self._lock:
            session = self._require(session_id)
            progress = session.emails[index]
            progress.ingest_status = status
            progress.ingest_error = error
            session.total_ingested = sum(
                1 for item in session.emails if item.ingest_status is IngestStatus.SUCCESS
            )

    async def mark_sender_completed(
        self, session_id: str, sender: str, error: str | None = None
    ) -> None:
        with self._lock:
            session = self._require(session_id)
            if sender not in session.senders_completed:
                session.senders_completed.append(sender)
            if error is not None:
                session.sender_errors[sender] = error

    async def sweep_expired(self, max_age_seconds: float) -> int:
        cutoff = self._clock() - timedelta(seconds=max_age_seconds)
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.started_at < cutoff]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("sync_sessions_swept", count=len(expired))
        return len(expired)

    def _require(self, session_id: str) -> SyncSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None
