"""Drive the IMAP client across the approved senders as an event stream.

``TicketEmailFetcher.stream()`` is an async generator: it connects, then
searches and fetches each sender in allow-list order, yielding progress
events the orchestrator republishes into the session store.  Per-sender
command failures are reported on the ``SenderCompleted`` event and the
stream moves on; connection, auth and protocol failures end the stream by
raising.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import TypeVar

import structlog

from .allowlist import SenderPolicy
from .config import ImapConfig
from .errors import ImapCommandError, ImapConnectionError, ImapError
from .extractor import MessageExtractor
from .imap_client import AsyncImapClient, SearchCriteria
from .models import ConnectionState, Email, ImapAccount

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: ConnectionState
    error: str | None = None


@dataclass(frozen=True)
class SenderStarted:
    sender: str


@dataclass(frozen=True)
class SenderCompleted:
    """A sender finished.  ``error`` is set when its SEARCH or FETCH failed."""

    sender: str
    emails: list[Email] = field(default_factory=list)
    error: str | None = None


FetchEvent = ConnectionStateChanged | SenderStarted | SenderCompleted


class TicketEmailFetcher:
    """Fetches vendor mail for one account, one sender at a time."""

    def __init__(
        self,
        imap_config: ImapConfig,
        policy: SenderPolicy,
        extractor: MessageExtractor | None = None,
        *,
        max_messages_per_sender: int = 10,
        client_factory: Callable[[ImapConfig], AsyncImapClient] = AsyncImapClient,
    ) -> None:
        self._imap_config = imap_config
        self._policy = policy
        self._extractor = extractor or MessageExtractor()
        self._max_messages = max_messages_per_sender
        self._client_factory = client_factory

    @property
    def senders(self) -> list[str]:
        return self._policy.search_terms

    async def stream(
        self,
        account: ImapAccount,
        since: date,
        *,
        subject_filter: Callable[[str], bool] | None = None,
    ) -> AsyncIterator[FetchEvent]:
        """Yield progress events for a full pass over the approved senders.

        LOGOUT is always attempted once the stream ends, however it ends.
        """
        client = self._client_factory(self._imap_config)
        try:
            yield ConnectionStateChanged(ConnectionState.CONNECTING)
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._imap_config.connect_timeout_seconds
            try:
                await self._within(deadline, client, client.connect(account.host, account.port))
                yield ConnectionStateChanged(ConnectionState.AUTHENTICATING)
                await self._within(
                    deadline,
                    client,
                    client.login(account.login_identity, account.secret.get_secret_value()),
                )
                await self._within(deadline, client, client.select(self._imap_config.mailbox))
            except ImapError as exc:
                logger.warning(
                    "imap_connect_failed",
                    host=account.host,
                    port=account.port,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                yield ConnectionStateChanged(ConnectionState.ERROR, str(exc))
                raise
            yield ConnectionStateChanged(ConnectionState.CONNECTED)

            for sender in self._policy.search_terms:
                yield SenderStarted(sender)
                yield await self._fetch_sender(client, sender, since, subject_filter)
        finally:
            await client.logout()

    async def _fetch_sender(
        self,
        client: AsyncImapClient,
        sender: str,
        since: date,
        subject_filter: Callable[[str], bool] | None,
    ) -> SenderCompleted:
        try:
            uids = await client.search(SearchCriteria(from_address=sender, since=since))
        except ImapCommandError as exc:
            logger.warning("sender_search_failed", sender=sender, error=str(exc))
            return SenderCompleted(sender, error=str(exc))

        if not uids:
            logger.debug("sender_no_messages", sender=sender)
            return SenderCompleted(sender)

        selected = uids[: self._max_messages]
        try:
            records = await client.fetch(selected)
        except ImapCommandError as exc:
            logger.warning("sender_fetch_failed", sender=sender, error=str(exc))
            return SenderCompleted(sender, error=str(exc))

        emails: list[Email] = []
        for record in records:
            try:
                extracted = self._extractor.extract(record)
            except Exception:
                logger.exception("email_extract_failed", sender=sender, uid=record.uid)
                continue
            if extracted is None:
                continue
            if not self._policy.is_approved(extracted.sender):
                logger.info("email_sender_not_approved", uid=record.uid, sender=extracted.sender)
                continue
            if subject_filter is not None and not subject_filter(extracted.subject):
                logger.debug("email_subject_filtered", uid=record.uid, subject=extracted.subject)
                continue
            emails.append(extracted)

        logger.info(
            "sender_fetched",
            sender=sender,
            matched=len(uids),
            fetched=len(records),
            kept=len(emails),
        )
        return SenderCompleted(sender, emails)

    @staticmethod
    async def _within(deadline: float, client: AsyncImapClient, step: Awaitable[T]) -> T:
        """Await *step* within what is left of the connect-phase budget."""
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(step):
                step.close()
            client.abort()
            raise ImapConnectionError("timed out")
        try:
            return await asyncio.wait_for(step, remaining)
        except TimeoutError:
            client.abort()
            raise ImapConnectionError("timed out") from None
