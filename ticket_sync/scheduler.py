"""Daily batch over every inbox that opted into automatic sync.

Meant to be started by cron (``python -m ticket_sync scheduled``).
Scheduled runs are exempt from the manual rate limit and only forward
emails whose subject looks like an order, ticket or receipt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from .db.repository import CredentialRepository
from .models import SyncMode, SyncStatus, SyncTrigger
from .orchestrator import SyncJob, SyncOrchestrator
from .runner import SyncRunner

logger = structlog.get_logger()


@dataclass
class ScheduledSyncSummary:
    accounts: int = 0
    completed: int = 0
    failed: int = 0
    emails_found: int = 0
    emails_ingested: int = 0


async def run_scheduled_sync(
    repository: CredentialRepository,
    orchestrator: SyncOrchestrator,
    runner: SyncRunner,
) -> ScheduledSyncSummary:
    credentials = await repository.list_auto_sync()
    summary = ScheduledSyncSummary(accounts=len(credentials))
    logger.info("scheduled_sync_started", accounts=summary.accounts)

    tasks = []
    for credential in credentials:
        job = SyncJob(
            owner_id=credential.owner_id,
            credential=credential,
            mode=SyncMode.REAL,
            trigger=SyncTrigger.SCHEDULED,
        )
        session_id = await orchestrator.start(job)
        tasks.append(runner.submit(session_id, job))

    for result in await asyncio.gather(*tasks, return_exceptions=True):
        if isinstance(result, BaseException) or result is None:
            summary.failed += 1
            continue
        if result.status is SyncStatus.COMPLETED:
            summary.completed += 1
        else:
            summary.failed += 1
        summary.emails_found += result.total_found
        summary.emails_ingested += result.total_ingested

    logger.info(
        "scheduled_sync_finished",
        accounts=summary.accounts,
        completed=summary.completed,
        failed=summary.failed,
        emails_found=summary.emails_found,
        emails_ingested=summary.emails_ingested,
    )
    return summary
