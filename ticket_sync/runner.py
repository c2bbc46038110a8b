"""Detached execution of sync runs with bounded concurrency."""

from __future__ import annotations

import asyncio

import structlog

from .models import SyncSession
from .orchestrator import SyncJob, SyncOrchestrator

logger = structlog.get_logger()


class SyncRunner:
    """Starts orchestrator runs as background tasks.

    At most ``max_concurrent`` accounts sync at the same time; further runs
    wait on the semaphore with their session already pollable.  Task
    references are kept until completion so runs are never garbage
    collected mid-flight.
    """

    def __init__(self, orchestrator: SyncOrchestrator, *, max_concurrent: int = 4) -> None:
        self._orchestrator = orchestrator
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task[SyncSession | None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, session_id: str, job: SyncJob) -> asyncio.Task[SyncSession | None]:
        task = asyncio.create_task(self._run(session_id, job), name=f"sync-{session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight run to finish."""
        if self._tasks:
            logger.info("sync_runner_draining", in_flight=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, session_id: str, job: SyncJob) -> SyncSession | None:
        async with self._semaphore:
            return await self._orchestrator.run(session_id, job)

    def _on_done(self, task: asyncio.Task[SyncSession | None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("sync_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("sync_task_crashed", task=task.get_name(), error=str(exc), exc_info=exc)
