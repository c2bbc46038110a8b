"""Tests for ticket_sync.runner and ticket_sync.scheduler."""

from __future__ import annotations

import asyncio

import pytest

from ticket_sync.models import AccountSyncMode, SyncMode, SyncSession, SyncStatus, SyncTrigger
from ticket_sync.orchestrator import SyncJob
from ticket_sync.runner import SyncRunner
from ticket_sync.scheduler import run_scheduled_sync

from tests.conftest import make_credential


class StubOrchestrator:
    """Records concurrency and returns canned sessions per credential."""

    def __init__(self, outcomes: dict[str, object] | None = None, *, delay: float = 0.0) -> None:
        self.outcomes = outcomes or {}
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.jobs: list[SyncJob] = []
        self._counter = 0

    async def start(self, job: SyncJob) -> str:
        self._counter += 1
        return f"sync_{self._counter}"

    async def run(self, session_id: str, job: SyncJob) -> SyncSession | None:
        self.jobs.append(job)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            outcome = self.outcomes.get(job.credential.id, SyncStatus.COMPLETED)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is None:
                return None
            return SyncSession(
                session_id=session_id,
                owner_id=job.owner_id,
                status=outcome,
                total_found=2,
                total_ingested=2 if outcome is SyncStatus.COMPLETED else 0,
            )
        finally:
            self.active -= 1


class StubRepository:
    def __init__(self, credentials) -> None:
        self.credentials = credentials

    async def list_auto_sync(self):
        return self.credentials


class TestSyncRunner:
    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, credential):
        orchestrator = StubOrchestrator(delay=0.01)
        runner = SyncRunner(orchestrator, max_concurrent=2)

        tasks = [
            runner.submit(f"sync_{n}", SyncJob(owner_id="user-1", credential=credential))
            for n in range(5)
        ]
        assert runner.in_flight == 5
        await asyncio.gather(*tasks)

        assert orchestrator.peak == 2
        assert len(orchestrator.jobs) == 5
        assert runner.in_flight == 0

    @pytest.mark.asyncio
    async def test_drain_waits_for_runs(self, credential):
        orchestrator = StubOrchestrator(delay=0.01)
        runner = SyncRunner(orchestrator)
        task = runner.submit("sync_1", SyncJob(owner_id="user-1", credential=credential))

        await runner.drain()

        assert task.done()
        assert task.result().status is SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_crashed_run_is_released(self, credential):
        orchestrator = StubOrchestrator({"cred-1": RuntimeError("boom")})
        runner = SyncRunner(orchestrator)
        task = runner.submit("sync_1", SyncJob(owner_id="user-1", credential=credential))

        await runner.drain()

        assert isinstance(task.exception(), RuntimeError)
        assert runner.in_flight == 0

    @pytest.mark.asyncio
    async def test_drain_with_nothing_running(self, credential):
        await SyncRunner(StubOrchestrator()).drain()


class TestScheduledSync:
    @pytest.mark.asyncio
    async def test_summary(self, encryption_key):
        credentials = [
            make_credential(encryption_key, id="ok", sync_mode=AccountSyncMode.AUTO_DAILY),
            make_credential(encryption_key, id="bad-login", sync_mode=AccountSyncMode.AUTO_DAILY),
            make_credential(encryption_key, id="crash", sync_mode=AccountSyncMode.AUTO_DAILY),
            make_credential(encryption_key, id="evicted", sync_mode=AccountSyncMode.AUTO_DAILY),
        ]
        orchestrator = StubOrchestrator(
            {
                "bad-login": SyncStatus.FAILED,
                "crash": RuntimeError("boom"),
                "evicted": None,
            }
        )
        runner = SyncRunner(orchestrator)

        summary = await run_scheduled_sync(StubRepository(credentials), orchestrator, runner)

        assert summary.accounts == 4
        assert summary.completed == 1
        assert summary.failed == 3
        assert summary.emails_found == 4
        assert summary.emails_ingested == 2
        assert all(job.trigger is SyncTrigger.SCHEDULED for job in orchestrator.jobs)
        assert all(job.mode is SyncMode.REAL for job in orchestrator.jobs)

    @pytest.mark.asyncio
    async def test_no_accounts(self):
        orchestrator = StubOrchestrator()
        summary = await run_scheduled_sync(StubRepository([]), orchestrator, SyncRunner(orchestrator))
        assert summary.accounts == 0
        assert orchestrator.jobs == []
