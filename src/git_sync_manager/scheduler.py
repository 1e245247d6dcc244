"""Cron-driven scheduling of repository syncs.

``SchedulerService`` owns one asyncio task per armed job. Each task sleeps
until the job's next cron fire time, syncs the job's repositories one after
another, records the run in the store and goes back to sleep. Jobs run
concurrently with each other and with interactive calls.

Cron expressions have 5 fields (minute hour day month weekday) or 6 fields
with a leading seconds field.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable

from croniter import croniter

from .core.async_utils import run_sync
from .engine.models import (
    JobRunReport,
    RepositoryRunOutcome,
    ScheduledJob,
    SyncResult,
)
from .engine.working_copy import sweep_stale_working_copies
from .store.base import ConfigStore, StoreError
from .validators import croniter_expression, is_valid_cron_expression

logger = logging.getLogger(__name__)

CRON_PRESETS: dict[str, str] = {
    "EVERY_MINUTE": "* * * * *",
    "EVERY_5_MINUTES": "*/5 * * * *",
    "EVERY_15_MINUTES": "*/15 * * * *",
    "EVERY_30_MINUTES": "*/30 * * * *",
    "EVERY_HOUR": "0 * * * *",
    "EVERY_2_HOURS": "0 */2 * * *",
    "EVERY_6_HOURS": "0 */6 * * *",
    "EVERY_12_HOURS": "0 */12 * * *",
    "DAILY_AT_MIDNIGHT": "0 0 * * *",
    "DAILY_AT_NOON": "0 12 * * *",
    "WEEKLY_MONDAY": "0 0 * * 1",
    "WEEKLY_FRIDAY": "0 0 * * 5",
    "MONTHLY": "0 0 1 * *",
}

FALLBACK_INTERVAL = timedelta(hours=1)

SyncRepository = Callable[[str], Awaitable[SyncResult]]


# ------------------------------------------------------------------
# Cron helpers
# ------------------------------------------------------------------


def get_next_run_time(expression: str, now: datetime | None = None) -> datetime:
    """Next fire time of *expression* strictly after *now* (UTC).

    Invalid expressions do not raise: the error is logged and the result is
    one hour after *now*.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if len(str(expression).split()) not in (5, 6):
        logger.error("Failed to parse cron expression %r: wrong field count", expression)
        return now + FALLBACK_INTERVAL
    try:
        return croniter(croniter_expression(expression), now).get_next(datetime)
    except (ValueError, KeyError) as exc:
        logger.error("Failed to parse cron expression %r: %s", expression, exc)
        return now + FALLBACK_INTERVAL


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


class SchedulerService:
    """Arms, disarms and runs scheduled sync jobs.

    Args:
        store: Source of job records and sink for run bookkeeping.
        sync_repository: Coroutine function syncing one repository id.
        clock: Returns the current time; defaults to UTC now.
        temp_root: Working-copy root swept on ``start()``.
        stale_after: Age in seconds after which a working copy is swept.
        sleep: Awaitable sleep, replaceable in tests.
    """

    CRON_PRESETS = CRON_PRESETS

    def __init__(
        self,
        store: ConfigStore,
        sync_repository: SyncRepository,
        clock: Callable[[], datetime] | None = None,
        temp_root: Path | None = None,
        stale_after: float = 86400,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._sync_repository = sync_repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._temp_root = temp_root
        self._stale_after = stale_after
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self._started = False

    is_valid_cron_expression = staticmethod(is_valid_cron_expression)

    def get_next_run_time(self, expression: str, now: datetime | None = None) -> datetime:
        return get_next_run_time(expression, now or self._clock())

    @property
    def is_running(self) -> bool:
        return self._started

    def active_job_ids(self) -> list[str]:
        return sorted(job_id for job_id, task in self._tasks.items() if not task.done())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Arm every enabled job in the store. A second call is a no-op.

        Returns:
            Number of jobs armed by this call.
        """
        if self._started:
            logger.info("Scheduler already running")
            return 0

        logger.info("Starting scheduler...")
        if self._temp_root is not None:
            await run_sync(
                sweep_stale_working_copies, self._temp_root, self._stale_after
            )

        jobs = await run_sync(self._store.list_jobs)
        armed = 0
        for job in jobs:
            if self.start_job(job):
                armed += 1
        self._started = True
        logger.info("Scheduler started with %d active jobs", armed)
        return armed

    def stop(self) -> None:
        """Disarm every job."""
        logger.info("Stopping scheduler...")
        for job_id in list(self._tasks):
            self.stop_job(job_id)
        self._started = False

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def start_job(self, job: ScheduledJob) -> bool:
        """Arm *job*, replacing any timer already armed for its id.

        Must be called from a running event loop. The armed task persists
        ``next_run_at`` before its first sleep.

        Returns:
            False if the job is disabled or its cron expression is invalid
            (the job is not armed).
        """
        if not job.enabled:
            logger.info("Job %s is disabled, not arming it", job.id)
            return False
        if not is_valid_cron_expression(job.cron_expression):
            logger.error(
                "Invalid cron expression for job %s: %r", job.id, job.cron_expression
            )
            return False

        existing = self._tasks.pop(job.id, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._tasks[job.id] = loop.create_task(
            self._job_loop(job), name=f"scheduled-job-{job.id}"
        )
        logger.info(
            "Started job %s (%s) with schedule %r, %d repositories",
            job.name,
            job.id,
            job.cron_expression,
            len(job.repository_ids),
        )
        return True

    def stop_job(self, job_id: str) -> bool:
        task = self._tasks.pop(job_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Stopped job %s", job_id)
        return True

    def restart_job(self, job: ScheduledJob) -> bool:
        self.stop_job(job.id)
        return self.start_job(job)

    async def trigger_job(self, job_id: str) -> JobRunReport:
        """Run a stored job now, outside its schedule.

        Raises:
            KeyError: If no job has that id.
        """
        job = await run_sync(self._store.get_job, job_id)
        if job is None:
            raise KeyError(f"Scheduled job not found: {job_id}")
        return await self.run_job(job)

    async def run_job(self, job: ScheduledJob) -> JobRunReport:
        """Sync every repository of *job* in order and record the run.

        A failing repository does not stop the others; the run counts as
        done either way. A cancelled run is recorded as failed before the
        cancellation propagates.
        """
        logger.info(
            "Running scheduled job %s (%s): %d repositories",
            job.name,
            job.id,
            len(job.repository_ids),
        )
        started_at = self._clock()
        results: list[RepositoryRunOutcome] = []
        try:
            for repository_id in job.repository_ids:
                results.append(await self._run_repository(job, repository_id))
        except asyncio.CancelledError:
            logger.warning(
                "Job %s cancelled after %d of %d repositories",
                job.id,
                len(results),
                len(job.repository_ids),
            )
            results.append(
                RepositoryRunOutcome(
                    repository_id=job.repository_ids[len(results)],
                    success=False,
                    error="Sync cancelled",
                )
            )
            await self._record_run(job, started_at, results)
            raise
        return await self._record_run(job, started_at, results)

    async def _run_repository(
        self, job: ScheduledJob, repository_id: str
    ) -> RepositoryRunOutcome:
        try:
            result = await self._sync_repository(repository_id)
            outcome = RepositoryRunOutcome(
                repository_id=repository_id,
                success=result.success,
                error=result.error,
            )
        except Exception as exc:
            logger.exception(
                "Job %s: sync of repository %s raised", job.id, repository_id
            )
            outcome = RepositoryRunOutcome(
                repository_id=repository_id, success=False, error=str(exc)
            )
        logger.info(
            "Job %s: repository %s %s",
            job.id,
            repository_id,
            "succeeded" if outcome.success else "failed",
        )
        return outcome

    async def _record_run(
        self,
        job: ScheduledJob,
        started_at: datetime,
        results: list[RepositoryRunOutcome],
    ) -> JobRunReport:
        completed_at = self._clock()
        next_run_at = get_next_run_time(job.cron_expression, completed_at)
        report = JobRunReport(
            job_id=job.id,
            started_at=started_at,
            completed_at=completed_at,
            results=results,
            next_run_at=next_run_at,
        )
        await run_sync(
            self._store.update_job_run,
            job.id,
            last_run_at=completed_at,
            next_run_at=next_run_at,
            last_run_status=report.status,
            increment_run_count=True,
        )
        logger.info(
            "Job %s completed: total=%d success=%d failed=%d",
            job.id,
            len(results),
            len(report.succeeded),
            len(report.failed),
        )
        return report

    async def _job_loop(self, job: ScheduledJob) -> None:
        fire_at = get_next_run_time(job.cron_expression, self._clock())
        try:
            await run_sync(self._store.update_job_run, job.id, next_run_at=fire_at)
        except StoreError as exc:
            logger.error("Could not record next run of job %s: %s", job.id, exc)
        logger.info("Job %s next run %s", job.id, fire_at.isoformat())
        while True:
            delay = (fire_at - self._clock()).total_seconds()
            await self._sleep(max(0.0, delay))
            try:
                await self.run_job(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled job %s failed", job.id)
            # never earlier than the slot that just fired
            fire_at = get_next_run_time(job.cron_expression, max(self._clock(), fire_at))
