"""Exclusive-execution job scheduler.

Every job has its own cron trigger, but all jobs share one execution slot: a
trigger that fires while another job is running waits for the slot (FIFO)
instead of running in parallel or being skipped. A second firing of the same
job while its previous instance is still pending is coalesced by APScheduler.

States:

    IDLE -> RUNNING(job) -> IDLE ...
    any  -> DRAINING (shutdown requested; in-flight job finishes,
                      queued jobs are dropped)
         -> STOPPED
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from fastapi.concurrency import run_in_threadpool

from api.logging_config import get_logger
from backend.services.tasks.base import Task

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class JobDefinition:
    job_id: str
    task: Task
    trigger: BaseTrigger
    run_at_startup: bool = False


class JobScheduler:
    """Cron-driven scheduler with a single global execution slot."""

    def __init__(self, *, timezone: Optional[str] = None):
        self._jobs: Dict[str, JobDefinition] = {}
        self._slot = asyncio.Lock()
        self._in_flight: Set["asyncio.Task[None]"] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._timezone = timezone
        self.state = SchedulerState.IDLE
        self.running_job: Optional[str] = None

    @property
    def job_ids(self) -> List[str]:
        return list(self._jobs)

    def add_job(self, job_id: str, task: Task, trigger: BaseTrigger, *, run_at_startup: bool = False) -> None:
        """Register a job; must be called before `start`.

        Args:
            job_id: Unique job id (e.g. "backup").
            task: Task to execute.
            trigger: APScheduler trigger.
            run_at_startup: Also run once immediately when the scheduler starts.

        Raises:
            ValueError: When the id is already registered.
            RuntimeError: When the scheduler has already started.
        """

        if self._scheduler is not None:
            raise RuntimeError("Jobs must be registered before the scheduler starts")
        if job_id in self._jobs:
            raise ValueError(f"Duplicate job id: {job_id}")
        self._jobs[job_id] = JobDefinition(job_id=job_id, task=task, trigger=trigger, run_at_startup=run_at_startup)

    def start(self) -> None:
        """Start the trigger source on the running event loop."""

        if self._scheduler is not None:
            return

        kwargs = {"event_loop": asyncio.get_running_loop()}
        if self._timezone:
            kwargs["timezone"] = self._timezone
        self._scheduler = AsyncIOScheduler(**kwargs)

        for definition in self._jobs.values():
            job_kwargs = {
                "id": definition.job_id,
                "name": definition.job_id,
                "args": [definition.job_id, definition.task],
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": None,
            }
            if definition.run_at_startup:
                job_kwargs["next_run_time"] = datetime.now(self._scheduler.timezone)
            self._scheduler.add_job(self._fire, definition.trigger, **job_kwargs)

        self._scheduler.start()
        logger.info("Scheduler started (jobs=%s)", ", ".join(self._jobs) or "none")
        for job in self._scheduler.get_jobs():
            logger.info("Job scheduled (job=%s, next_run=%s)", job.id, job.next_run_time)

    async def _fire(self, job_id: str, task: Task) -> None:
        """APScheduler entry point.

        The execution runs in a task owned by this scheduler and is shielded,
        so the executor cancelling its futures on shutdown cannot interrupt a
        running job. The wrapper stays pending until the execution ends, which
        keeps `max_instances` coalescing in effect.
        """

        execution = asyncio.ensure_future(self.execute(job_id, task))
        self._in_flight.add(execution)
        execution.add_done_callback(self._in_flight.discard)
        await asyncio.shield(execution)

    async def execute(self, job_id: str, task: Task) -> None:
        """Run one job inside the execution slot.

        Returns without running the task when shutdown has begun. Task errors
        are logged and never propagate into the scheduler.
        """

        current = asyncio.current_task()
        if current is not None:
            self._in_flight.add(current)
        try:
            async with self._slot:
                if self.state in (SchedulerState.DRAINING, SchedulerState.STOPPED):
                    logger.info("Dropping queued job during shutdown (job=%s)", job_id)
                    return

                self.state = SchedulerState.RUNNING
                self.running_job = job_id
                logger.info("Job started (job=%s)", job_id)
                try:
                    await run_in_threadpool(task.run)
                except Exception:
                    logger.exception("Job failed (job=%s)", job_id)
                else:
                    logger.info("Job finished (job=%s)", job_id)
                finally:
                    self.running_job = None
                    if self.state == SchedulerState.RUNNING:
                        self.state = SchedulerState.IDLE
        finally:
            if current is not None:
                self._in_flight.discard(current)

    async def shutdown(self) -> None:
        """Stop triggers, wait for the in-flight job and drop queued jobs."""

        if self.state == SchedulerState.STOPPED:
            return

        logger.info("Scheduler draining (running_job=%s)", self.running_job)
        self.state = SchedulerState.DRAINING
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        pending = [task for task in self._in_flight if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")
