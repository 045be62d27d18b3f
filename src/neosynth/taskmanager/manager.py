"""Scheduler for the expiry sweeps.

Each registered ``CronJob`` runs on its own asyncio task: optionally once
when the manager starts, to catch up on rows that expired while the service
was down, then every ``period`` seconds. A failing run is logged and recorded
in the job's ``JobStatus``; the loop carries on with the next period.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from neosynth.metrics.collector import AuthMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronJob:
    """A recurring background job."""

    handler: Callable[[], Awaitable[None]]
    period: float  # seconds
    name: str = ""
    run_on_start: bool = False


@dataclass
class JobStatus:
    runs: int = 0
    failures: int = 0
    last_run: float | None = None
    last_error: str | None = None

    @property
    def healthy(self) -> bool:
        """False while the most recent run failed."""
        return self.last_error is None


class TaskManager:
    """Runs the sweep jobs on asyncio tasks.

    Usage::

        tm = TaskManager(metrics=auth_metrics)
        tm.register("session_sweep", CronJob(handler=..., period=3600, run_on_start=True))
        await tm.start()
        ...
        await tm.stop()
    """

    def __init__(self, *, metrics: AuthMetrics | None = None) -> None:
        self._jobs: dict[str, CronJob] = {}
        self._status: dict[str, JobStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._metrics = metrics

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> dict[str, CronJob]:
        """Registered jobs (name -> CronJob)."""
        return dict(self._jobs)

    @property
    def healthy(self) -> bool:
        return all(status.healthy for status in self._status.values())

    def status(self, name: str) -> JobStatus:
        return self._status[name]

    def register(self, name: str, job: CronJob) -> None:
        """Register *job* under *name*; it starts at once if the manager is running."""
        job = dataclasses.replace(job, name=name)
        self._jobs[name] = job
        self._status.setdefault(name, JobStatus())
        if self._running:
            self._spawn(job)

    def _spawn(self, job: CronJob) -> None:
        self._tasks[job.name] = asyncio.create_task(self._run_loop(job), name=f"cron:{job.name}")

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for job in self._jobs.values():
            self._spawn(job)
        logger.info("TaskManager started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Cancel every job loop and wait for it to unwind."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks.values():
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        logger.info("TaskManager stopped")

    async def run_once(self, name: str) -> bool:
        """Run one job now, outside its schedule.

        Returns:
            True if the run succeeded. Failures are recorded, not raised.
        """
        return await self._execute(self._jobs[name])

    async def _execute(self, job: CronJob) -> bool:
        status = self._status[job.name]
        status.runs += 1
        status.last_run = time.time()
        try:
            if self._metrics is not None:
                with self._metrics.track_cron(job.name):
                    await job.handler()
            else:
                await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            status.failures += 1
            status.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception("Cron job %r failed", job.name)
            return False
        status.last_error = None
        return True

    async def _run_loop(self, job: CronJob) -> None:
        if job.run_on_start:
            await self._execute(job)
        while self._running:
            await asyncio.sleep(job.period)
            if not self._running:
                break
            await self._execute(job)
