"""Explicit periodic scheduler for the reconciliation sweeps.

One asyncio task per named job.  A task runs its sweep in a worker thread
(the store may block), waits for it to finish and only then sleeps for
the job's interval, so two runs of the same job never overlap.
``run_now()`` shares a per-job ``asyncio.Lock`` with the timer loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

from ticket_engine.config import (
    DEADLINE_SWEEP_SECONDS,
    INACTIVE_SWEEP_SECONDS,
    PENDING_SWEEP_SECONDS,
    VALIDATION_SWEEP_SECONDS,
)
from ticket_engine.routing.sweeps import SweepReport, Sweeps

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    interval: float
    fn: Callable[[], SweepReport]
    runs: int = 0
    last_report: SweepReport | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class Scheduler:
    """Own named jobs and drive them with asyncio timer tasks."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def for_sweeps(cls, sweeps: Sweeps) -> "Scheduler":
        sched = cls()
        sched.add_job("pending", PENDING_SWEEP_SECONDS, sweeps.pending)
        sched.add_job("inactive", INACTIVE_SWEEP_SECONDS, sweeps.inactive_agents)
        sched.add_job("validation", VALIDATION_SWEEP_SECONDS, sweeps.validate_assignments)
        sched.add_job("deadline", DEADLINE_SWEEP_SECONDS, sweeps.deadlines)
        return sched

    # ── Setup ────────────────────────────────────────────────────────

    def add_job(self, name: str, interval: float, fn: Callable[[], SweepReport]) -> None:
        if interval <= 0:
            raise ValueError(f"job {name!r} needs a positive interval, got {interval}")
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        self._jobs[name] = Job(name, interval, fn)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def job(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"unknown job {name!r}") from None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        for job in self._jobs.values():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"sweep-{job.name}"))
        logger.info("Scheduler started %d job(s): %s", len(self._jobs), ", ".join(self._jobs))

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    # ── Execution ────────────────────────────────────────────────────

    async def run_now(self, name: str) -> SweepReport:
        """Run *name* immediately, waiting for any in-flight run first."""
        return await self._run(self.job(name))

    async def _run(self, job: Job) -> SweepReport:
        async with job.lock:
            report = await asyncio.to_thread(job.fn)
            job.runs += 1
            job.last_report = report
            return report

    async def _loop(self, job: Job) -> None:
        logger.debug("Job %s every %.0fs", job.name, job.interval)
        while True:
            try:
                await asyncio.sleep(job.interval)
                await self._run(job)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Job %s crashed, next run in %.0fs", job.name, job.interval)

    def status(self) -> dict:
        return {
            name: {
                "interval_seconds": job.interval,
                "runs": job.runs,
                "last_report": job.last_report.to_dict() if job.last_report else None,
            }
            for name, job in self._jobs.items()
        }
