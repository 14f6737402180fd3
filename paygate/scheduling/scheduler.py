"""
PeriodicScheduler: one asyncio task per background job.

Jobs are plain callables (sync or async) registered at startup and started
from the FastAPI lifespan. A run that raises is logged and the job keeps its
schedule; jobs never block each other.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Any]


def seconds_until_daily(now: datetime, hour: int, minute: int = 0) -> float:
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def seconds_until_monthly(now: datetime, day: int, hour: int = 0, minute: int = 0) -> float:
    target = now.replace(day=day, hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        target = target.replace(year=year, month=month)
    return (target - now).total_seconds()


@dataclass
class Job:
    name: str
    func: JobFunc
    delay: Callable[[datetime], float]  # seconds from `now` until the next run
    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None
    last_duration_ms: float = field(default=0.0)


class PeriodicScheduler:
    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._jobs: dict[str, Job] = {}
        self._tasks: list[asyncio.Task] = []

    # --- registration ---

    def every(self, name: str, seconds: float, func: JobFunc) -> Job:
        if seconds <= 0:
            raise ValueError(f"Job {name}: interval must be positive")
        return self._add(Job(name=name, func=func, delay=lambda _now: seconds))

    def daily(self, name: str, hour: int, func: JobFunc, minute: int = 0) -> Job:
        return self._add(
            Job(name=name, func=func, delay=lambda now: seconds_until_daily(now, hour, minute))
        )

    def monthly(self, name: str, day: int, func: JobFunc, hour: int = 0, minute: int = 0) -> Job:
        if not 1 <= day <= 28:
            raise ValueError(f"Job {name}: day must be between 1 and 28")
        return self._add(
            Job(name=name, func=func, delay=lambda now: seconds_until_monthly(now, day, hour, minute))
        )

    def _add(self, job: Job) -> Job:
        if job.name in self._jobs:
            raise ValueError(f"Duplicate job name: {job.name}")
        self._jobs[job.name] = job
        return job

    @property
    def jobs(self) -> dict[str, Job]:
        return dict(self._jobs)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # --- execution ---

    async def run_now(self, name: str) -> Any:
        """Run a job once, outside its schedule. Exceptions propagate to the caller."""
        job = self._jobs[name]
        return await self._invoke(job)

    async def _invoke(self, job: Job) -> Any:
        start = time.monotonic()
        job.last_run_at = self._clock()
        try:
            result = job.func()
            if inspect.isawaitable(result):
                result = await result
            job.last_error = None
            return result
        except Exception as exc:
            job.failures += 1
            job.last_error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            job.runs += 1
            job.last_duration_ms = (time.monotonic() - start) * 1000

    async def _loop(self, job: Job) -> None:
        while True:
            await asyncio.sleep(job.delay(self._clock()))
            try:
                await self._invoke(job)
            except Exception:
                logger.error(f"[JOB {job.name}] run failed", exc_info=True)

    def start(self) -> None:
        if self._tasks:
            return
        for job in self._jobs.values():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info(f"Scheduler started with {len(self._tasks)} job(s): {list(self._jobs)}")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")
