from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any


log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class PeriodicJob:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    task: asyncio.Task | None = None
    runs: int = 0
    failures: int = 0
    last_error: str | None = field(default=None)


class PeriodicScheduler:
    """
    Owns one asyncio task per periodic job.

    Nothing is module-global: build one, add jobs, start(), and stop() on
    shutdown. A crashing tick is logged and the loop keeps going.
    """

    def __init__(self, *, sleep: Sleep = asyncio.sleep):
        self._sleep = sleep
        self._jobs: dict[str, PeriodicJob] = {}

    def add_job(self, name: str, interval_seconds: float, func: Callable[[], Awaitable[Any]]) -> None:
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._jobs[name] = PeriodicJob(name=name, interval_seconds=interval_seconds, func=func)

    @property
    def running(self) -> bool:
        return any(j.task is not None and not j.task.done() for j in self._jobs.values())

    def start(self) -> None:
        for job in self._jobs.values():
            if job.task is not None and not job.task.done():
                continue
            job.task = asyncio.create_task(self._loop(job), name=f"periodic:{job.name}")
            log.info("scheduler: job %s started (every %gs)", job.name, job.interval_seconds)

    async def stop(self) -> None:
        tasks = [j.task for j in self._jobs.values() if j.task is not None and not j.task.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job.task = None
        log.info("scheduler: stopped")

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            j.name: {
                "running": j.task is not None and not j.task.done(),
                "interval_seconds": j.interval_seconds,
                "runs": j.runs,
                "failures": j.failures,
                "last_error": j.last_error,
            }
            for j in self._jobs.values()
        }

    async def _loop(self, job: PeriodicJob) -> None:
        while True:
            try:
                await job.func()
                job.last_error = None
            except Exception as e:
                job.failures += 1
                job.last_error = f"{type(e).__name__}: {e}"
                log.exception("scheduler: job %s tick crashed", job.name)
            job.runs += 1
            await self._sleep(job.interval_seconds)
