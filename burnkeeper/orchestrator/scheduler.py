"""
JobScheduler: periodic jobs with non-overlapping ticks and graceful stop.

Each job runs in its own loop task. A job's next tick starts only after the
previous one returned (ticks of one job never overlap); different jobs run
concurrently. A tick that raises is logged and the loop carries on.

stop() sets the stop event so no new tick starts, tells the orchestrator to
stop draining its queues, and waits for in-flight ticks so a burn being
submitted always records its outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from burnkeeper.core.json_utils import dumps

if TYPE_CHECKING:
    from burnkeeper.monitoring.metrics_rich import BurnMetrics
    from burnkeeper.orchestrator.lifecycle import LifecycleOrchestrator

log = logging.getLogger("burnkeeper")


@dataclass
class Job:
    name: str
    interval_sec: float
    run: Callable[[], Awaitable[Any]]
    run_immediately: bool = True
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    ticks: int = 0
    errors: int = 0
    last_duration_ms: float = 0.0
    last_error: Optional[str] = None


class JobScheduler:
    """
    Usage:
        scheduler = JobScheduler(orchestrator=orchestrator)
        scheduler.add_job("milestone", 60, orchestrator.run_milestone_tick)
        scheduler.add_job("buyback", 900, orchestrator.run_buyback_cycle)
        scheduler.add_job("reconcile", 14400, engine.run_sweep)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: Optional["LifecycleOrchestrator"] = None,
        metrics: Optional["BurnMetrics"] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.metrics = metrics
        self._jobs: Dict[str, Job] = {}
        self._tasks: List[asyncio.Task] = []
        self._stop = asyncio.Event()
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def add_job(
        self,
        name: str,
        interval_sec: float,
        run: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ) -> Job:
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        job = Job(name=name, interval_sec=interval_sec, run=run, run_immediately=run_immediately)
        self._jobs[name] = job
        return job

    @property
    def jobs(self) -> Dict[str, Job]:
        return dict(self._jobs)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        for job in self._jobs.values():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job-{job.name}"))
        self._log_event("scheduler_started", jobs={n: j.interval_sec for n, j in self._jobs.items()})

    async def _loop(self, job: Job) -> None:
        if not job.run_immediately and await self._sleep(job.interval_sec):
            return
        while not self._stop.is_set():
            await self._tick(job)
            if await self._sleep(job.interval_sec):
                return

    async def _sleep(self, seconds: float) -> bool:
        """Sleep until the next tick. Returns True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _tick(self, job: Job) -> Any:
        async with job.lock:
            started = time.perf_counter()
            try:
                result = await job.run()
                job.ticks += 1
                if self.metrics:
                    self.metrics.ticks.labels(job=job.name).inc()
                return result
            except Exception as exc:
                job.errors += 1
                job.last_error = str(exc)
                if self.metrics:
                    self.metrics.tick_errors.labels(job=job.name).inc()
                log.error(dumps({"event": f"{job.name}_tick_error", "error": str(exc)}), exc_info=True)
                return None
            finally:
                job.last_duration_ms = (time.perf_counter() - started) * 1000

    async def run_once(self, name: str) -> Any:
        """Run a single tick of a job now, serialized with its loop."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"unknown job {name!r}")
        return await self._tick(job)

    async def wait_stopped(self) -> None:
        await self._stop.wait()

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop all jobs.

        Args:
            timeout: Seconds to wait for in-flight ticks before cancelling
                them. None waits as long as it takes.
        """
        self._stop.set()
        if self.orchestrator is not None:
            self.orchestrator.request_stop()
        tasks = [t for t in self._tasks if not t.done()]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                log.warning(dumps({"event": "scheduler_tick_cancelled", "task": task.get_name()}))
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._log_event("scheduler_stopped")
