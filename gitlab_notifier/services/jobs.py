"""Background job queue with fibonacci backoff.

Each job type gets its own queue drained by ``pool_size`` workers (1 by
default) so writes against the GitLab API are serialized per type. A failed
attempt is re-queued after ``fib(attempt) * retry_unit`` seconds until the
type's attempt ceiling is reached, then dropped with an error log.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession

from gitlab_notifier.config import settings

logger = logging.getLogger(__name__)

JobHandler = Callable[..., Awaitable[Any]]

_PENDING = "pending_jobs"


class PermanentJobError(RuntimeError):
    """Retrying cannot help; the job is dropped immediately."""


def fibonacci_delay(attempt: int, unit: float = 1.0) -> float:
    """Delay before retry number ``attempt`` (1-based): 1, 1, 2, 3, 5, 8 ... units."""
    a, b = 1, 1
    for _ in range(max(attempt, 1) - 1):
        a, b = b, a + b
    return a * unit


@dataclass
class JobSpec:
    name: str
    handler: JobHandler
    max_attempts: int


@dataclass
class Job:
    name: str
    args: tuple = ()
    attempt: int = 0
    last_error: str | None = field(default=None, repr=False)


class JobQueue:
    def __init__(self, pool_size: int = 1, retry_unit: float = 1.0, max_attempts: int = 10) -> None:
        self.pool_size = pool_size
        self.retry_unit = retry_unit
        self.max_attempts = max_attempts
        self._specs: dict[str, JobSpec] = {}
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self.failed: list[Job] = []

    def job(self, name: str, max_attempts: int | None = None) -> Callable[[JobHandler], JobHandler]:
        """Decorator registering a coroutine function as job type ``name``."""
        def register(handler: JobHandler) -> JobHandler:
            self.register(name, handler, max_attempts)
            return handler
        return register

    def register(self, name: str, handler: JobHandler, max_attempts: int | None = None) -> None:
        self._specs[name] = JobSpec(name, handler, max_attempts or self.max_attempts)

    def _queue(self, name: str) -> asyncio.Queue:
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
        return self._queues[name]

    def enqueue(self, name: str, *args: Any) -> Job:
        if name not in self._specs:
            raise KeyError(f"unknown job type {name!r}")
        job = Job(name=name, args=args)
        self._queue(name).put_nowait(job)
        logger.debug("Job %s queued", name)
        return job

    def enqueue_on_commit(self, db: AsyncSession, name: str, *args: Any) -> None:
        """Queue a job once ``db`` commits. A rollback discards it."""
        if name not in self._specs:
            raise KeyError(f"unknown job type {name!r}")
        pending = db.info.get(_PENDING)
        if pending is None:
            pending = db.info[_PENDING] = []
            event.listen(db.sync_session, "after_commit", self._release_pending)
            event.listen(db.sync_session, "after_soft_rollback", self._discard_pending)
        pending.append((name, args))

    def _release_pending(self, session) -> None:
        pending = session.info.get(_PENDING, [])
        while pending:
            name, args = pending.pop(0)
            self.enqueue(name, *args)

    def _discard_pending(self, session, previous_transaction) -> None:
        pending = session.info.get(_PENDING, [])
        # Savepoint rollbacks keep the outer transaction and its jobs
        if pending and previous_transaction.parent is None:
            logger.info("Discarding %d job(s) of a rolled back transaction", len(pending))
            pending.clear()

    def schedule(self, name: str, *args: Any, delay: float = 0.0) -> Job:
        """Queue a job after ``delay`` seconds."""
        if name not in self._specs:
            raise KeyError(f"unknown job type {name!r}")
        job = Job(name=name, args=args)
        self._later(job, delay)
        return job

    def _later(self, job: Job, delay: float) -> None:
        timer = asyncio.create_task(self._put_after(job, delay))
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _put_after(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        self._queue(job.name).put_nowait(job)

    async def run_job(self, job: Job) -> bool:
        """Run one attempt. Returns True on success; failures are re-queued or dropped."""
        spec = self._specs[job.name]
        job.attempt += 1
        try:
            await spec.handler(*job.args)
        except PermanentJobError as exc:
            job.last_error = str(exc)
            logger.error("Job %s dropped: %s", job.name, exc)
            self.failed.append(job)
            return False
        except Exception as exc:
            job.last_error = str(exc)
            if job.attempt >= spec.max_attempts:
                logger.error(
                    "Job %s failed after %d attempts, giving up: %s", job.name, job.attempt, exc
                )
                self.failed.append(job)
                return False
            delay = fibonacci_delay(job.attempt, self.retry_unit)
            logger.warning(
                "Job %s attempt %d/%d failed: %s — retrying in %.1fs",
                job.name, job.attempt, spec.max_attempts, exc, delay,
            )
            self._later(job, delay)
            return False
        logger.info("Job %s done after %d attempt(s)", job.name, job.attempt)
        return True

    async def _worker(self, name: str) -> None:
        queue = self._queue(name)
        while True:
            job = await queue.get()
            try:
                await self.run_job(job)
            finally:
                queue.task_done()

    def start(self) -> None:
        for name in self._specs:
            for _ in range(self.pool_size):
                self._workers.append(asyncio.create_task(self._worker(name)))
        logger.info("Job queue started: %d type(s), pool size %d", len(self._specs), self.pool_size)

    async def join(self) -> None:
        """Wait until no job is queued, running or waiting for a retry."""
        while True:
            for queue in list(self._queues.values()):
                await queue.join()
            if not self._timers and all(q.empty() for q in self._queues.values()):
                return
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        tasks = [*self._workers, *self._timers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()
        self._queues.clear()


job_queue = JobQueue(
    pool_size=settings.job_pool_size,
    retry_unit=settings.job_retry_unit_seconds,
    max_attempts=settings.job_max_attempts,
)
