"""Periodic job scheduling on the asyncio event loop."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from recurra.domain.models import JobResult
from recurra.services.runner import ScheduledRunner

logger = logging.getLogger(__name__)


class JobScheduler(ABC):
    """Abstract job scheduling collaborator.

    Implementations guarantee at most one concurrent execution per job
    name and own all retry timing.
    """

    @abstractmethod
    def register(
        self,
        runner: ScheduledRunner,
        interval: timedelta,
        initial_delay: timedelta = timedelta(0),
    ) -> bool:
        """Register a runner for periodic execution under ``runner.name``.

        Returns:
            True if scheduled, False if a job with that name already exists
            (the existing job is kept)
        """
        ...

    @abstractmethod
    def cancel(self, name: str) -> bool:
        """Stop a job. Returns False if no such job."""
        ...

    @abstractmethod
    def reschedule(self, name: str, interval: timedelta) -> bool:
        """Change a job's interval. Returns False if no such job."""
        ...


@dataclass
class _ScheduledJob:
    runner: ScheduledRunner
    interval: timedelta
    initial_delay: timedelta
    task: Optional[asyncio.Task] = None
    attempts: int = 0  # Consecutive retries
    results: list[JobResult] = field(default_factory=list)


class AsyncioJobScheduler(JobScheduler):
    """Runs each registered job in its own asyncio task.

    After SUCCESS or FAILURE the job sleeps for its interval. After RETRY
    it sleeps a linear backoff (``backoff * consecutive retries``, capped at
    ``max_backoff``) and runs again.

    Example:
        >>> scheduler = AsyncioJobScheduler()
        >>> scheduler.register(generation_runner(generator), timedelta(days=1))
        >>> ...
        >>> await scheduler.shutdown()
    """

    def __init__(
        self,
        backoff: timedelta = timedelta(seconds=30),
        max_backoff: timedelta = timedelta(minutes=30),
        on_result: Optional[Callable[[str, JobResult], None]] = None,
    ):
        """Initialize scheduler.

        Args:
            backoff: Base delay after a RETRY result
            max_backoff: Upper bound for the retry delay
            on_result: Optional callback(job_name, result) after every run
        """
        self._backoff = backoff
        self._max_backoff = max_backoff
        self._on_result = on_result
        self._jobs: dict[str, _ScheduledJob] = {}

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def register(
        self,
        runner: ScheduledRunner,
        interval: timedelta,
        initial_delay: timedelta = timedelta(0),
    ) -> bool:
        """Register a runner; an existing job with the same name is kept.

        Must be called from within a running event loop.
        """
        existing = self._jobs.get(runner.name)
        if existing is not None and existing.task is not None and not existing.task.done():
            logger.debug(f"Job {runner.name} already scheduled, keeping existing")
            return False

        if interval <= timedelta(0):
            raise ValueError("interval must be positive")

        job = _ScheduledJob(runner=runner, interval=interval, initial_delay=initial_delay)
        job.task = asyncio.get_running_loop().create_task(
            self._run_periodically(job), name=f"job:{runner.name}"
        )
        self._jobs[runner.name] = job
        logger.info(f"Scheduled job {runner.name} every {interval} (initial delay {initial_delay})")
        return True

    def cancel(self, name: str) -> bool:
        """Stop a job: signal the runner, then cancel its task."""
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        job.runner.request_stop()
        if job.task is not None:
            job.task.cancel()
        logger.info(f"Cancelled job {name}")
        return True

    def reschedule(self, name: str, interval: timedelta) -> bool:
        """Change the interval; takes effect after the current wait."""
        job = self._jobs.get(name)
        if job is None:
            return False
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        job.interval = interval
        logger.info(f"Rescheduled job {name} every {interval}")
        return True

    def last_result(self, name: str) -> Optional[JobResult]:
        """Most recent result of a job, None if it has not run yet."""
        job = self._jobs.get(name)
        if job is None or not job.results:
            return None
        return job.results[-1]

    def next_delay(self, result: JobResult, attempts: int, interval: timedelta) -> timedelta:
        """Delay before the next run after ``result``."""
        if result == JobResult.RETRY:
            return min(self._backoff * attempts, self._max_backoff)
        return interval

    async def shutdown(self) -> None:
        """Cancel every job and wait for the tasks to finish."""
        tasks = []
        for name in list(self._jobs):
            job = self._jobs[name]
            if job.task is not None:
                tasks.append(job.task)
            self.cancel(name)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_periodically(self, job: _ScheduledJob) -> None:
        if job.initial_delay > timedelta(0):
            await asyncio.sleep(job.initial_delay.total_seconds())

        while True:
            result = await job.runner.run()
            job.results.append(result)
            del job.results[:-20]  # Keep recent history only

            if result == JobResult.RETRY:
                job.attempts += 1
            else:
                job.attempts = 0

            if self._on_result:
                try:
                    self._on_result(job.runner.name, result)
                except Exception as e:
                    logger.error(
                        f"Result callback failed for job {job.runner.name}: {e}", exc_info=True
                    )

            delay = self.next_delay(result, job.attempts, job.interval)
            logger.debug(f"Job {job.runner.name}: {result.value}, next run in {delay}")
            await asyncio.sleep(delay.total_seconds())
