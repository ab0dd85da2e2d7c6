"""Scheduled runner wrapping engine jobs for the job scheduler.

A runner executes one job invocation and reduces everything that can
happen to a JobResult: the scheduler decides timing and backoff, the
runner only decides success, retry or failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from recurra.data.resilience import job_result_for
from recurra.domain.models import GenerationReport, JobResult

logger = logging.getLogger(__name__)

Job = Callable[[asyncio.Event], Awaitable[Any]]


class ScheduledRunner:
    """Runs one job and classifies its outcome.

    The job receives the runner's stop event; jobs that process items in a
    loop should check it between items. ``last_result`` keeps the most
    recent classification for the scheduler and for status displays.

    Example:
        >>> runner = generation_runner(generator)
        >>> await runner.run()
        <JobResult.SUCCESS: 'success'>
    """

    def __init__(self, name: str, job: Job):
        """Initialize runner.

        Args:
            name: Unique job name (e.g. "generate_recurring")
            job: Async callable taking the stop event
        """
        self.name = name
        self._job = job
        self._stop = asyncio.Event()
        self.last_result: Optional[JobResult] = None

    def request_stop(self) -> None:
        """Ask a running job to stop at its next item boundary."""
        self._stop.set()

    async def run(self) -> JobResult:
        """Execute the job once.

        Returns:
            SUCCESS when the job completed without errors, RETRY for
            transient or unclassified errors, failed items or a stop request,
            FAILURE for errors that retrying cannot fix

        Raises:
            asyncio.CancelledError: Re-raised after recording RETRY so the
                hosting task still ends
        """
        self._stop.clear()
        logger.info(f"Job {self.name} started")
        try:
            outcome = await self._job(self._stop)
        except asyncio.CancelledError:
            logger.warning(f"Job {self.name} cancelled, will retry")
            self.last_result = JobResult.RETRY
            raise
        except Exception as e:
            result = job_result_for(e)
            logger.error(f"Job {self.name} failed ({result.value}): {e}", exc_info=True)
            self.last_result = result
            return result

        result = self._classify(outcome)
        logger.info(f"Job {self.name} finished: {result.value}")
        self.last_result = result
        return result

    def _classify(self, outcome: Any) -> JobResult:
        if self._stop.is_set():
            return JobResult.RETRY
        if isinstance(outcome, GenerationReport):
            if outcome.cancelled:
                return JobResult.RETRY
            if outcome.has_failures:
                ids = ", ".join(str(o.template_id) for o in outcome.failed)
                logger.warning(f"Job {self.name}: templates failed and will be retried: {ids}")
                return JobResult.RETRY
        return JobResult.SUCCESS


def generation_runner(generator, name: str = "generate_recurring") -> ScheduledRunner:
    """Runner for the recurring event generator."""
    return ScheduledRunner(name, lambda stop: generator.run(should_stop=stop))


def reminder_runner(notifier, name: str = "recurring_reminders") -> ScheduledRunner:
    """Runner for the reminder notifier."""
    return ScheduledRunner(name, lambda stop: notifier.run())


def limit_check_runner(monitor, name: str = "limit_check") -> ScheduledRunner:
    """Runner for the spending-limit monitor."""
    return ScheduledRunner(name, lambda stop: monitor.run())
