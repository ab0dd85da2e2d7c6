"""Application context and dependency injection.

The ApplicationContext wires the stores, engine services and scheduler
together. Collaborators outside the engine (notification rendering) are
injected here, so no component holds global state.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from recurra.data.factory import create_stores
from recurra.data.repository import AggregateStore, LedgerStore
from recurra.domain.settings import AppSettings
from recurra.services.generator import RecurringEventGenerator
from recurra.services.limits import LimitMonitor
from recurra.services.reminders import LoggingRenderer, NotificationRenderer, ReminderNotifier
from recurra.services.runner import (
    ScheduledRunner,
    generation_runner,
    limit_check_runner,
    reminder_runner,
)
from recurra.services.scheduler import AsyncioJobScheduler
from recurra.state.persistence import SettingsStore

logger = logging.getLogger(__name__)


class ApplicationContext:
    """Application context providing dependency injection.

    Example:
        >>> ctx = ApplicationContext()
        >>> await ctx.initialize()
        >>> ctx.start_jobs()
        >>> ...
        >>> await ctx.close()
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        settings_store: Optional[SettingsStore] = None,
        renderer: Optional[NotificationRenderer] = None,
    ):
        """Initialize application context.

        Args:
            db_path: Optional database path overriding settings
            settings_store: Optional settings store (defaults to user config)
            renderer: Notification renderer (defaults to logging)
        """
        self.settings_store = settings_store or SettingsStore()
        self.settings: AppSettings = self.settings_store.load()
        self.db_path = db_path or self.settings_store.resolve_db_path(self.settings)
        self.renderer = renderer or LoggingRenderer()

        # Stores (initialized in initialize())
        self.ledger: Optional[LedgerStore] = None
        self.aggregates: Optional[AggregateStore] = None

        # Services
        self.generator: Optional[RecurringEventGenerator] = None
        self.notifier: Optional[ReminderNotifier] = None
        self.limit_monitor: Optional[LimitMonitor] = None
        self.runners: dict[str, ScheduledRunner] = {}

        scheduler_settings = self.settings.scheduler
        self.scheduler = AsyncioJobScheduler(
            backoff=timedelta(seconds=scheduler_settings.backoff_seconds),
            max_backoff=timedelta(seconds=scheduler_settings.max_backoff_seconds),
        )

    async def initialize(self) -> None:
        """Open stores and build the engine services.

        Must be called before using the context.
        """
        self.ledger, self.aggregates = await create_stores(
            self.settings.storage.backend, self.db_path
        )
        logger.info(f"Using ledger database {self.db_path}")

        self.generator = RecurringEventGenerator(self.ledger, self.aggregates)
        self.notifier = ReminderNotifier(
            self.ledger,
            self.renderer,
            lookahead_days=self.settings.reminders.lookahead_days,
        )
        self.limit_monitor = LimitMonitor(
            self.aggregates,
            self.renderer,
            reset_expired_periods=self.settings.limits.reset_expired_periods,
        )

        generation = generation_runner(self.generator)
        self.runners = {generation.name: generation}
        if self.settings.reminders.enabled:
            reminders = reminder_runner(self.notifier)
            self.runners[reminders.name] = reminders
        if self.settings.limits.enabled:
            limits = limit_check_runner(self.limit_monitor)
            self.runners[limits.name] = limits

    def start_jobs(self) -> None:
        """Register every enabled runner with the scheduler."""
        s = self.settings.scheduler
        intervals = {
            "generate_recurring": s.generation_interval_hours,
            "recurring_reminders": s.reminder_interval_hours,
            "limit_check": s.limit_check_interval_hours,
        }
        initial_delay = timedelta(minutes=s.initial_delay_minutes)
        for name, runner in self.runners.items():
            self.scheduler.register(runner, timedelta(hours=intervals[name]), initial_delay)

    async def run_once(self) -> dict:
        """Run every enabled job once, generation first.

        Returns:
            Mapping of job name to JobResult
        """
        return {name: await runner.run() for name, runner in self.runners.items()}

    async def close(self) -> None:
        """Stop jobs and close the database connection."""
        await self.scheduler.shutdown()
        if self.ledger is not None:
            await self.ledger.close()
            self.ledger = None
