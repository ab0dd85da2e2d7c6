"""Tests for application wiring."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from main import EX_TEMPFAIL, _exit_code
from recurra.app import ApplicationContext
from recurra.domain.models import JobResult, RecurringTemplate, TemplateKind
from recurra.services.reminders import LoggingRenderer
from recurra.state.persistence import SettingsStore


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(tmp_path / "settings.json")


@pytest.fixture
async def context(tmp_path, settings_store):
    ctx = ApplicationContext(
        db_path=tmp_path / "ledger.db",
        settings_store=settings_store,
        renderer=LoggingRenderer(),
    )
    await ctx.initialize()
    yield ctx
    await ctx.close()


class TestApplicationContext:
    """Tests for ApplicationContext."""

    @pytest.mark.asyncio
    async def test_all_jobs_enabled_by_default(self, context):
        assert list(context.runners) == [
            "generate_recurring",
            "recurring_reminders",
            "limit_check",
        ]

    @pytest.mark.asyncio
    async def test_disabled_jobs_not_wired(self, tmp_path, settings_store):
        settings = settings_store.load()
        settings.reminders.enabled = False
        settings.limits.enabled = False
        settings_store.save(settings)

        ctx = ApplicationContext(db_path=tmp_path / "ledger.db", settings_store=settings_store)
        await ctx.initialize()
        try:
            assert list(ctx.runners) == ["generate_recurring"]
        finally:
            await ctx.close()

    @pytest.mark.asyncio
    async def test_run_once(self, context):
        """One pass generates today's instance and reminds about tomorrow's."""
        today = date.today()
        due = RecurringTemplate.create(
            amount=Decimal("40.00"),
            description="Internet",
            category="Utilities",
            kind=TemplateKind.EXPENSE,
            anchor_date=today - timedelta(days=30),
            interval_days=30,
        )
        upcoming = RecurringTemplate.create(
            amount=Decimal("9.99"),
            description="Music",
            category="Leisure",
            kind=TemplateKind.EXPENSE,
            anchor_date=today,
            interval_days=1,
        )
        await context.ledger.save_template(due)
        await context.ledger.save_template(upcoming)

        results = await context.run_once()

        assert set(results.values()) == {JobResult.SUCCESS}
        assert len(await context.ledger.get_instances(due.id)) == 1
        # Internet moved 30 days out, only Music is within the reminder window
        assert [body for _, body in context.renderer.rendered.values()] == [
            "Recurring expense due tomorrow: Music (9.99)"
        ]

    @pytest.mark.asyncio
    async def test_start_jobs_registers_runners(self, context):
        context.settings.scheduler.initial_delay_minutes = 60

        context.start_jobs()

        assert context.scheduler.job_names == sorted(context.runners)


class TestExitCode:
    """Tests for the command-line exit status."""

    def test_success(self):
        assert _exit_code({"a": JobResult.SUCCESS, "b": JobResult.SUCCESS}) == 0

    def test_retry(self):
        assert _exit_code({"a": JobResult.SUCCESS, "b": JobResult.RETRY}) == EX_TEMPFAIL

    def test_failure_wins(self):
        assert _exit_code({"a": JobResult.RETRY, "b": JobResult.FAILURE}) == 1
