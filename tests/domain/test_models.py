"""Unit tests for domain models."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from recurra.domain.models import (
    AggregateKind,
    DependentAggregate,
    GeneratedInstance,
    GenerationReport,
    RecurringTemplate,
    TemplateKind,
    TemplateOutcome,
    TemplateStatus,
    instance_id_for,
)
from recurra.domain.periods import InvalidIntervalError


class TestRecurringTemplate:
    """Tests for RecurringTemplate model."""

    def test_create_sets_first_due_date_one_interval_after_anchor(self):
        """Recurring templates first fall due one interval after the anchor."""
        template = RecurringTemplate.create(
            amount=Decimal("800.00"),
            description="Rent",
            category="Housing",
            kind=TemplateKind.EXPENSE,
            anchor_date=date(2024, 1, 1),
            interval_days=30,
        )

        assert template.is_recurring
        assert template.next_due_date == date(2024, 1, 31)
        assert template.version == 1

    def test_create_keeps_explicit_due_date(self):
        template = RecurringTemplate.create(
            amount=Decimal("10.00"),
            description="Streaming",
            category="Leisure",
            kind=TemplateKind.EXPENSE,
            anchor_date=date(2024, 1, 1),
            interval_days=30,
            next_due_date=date(2024, 1, 5),
        )

        assert template.next_due_date == date(2024, 1, 5)

    def test_create_without_interval_is_one_off(self):
        template = RecurringTemplate.create(
            amount=Decimal("10.00"),
            description="Gift",
            category="Other",
            kind=TemplateKind.INCOME,
            anchor_date=date(2024, 1, 1),
        )

        assert not template.is_recurring
        assert template.next_due_date is None
        assert not template.is_due(date(2030, 1, 1))

    def test_create_with_zero_interval_raises(self):
        """The factory rejects intervals it cannot schedule."""
        with pytest.raises(InvalidIntervalError):
            RecurringTemplate.create(
                amount=Decimal("10.00"),
                description="Broken",
                category="Other",
                kind=TemplateKind.EXPENSE,
                anchor_date=date(2024, 1, 1),
                interval_days=0,
            )

    def test_invalid_amount_raises_error(self, make_template):
        with pytest.raises(ValueError, match="Amount must be positive"):
            make_template(amount=Decimal("0"))

    def test_empty_description_raises_error(self, make_template):
        with pytest.raises(ValueError, match="Description cannot be empty"):
            make_template(description="   ")

    def test_recurring_requires_next_due_date(self, make_template):
        template = make_template()
        with pytest.raises(ValueError, match="next due date"):
            template.with_updates(next_due_date=None)

    def test_stored_zero_interval_is_loadable_but_invalid(self, make_template):
        """Corrupt rows still load so the generator can skip them."""
        template = make_template().with_updates(interval_days=0)

        assert not template.has_valid_interval

    def test_is_due(self, make_template, today):
        assert make_template(due_in=0).is_due(today)
        assert make_template(due_in=-3).is_due(today)
        assert not make_template(due_in=1).is_due(today)

    def test_advance_to_is_immutable_update(self, make_template, today):
        template = make_template()
        advanced = template.advance_to(today + timedelta(days=30))

        assert template.next_due_date == today
        assert advanced.next_due_date == today + timedelta(days=30)
        assert advanced.id == template.id
        assert advanced.version == template.version + 1
        assert advanced.updated_at is not None


class TestGeneratedInstance:
    """Tests for GeneratedInstance model."""

    def test_from_template_copies_fields(self, make_template, today):
        aggregate_id = make_template().id
        template = make_template(aggregate_id=aggregate_id, notes="monthly")

        instance = GeneratedInstance.from_template(template, today)

        assert instance.template_id == template.id
        assert instance.amount == template.amount
        assert instance.description == template.description
        assert instance.category == template.category
        assert instance.kind == template.kind
        assert instance.occurrence_date == today
        assert instance.aggregate_id == aggregate_id
        assert instance.notes == "monthly"

    def test_instance_id_is_deterministic(self, make_template, today):
        """Same template and date always produce the same ID."""
        template = make_template()

        first = GeneratedInstance.from_template(template, today)
        second = GeneratedInstance.from_template(template, today)
        other_day = GeneratedInstance.from_template(template, today + timedelta(days=1))

        assert first.id == second.id == instance_id_for(template.id, today)
        assert first.id != other_day.id

    def test_instance_has_no_schedule(self, make_template, today):
        instance = GeneratedInstance.from_template(make_template(), today)

        assert not hasattr(instance, "next_due_date")
        assert not hasattr(instance, "interval_days")


class TestDependentAggregate:
    """Tests for DependentAggregate model."""

    def test_spending_limit_usage(self, make_aggregate):
        limit = make_aggregate(accumulated=Decimal("400.00"))

        assert limit.usage_percentage == Decimal("80")
        assert limit.is_warning_reached
        assert not limit.is_exceeded
        assert limit.remaining_amount == Decimal("100.00")

    def test_exceeded_limit(self, make_aggregate):
        limit = make_aggregate(accumulated=Decimal("600.00"))

        assert limit.is_exceeded
        assert limit.remaining_amount == Decimal("0")

    def test_period_end(self, make_aggregate):
        limit = make_aggregate(period_start=date(2024, 1, 20), period_days=30)

        assert limit.period_end == date(2024, 2, 19)

    def test_create_starts_period_today(self):
        limit = DependentAggregate.create(
            AggregateKind.SPENDING_LIMIT, "Fuel", period_days=7
        )

        assert limit.period_start == date.today()

    def test_savings_goal(self):
        project = DependentAggregate.create(
            AggregateKind.SAVINGS_PROJECT,
            "Holiday",
            target_amount=Decimal("1000.00"),
            accumulated=Decimal("1000.00"),
        )

        assert project.is_goal_reached
        assert project.period_end is None

    def test_no_target_has_no_usage(self):
        project = DependentAggregate.create(AggregateKind.SAVINGS_PROJECT, "Rainy day")

        assert project.usage_percentage is None
        assert not project.is_warning_reached
        assert not project.is_exceeded

    def test_invalid_threshold_raises_error(self, make_aggregate):
        with pytest.raises(ValueError, match="Warning threshold"):
            make_aggregate(warning_threshold=120)

    def test_invalid_period_raises_error(self, make_aggregate):
        with pytest.raises(ValueError, match="Period"):
            make_aggregate(period_days=0, period_start=date(2024, 1, 1))


class TestGenerationReport:
    """Tests for GenerationReport aggregation."""

    def test_counts(self, make_template, today):
        a, b, c = make_template(), make_template(), make_template()
        report = GenerationReport(
            run_date=today,
            outcomes=(
                TemplateOutcome(a.id, TemplateStatus.GENERATED, instances_created=2),
                TemplateOutcome(b.id, TemplateStatus.SKIPPED),
                TemplateOutcome(c.id, TemplateStatus.FAILED, instances_created=1, error="boom"),
            ),
        )

        assert report.generated_count == 3
        assert [o.template_id for o in report.skipped] == [b.id]
        assert [o.template_id for o in report.failed] == [c.id]
        assert report.has_failures
