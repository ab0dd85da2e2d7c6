"""Pytest fixtures and configuration."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from recurra.data.factory import create_stores
from recurra.domain.models import (
    AggregateKind,
    DependentAggregate,
    RecurringTemplate,
    TemplateKind,
)

TODAY = date(2024, 3, 15)


@pytest.fixture
def today():
    """Fixed evaluation day used across engine tests."""
    return TODAY


@pytest.fixture
def make_template():
    """Factory fixture for creating recurring templates.

    ``due_in`` places next_due_date relative to TODAY (negative = overdue).
    """

    def _make(due_in=0, interval_days=30, **kwargs):
        defaults = {
            "amount": Decimal("100.00"),
            "description": "Rent",
            "category": "Housing",
            "kind": TemplateKind.EXPENSE,
            "anchor_date": TODAY - timedelta(days=365),
            "interval_days": interval_days,
            "next_due_date": TODAY + timedelta(days=due_in),
        }
        defaults.update(kwargs)
        return RecurringTemplate.create(**defaults)

    return _make


@pytest.fixture
def make_aggregate():
    """Factory fixture for creating dependent aggregates."""

    def _make(**kwargs):
        defaults = {
            "kind": AggregateKind.SPENDING_LIMIT,
            "name": "Groceries",
            "target_amount": Decimal("500.00"),
            "period_days": 30,
            "period_start": TODAY - timedelta(days=10),
        }
        defaults.update(kwargs)
        return DependentAggregate.create(**defaults)

    return _make


@pytest.fixture
async def stores(tmp_path):
    """Create SQLite stores with a temporary database."""
    ledger, aggregates = await create_stores("sqlite", tmp_path / "test.db")
    yield ledger, aggregates
    await ledger.close()
