"""Abstract store interfaces consumed by the recurring event engine.

The engine never talks to a database directly. It depends on two
contracts: the ledger store (templates and generated instances) and the
aggregate store (spending-limit and savings totals). Stores built together
share ``LedgerStore.transaction()``, which the generator uses to commit an
instance and its aggregate increment as one unit.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from recurra.domain.models import DependentAggregate, GeneratedInstance, RecurringTemplate


class LedgerStore(ABC):
    """Abstract interface for template and instance storage."""

    @abstractmethod
    async def find_due_templates(self, as_of: date) -> list[RecurringTemplate]:
        """Get all recurring templates due on or before a date.

        Args:
            as_of: Day to evaluate (inclusive)

        Returns:
            Recurring templates with next_due_date <= as_of,
            sorted by next_due_date
        """
        ...

    async def find_unreadable_templates(self, as_of: date) -> list["DataIntegrityError"]:
        """Due rows that cannot be loaded as templates.

        find_due_templates leaves such rows out so one corrupt row cannot
        block the rest; this reports them for the run's outcome list.
        """
        return []

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group store calls into one atomic unit.

        Stores created together by ``create_stores`` share the unit, so an
        instance insert and its aggregate increment commit or roll back
        together. Nested use joins the enclosing unit. The base
        implementation does not group anything.
        """
        yield

    @abstractmethod
    async def create_instance(self, instance: GeneratedInstance) -> UUID:
        """Persist a generated instance.

        Args:
            instance: Instance to insert

        Returns:
            ID of the stored instance

        Raises:
            DuplicateInstanceError: If an instance for the same template and
                occurrence date already exists
        """
        ...

    @abstractmethod
    async def update_template(self, template: RecurringTemplate) -> None:
        """Persist a template's mutated fields in a single update.

        Args:
            template: Template carrying the new next_due_date

        Raises:
            TemplateNotFoundError: If the template was deleted
        """
        ...

    @abstractmethod
    async def get_upcoming_templates(self, until: date) -> list[RecurringTemplate]:
        """Get recurring templates due on or before ``until``.

        Used by the reminder job to look a few days ahead.
        """
        ...

    @abstractmethod
    async def get_template(self, id: UUID) -> Optional[RecurringTemplate]:
        """Get a single template by ID."""
        ...

    @abstractmethod
    async def get_all_templates(self) -> list[RecurringTemplate]:
        """Get all templates sorted by next_due_date."""
        ...

    @abstractmethod
    async def save_template(self, template: RecurringTemplate) -> RecurringTemplate:
        """Insert or replace a template (user-facing CRUD)."""
        ...

    @abstractmethod
    async def delete_template(self, id: UUID) -> bool:
        """Delete a template.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def get_instances(self, template_id: Optional[UUID] = None) -> list[GeneratedInstance]:
        """Get generated instances, optionally for one template.

        Returns:
            Instances sorted by occurrence_date
        """
        ...

    @abstractmethod
    async def instance_exists(self, template_id: UUID, occurrence_date: date) -> bool:
        """Check if an occurrence has already been materialized."""
        ...

    async def close(self) -> None:
        """Release the underlying connection, if any."""
        pass


class AggregateStore(ABC):
    """Abstract interface for dependent aggregate storage."""

    @abstractmethod
    async def add_amount(self, aggregate_id: UUID, amount: Decimal) -> None:
        """Atomically add ``amount`` to an aggregate's accumulated value.

        The increment happens inside the store, never as a read-modify-write
        in the caller. Negative amounts reverse a previous addition; the
        result never drops below zero.

        Raises:
            AggregateNotFoundError: If the aggregate does not exist
            AggregateUpdateError: If the update could not be applied
        """
        ...

    @abstractmethod
    async def get(self, aggregate_id: UUID) -> Optional[DependentAggregate]:
        """Get a single aggregate by ID."""
        ...

    @abstractmethod
    async def get_all(self, active_only: bool = False) -> list[DependentAggregate]:
        """Get all aggregates sorted by name."""
        ...

    @abstractmethod
    async def save(self, aggregate: DependentAggregate) -> DependentAggregate:
        """Insert or replace an aggregate (user-facing CRUD)."""
        ...

    @abstractmethod
    async def reset_expired_periods(self, as_of: date) -> int:
        """Start a new period for spending limits whose period has ended.

        Returns:
            Count of aggregates reset
        """
        ...


class StoreError(Exception):
    """Base class for store failures."""

    pass


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached (transient)."""

    pass


class TemplateNotFoundError(StoreError):
    """Raised when updating a template that no longer exists."""

    pass


class DuplicateInstanceError(StoreError):
    """Raised when an occurrence has already been materialized."""

    def __init__(self, template_id: UUID, occurrence_date: date):
        super().__init__(
            f"Instance for template {template_id} on {occurrence_date.isoformat()} already exists"
        )
        self.template_id = template_id
        self.occurrence_date = occurrence_date


class AggregateNotFoundError(StoreError):
    """Raised when a linked aggregate does not exist."""

    pass


class AggregateUpdateError(StoreError):
    """Raised when an aggregate increment could not be applied."""

    pass


class DataIntegrityError(Exception):
    """Raised for stored data that can never be processed successfully."""

    def __init__(self, message: str, template_id: Optional[UUID] = None):
        super().__init__(message)
        self.template_id = template_id
