"""Domain models for the Recurra recurring event engine.

All models are immutable (frozen dataclasses). Mutations produce new
instances via ``with_updates`` so a generation run never shares mutable
state with the caller.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import NAMESPACE_OID, UUID, uuid4, uuid5

from recurra.domain.periods import next_occurrence


class TemplateKind(Enum):
    """What a recurring template produces."""

    EXPENSE = "expense"
    INCOME = "income"
    LIMIT_PERIOD = "limit_period"  # Recurring spend charged against a limit


class AggregateKind(Enum):
    """Type of running total updated by generated instances."""

    SPENDING_LIMIT = "spending_limit"
    SAVINGS_PROJECT = "savings_project"


class TemplateStatus(Enum):
    """Per-template result of a generation run."""

    GENERATED = "generated"  # One or more instances created
    UP_TO_DATE = "up_to_date"  # Nothing was due
    SKIPPED = "skipped"  # Data-integrity problem, left untouched
    FAILED = "failed"  # Error mid-template, retried next run


class JobResult(Enum):
    """Result reported back to the job scheduler."""

    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class RecurringTemplate:
    """User-defined repeating financial event.

    A template is either a recurring expense, a recurring income or a
    spending-limit period charge. When ``is_recurring`` is set the template
    always carries a ``next_due_date``; the interval is validated lazily by
    ``has_valid_interval`` because stored rows can be corrupt and the
    generator has to skip them rather than fail to load them.
    """

    id: UUID
    amount: Decimal
    description: str
    category: str
    kind: TemplateKind
    anchor_date: date
    interval_days: Optional[int] = None
    next_due_date: Optional[date] = None
    aggregate_id: Optional[UUID] = None
    is_recurring: bool = True
    notes: Optional[str] = None
    version: int = 1
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate template data."""
        if self.amount <= 0:
            raise ValueError("Amount must be positive")

        if not self.description.strip():
            raise ValueError("Description cannot be empty")

        if self.is_recurring and self.next_due_date is None:
            raise ValueError("Recurring template requires a next due date")

    @property
    def has_valid_interval(self) -> bool:
        """Check if the recurrence interval can be used for generation."""
        return isinstance(self.interval_days, int) and self.interval_days > 0

    def is_due(self, as_of: date) -> bool:
        """Check if the next occurrence should be generated by ``as_of``."""
        return (
            self.is_recurring
            and self.next_due_date is not None
            and self.next_due_date <= as_of
        )

    def with_updates(self, **changes: any) -> "RecurringTemplate":
        """Create new instance with updated fields."""
        current = asdict(self)
        current.update(changes)
        current["version"] = self.version + 1
        current["updated_at"] = datetime.now()
        return RecurringTemplate(**current)

    def advance_to(self, next_due_date: date) -> "RecurringTemplate":
        """Move the schedule forward after a generation run."""
        return self.with_updates(next_due_date=next_due_date)

    @classmethod
    def create(
        cls,
        amount: Decimal,
        description: str,
        category: str,
        kind: TemplateKind,
        anchor_date: date,
        interval_days: Optional[int] = None,
        **kwargs: any,
    ) -> "RecurringTemplate":
        """Factory method with sensible defaults.

        A template with an interval is recurring and, unless told otherwise,
        first falls due one interval after its anchor date (the anchor is the
        user's original entry, which is recorded separately).

        Args:
            amount: Amount of each occurrence (must be positive)
            description: Label copied onto every instance
            category: Category tag
            kind: TemplateKind
            anchor_date: Date the event was originally defined for
            interval_days: Recurrence interval in days, None for one-off
            **kwargs: Optional fields (next_due_date, aggregate_id, notes)

        Returns:
            New RecurringTemplate instance

        Example:
            >>> rent = RecurringTemplate.create(
            ...     amount=Decimal("800.00"),
            ...     description="Rent",
            ...     category="Housing",
            ...     kind=TemplateKind.EXPENSE,
            ...     anchor_date=date(2024, 1, 1),
            ...     interval_days=30,
            ... )
            >>> rent.next_due_date
            datetime.date(2024, 1, 31)
        """
        is_recurring = kwargs.pop("is_recurring", interval_days is not None)
        next_due_date = kwargs.pop("next_due_date", None)
        if is_recurring and next_due_date is None:
            next_due_date = next_occurrence(anchor_date, interval_days)

        return cls(
            id=uuid4(),
            amount=amount,
            description=description,
            category=category,
            kind=kind,
            anchor_date=anchor_date,
            interval_days=interval_days,
            next_due_date=next_due_date,
            is_recurring=is_recurring,
            **kwargs,
        )


def instance_id_for(template_id: UUID, occurrence_date: date) -> UUID:
    """Deterministic instance ID for a (template, occurrence date) pair."""
    return uuid5(NAMESPACE_OID, f"{template_id}_{occurrence_date.isoformat()}")


@dataclass(frozen=True, slots=True)
class GeneratedInstance:
    """Concrete one-time record produced from a template.

    Instances are never recurring. The ID is derived from the template ID and
    occurrence date, so regenerating the same occurrence always yields the
    same ID.
    """

    id: UUID
    template_id: UUID
    amount: Decimal
    description: str
    category: str
    kind: TemplateKind
    occurrence_date: date
    aggregate_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Validate instance data."""
        if self.amount <= 0:
            raise ValueError("Amount must be positive")

    @classmethod
    def from_template(
        cls, template: RecurringTemplate, occurrence_date: date
    ) -> "GeneratedInstance":
        """Materialize one occurrence of a template.

        Args:
            template: Source template
            occurrence_date: Due date this instance represents

        Returns:
            GeneratedInstance copying amount, label, category and aggregate link
        """
        return cls(
            id=instance_id_for(template.id, occurrence_date),
            template_id=template.id,
            amount=template.amount,
            description=template.description,
            category=template.category,
            kind=template.kind,
            occurrence_date=occurrence_date,
            aggregate_id=template.aggregate_id,
            notes=template.notes,
        )


@dataclass(frozen=True, slots=True)
class DependentAggregate:
    """Running total updated as a side effect of instance generation.

    For a spending limit ``accumulated`` is the amount spent in the current
    period and ``target_amount`` the ceiling. For a savings project it is the
    current balance and the savings goal.
    """

    id: UUID
    kind: AggregateKind
    name: str
    accumulated: Decimal = Decimal("0")
    target_amount: Optional[Decimal] = None
    period_days: Optional[int] = None  # Spending limits only
    period_start: Optional[date] = None
    warning_threshold: int = 80  # Percent of target
    notifications_enabled: bool = True
    is_active: bool = True
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Validate aggregate data."""
        if not self.name.strip():
            raise ValueError("Name cannot be empty")

        if not 0 <= self.warning_threshold <= 100:
            raise ValueError("Warning threshold must be between 0 and 100")

        if self.target_amount is not None and self.target_amount <= 0:
            raise ValueError("Target amount must be positive")

        if self.kind == AggregateKind.SPENDING_LIMIT and self.period_days is not None:
            if self.period_days <= 0:
                raise ValueError("Period must be at least one day")

    @property
    def usage_percentage(self) -> Optional[Decimal]:
        """Share of the target already reached, in percent."""
        if not self.target_amount:
            return None
        return self.accumulated / self.target_amount * 100

    @property
    def is_exceeded(self) -> bool:
        """Spending limit overrun."""
        return self.target_amount is not None and self.accumulated > self.target_amount

    @property
    def is_warning_reached(self) -> bool:
        usage = self.usage_percentage
        return usage is not None and usage >= self.warning_threshold

    @property
    def is_goal_reached(self) -> bool:
        """Savings goal reached."""
        return (
            self.kind == AggregateKind.SAVINGS_PROJECT
            and self.target_amount is not None
            and self.accumulated >= self.target_amount
        )

    @property
    def remaining_amount(self) -> Optional[Decimal]:
        if self.target_amount is None:
            return None
        return max(self.target_amount - self.accumulated, Decimal("0"))

    @property
    def period_end(self) -> Optional[date]:
        """First day of the next period, if the aggregate is periodic."""
        if self.period_start is None or not self.period_days:
            return None
        return next_occurrence(self.period_start, self.period_days)

    def with_updates(self, **changes: any) -> "DependentAggregate":
        """Create new instance with updated fields."""
        current = asdict(self)
        current.update(changes)
        current["updated_at"] = datetime.now()
        return DependentAggregate(**current)

    @classmethod
    def create(cls, kind: AggregateKind, name: str, **kwargs: any) -> "DependentAggregate":
        """Factory method for creating aggregates.

        Spending limits with a period start their first period today unless
        ``period_start`` is given.
        """
        if (
            kind == AggregateKind.SPENDING_LIMIT
            and kwargs.get("period_days")
            and kwargs.get("period_start") is None
        ):
            kwargs["period_start"] = date.today()
        return cls(id=uuid4(), kind=kind, name=name, **kwargs)


@dataclass(frozen=True, slots=True)
class TemplateOutcome:
    """What happened to a single template during a generation run."""

    template_id: UUID
    status: TemplateStatus
    instances_created: int = 0
    amount_applied: Decimal = Decimal("0")
    next_due_date: Optional[date] = None
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class GenerationReport:
    """Aggregated result of one generation run."""

    run_date: date
    outcomes: tuple[TemplateOutcome, ...] = ()
    cancelled: bool = False

    @property
    def generated_count(self) -> int:
        return sum(o.instances_created for o in self.outcomes)

    @property
    def failed(self) -> list[TemplateOutcome]:
        return [o for o in self.outcomes if o.status == TemplateStatus.FAILED]

    @property
    def skipped(self) -> list[TemplateOutcome]:
        return [o for o in self.outcomes if o.status == TemplateStatus.SKIPPED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)
