"""Reminder notifier for upcoming recurring occurrences."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Protocol, Union
from uuid import UUID

from recurra.data.repository import LedgerStore
from recurra.domain.models import RecurringTemplate, TemplateKind
from recurra.domain.periods import days_until, to_day

logger = logging.getLogger(__name__)

MAX_LOOKAHEAD_DAYS = 3

TITLES = {
    TemplateKind.EXPENSE: "Expense reminder",
    TemplateKind.INCOME: "Income reminder",
    TemplateKind.LIMIT_PERIOD: "Spending limit reminder",
}

NOUNS = {
    TemplateKind.EXPENSE: "Recurring expense",
    TemplateKind.INCOME: "Expected income",
    TemplateKind.LIMIT_PERIOD: "Limit charge",
}


class NotificationRenderer(Protocol):
    """Renders a user-facing notification.

    Rendering twice with the same ``notification_id`` replaces the earlier
    notification instead of adding a second one.
    """

    def render(self, notification_id: int, title: str, body: str) -> None:
        ...


class LoggingRenderer:
    """Renderer that writes notifications to the log.

    Used when no platform notifier is wired in.
    """

    def __init__(self):
        self.rendered: dict[int, tuple[str, str]] = {}

    def render(self, notification_id: int, title: str, body: str) -> None:
        self.rendered[notification_id] = (title, body)
        logger.info(f"[notification {notification_id}] {title}: {body}")


def notification_id_for(entity_id: UUID) -> int:
    """Stable positive 31-bit notification ID for an entity."""
    return entity_id.int & 0x7FFFFFFF


def reminder_message(template: RecurringTemplate, days: int) -> str:
    """Build the reminder text for a template due in ``days`` days."""
    noun = NOUNS[template.kind]
    amount = f"{template.amount:,.2f}"
    if days == 0:
        when = "due today"
    elif days == 1:
        when = "due tomorrow"
    else:
        when = f"due in {days} days"
    return f"{noun} {when}: {template.description} ({amount})"


@dataclass(frozen=True, slots=True)
class Reminder:
    """A reminder that was (or would be) rendered."""

    notification_id: int
    template_id: UUID
    days_until: int
    title: str
    body: str


class ReminderNotifier:
    """Fires reminders for templates due within the lookahead window.

    The notifier only reads schedule state. Advancing next_due_date stays
    the generator's job.

    Example:
        >>> notifier = ReminderNotifier(ledger, LoggingRenderer())
        >>> reminders = await notifier.run()
    """

    def __init__(
        self,
        ledger: LedgerStore,
        renderer: NotificationRenderer,
        lookahead_days: int = MAX_LOOKAHEAD_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize notifier.

        Args:
            ledger: Store providing upcoming templates
            renderer: Notification render collaborator
            lookahead_days: Last day offset that still fires (0-3)
            clock: Returns "now"; defaults to datetime.now
        """
        if not 0 <= lookahead_days <= MAX_LOOKAHEAD_DAYS:
            raise ValueError(f"lookahead_days must be between 0 and {MAX_LOOKAHEAD_DAYS}")
        self._ledger = ledger
        self._renderer = renderer
        self._lookahead_days = lookahead_days
        self._clock = clock or datetime.now

    def evaluate(self, template: RecurringTemplate, today: date) -> Optional[Reminder]:
        """Decide whether a template's next occurrence warrants a reminder.

        Args:
            template: Candidate template
            today: Evaluation day

        Returns:
            Reminder if the due date is 0..lookahead days away, None otherwise
        """
        if not template.is_recurring or template.next_due_date is None:
            return None

        days = days_until(template.next_due_date, today)
        # Overdue occurrences belong to the generator
        if days < 0 or days > self._lookahead_days:
            return None

        return Reminder(
            notification_id=notification_id_for(template.id),
            template_id=template.id,
            days_until=days,
            title=TITLES[template.kind],
            body=reminder_message(template, days),
        )

    async def run(self, today: Optional[Union[date, datetime]] = None) -> list[Reminder]:
        """Scan upcoming templates and render reminders.

        Returns:
            Reminders that were rendered
        """
        today = to_day(today or self._clock())
        until = today + timedelta(days=self._lookahead_days)
        candidates = await self._ledger.get_upcoming_templates(until)

        fired = []
        for template in candidates:
            reminder = self.evaluate(template, today)
            if reminder is None:
                continue
            self._renderer.render(reminder.notification_id, reminder.title, reminder.body)
            fired.append(reminder)

        logger.info(f"Rendered {len(fired)} reminders from {len(candidates)} candidates")
        return fired
