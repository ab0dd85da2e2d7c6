"""Spending-limit and savings-goal monitoring."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Union
from uuid import UUID

from recurra.data.repository import AggregateStore
from recurra.domain.models import AggregateKind, DependentAggregate
from recurra.domain.periods import to_day
from recurra.services.reminders import NotificationRenderer, notification_id_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LimitAlert:
    """An alert rendered for an aggregate."""

    notification_id: int
    aggregate_id: UUID
    title: str
    body: str


def _money(value) -> str:
    return f"{value:,.2f}"


class LimitMonitor:
    """Resets expired spending-limit periods and alerts on thresholds.

    Spending limits alert once usage reaches their warning threshold and
    again, with different wording, once exceeded. Savings projects alert
    when their goal is reached.
    """

    def __init__(
        self,
        aggregates: AggregateStore,
        renderer: NotificationRenderer,
        reset_expired_periods: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._aggregates = aggregates
        self._renderer = renderer
        self._reset_expired = reset_expired_periods
        self._clock = clock or datetime.now

    def evaluate(self, aggregate: DependentAggregate) -> Optional[LimitAlert]:
        """Build the alert an aggregate currently warrants, if any."""
        if not aggregate.is_active or not aggregate.notifications_enabled:
            return None

        if aggregate.kind == AggregateKind.SAVINGS_PROJECT:
            if not aggregate.is_goal_reached:
                return None
            title = "Savings goal reached"
            body = (
                f"You reached your goal of {_money(aggregate.target_amount)} "
                f"for '{aggregate.name}'."
            )
        elif aggregate.is_exceeded:
            title = "Spending limit exceeded"
            body = (
                f"{aggregate.name}: spent {_money(aggregate.accumulated)} "
                f"of {_money(aggregate.target_amount)}."
            )
        elif aggregate.is_warning_reached:
            title = "Spending limit warning"
            body = (
                f"{aggregate.name}: {aggregate.usage_percentage:.0f}% used, "
                f"{_money(aggregate.remaining_amount)} left."
            )
        else:
            return None

        return LimitAlert(
            notification_id=notification_id_for(aggregate.id),
            aggregate_id=aggregate.id,
            title=title,
            body=body,
        )

    async def run(self, today: Optional[Union[date, datetime]] = None) -> list[LimitAlert]:
        """Reset expired periods, then render alerts.

        Returns:
            Alerts that were rendered
        """
        today = to_day(today or self._clock())
        if self._reset_expired:
            reset = await self._aggregates.reset_expired_periods(today)
            if reset:
                logger.info(f"Started a new period for {reset} spending limits")

        alerts = []
        for aggregate in await self._aggregates.get_all(active_only=True):
            alert = self.evaluate(aggregate)
            if alert is None:
                continue
            self._renderer.render(alert.notification_id, alert.title, alert.body)
            alerts.append(alert)

        logger.info(f"Rendered {len(alerts)} limit alerts")
        return alerts
