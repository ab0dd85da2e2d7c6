"""Recurring event generator.

Finds templates whose next occurrence is due, materializes every missed
occurrence (backfill), applies each instance's amount to its linked
aggregate and finally moves the template's next due date forward.

Per occurrence, ``create_instance`` and ``add_amount`` run in one ledger
transaction, so an instance is never stored without its amount. The
template is advanced with ``update_template`` only after the whole
backfill, so a failed run leaves the next due date on the first occurrence
that may still be missing. Instance IDs are derived from (template, date)
and the store rejects a second insert for the same pair, so a rerun skips
what was already committed and never applies an amount twice.
"""

import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from recurra.data.repository import (
    AggregateStore,
    DataIntegrityError,
    DuplicateInstanceError,
    LedgerStore,
)
from recurra.domain.models import (
    GeneratedInstance,
    GenerationReport,
    RecurringTemplate,
    TemplateOutcome,
    TemplateStatus,
)
from recurra.domain.periods import due_occurrences, first_after, to_day

logger = logging.getLogger(__name__)


class RecurringEventGenerator:
    """Generates instances for due recurring templates.

    Example:
        >>> generator = RecurringEventGenerator(ledger, aggregates)
        >>> report = await generator.run()
        >>> report.generated_count
        3
    """

    def __init__(
        self,
        ledger: LedgerStore,
        aggregates: AggregateStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize generator.

        Args:
            ledger: Template and instance store
            aggregates: Aggregate store receiving instance amounts
            clock: Returns "now"; defaults to datetime.now
        """
        self._ledger = ledger
        self._aggregates = aggregates
        self._clock = clock or datetime.now

    async def run(
        self,
        today: Optional[Union[date, datetime]] = None,
        should_stop: Optional[asyncio.Event] = None,
    ) -> GenerationReport:
        """Process every due template once.

        Args:
            today: Evaluation day (defaults to the clock, truncated to the day)
            should_stop: Checked between templates; when set the run ends
                early and the report is marked cancelled

        Returns:
            GenerationReport with one outcome per processed template, plus a
            SKIPPED outcome for every due row that could not be loaded

        Raises:
            Exception: Store errors while listing due templates propagate
                unchanged; errors inside a template never do
        """
        today = to_day(today or self._clock())
        templates = await self._ledger.find_due_templates(today)
        unreadable = await self._ledger.find_unreadable_templates(today)
        logger.info(f"Found {len(templates)} recurring templates due on {today}")

        outcomes = [self._unreadable_outcome(e) for e in unreadable if e.template_id is not None]
        for processed, template in enumerate(templates):
            if should_stop is not None and should_stop.is_set():
                logger.info(f"Generation stopped after {processed}/{len(templates)} templates")
                return GenerationReport(run_date=today, outcomes=tuple(outcomes), cancelled=True)

            outcomes.append(await self.process_template(template, today))

        report = GenerationReport(run_date=today, outcomes=tuple(outcomes))
        logger.info(
            f"Generation finished: {report.generated_count} instances, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    async def process_template(self, template: RecurringTemplate, today: date) -> TemplateOutcome:
        """Backfill one template up to and including ``today``.

        Args:
            template: Template returned by find_due_templates
            today: Evaluation day

        Returns:
            TemplateOutcome describing what was done
        """
        if not template.has_valid_interval:
            logger.warning(
                f"Skipping template {template.id} ({template.description!r}): "
                f"invalid recurrence interval {template.interval_days!r}"
            )
            return TemplateOutcome(
                template_id=template.id,
                status=TemplateStatus.SKIPPED,
                next_due_date=template.next_due_date,
                error=f"invalid interval {template.interval_days!r}",
            )

        if not template.is_due(today):
            return TemplateOutcome(
                template_id=template.id,
                status=TemplateStatus.UP_TO_DATE,
                next_due_date=template.next_due_date,
            )

        created = 0
        applied = Decimal("0")
        occurrence = template.next_due_date
        try:
            for occurrence in due_occurrences(template.next_due_date, template.interval_days, today):
                instance = GeneratedInstance.from_template(template, occurrence)
                if await self._apply(instance):
                    created += 1
                    if instance.aggregate_id is not None:
                        applied += instance.amount

            next_due = first_after(template.next_due_date, template.interval_days, today)
            await self._ledger.update_template(template.advance_to(next_due))
        except Exception as e:
            logger.error(
                f"Generation failed for template {template.id} at {occurrence}: {e}",
                exc_info=True,
            )
            return TemplateOutcome(
                template_id=template.id,
                status=TemplateStatus.FAILED,
                instances_created=created,
                amount_applied=applied,
                next_due_date=template.next_due_date,
                error=str(e),
            )

        logger.info(
            f"Template {template.id} ({template.description!r}): "
            f"{created} instances, next due {next_due}"
        )
        return TemplateOutcome(
            template_id=template.id,
            status=TemplateStatus.GENERATED,
            instances_created=created,
            amount_applied=applied,
            next_due_date=next_due,
        )

    async def _apply(self, instance: GeneratedInstance) -> bool:
        """Insert an instance and apply its amount in one transaction.

        Returns:
            True if applied, False if a previous run already committed it
        """
        if await self._ledger.instance_exists(instance.template_id, instance.occurrence_date):
            # Committed by a run that stopped before update_template
            logger.info(
                f"Instance for template {instance.template_id} on "
                f"{instance.occurrence_date} already exists, not reapplying"
            )
            return False

        try:
            async with self._ledger.transaction():
                await self._ledger.create_instance(instance)
                if instance.aggregate_id is not None:
                    await self._aggregates.add_amount(instance.aggregate_id, instance.amount)
        except DuplicateInstanceError:
            logger.info(
                f"Instance for template {instance.template_id} on "
                f"{instance.occurrence_date} was created concurrently, not reapplying"
            )
            return False

        logger.debug(f"Created instance {instance.id} for {instance.occurrence_date}")
        if instance.aggregate_id is not None:
            logger.debug(f"Added {instance.amount} to aggregate {instance.aggregate_id}")
        return True

    def _unreadable_outcome(self, error: DataIntegrityError) -> TemplateOutcome:
        logger.warning(f"Skipping unreadable template {error.template_id}: {error}")
        return TemplateOutcome(
            template_id=error.template_id,
            status=TemplateStatus.SKIPPED,
            error=str(error),
        )
