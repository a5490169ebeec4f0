from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.bills import (
    BillOccurrence,
    BillOccurrenceAllocation,
    BillTemplate,
    BillType,
    OccurrenceStatus,
)
from app.services.recurrence_engine import DEFAULT_RECURRENCE_LIMITS, RecurrenceLimits, RecurrenceSpec
from app.services.scheduling_service import (
    ScheduledOccurrenceSeed,
    TemplateScheduleSpec,
    build_occurrence_seeds_for_template,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccurrenceGenerationResult:
    generated_count: int
    skipped_existing_count: int
    range_start: date
    range_end: date


@dataclass(frozen=True)
class StatusRefreshResult:
    marked_overdue_count: int
    restored_count: int


def template_schedule_spec(template: BillTemplate) -> TemplateScheduleSpec:
    return TemplateScheduleSpec(
        template_id=template.id,
        household_id=template.household_id,
        default_amount_cents=template.default_amount_cents,
        recurrence=RecurrenceSpec(
            recurrence_type=str(template.recurrence_type),
            due_day=template.recurrence_due_day,
            due_weekday=template.recurrence_due_weekday,
            specific_due_date=template.recurrence_specific_due_date,
            start_month=template.recurrence_start_month,
        ),
        budget_period_assignment=template.budget_period_assignment,
        is_active=template.is_active,
    )


def _add_seed(session: Session, seed: ScheduledOccurrenceSeed) -> BillOccurrence:
    occurrence = BillOccurrence(
        template_id=seed.template_id,
        household_id=seed.household_id,
        due_date=seed.due_date,
        status=OccurrenceStatus.UNPAID,
        amount_due_cents=seed.amount_due_cents,
        amount_paid_cents=0,
        amount_remaining_cents=seed.amount_due_cents,
        days_late=0,
        late_fee_cents=0,
        is_manual_override=False,
    )
    session.add(occurrence)
    if seed.budget_period_assignment is not None:
        session.flush()
        session.add(
            BillOccurrenceAllocation(
                occurrence_id=occurrence.id,
                template_id=seed.template_id,
                household_id=seed.household_id,
                period_number=seed.budget_period_assignment,
                allocated_amount_cents=seed.amount_due_cents,
                paid_amount_cents=0,
                is_paid=False,
            )
        )
    return occurrence


class OccurrenceMaterializer:
    """Inserts the occurrences a template's schedule is missing; existing rows are never touched."""

    def __init__(self, session: Session, limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS):
        self.session = session
        self.limits = limits

    def _missing_seeds(
        self, template: BillTemplate, range_start: date, range_end: date
    ) -> tuple[list[ScheduledOccurrenceSeed], int]:
        seeds = build_occurrence_seeds_for_template(
            template=template_schedule_spec(template),
            range_start=range_start,
            range_end=range_end,
            limits=self.limits,
        )
        if not seeds:
            return [], 0

        existing_due_dates = set(
            self.session.scalars(
                select(BillOccurrence.due_date).where(BillOccurrence.template_id == template.id)
            ).all()
        )
        to_insert = [seed for seed in seeds if seed.due_date not in existing_due_dates]
        return to_insert, len(seeds) - len(to_insert)

    def _insert(self, seeds: list[ScheduledOccurrenceSeed]) -> tuple[int, int]:
        if not seeds:
            return 0, 0
        try:
            for seed in seeds:
                _add_seed(self.session, seed)
            self.session.commit()
            return len(seeds), 0
        except IntegrityError:
            # A concurrent request materialized some of the same dates first.
            self.session.rollback()

        inserted = 0
        for seed in seeds:
            try:
                _add_seed(self.session, seed)
                self.session.commit()
                inserted += 1
            except IntegrityError:
                self.session.rollback()
        return inserted, len(seeds) - inserted

    def ensure_template(self, template: BillTemplate, *, range_start: date, range_end: date) -> OccurrenceGenerationResult:
        if not template.is_active or range_end < range_start:
            return OccurrenceGenerationResult(0, 0, range_start, range_end)

        template_id = template.id
        to_insert, skipped_existing = self._missing_seeds(template, range_start, range_end)
        inserted, lost_races = self._insert(to_insert)
        if inserted:
            logger.info(
                "Occurrences materialized template_id=%s range_start=%s range_end=%s generated=%s",
                template_id,
                range_start,
                range_end,
                inserted,
            )
        return OccurrenceGenerationResult(
            generated_count=inserted,
            skipped_existing_count=skipped_existing + lost_races,
            range_start=range_start,
            range_end=range_end,
        )

    def ensure_household(
        self,
        household_id: str,
        *,
        range_start: date,
        range_end: date,
        bill_type: BillType | None = None,
    ) -> OccurrenceGenerationResult:
        query = select(BillTemplate).where(
            BillTemplate.household_id == household_id,
            BillTemplate.is_active.is_(True),
        )
        if bill_type is not None:
            query = query.where(BillTemplate.bill_type == bill_type)
        templates = self.session.scalars(query.order_by(BillTemplate.id)).all()

        generated = 0
        skipped = 0
        for template in templates:
            result = self.ensure_template(template, range_start=range_start, range_end=range_end)
            generated += result.generated_count
            skipped += result.skipped_existing_count

        logger.debug(
            "Household materialization household_id=%s templates=%s generated=%s skipped_existing=%s",
            household_id,
            len(templates),
            generated,
            skipped,
        )
        return OccurrenceGenerationResult(
            generated_count=generated,
            skipped_existing_count=skipped,
            range_start=range_start,
            range_end=range_end,
        )


def refresh_occurrence_statuses(session: Session, *, household_id: str, today: date) -> StatusRefreshResult:
    """Reconcile cached statuses with amounts and the calendar before anything reads them."""
    should_be_overdue = session.scalars(
        select(BillOccurrence).where(
            BillOccurrence.household_id == household_id,
            BillOccurrence.status.in_([OccurrenceStatus.UNPAID, OccurrenceStatus.PARTIAL]),
            BillOccurrence.due_date < today,
            BillOccurrence.amount_remaining_cents != 0,
        )
    ).all()
    for occurrence in should_be_overdue:
        occurrence.status = OccurrenceStatus.OVERDUE
        occurrence.days_late = max(0, (today - occurrence.due_date).days)

    should_be_current = session.scalars(
        select(BillOccurrence).where(
            BillOccurrence.household_id == household_id,
            BillOccurrence.status == OccurrenceStatus.OVERDUE,
            BillOccurrence.due_date >= today,
        )
    ).all()
    for occurrence in should_be_current:
        if occurrence.amount_remaining_cents <= 0:
            occurrence.status = OccurrenceStatus.PAID
        elif occurrence.amount_paid_cents > 0:
            occurrence.status = OccurrenceStatus.PARTIAL
        else:
            occurrence.status = OccurrenceStatus.UNPAID
        occurrence.days_late = 0

    if should_be_overdue or should_be_current:
        session.commit()
        logger.info(
            "Occurrence statuses refreshed household_id=%s marked_overdue=%s restored=%s",
            household_id,
            len(should_be_overdue),
            len(should_be_current),
        )
    return StatusRefreshResult(
        marked_overdue_count=len(should_be_overdue),
        restored_count=len(should_be_current),
    )
