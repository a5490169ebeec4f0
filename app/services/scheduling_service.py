from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from app.services.recurrence_engine import (
    DEFAULT_RECURRENCE_LIMITS,
    RecurrenceLimits,
    RecurrenceSpec,
    generate_due_dates,
)


@dataclass(frozen=True)
class TemplateScheduleSpec:
    template_id: int
    household_id: str
    default_amount_cents: int
    recurrence: RecurrenceSpec
    budget_period_assignment: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ScheduledOccurrenceSeed:
    template_id: int
    household_id: str
    due_date: date
    amount_due_cents: int
    budget_period_assignment: int | None = None
    status: str = "unpaid"


def build_occurrence_seeds_for_template(
    *,
    template: TemplateScheduleSpec,
    range_start: date,
    range_end: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
) -> list[ScheduledOccurrenceSeed]:
    if not template.is_active:
        return []

    due_dates = generate_due_dates(
        template.recurrence,
        range_start=range_start,
        range_end=range_end,
        limits=limits,
    )
    amount_due_cents = max(0, template.default_amount_cents)

    return [
        ScheduledOccurrenceSeed(
            template_id=template.template_id,
            household_id=template.household_id,
            due_date=due_date,
            amount_due_cents=amount_due_cents,
            budget_period_assignment=template.budget_period_assignment,
        )
        for due_date in due_dates
    ]

