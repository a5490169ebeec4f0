from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.bills import (
    OUTSTANDING_STATUSES,
    SETTLED_STATUSES,
    BillOccurrence,
    BillOccurrenceAllocation,
    BillTemplate,
    BillType,
    OccurrenceStatus,
)
from app.services.budget_periods import (
    BudgetPeriod,
    BudgetScheduleSettings,
    due_date_matches_period_month,
    get_period_by_offset,
    instance_belongs_to_period,
)
from app.services.errors import BillNotFoundError
from app.services.occurrence_generation import OccurrenceMaterializer, refresh_occurrence_statuses
from app.services.pagination import normalize_limit, normalize_offset
from app.services.recurrence_engine import DEFAULT_RECURRENCE_LIMITS, RecurrenceLimits
from app.services.settings_service import get_budget_settings

DEFAULT_LIST_WINDOW_PAST_DAYS = 45
DEFAULT_LIST_WINDOW_FUTURE_DAYS = 120


@dataclass(frozen=True)
class OccurrenceListFilters:
    statuses: tuple[OccurrenceStatus, ...] = ()
    start_date: date | None = None
    end_date: date | None = None
    period_offset: int | None = None
    bill_type: BillType | None = None
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True)
class OccurrenceView:
    occurrence: BillOccurrence
    template: BillTemplate
    allocations: list[BillOccurrenceAllocation] = field(default_factory=list)


@dataclass(frozen=True)
class OccurrenceSummary:
    overdue_count: int
    overdue_amount_cents: int
    upcoming_count: int
    upcoming_amount_cents: int
    next_due_date: date | None
    paid_this_period_count: int
    paid_this_period_amount_cents: int


@dataclass(frozen=True)
class OccurrenceListPage:
    items: list[OccurrenceView]
    summary: OccurrenceSummary
    total: int
    limit: int
    offset: int
    period: BudgetPeriod | None = None


def summarize_occurrences(
    occurrences: list[BillOccurrence], *, period: BudgetPeriod | None, today: date
) -> OccurrenceSummary:
    overdue = [row for row in occurrences if row.status == OccurrenceStatus.OVERDUE]
    upcoming = [row for row in occurrences if row.status in OUTSTANDING_STATUSES and row.due_date >= today]

    settled = [row for row in occurrences if row.status in SETTLED_STATUSES and row.paid_date is not None]
    if period is not None:
        paid_in_period = [row for row in settled if period.contains(row.paid_date)]
    else:
        paid_in_period = [
            row for row in settled if (row.paid_date.year, row.paid_date.month) == (today.year, today.month)
        ]

    return OccurrenceSummary(
        overdue_count=len(overdue),
        overdue_amount_cents=sum(row.amount_remaining_cents for row in overdue),
        upcoming_count=len(upcoming),
        upcoming_amount_cents=sum(row.amount_remaining_cents for row in upcoming),
        next_due_date=min((row.due_date for row in upcoming), default=None),
        paid_this_period_count=len(paid_in_period),
        paid_this_period_amount_cents=sum(row.amount_paid_cents for row in paid_in_period),
    )


def occurrence_matches_period(
    view: OccurrenceView, *, settings: BudgetScheduleSettings, period: BudgetPeriod
) -> bool:
    if view.allocations:
        has_period_allocation = any(row.period_number == period.period_number for row in view.allocations)
        return has_period_allocation and due_date_matches_period_month(view.occurrence.due_date, period)
    return instance_belongs_to_period(
        due_date=view.occurrence.due_date,
        settings=settings,
        period=period,
        bill_period_assignment=view.template.budget_period_assignment,
        instance_period_override=view.occurrence.budget_period_override,
    )


def load_allocations_by_occurrence(
    session: Session, occurrence_ids: list[int]
) -> dict[int, list[BillOccurrenceAllocation]]:
    grouped: dict[int, list[BillOccurrenceAllocation]] = defaultdict(list)
    if not occurrence_ids:
        return grouped
    rows = session.scalars(
        select(BillOccurrenceAllocation)
        .where(BillOccurrenceAllocation.occurrence_id.in_(occurrence_ids))
        .order_by(BillOccurrenceAllocation.occurrence_id, BillOccurrenceAllocation.period_number)
    ).all()
    for row in rows:
        grouped[row.occurrence_id].append(row)
    return grouped


def list_occurrences(
    session: Session,
    *,
    household_id: str,
    user_id: str,
    filters: OccurrenceListFilters,
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_past_days: int = DEFAULT_LIST_WINDOW_PAST_DAYS,
    window_future_days: int = DEFAULT_LIST_WINDOW_FUTURE_DAYS,
) -> OccurrenceListPage:
    limit = normalize_limit(filters.limit)
    offset = normalize_offset(filters.offset)

    settings: BudgetScheduleSettings | None = None
    period: BudgetPeriod | None = None
    if filters.period_offset is not None:
        settings = get_budget_settings(session, user_id=user_id, household_id=household_id)
        period = get_period_by_offset(settings, filters.period_offset, today=today)

    window_start = filters.start_date or (period.start if period else today - timedelta(days=window_past_days))
    window_end = filters.end_date or (period.end if period else today + timedelta(days=window_future_days))

    OccurrenceMaterializer(session, limits).ensure_household(
        household_id, range_start=window_start, range_end=window_end, bill_type=filters.bill_type
    )
    refresh_occurrence_statuses(session, household_id=household_id, today=today)

    query = (
        select(BillOccurrence, BillTemplate)
        .join(BillTemplate, BillOccurrence.template_id == BillTemplate.id)
        .where(
            BillOccurrence.household_id == household_id,
            BillOccurrence.due_date >= window_start,
            BillOccurrence.due_date <= window_end,
        )
        .order_by(BillOccurrence.due_date.asc(), BillOccurrence.created_at.asc(), BillOccurrence.id.asc())
    )
    if filters.statuses:
        query = query.where(BillOccurrence.status.in_(filters.statuses))
    if filters.bill_type is not None:
        query = query.where(BillTemplate.bill_type == filters.bill_type)

    rows = session.execute(query).all()
    allocations = load_allocations_by_occurrence(session, [occurrence.id for occurrence, _ in rows])
    views = [
        OccurrenceView(occurrence=occurrence, template=template, allocations=allocations.get(occurrence.id, []))
        for occurrence, template in rows
    ]
    if period is not None and settings is not None:
        views = [view for view in views if occurrence_matches_period(view, settings=settings, period=period)]

    return OccurrenceListPage(
        items=views[offset : offset + limit],
        summary=summarize_occurrences([view.occurrence for view in views], period=period, today=today),
        total=len(views),
        limit=limit,
        offset=offset,
        period=period,
    )


def get_occurrence_detail(session: Session, *, household_id: str, occurrence_id: int, today: date) -> OccurrenceView:
    refresh_occurrence_statuses(session, household_id=household_id, today=today)
    row = session.execute(
        select(BillOccurrence, BillTemplate)
        .join(BillTemplate, BillOccurrence.template_id == BillTemplate.id)
        .where(
            BillOccurrence.id == occurrence_id,
            BillOccurrence.household_id == household_id,
        )
    ).first()
    if row is None:
        raise BillNotFoundError("Occurrence not found")
    occurrence, template = row
    allocations = load_allocations_by_occurrence(session, [occurrence.id])
    return OccurrenceView(occurrence=occurrence, template=template, allocations=allocations.get(occurrence.id, []))
