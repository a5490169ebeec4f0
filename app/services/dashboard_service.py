from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.bills import BillOccurrence, BillTemplate
from app.services.budget_periods import BudgetPeriod, get_current_budget_period
from app.services.occurrence_generation import OccurrenceMaterializer, refresh_occurrence_statuses
from app.services.occurrence_listing_service import (
    DEFAULT_LIST_WINDOW_FUTURE_DAYS,
    DEFAULT_LIST_WINDOW_PAST_DAYS,
    OccurrenceSummary,
    summarize_occurrences,
)
from app.services.recurrence_engine import DEFAULT_RECURRENCE_LIMITS, RecurrenceLimits
from app.services.settings_service import get_budget_settings


@dataclass(frozen=True)
class DashboardSummary:
    summary: OccurrenceSummary
    active_template_count: int
    current_period: BudgetPeriod


def get_dashboard_summary(
    session: Session,
    *,
    household_id: str,
    user_id: str,
    today: date,
    limits: RecurrenceLimits = DEFAULT_RECURRENCE_LIMITS,
    window_past_days: int = DEFAULT_LIST_WINDOW_PAST_DAYS,
    window_future_days: int = DEFAULT_LIST_WINDOW_FUTURE_DAYS,
) -> DashboardSummary:
    OccurrenceMaterializer(session, limits).ensure_household(
        household_id,
        range_start=today - timedelta(days=window_past_days),
        range_end=today + timedelta(days=window_future_days),
    )
    refresh_occurrence_statuses(session, household_id=household_id, today=today)

    occurrences = session.scalars(select(BillOccurrence).where(BillOccurrence.household_id == household_id)).all()
    active_template_count = (
        session.scalar(
            select(func.count())
            .select_from(BillTemplate)
            .where(BillTemplate.household_id == household_id, BillTemplate.is_active.is_(True))
        )
        or 0
    )

    settings = get_budget_settings(session, user_id=user_id, household_id=household_id)
    current_period = get_current_budget_period(settings, today)
    return DashboardSummary(
        summary=summarize_occurrences(list(occurrences), period=current_period, today=today),
        active_template_count=active_template_count,
        current_period=current_period,
    )
