from __future__ import annotations

from datetime import date
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.settings import BudgetCycleFrequency, HouseholdPreferences
from app.services.budget_periods import (
    DEFAULT_BUDGET_SCHEDULE,
    BudgetScheduleSettings,
    validate_budget_schedule_settings,
)
from app.services.errors import BillValidationError

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = frozenset(
    {
        "budget_cycle_frequency",
        "budget_cycle_start_day",
        "budget_cycle_reference_date",
        "budget_cycle_semi_monthly_days",
        "budget_period_rollover",
        "budget_period_manual_amount_cents",
    }
)


class SettingsValidationError(BillValidationError):
    pass


def _find_preferences(session: Session, *, user_id: str, household_id: str) -> HouseholdPreferences | None:
    return session.scalar(
        select(HouseholdPreferences).where(
            HouseholdPreferences.user_id == user_id,
            HouseholdPreferences.household_id == household_id,
        )
    )


def to_budget_settings(prefs: HouseholdPreferences | None) -> BudgetScheduleSettings:
    if prefs is None:
        return DEFAULT_BUDGET_SCHEDULE
    defaults = DEFAULT_BUDGET_SCHEDULE
    return BudgetScheduleSettings(
        frequency=str(prefs.budget_cycle_frequency or defaults.frequency),
        start_day=prefs.budget_cycle_start_day,
        reference_date=prefs.budget_cycle_reference_date,
        semi_monthly_days=prefs.budget_cycle_semi_monthly_days or defaults.semi_monthly_days,
        rollover=bool(prefs.budget_period_rollover),
        manual_amount_cents=prefs.budget_period_manual_amount_cents,
    )


def get_budget_settings(session: Session, *, user_id: str, household_id: str) -> BudgetScheduleSettings:
    return to_budget_settings(_find_preferences(session, user_id=user_id, household_id=household_id))


def _normalize_semi_monthly_days(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    raise SettingsValidationError("Semi-monthly days must be an array of 2 numbers")


def update_household_preferences(
    session: Session,
    *,
    user_id: str,
    household_id: str,
    changes: dict[str, Any],
) -> BudgetScheduleSettings:
    unknown = set(changes) - PREFERENCE_FIELDS
    if unknown:
        raise SettingsValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

    values = dict(changes)
    if "budget_cycle_semi_monthly_days" in values:
        values["budget_cycle_semi_monthly_days"] = _normalize_semi_monthly_days(values["budget_cycle_semi_monthly_days"])
    reference_date = values.get("budget_cycle_reference_date")
    if isinstance(reference_date, str):
        try:
            values["budget_cycle_reference_date"] = date.fromisoformat(reference_date)
        except ValueError:
            raise SettingsValidationError("Invalid budget_cycle_reference_date") from None

    errors = validate_budget_schedule_settings(
        frequency=values.get("budget_cycle_frequency"),
        start_day=values.get("budget_cycle_start_day"),
        semi_monthly_days=values.get("budget_cycle_semi_monthly_days"),
        manual_amount_cents=values.get("budget_period_manual_amount_cents"),
    )
    if errors:
        raise SettingsValidationError("; ".join(errors))

    prefs = _find_preferences(session, user_id=user_id, household_id=household_id)
    if prefs is None:
        prefs = HouseholdPreferences(
            user_id=user_id,
            household_id=household_id,
            budget_cycle_frequency=BudgetCycleFrequency.MONTHLY,
            budget_cycle_semi_monthly_days=DEFAULT_BUDGET_SCHEDULE.semi_monthly_days,
            budget_period_rollover=False,
        )
        session.add(prefs)

    for key, value in values.items():
        if key == "budget_cycle_frequency" and value is not None:
            value = BudgetCycleFrequency(value)
        elif key == "budget_cycle_frequency":
            value = BudgetCycleFrequency.MONTHLY
        elif key == "budget_cycle_semi_monthly_days" and value is None:
            value = DEFAULT_BUDGET_SCHEDULE.semi_monthly_days
        elif key == "budget_period_rollover":
            value = bool(value)
        setattr(prefs, key, value)

    session.commit()
    session.refresh(prefs)
    logger.info(
        "Household preferences updated user_id=%s household_id=%s fields=%s",
        user_id,
        household_id,
        ",".join(sorted(values)),
    )
    return to_budget_settings(prefs)
