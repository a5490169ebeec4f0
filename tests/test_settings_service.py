from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

import app.models  # noqa: F401
from app.models.base import Base
from app.models.settings import BudgetCycleFrequency, HouseholdPreferences
from app.services.budget_periods import DEFAULT_BUDGET_SCHEDULE, get_current_budget_period
from app.services.errors import BillValidationError
from app.services.settings_service import (
    SettingsValidationError,
    get_budget_settings,
    update_household_preferences,
)

HOUSEHOLD = "hh-1"
USER = "user-1"


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "settings.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def test_missing_preferences_fall_back_to_monthly(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        settings = get_budget_settings(session, user_id=USER, household_id=HOUSEHOLD)
        assert settings == DEFAULT_BUDGET_SCHEDULE
        period = get_current_budget_period(settings, date(2024, 2, 10))
        assert (period.start, period.end) == (date(2024, 2, 1), date(2024, 2, 29))
    finally:
        session.close()


def test_update_creates_then_patches_preferences(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        settings = update_household_preferences(
            session,
            user_id=USER,
            household_id=HOUSEHOLD,
            changes={"budget_cycle_frequency": "semi-monthly", "budget_cycle_semi_monthly_days": [5, 20]},
        )
        assert settings.frequency == "semi-monthly"
        assert settings.semi_monthly_days == "[5, 20]"

        period = get_current_budget_period(settings, date(2024, 3, 22))
        assert (period.start, period.end, period.period_number) == (date(2024, 3, 20), date(2024, 4, 4), 2)

        settings = update_household_preferences(
            session,
            user_id=USER,
            household_id=HOUSEHOLD,
            changes={"budget_period_rollover": 1, "budget_period_manual_amount_cents": 250000},
        )
        assert settings.frequency == "semi-monthly"
        assert settings.rollover is True
        assert settings.manual_amount_cents == 250000

        stored = session.scalar(select(HouseholdPreferences))
        assert stored.budget_cycle_frequency == BudgetCycleFrequency.SEMI_MONTHLY
        assert session.scalar(select(func.count()).select_from(HouseholdPreferences)) == 1
    finally:
        session.close()


def test_biweekly_reference_date_accepts_iso_strings(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        settings = update_household_preferences(
            session,
            user_id=USER,
            household_id=HOUSEHOLD,
            changes={"budget_cycle_frequency": "biweekly", "budget_cycle_reference_date": "2024-01-05"},
        )
        assert settings.reference_date == date(2024, 1, 5)
        period = get_current_budget_period(settings, date(2024, 1, 22))
        assert (period.start, period.end) == (date(2024, 1, 19), date(2024, 2, 1))
    finally:
        session.close()


def test_preferences_are_scoped_per_user_and_household(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        update_household_preferences(
            session, user_id=USER, household_id=HOUSEHOLD, changes={"budget_cycle_frequency": "weekly"}
        )
        assert get_budget_settings(session, user_id=USER, household_id="hh-2").frequency == "monthly"
        assert get_budget_settings(session, user_id="user-2", household_id=HOUSEHOLD).frequency == "monthly"
    finally:
        session.close()


@pytest.mark.parametrize(
    "changes",
    [
        {"budget_cycle_frequency": "fortnightly"},
        {"budget_cycle_start_day": 7},
        {"budget_cycle_semi_monthly_days": [20, 5]},
        {"budget_cycle_semi_monthly_days": [1, 15, 28]},
        {"budget_cycle_semi_monthly_days": "not-json"},
        {"budget_cycle_semi_monthly_days": 15},
        {"budget_cycle_reference_date": "05/01/2024"},
        {"budget_period_manual_amount_cents": -1},
        {"theme": "dark"},
    ],
)
def test_update_rejects_invalid_preferences(tmp_path, changes) -> None:
    session = _make_session(tmp_path)
    try:
        with pytest.raises(SettingsValidationError) as excinfo:
            update_household_preferences(session, user_id=USER, household_id=HOUSEHOLD, changes=changes)
        assert isinstance(excinfo.value, BillValidationError)
        assert session.scalar(select(func.count()).select_from(HouseholdPreferences)) == 0
    finally:
        session.close()
