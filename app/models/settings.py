from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, string_enum


class BudgetCycleFrequency(enum.StrEnum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMI_MONTHLY = "semi-monthly"
    MONTHLY = "monthly"


class HouseholdPreferences(TimestampMixin, Base):
    __tablename__ = "household_preferences"
    __table_args__ = (UniqueConstraint("user_id", "household_id", name="uq_household_preferences_user_household"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    budget_cycle_frequency: Mapped[BudgetCycleFrequency] = mapped_column(
        string_enum(BudgetCycleFrequency, "budget_cycle_frequency"),
        nullable=False,
        default=BudgetCycleFrequency.MONTHLY,
    )
    budget_cycle_start_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    budget_cycle_reference_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    budget_cycle_semi_monthly_days: Mapped[str] = mapped_column(String(32), nullable=False, default="[1, 15]")
    budget_period_rollover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    budget_period_manual_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
