from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin, string_enum


class AutopayAmountType(enum.StrEnum):
    FIXED = "fixed"
    MINIMUM_PAYMENT = "minimum_payment"
    STATEMENT_BALANCE = "statement_balance"
    FULL_BALANCE = "full_balance"


class AutopayRunType(enum.StrEnum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    DRY_RUN = "dry_run"


class AutopayRunStatus(enum.StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class AutopayRule(TimestampMixin, Base):
    __tablename__ = "autopay_rules"
    __table_args__ = (Index("ix_autopay_rules_household_enabled", "household_id", "is_enabled"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("bill_templates.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pay_from_account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    amount_type: Mapped[AutopayAmountType] = mapped_column(
        string_enum(AutopayAmountType, "autopay_amount_type"), nullable=False
    )
    fixed_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    days_before_due: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AutopayRun(Base):
    __tablename__ = "autopay_runs"
    __table_args__ = (Index("ix_autopay_runs_household_date", "household_id", "run_date"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_type: Mapped[AutopayRunType] = mapped_column(
        string_enum(AutopayRunType, "autopay_run_type"), nullable=False
    )
    status: Mapped[AutopayRunStatus] = mapped_column(
        string_enum(AutopayRunStatus, "autopay_run_status"), nullable=False
    )
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class DailyJobRun(Base):
    """One row per (job, day); the unique key is the once-per-day guard."""

    __tablename__ = "daily_job_runs"
    __table_args__ = (UniqueConstraint("job_name", "run_date", name="uq_daily_job_runs_name_run_date"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    households_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
