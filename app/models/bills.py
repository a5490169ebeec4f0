from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, string_enum


class BillType(enum.StrEnum):
    EXPENSE = "expense"
    INCOME = "income"
    SAVINGS_TRANSFER = "savings_transfer"


class BillClassification(enum.StrEnum):
    SUBSCRIPTION = "subscription"
    UTILITY = "utility"
    HOUSING = "housing"
    INSURANCE = "insurance"
    LOAN_PAYMENT = "loan_payment"
    MEMBERSHIP = "membership"
    SERVICE = "service"
    OTHER = "other"


class RecurrenceType(enum.StrEnum):
    ONE_TIME = "one_time"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"


class DebtInterestType(enum.StrEnum):
    FIXED = "fixed"
    VARIABLE = "variable"
    NONE = "none"


class InterestTaxDeductionType(enum.StrEnum):
    NONE = "none"
    MORTGAGE = "mortgage"
    STUDENT_LOAN = "student_loan"
    BUSINESS = "business"
    HELOC_HOME = "heloc_home"


class OccurrenceStatus(enum.StrEnum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERPAID = "overpaid"
    OVERDUE = "overdue"
    SKIPPED = "skipped"


class PaymentMethod(enum.StrEnum):
    MANUAL = "manual"
    TRANSFER = "transfer"
    AUTOPAY = "autopay"


OUTSTANDING_STATUSES = (OccurrenceStatus.UNPAID, OccurrenceStatus.PARTIAL, OccurrenceStatus.OVERDUE)
SETTLED_STATUSES = (OccurrenceStatus.PAID, OccurrenceStatus.OVERPAID)


class BillTemplate(TimestampMixin, Base):
    __tablename__ = "bill_templates"
    __table_args__ = (
        CheckConstraint("default_amount_cents >= 0", name="ck_bill_templates_default_amount"),
        CheckConstraint("amount_tolerance_bps >= 0", name="ck_bill_templates_tolerance"),
        Index("ix_bill_templates_household_active", "household_id", "is_active"),
        Index("ix_bill_templates_household_type", "household_id", "bill_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    bill_type: Mapped[BillType] = mapped_column(string_enum(BillType, "bill_type"), nullable=False)
    classification: Mapped[BillClassification] = mapped_column(
        string_enum(BillClassification, "bill_classification"), nullable=False
    )
    classification_subcategory: Mapped[str | None] = mapped_column(String(64), nullable=True)

    recurrence_type: Mapped[RecurrenceType] = mapped_column(
        string_enum(RecurrenceType, "recurrence_type"), nullable=False
    )
    recurrence_due_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recurrence_due_weekday: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recurrence_specific_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurrence_start_month: Mapped[int | None] = mapped_column(Integer, nullable=True)

    default_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_variable_amount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount_tolerance_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=500)

    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    merchant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    linked_liability_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    charged_to_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    auto_mark_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    debt_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    debt_original_balance_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    debt_remaining_balance_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    debt_interest_apr_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    debt_interest_type: Mapped[DebtInterestType | None] = mapped_column(
        string_enum(DebtInterestType, "debt_interest_type"), nullable=True
    )
    debt_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    debt_color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    include_in_payoff_strategy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    interest_tax_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interest_tax_deduction_type: Mapped[InterestTaxDeductionType] = mapped_column(
        string_enum(InterestTaxDeductionType, "interest_tax_deduction_type"),
        nullable=False,
        default=InterestTaxDeductionType.NONE,
    )
    interest_tax_deduction_limit_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    budget_period_assignment: Mapped[int | None] = mapped_column(Integer, nullable=True)
    split_across_periods: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    occurrences: Mapped[list["BillOccurrence"]] = relationship(
        back_populates="template",
        passive_deletes=True,
    )


class BillOccurrence(TimestampMixin, Base):
    __tablename__ = "bill_occurrences"
    __table_args__ = (
        UniqueConstraint("template_id", "due_date", name="uq_bill_occurrences_template_due_date"),
        CheckConstraint("amount_due_cents >= 0", name="ck_bill_occurrences_amount_due"),
        CheckConstraint("amount_paid_cents >= 0", name="ck_bill_occurrences_amount_paid"),
        CheckConstraint("amount_remaining_cents >= 0", name="ck_bill_occurrences_amount_remaining"),
        Index("ix_bill_occurrences_household_due", "household_id", "due_date"),
        Index("ix_bill_occurrences_household_status_due", "household_id", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("bill_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[OccurrenceStatus] = mapped_column(
        string_enum(OccurrenceStatus, "occurrence_status"),
        nullable=False,
        default=OccurrenceStatus.UNPAID,
    )
    amount_due_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_remaining_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    days_late: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    budget_period_override: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    template: Mapped[BillTemplate] = relationship(back_populates="occurrences")


class BillOccurrenceAllocation(TimestampMixin, Base):
    __tablename__ = "bill_occurrence_allocations"
    __table_args__ = (
        UniqueConstraint("occurrence_id", "period_number", name="uq_bill_allocations_occurrence_period"),
        CheckConstraint("allocated_amount_cents >= 0", name="ck_bill_allocations_allocated"),
        CheckConstraint("paid_amount_cents >= 0", name="ck_bill_allocations_paid"),
        CheckConstraint("period_number >= 1", name="ck_bill_allocations_period_number"),
        Index("ix_bill_allocations_household_occurrence", "household_id", "occurrence_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    occurrence_id: Mapped[int] = mapped_column(
        ForeignKey("bill_occurrences.id", ondelete="CASCADE"), nullable=False
    )
    template_id: Mapped[int] = mapped_column(
        ForeignKey("bill_templates.id", ondelete="CASCADE"), nullable=False
    )
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("bill_payment_events.id", ondelete="SET NULL"), nullable=True
    )


class BillPaymentEvent(Base):
    """Append-only record of one payment application."""

    __tablename__ = "bill_payment_events"
    __table_args__ = (
        UniqueConstraint("household_id", "idempotency_key", name="uq_bill_payment_events_idempotency"),
        CheckConstraint("amount_cents > 0", name="ck_bill_payment_events_amount"),
        Index("ix_bill_payment_events_household_date", "household_id", "payment_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    household_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("bill_templates.id", ondelete="CASCADE"), nullable=False
    )
    occurrence_id: Mapped[int] = mapped_column(
        ForeignKey("bill_occurrences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    principal_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interest_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    balance_before_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    balance_after_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        string_enum(PaymentMethod, "payment_method"), nullable=False, default=PaymentMethod.MANUAL
    )
    source_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), server_default=func.now(), nullable=False
    )
