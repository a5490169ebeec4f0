"""Bill templates, occurrences, allocations, payment events and autopay

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 09:20:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "bill_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("bill_type", sa.String(length=24), nullable=False),
        sa.Column("classification", sa.String(length=24), nullable=False),
        sa.Column("classification_subcategory", sa.String(length=64), nullable=True),
        sa.Column("recurrence_type", sa.String(length=24), nullable=False),
        sa.Column("recurrence_due_day", sa.Integer(), nullable=True),
        sa.Column("recurrence_due_weekday", sa.Integer(), nullable=True),
        sa.Column("recurrence_specific_due_date", sa.Date(), nullable=True),
        sa.Column("recurrence_start_month", sa.Integer(), nullable=True),
        sa.Column("default_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_variable_amount", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_tolerance_bps", sa.Integer(), nullable=False, server_default="500"),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("merchant_id", sa.String(length=64), nullable=True),
        sa.Column("payment_account_id", sa.Integer(), nullable=True),
        sa.Column("linked_liability_account_id", sa.Integer(), nullable=True),
        sa.Column("charged_to_account_id", sa.Integer(), nullable=True),
        sa.Column("auto_mark_paid", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("debt_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("debt_original_balance_cents", sa.Integer(), nullable=True),
        sa.Column("debt_remaining_balance_cents", sa.Integer(), nullable=True),
        sa.Column("debt_interest_apr_bps", sa.Integer(), nullable=True),
        sa.Column("debt_interest_type", sa.String(length=24), nullable=True),
        sa.Column("debt_start_date", sa.Date(), nullable=True),
        sa.Column("debt_color", sa.String(length=16), nullable=True),
        sa.Column("include_in_payoff_strategy", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("interest_tax_deductible", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("interest_tax_deduction_type", sa.String(length=24), nullable=False, server_default="none"),
        sa.Column("interest_tax_deduction_limit_cents", sa.Integer(), nullable=True),
        sa.Column("budget_period_assignment", sa.Integer(), nullable=True),
        sa.Column("split_across_periods", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["payment_account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["linked_liability_account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["charged_to_account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.CheckConstraint("default_amount_cents >= 0", name="ck_bill_templates_default_amount"),
        sa.CheckConstraint("amount_tolerance_bps >= 0", name="ck_bill_templates_tolerance"),
        sa.CheckConstraint("bill_type IN ('expense','income','savings_transfer')", name="bill_type"),
        sa.CheckConstraint(
            "classification IN ('subscription','utility','housing','insurance','loan_payment',"
            "'membership','service','other')",
            name="bill_classification",
        ),
        sa.CheckConstraint(
            "recurrence_type IN ('one_time','weekly','biweekly','monthly','quarterly','semi_annual','annual')",
            name="recurrence_type",
        ),
    )
    op.create_index("ix_bill_templates_household_active", "bill_templates", ["household_id", "is_active"])
    op.create_index("ix_bill_templates_household_type", "bill_templates", ["household_id", "bill_type"])

    op.create_table(
        "bill_occurrences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="unpaid"),
        sa.Column("amount_due_cents", sa.Integer(), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_remaining_cents", sa.Integer(), nullable=False),
        sa.Column("actual_amount_cents", sa.Integer(), nullable=True),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("last_transaction_id", sa.Integer(), nullable=True),
        sa.Column("days_late", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_manual_override", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("budget_period_override", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["bill_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["last_transaction_id"], ["transactions.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount_due_cents >= 0", name="ck_bill_occurrences_amount_due"),
        sa.CheckConstraint("amount_paid_cents >= 0", name="ck_bill_occurrences_amount_paid"),
        sa.CheckConstraint("amount_remaining_cents >= 0", name="ck_bill_occurrences_amount_remaining"),
        sa.CheckConstraint(
            "status IN ('unpaid','partial','paid','overpaid','overdue','skipped')",
            name="occurrence_status",
        ),
        sa.UniqueConstraint("template_id", "due_date", name="uq_bill_occurrences_template_due_date"),
    )
    op.create_index("ix_bill_occurrences_template_id", "bill_occurrences", ["template_id"])
    op.create_index("ix_bill_occurrences_household_due", "bill_occurrences", ["household_id", "due_date"])
    op.create_index(
        "ix_bill_occurrences_household_status_due",
        "bill_occurrences",
        ["household_id", "status", "due_date"],
    )

    op.create_table(
        "bill_payment_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("occurrence_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("principal_cents", sa.Integer(), nullable=True),
        sa.Column("interest_cents", sa.Integer(), nullable=True),
        sa.Column("balance_before_cents", sa.Integer(), nullable=True),
        sa.Column("balance_after_cents", sa.Integer(), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", sa.String(length=24), nullable=False, server_default="manual"),
        sa.Column("source_account_id", sa.Integer(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["template_id"], ["bill_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["occurrence_id"], ["bill_occurrences.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["source_account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.CheckConstraint("amount_cents > 0", name="ck_bill_payment_events_amount"),
        sa.CheckConstraint("payment_method IN ('manual','transfer','autopay')", name="payment_method"),
        sa.UniqueConstraint("household_id", "idempotency_key", name="uq_bill_payment_events_idempotency"),
    )
    op.create_index("ix_bill_payment_events_occurrence_id", "bill_payment_events", ["occurrence_id"])
    op.create_index(
        "ix_bill_payment_events_household_date",
        "bill_payment_events",
        ["household_id", "payment_date"],
    )

    op.create_table(
        "bill_occurrence_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("occurrence_id", sa.Integer(), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=False),
        sa.Column("allocated_amount_cents", sa.Integer(), nullable=False),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_event_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["occurrence_id"], ["bill_occurrences.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_id"], ["bill_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_event_id"], ["bill_payment_events.id"], ondelete="SET NULL"),
        sa.CheckConstraint("allocated_amount_cents >= 0", name="ck_bill_allocations_allocated"),
        sa.CheckConstraint("paid_amount_cents >= 0", name="ck_bill_allocations_paid"),
        sa.CheckConstraint("period_number >= 1", name="ck_bill_allocations_period_number"),
        sa.UniqueConstraint("occurrence_id", "period_number", name="uq_bill_allocations_occurrence_period"),
    )
    op.create_index(
        "ix_bill_allocations_household_occurrence",
        "bill_occurrence_allocations",
        ["household_id", "occurrence_id"],
    )

    op.create_table(
        "autopay_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("pay_from_account_id", sa.Integer(), nullable=False),
        sa.Column("amount_type", sa.String(length=24), nullable=False),
        sa.Column("fixed_amount_cents", sa.Integer(), nullable=True),
        sa.Column("days_before_due", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["bill_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pay_from_account_id"], ["accounts.id"]),
        sa.CheckConstraint(
            "amount_type IN ('fixed','minimum_payment','statement_balance','full_balance')",
            name="autopay_amount_type",
        ),
        sa.UniqueConstraint("template_id", name="uq_autopay_rules_template_id"),
    )
    op.create_index("ix_autopay_rules_household_enabled", "autopay_rules", ["household_id", "is_enabled"])

    op.create_table(
        "autopay_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("run_type", sa.String(length=24), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("run_type IN ('scheduled','manual','dry_run')", name="autopay_run_type"),
        sa.CheckConstraint("status IN ('started','completed','failed')", name="autopay_run_status"),
    )
    op.create_index("ix_autopay_runs_household_date", "autopay_runs", ["household_id", "run_date"])


def downgrade() -> None:
    op.drop_index("ix_autopay_runs_household_date", table_name="autopay_runs")
    op.drop_table("autopay_runs")
    op.drop_index("ix_autopay_rules_household_enabled", table_name="autopay_rules")
    op.drop_table("autopay_rules")
    op.drop_index("ix_bill_allocations_household_occurrence", table_name="bill_occurrence_allocations")
    op.drop_table("bill_occurrence_allocations")
    op.drop_index("ix_bill_payment_events_household_date", table_name="bill_payment_events")
    op.drop_index("ix_bill_payment_events_occurrence_id", table_name="bill_payment_events")
    op.drop_table("bill_payment_events")
    op.drop_index("ix_bill_occurrences_household_status_due", table_name="bill_occurrences")
    op.drop_index("ix_bill_occurrences_household_due", table_name="bill_occurrences")
    op.drop_index("ix_bill_occurrences_template_id", table_name="bill_occurrences")
    op.drop_table("bill_occurrences")
    op.drop_index("ix_bill_templates_household_type", table_name="bill_templates")
    op.drop_index("ix_bill_templates_household_active", table_name="bill_templates")
    op.drop_table("bill_templates")
