"""Accounts, transactions, household preferences and job guard tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=24), nullable=False, server_default="checking"),
        sa.Column("current_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "account_type IN ('checking','savings','credit','line_of_credit','investment','cash')",
            name="account_type",
        ),
    )
    op.create_index("ix_accounts_user_household", "accounts", ["user_id", "household_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("merchant_id", sa.String(length=64), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("transaction_type", sa.String(length=24), nullable=False),
        sa.Column("is_pending", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.CheckConstraint(
            "transaction_type IN ('income','expense','transfer_in','transfer_out')",
            name="transaction_type",
        ),
    )
    op.create_index("ix_transactions_account_id", "transactions", ["account_id"])
    op.create_index("ix_transactions_household_date", "transactions", ["household_id", "transaction_date"])

    op.create_table(
        "household_preferences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("household_id", sa.String(length=64), nullable=False),
        sa.Column("budget_cycle_frequency", sa.String(length=24), nullable=False, server_default="monthly"),
        sa.Column("budget_cycle_start_day", sa.Integer(), nullable=True),
        sa.Column("budget_cycle_reference_date", sa.Date(), nullable=True),
        sa.Column("budget_cycle_semi_monthly_days", sa.String(length=32), nullable=False, server_default="[1, 15]"),
        sa.Column("budget_period_rollover", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("budget_period_manual_amount_cents", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "budget_cycle_frequency IN ('weekly','biweekly','semi-monthly','monthly')",
            name="budget_cycle_frequency",
        ),
        sa.UniqueConstraint("user_id", "household_id", name="uq_household_preferences_user_household"),
    )

    op.create_table(
        "daily_job_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(length=64), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("households_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claimed_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("job_name", "run_date", name="uq_daily_job_runs_name_run_date"),
    )


def downgrade() -> None:
    op.drop_table("daily_job_runs")
    op.drop_table("household_preferences")
    op.drop_index("ix_transactions_household_date", table_name="transactions")
    op.drop_index("ix_transactions_account_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_household", table_name="accounts")
    op.drop_table("accounts")
