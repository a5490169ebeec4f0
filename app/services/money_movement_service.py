from __future__ import annotations

from datetime import date, datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.accounts import Account, Transaction, TransactionType
from app.services.errors import BillNotFoundError

logger = logging.getLogger(__name__)


def get_scoped_account(session: Session, *, account_id: int, user_id: str, household_id: str) -> Account:
    account = session.scalar(
        select(Account).where(
            Account.id == account_id,
            Account.user_id == user_id,
            Account.household_id == household_id,
        )
    )
    if account is None:
        raise BillNotFoundError("Account not found")
    return account


def get_account_balance_cents(account: Account) -> int:
    return account.current_balance_cents or 0


def insert_transaction_movement(
    session: Session,
    *,
    user_id: str,
    household_id: str,
    account_id: int,
    transaction_date: date,
    amount_cents: int,
    description: str,
    transaction_type: TransactionType,
    category_id: str | None = None,
    merchant_id: str | None = None,
    notes: str | None = None,
) -> Transaction:
    """Stage a movement row; the caller owns the surrounding transaction."""
    movement = Transaction(
        user_id=user_id,
        household_id=household_id,
        account_id=account_id,
        category_id=category_id,
        merchant_id=merchant_id,
        transaction_date=transaction_date,
        amount_cents=amount_cents,
        description=description,
        notes=notes,
        transaction_type=transaction_type,
        is_pending=False,
    )
    session.add(movement)
    session.flush()
    logger.debug(
        "Transaction movement staged transaction_id=%s account_id=%s type=%s amount_cents=%s",
        movement.id,
        account_id,
        transaction_type,
        amount_cents,
    )
    return movement


def update_scoped_account_balance(
    session: Session,
    *,
    account_id: int,
    user_id: str,
    household_id: str,
    balance_cents: int,
    usage_count: int,
    last_used_at: datetime,
) -> None:
    result = session.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.user_id == user_id,
            Account.household_id == household_id,
        )
        .values(
            current_balance_cents=balance_cents,
            usage_count=usage_count,
            last_used_at=last_used_at,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise BillNotFoundError("Account not found")
