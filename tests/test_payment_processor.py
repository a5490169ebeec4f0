from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

import app.models  # noqa: F401
from app.models.accounts import Account, Transaction, TransactionType
from app.models.base import Base
from app.models.bills import (
    BillClassification,
    BillOccurrence,
    BillPaymentEvent,
    BillTemplate,
    BillType,
    DebtInterestType,
    OccurrenceStatus,
    PaymentMethod,
    RecurrenceType,
)
from app.services.allocations_service import AllocationInput, update_occurrence_allocations
from app.services.errors import BillConflictError, BillNotFoundError, BillValidationError
from app.services.payment_processor import (
    PaymentInput,
    list_payment_events,
    pay_occurrence,
    reset_occurrence,
    resolve_payment_status,
    skip_occurrence,
    split_debt_payment,
)

HOUSEHOLD = "hh-1"
USER = "user-1"
TODAY = date(2024, 1, 20)


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "payment_processor.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def _account(session: Session, *, user_id: str = USER, household_id: str = HOUSEHOLD, balance: int = 100000) -> Account:
    account = Account(user_id=user_id, household_id=household_id, name="Checking", current_balance_cents=balance)
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def _bill(
    session: Session,
    *,
    due_date: date = date(2024, 2, 1),
    amount_due_cents: int = 5000,
    **template_overrides,
) -> tuple[BillTemplate, BillOccurrence]:
    values = {
        "household_id": HOUSEHOLD,
        "created_by_user_id": USER,
        "name": "Electric",
        "bill_type": BillType.EXPENSE,
        "classification": BillClassification.UTILITY,
        "recurrence_type": RecurrenceType.MONTHLY,
        "recurrence_due_day": due_date.day,
        "default_amount_cents": amount_due_cents,
    }
    values.update(template_overrides)
    template = BillTemplate(**values)
    session.add(template)
    session.flush()
    occurrence = BillOccurrence(
        template_id=template.id,
        household_id=HOUSEHOLD,
        due_date=due_date,
        status=OccurrenceStatus.UNPAID,
        amount_due_cents=amount_due_cents,
        amount_paid_cents=0,
        amount_remaining_cents=amount_due_cents,
    )
    session.add(occurrence)
    session.commit()
    session.refresh(template)
    session.refresh(occurrence)
    return template, occurrence


def _pay(session: Session, occurrence_id: int, account_id: int, **kwargs):
    return pay_occurrence(
        session,
        household_id=HOUSEHOLD,
        user_id=USER,
        occurrence_id=occurrence_id,
        data=PaymentInput(account_id=account_id, **kwargs),
        today=TODAY,
    )


def test_resolve_payment_status_table() -> None:
    due = date(2024, 1, 10)
    assert resolve_payment_status(amount_due_cents=5000, total_paid_cents=3000, payment_date=due, due_date=due) == (
        OccurrenceStatus.PARTIAL,
        2000,
    )
    assert resolve_payment_status(
        amount_due_cents=5000, total_paid_cents=3000, payment_date=date(2024, 1, 11), due_date=due
    ) == (OccurrenceStatus.OVERDUE, 2000)
    assert resolve_payment_status(amount_due_cents=5000, total_paid_cents=5000, payment_date=due, due_date=due) == (
        OccurrenceStatus.PAID,
        0,
    )
    assert resolve_payment_status(amount_due_cents=5000, total_paid_cents=7000, payment_date=due, due_date=due) == (
        OccurrenceStatus.OVERPAID,
        0,
    )


def test_split_debt_payment_caps_principal_at_balance() -> None:
    assert split_debt_payment(10000, None).principal_cents is None
    split = split_debt_payment(10000, 4000)
    assert (split.principal_cents, split.interest_cents, split.balance_after_cents) == (4000, 6000, 0)


def test_partial_then_full_payment(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session)

        first = _pay(session, occurrence.id, account.id, amount_cents=3000)
        assert first.occurrence.status == OccurrenceStatus.PARTIAL
        assert first.occurrence.amount_remaining_cents == 2000
        assert first.occurrence.paid_date is None
        assert first.replayed is False

        second = _pay(session, occurrence.id, account.id, amount_cents=2000)
        assert second.occurrence.status == OccurrenceStatus.PAID
        assert second.occurrence.amount_paid_cents == 5000
        assert second.occurrence.amount_remaining_cents == 0
        assert second.occurrence.paid_date == TODAY
        assert second.occurrence.last_transaction_id == second.payment_event.transaction_id

        session.refresh(account)
        assert account.current_balance_cents == 95000
        assert account.usage_count == 2

        movements = session.scalars(select(Transaction).order_by(Transaction.id)).all()
        assert [row.amount_cents for row in movements] == [3000, 2000]
        assert all(row.transaction_type == TransactionType.EXPENSE for row in movements)
        assert [event.amount_cents for event in list_payment_events(
            session, household_id=HOUSEHOLD, occurrence_id=occurrence.id
        )] == [3000, 2000]
    finally:
        session.close()


def test_default_amount_pays_remaining_balance(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session)
        result = _pay(session, occurrence.id, account.id)
        assert result.payment_event.amount_cents == 5000
        assert result.payment_event.payment_method == PaymentMethod.MANUAL
        assert result.occurrence.status == OccurrenceStatus.PAID
    finally:
        session.close()


def test_debt_payment_reduces_template_balance(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session, balance=200000)
        template, occurrence = _bill(
            session,
            amount_due_cents=10000,
            classification=BillClassification.LOAN_PAYMENT,
            debt_enabled=True,
            debt_original_balance_cents=150000,
            debt_remaining_balance_cents=100000,
            debt_interest_type=DebtInterestType.NONE,
        )

        result = _pay(session, occurrence.id, account.id, amount_cents=10000)
        event = result.payment_event
        assert event.principal_cents == 10000
        assert event.interest_cents == 0
        assert event.balance_before_cents == 100000
        assert event.balance_after_cents == 90000

        session.refresh(template)
        assert template.debt_remaining_balance_cents == 90000
    finally:
        session.close()


def test_late_partial_payment_is_overdue(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session, due_date=date(2024, 1, 10))
        result = _pay(session, occurrence.id, account.id, amount_cents=2000, payment_date=date(2024, 1, 20))
        assert result.occurrence.status == OccurrenceStatus.OVERDUE
        assert result.occurrence.amount_remaining_cents == 3000
    finally:
        session.close()


def test_overpayment_and_remaining_invariant(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session)
        result = _pay(session, occurrence.id, account.id, amount_cents=6500)
        assert result.occurrence.status == OccurrenceStatus.OVERPAID
        assert result.occurrence.amount_remaining_cents == 0
        assert result.occurrence.amount_paid_cents == 6500

        with pytest.raises(BillConflictError):
            _pay(session, occurrence.id, account.id, amount_cents=100)

        for row in session.scalars(select(BillOccurrence)).all():
            assert row.amount_remaining_cents == max(0, row.amount_due_cents - row.amount_paid_cents)
    finally:
        session.close()


def test_income_bill_credits_account(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session, balance=1000)
        _, occurrence = _bill(session, bill_type=BillType.INCOME, classification=BillClassification.OTHER)
        _pay(session, occurrence.id, account.id)
        session.refresh(account)
        assert account.current_balance_cents == 6000
        movement = session.scalar(select(Transaction))
        assert movement.transaction_type == TransactionType.INCOME
    finally:
        session.close()


def test_payment_validation_errors(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        foreign_account = _account(session, household_id="hh-2")
        _, occurrence = _bill(session)

        with pytest.raises(BillValidationError):
            pay_occurrence(
                session,
                household_id=HOUSEHOLD,
                user_id=USER,
                occurrence_id=occurrence.id,
                data=PaymentInput(account_id=None),
                today=TODAY,
            )
        with pytest.raises(BillValidationError):
            _pay(session, occurrence.id, account.id, amount_cents=0)
        with pytest.raises(BillNotFoundError):
            _pay(session, occurrence.id, foreign_account.id)
        with pytest.raises(BillNotFoundError):
            _pay(session, occurrence.id + 100, account.id)
        with pytest.raises(BillNotFoundError):
            pay_occurrence(
                session,
                household_id="hh-2",
                user_id=USER,
                occurrence_id=occurrence.id,
                data=PaymentInput(account_id=foreign_account.id),
                today=TODAY,
            )

        assert session.scalar(select(func.count()).select_from(Transaction)) == 0
        assert session.scalar(select(func.count()).select_from(BillPaymentEvent)) == 0
    finally:
        session.close()


def test_idempotency_key_replays_original_payment(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session)

        first = _pay(session, occurrence.id, account.id, amount_cents=1000, idempotency_key="pay-1")
        replay = _pay(session, occurrence.id, account.id, amount_cents=1000, idempotency_key="pay-1")

        assert replay.replayed is True
        assert replay.payment_event.id == first.payment_event.id
        assert replay.occurrence.amount_paid_cents == 1000
        assert session.scalar(select(func.count()).select_from(BillPaymentEvent)) == 1
        assert session.scalar(select(func.count()).select_from(Transaction)) == 1

        session.refresh(account)
        assert account.current_balance_cents == 99000
    finally:
        session.close()


def test_failed_balance_update_rolls_back_everything(tmp_path, monkeypatch) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        template, occurrence = _bill(session, debt_enabled=True, debt_remaining_balance_cents=50000)

        def _fail(*args, **kwargs):
            raise BillNotFoundError("Account not found")

        monkeypatch.setattr("app.services.payment_processor.update_scoped_account_balance", _fail)
        with pytest.raises(BillNotFoundError):
            _pay(session, occurrence.id, account.id, amount_cents=2000)

        assert session.scalar(select(func.count()).select_from(Transaction)) == 0
        assert session.scalar(select(func.count()).select_from(BillPaymentEvent)) == 0
        session.refresh(occurrence)
        session.refresh(template)
        session.refresh(account)
        assert occurrence.status == OccurrenceStatus.UNPAID
        assert occurrence.amount_paid_cents == 0
        assert template.debt_remaining_balance_cents == 50000
        assert account.current_balance_cents == 100000
    finally:
        session.close()


def test_one_time_template_deactivates_when_settled(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        template, occurrence = _bill(
            session,
            recurrence_type=RecurrenceType.ONE_TIME,
            recurrence_due_day=None,
            recurrence_specific_due_date=date(2024, 2, 1),
        )
        _pay(session, occurrence.id, account.id, amount_cents=1000)
        session.refresh(template)
        assert template.is_active is True

        _pay(session, occurrence.id, account.id, amount_cents=4000)
        session.refresh(template)
        assert template.is_active is False
    finally:
        session.close()


def test_payment_fills_allocations_greedily(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session, split_across_periods=True)
        allocations = update_occurrence_allocations(
            session,
            household_id=HOUSEHOLD,
            occurrence_id=occurrence.id,
            allocations=[AllocationInput(1, 3000), AllocationInput(2, 2000)],
        )
        second_period = allocations[1]

        result = _pay(session, occurrence.id, account.id, amount_cents=2500, allocation_id=second_period.id)
        by_period = {row.period_number: row for row in result.allocations}
        assert by_period[2].paid_amount_cents == 2000
        assert by_period[2].is_paid is True
        assert by_period[2].payment_event_id == result.payment_event.id
        assert by_period[1].paid_amount_cents == 500
        assert by_period[1].is_paid is False

        result = _pay(session, occurrence.id, account.id, amount_cents=2500)
        by_period = {row.period_number: row for row in result.allocations}
        assert by_period[1].paid_amount_cents == 3000
        assert by_period[1].is_paid is True
    finally:
        session.close()


def test_reset_keeps_payment_history_and_balance(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        account = _account(session)
        _, occurrence = _bill(session, due_date=date(2024, 1, 10))
        _pay(session, occurrence.id, account.id, payment_date=date(2024, 1, 9))

        reset = reset_occurrence(session, household_id=HOUSEHOLD, occurrence_id=occurrence.id, today=TODAY)
        assert reset.status == OccurrenceStatus.OVERDUE
        assert reset.amount_paid_cents == 0
        assert reset.amount_remaining_cents == 5000
        assert reset.paid_date is None
        assert reset.last_transaction_id is None

        assert len(list_payment_events(session, household_id=HOUSEHOLD, occurrence_id=occurrence.id)) == 1
        session.refresh(account)
        assert account.current_balance_cents == 95000

        future_reset = reset_occurrence(
            session, household_id=HOUSEHOLD, occurrence_id=occurrence.id, today=date(2024, 1, 5)
        )
        assert future_reset.status == OccurrenceStatus.UNPAID
    finally:
        session.close()


def test_skip_occurrence_records_note(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _, occurrence = _bill(session)
        skipped = skip_occurrence(session, household_id=HOUSEHOLD, occurrence_id=occurrence.id, notes="Waived")
        assert skipped.status == OccurrenceStatus.SKIPPED
        assert skipped.notes == "Waived"

        with pytest.raises(BillNotFoundError):
            skip_occurrence(session, household_id="hh-2", occurrence_id=occurrence.id)
    finally:
        session.close()
