from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import app.models  # noqa: F401
from app.models.accounts import Account
from app.models.base import Base
from app.models.bills import (
    BillClassification,
    BillTemplate,
    BillType,
    OccurrenceStatus,
    RecurrenceType,
)
from app.services.dashboard_service import get_dashboard_summary
from app.services.errors import BillNotFoundError
from app.services.occurrence_listing_service import (
    OccurrenceListFilters,
    get_occurrence_detail,
    list_occurrences,
)
from app.services.payment_processor import PaymentInput, pay_occurrence
from app.services.settings_service import update_household_preferences

HOUSEHOLD = "hh-1"
USER = "user-1"
TODAY = date(2024, 3, 10)


def _make_session(tmp_path) -> Session:
    db_path = tmp_path / "occurrence_listing.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    return SessionLocal()


def _template(session: Session, **overrides) -> BillTemplate:
    values = {
        "household_id": HOUSEHOLD,
        "created_by_user_id": USER,
        "name": "Rent",
        "bill_type": BillType.EXPENSE,
        "classification": BillClassification.HOUSING,
        "recurrence_type": RecurrenceType.MONTHLY,
        "recurrence_due_day": 15,
        "default_amount_cents": 10000,
    }
    values.update(overrides)
    template = BillTemplate(**values)
    session.add(template)
    session.commit()
    return template


def _list(session: Session, today: date = TODAY, **filters):
    return list_occurrences(
        session,
        household_id=HOUSEHOLD,
        user_id=USER,
        filters=OccurrenceListFilters(**filters),
        today=today,
    )


def test_listing_materializes_window_and_summarizes(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _template(session)
        page = _list(session)

        assert [view.occurrence.due_date for view in page.items] == [
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
            date(2024, 5, 15),
            date(2024, 6, 15),
        ]
        assert page.total == 5
        assert page.period is None
        assert page.items[0].occurrence.status == OccurrenceStatus.OVERDUE
        assert page.items[0].template.name == "Rent"

        summary = page.summary
        assert (summary.overdue_count, summary.overdue_amount_cents) == (1, 10000)
        assert (summary.upcoming_count, summary.upcoming_amount_cents) == (4, 40000)
        assert summary.next_due_date == date(2024, 3, 15)
        assert summary.paid_this_period_count == 0
    finally:
        session.close()


def test_listing_filters_and_paginates(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _template(session)
        _template(
            session,
            name="Salary",
            bill_type=BillType.INCOME,
            classification=BillClassification.OTHER,
            recurrence_due_day=1,
            default_amount_cents=300000,
        )

        everything = _list(session)
        assert everything.total == 11

        expenses = _list(session, bill_type=BillType.EXPENSE)
        assert expenses.total == 5
        assert {view.template.bill_type for view in expenses.items} == {BillType.EXPENSE}

        overdue = _list(session, statuses=(OccurrenceStatus.OVERDUE,))
        assert {view.occurrence.due_date for view in overdue.items} == {
            date(2024, 2, 1),
            date(2024, 2, 15),
            date(2024, 3, 1),
        }

        page = _list(session, bill_type=BillType.EXPENSE, limit=2, offset=1)
        assert page.total == 5
        assert (page.limit, page.offset) == (2, 1)
        assert [view.occurrence.due_date for view in page.items] == [date(2024, 3, 15), date(2024, 4, 15)]

        narrow = _list(session, start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
        assert narrow.total == 2
    finally:
        session.close()


def test_paid_this_period_counts_settled_rows(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _template(session)
        account = Account(user_id=USER, household_id=HOUSEHOLD, name="Checking", current_balance_cents=50000)
        session.add(account)
        session.commit()

        march = next(view for view in _list(session).items if view.occurrence.due_date == date(2024, 3, 15))
        pay_occurrence(
            session,
            household_id=HOUSEHOLD,
            user_id=USER,
            occurrence_id=march.occurrence.id,
            data=PaymentInput(account_id=account.id),
            today=TODAY,
        )

        summary = _list(session).summary
        assert (summary.paid_this_period_count, summary.paid_this_period_amount_cents) == (1, 10000)
        assert summary.upcoming_count == 3
        assert summary.next_due_date == date(2024, 4, 15)
    finally:
        session.close()


def test_period_offset_uses_assignment_and_allocations(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        update_household_preferences(
            session,
            user_id=USER,
            household_id=HOUSEHOLD,
            changes={"budget_cycle_frequency": "semi-monthly", "budget_cycle_semi_monthly_days": [1, 15]},
        )
        _template(session, name="Car loan", recurrence_due_day=20, budget_period_assignment=1)
        _template(session, name="Internet", recurrence_due_day=25, default_amount_cents=6000)

        today = date(2024, 3, 20)
        second_half = _list(session, today=today, period_offset=0)
        assert second_half.period is not None
        assert (second_half.period.start, second_half.period.end) == (date(2024, 3, 15), date(2024, 3, 31))
        assert [view.template.name for view in second_half.items] == ["Internet"]

        first_half = _list(
            session,
            today=today,
            period_offset=-1,
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
        )
        assert first_half.period.period_number == 1
        assert [view.template.name for view in first_half.items] == ["Car loan"]
        assert [row.period_number for row in first_half.items[0].allocations] == [1]
    finally:
        session.close()


def test_occurrence_detail_is_household_scoped(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _template(session)
        occurrence_id = _list(session).items[0].occurrence.id

        view = get_occurrence_detail(session, household_id=HOUSEHOLD, occurrence_id=occurrence_id, today=TODAY)
        assert view.occurrence.id == occurrence_id
        assert view.template.name == "Rent"
        assert view.allocations == []

        with pytest.raises(BillNotFoundError):
            get_occurrence_detail(session, household_id="hh-2", occurrence_id=occurrence_id, today=TODAY)
    finally:
        session.close()


def test_dashboard_summary_uses_current_budget_period(tmp_path) -> None:
    session = _make_session(tmp_path)
    try:
        _template(session)
        _template(session, name="Retired", is_active=False)

        dashboard = get_dashboard_summary(session, household_id=HOUSEHOLD, user_id=USER, today=TODAY)
        assert dashboard.active_template_count == 1
        assert (dashboard.current_period.start, dashboard.current_period.end) == (date(2024, 3, 1), date(2024, 3, 31))
        assert dashboard.summary.overdue_count == 1
        assert dashboard.summary.upcoming_count == 4
    finally:
        session.close()
