from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import app.models  # noqa: F401
from app.db import get_db_session
from app.main import app
from app.models.accounts import Account
from app.models.base import Base

HEADERS = {"X-Household-Id": "hh-1", "X-User-Id": "user-1"}
TODAY = "2024-03-10"


def _test_session_factory(tmp_path):
    db_path = tmp_path / "api_endpoints.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def _override_db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory(tmp_path, monkeypatch):
    monkeypatch.setenv("RUN_STARTUP_JOBS", "0")
    SessionLocal = _test_session_factory(tmp_path)

    def override_get_db():
        yield from _override_db(SessionLocal)

    app.dependency_overrides[get_db_session] = override_get_db
    try:
        yield SessionLocal
    finally:
        app.dependency_overrides.clear()


def _seed_account(session_factory, balance_cents: int = 1_000_000) -> int:
    with session_factory() as session:
        account = Account(user_id="user-1", household_id="hh-1", name="Checking", current_balance_cents=balance_cents)
        session.add(account)
        session.commit()
        return account.id


def _create_rent(client: TestClient) -> dict:
    created = client.post(
        f"/api/templates?today={TODAY}",
        headers=HEADERS,
        json={
            "name": "Rent",
            "bill_type": "expense",
            "classification": "housing",
            "recurrence_type": "monthly",
            "recurrence_due_day": 15,
            "default_amount_cents": 120000,
        },
    )
    assert created.status_code == 201
    return created.json()


def _occurrence_id(client: TestClient, due_date: str) -> int:
    listed = client.get(f"/api/occurrences?today={TODAY}", headers=HEADERS).json()
    return next(row["occurrence"]["id"] for row in listed["data"] if row["occurrence"]["due_date"] == due_date)


def test_health_and_household_headers(session_factory) -> None:
    with TestClient(app) as client:
        health = client.get("/api/health")
        assert health.status_code == 200
        assert health.json() == {"status": "ok", "database": "ok"}
        assert health.headers["X-Request-ID"]

        echoed = client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert echoed.headers["X-Request-ID"] == "req-123"

        assert client.get("/api/templates").status_code == 422
        assert client.get("/api/templates", headers={"X-Household-Id": "hh-1"}).status_code == 422


def test_template_crud_endpoints(session_factory) -> None:
    with TestClient(app) as client:
        template = _create_rent(client)
        assert template["is_active"] is True
        assert template["amount_tolerance_bps"] == 500

        listed = client.get("/api/templates", headers=HEADERS)
        assert listed.status_code == 200
        assert listed.json()["total"] == 1

        other_household = client.get(
            f"/api/templates/{template['id']}", headers={"X-Household-Id": "hh-2", "X-User-Id": "user-2"}
        )
        assert other_household.status_code == 404
        assert other_household.json()["detail"]["code"] == "NOT_FOUND"

        patched = client.patch(
            f"/api/templates/{template['id']}?today={TODAY}",
            headers=HEADERS,
            json={"default_amount_cents": 125000, "notes": "Landlord changed"},
        )
        assert patched.status_code == 200
        assert patched.json()["default_amount_cents"] == 125000

        out_of_range = client.patch(
            f"/api/templates/{template['id']}", headers=HEADERS, json={"recurrence_start_month": 15}
        )
        assert out_of_range.status_code == 422
        cleared_day = client.patch(
            f"/api/templates/{template['id']}",
            headers=HEADERS,
            json={"recurrence_type": "quarterly", "recurrence_due_day": None},
        )
        assert cleared_day.status_code == 400
        assert cleared_day.json()["detail"]["code"] == "VALIDATION_ERROR"
        assert client.get(f"/api/templates/{template['id']}", headers=HEADERS).json()["recurrence_type"] == "monthly"

        invalid = client.post(
            "/api/templates",
            headers=HEADERS,
            json={
                "name": "Gym",
                "bill_type": "expense",
                "classification": "membership",
                "recurrence_type": "weekly",
                "default_amount_cents": 2500,
            },
        )
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["code"] == "VALIDATION_ERROR"

        deleted = client.delete(f"/api/templates/{template['id']}", headers=HEADERS)
        assert deleted.status_code == 204
        assert client.get(f"/api/templates/{template['id']}", headers=HEADERS).status_code == 404


def test_occurrence_listing_and_payment_flow(session_factory) -> None:
    account_id = _seed_account(session_factory)
    with TestClient(app) as client:
        _create_rent(client)

        listed = client.get(f"/api/occurrences?today={TODAY}", headers=HEADERS)
        assert listed.status_code == 200
        body = listed.json()
        assert body["total"] == 5
        assert body["period"] is None
        assert body["summary"]["overdue_count"] == 1
        assert body["summary"]["next_due_date"] == "2024-03-15"

        overdue = client.get(f"/api/occurrences?today={TODAY}&status=overdue", headers=HEADERS).json()
        assert [row["occurrence"]["due_date"] for row in overdue["data"]] == ["2024-02-15"]

        current = client.get(f"/api/occurrences?today={TODAY}&period_offset=0", headers=HEADERS).json()
        assert current["period"]["start"] == "2024-03-01"
        assert [row["occurrence"]["due_date"] for row in current["data"]] == ["2024-03-15"]

        march_id = _occurrence_id(client, "2024-03-15")
        paid = client.post(
            f"/api/occurrences/{march_id}/pay?today={TODAY}",
            headers=HEADERS,
            json={"account_id": account_id, "idempotency_key": "rent-march"},
        )
        assert paid.status_code == 200
        paid_body = paid.json()
        assert paid_body["occurrence"]["status"] == "paid"
        assert paid_body["payment_event"]["amount_cents"] == 120000
        assert paid_body["replayed"] is False

        replay = client.post(
            f"/api/occurrences/{march_id}/pay?today={TODAY}",
            headers=HEADERS,
            json={"account_id": account_id, "idempotency_key": "rent-march"},
        )
        assert replay.status_code == 200
        assert replay.json()["replayed"] is True
        assert replay.json()["payment_event"]["id"] == paid_body["payment_event"]["id"]

        conflict = client.post(
            f"/api/occurrences/{march_id}/pay?today={TODAY}",
            headers=HEADERS,
            json={"account_id": account_id},
        )
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["code"] == "CONFLICT"

        april_id = _occurrence_id(client, "2024-04-15")
        invalid = client.post(
            f"/api/occurrences/{april_id}/pay?today={TODAY}",
            headers=HEADERS,
            json={"account_id": account_id, "amount_cents": 0},
        )
        assert invalid.status_code == 400

        missing = client.post(
            f"/api/occurrences/999999/pay?today={TODAY}", headers=HEADERS, json={"account_id": account_id}
        )
        assert missing.status_code == 404

        no_account = client.post(f"/api/occurrences/{april_id}/pay?today={TODAY}", headers=HEADERS, json={})
        assert no_account.status_code == 400

        payments = client.get(f"/api/occurrences/{march_id}/payments", headers=HEADERS)
        assert payments.status_code == 200
        assert len(payments.json()) == 1

        reset = client.post(f"/api/occurrences/{march_id}/reset?today={TODAY}", headers=HEADERS)
        assert reset.status_code == 200
        assert reset.json()["status"] == "unpaid"
        assert reset.json()["amount_paid_cents"] == 0

        skipped = client.post(f"/api/occurrences/{april_id}/skip", headers=HEADERS, json={"notes": "Prepaid"})
        assert skipped.status_code == 200
        assert skipped.json()["status"] == "skipped"

        detail = client.get(f"/api/occurrences/{april_id}?today={TODAY}", headers=HEADERS)
        assert detail.status_code == 200
        assert detail.json()["template"]["name"] == "Rent"


def test_allocation_rewrite_endpoint(session_factory) -> None:
    with TestClient(app) as client:
        _create_rent(client)
        may_id = _occurrence_id(client, "2024-05-15")

        rewritten = client.put(
            f"/api/occurrences/{may_id}/allocations",
            headers=HEADERS,
            json={
                "allocations": [
                    {"period_number": 1, "allocated_amount_cents": 60000},
                    {"period_number": 2, "allocated_amount_cents": 60000},
                ]
            },
        )
        assert rewritten.status_code == 200
        assert [row["period_number"] for row in rewritten.json()] == [1, 2]

        mismatched = client.put(
            f"/api/occurrences/{may_id}/allocations",
            headers=HEADERS,
            json={"allocations": [{"period_number": 1, "allocated_amount_cents": 1}]},
        )
        assert mismatched.status_code == 400


def test_autopay_rule_and_run_endpoints(session_factory) -> None:
    account_id = _seed_account(session_factory)
    with TestClient(app) as client:
        template = _create_rent(client)

        empty = client.get(f"/api/templates/{template['id']}/autopay", headers=HEADERS)
        assert empty.status_code == 200
        assert empty.json() == {"rule": None}

        saved = client.put(
            f"/api/templates/{template['id']}/autopay",
            headers=HEADERS,
            json={"is_enabled": True, "pay_from_account_id": account_id, "days_before_due": 0},
        )
        assert saved.status_code == 200
        assert saved.json()["rule"]["amount_type"] == "full_balance"

        missing_account = client.put(
            f"/api/templates/{template['id']}/autopay",
            headers=HEADERS,
            json={"is_enabled": True},
        )
        assert missing_account.status_code == 400

        dry_run = client.post(
            "/api/autopay/run", headers=HEADERS, json={"run_date": "2024-04-15", "dry_run": True}
        )
        assert dry_run.status_code == 200
        assert dry_run.json()["run_type"] == "dry_run"
        assert dry_run.json()["success_count"] == 0

        real_run = client.post("/api/autopay/run", headers=HEADERS, json={"run_date": "2024-04-15"})
        assert real_run.status_code == 200
        assert real_run.json()["status"] == "completed"
        assert real_run.json()["success_count"] == 1

        runs = client.get("/api/autopay/runs", headers=HEADERS)
        assert runs.status_code == 200
        assert runs.json()["total"] == 2
        assert runs.json()["data"][0]["run_type"] == "manual"

        scheduled = client.post("/api/admin/run-scheduled-autopay-once-today?today=2024-05-15")
        assert scheduled.status_code == 200
        assert scheduled.json()["ran"] is True
        assert scheduled.json()["runs"][0]["success_count"] == 1

        again = client.post("/api/admin/run-scheduled-autopay-once-today?today=2024-05-15")
        assert again.json()["ran"] is False
        assert again.json()["runs"] == []


def test_dashboard_and_preferences_endpoints(session_factory) -> None:
    with TestClient(app) as client:
        _create_rent(client)

        dashboard = client.get(f"/api/dashboard?today={TODAY}", headers=HEADERS)
        assert dashboard.status_code == 200
        assert dashboard.json()["active_template_count"] == 1
        assert dashboard.json()["overdue_count"] == 1
        assert dashboard.json()["current_period"]["end"] == "2024-03-31"

        prefs = client.get(f"/api/preferences?today={TODAY}", headers=HEADERS)
        assert prefs.status_code == 200
        assert prefs.json()["budget_cycle_frequency"] == "monthly"

        updated = client.patch(
            f"/api/preferences?today={TODAY}",
            headers=HEADERS,
            json={"budget_cycle_frequency": "semi-monthly", "budget_cycle_semi_monthly_days": [1, 15]},
        )
        assert updated.status_code == 200
        assert updated.json()["current_period"] == {
            "start": "2024-03-01",
            "end": "2024-03-14",
            "period_number": 1,
            "periods_in_month": 2,
        }

        invalid = client.patch(
            "/api/preferences",
            headers=HEADERS,
            json={"budget_cycle_semi_monthly_days": [20, 5]},
        )
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["code"] == "VALIDATION_ERROR"
